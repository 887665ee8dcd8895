from datetime import timedelta

from tutorbook.core.timezone_utils import utc_now
from tutorbook.models.lesson import Lesson

from tests.factories.lesson_builders import create_lesson, encode, gateway_event
from tests.factories.payment_gateway_fakes import VALID_SIGNATURE


def test_backfill_requires_admin(client, test_student, auth_headers_for):
    response = client.post(
        "/api/v1/admin/lessons/backfill-created-at", headers=auth_headers_for(test_student)
    )
    assert response.status_code == 403


def test_backfill_reports_summary(client, db, test_admin, test_student, test_tutor, auth_headers_for):
    lesson = create_lesson(
        db, tutor=test_tutor, student=test_student, start=utc_now() + timedelta(days=2)
    )
    db.query(Lesson).filter(Lesson.id == lesson.id).update(
        {"created_at": None}, synchronize_session=False
    )
    db.commit()

    response = client.post(
        "/api/v1/admin/lessons/backfill-created-at", headers=auth_headers_for(test_admin)
    )

    assert response.status_code == 200
    assert response.json() == {"updated": 1, "failed": 0, "failed_ids": []}


def test_webhook_events_listing(client, test_admin, test_tutor, auth_headers_for):
    body = encode(gateway_event("invoice.paid", {"id": "in_1"}, event_id="evt_listed"))
    client.post(
        "/api/v1/payments/webhooks/stripe", content=body, headers={"stripe-signature": VALID_SIGNATURE}
    )

    forbidden = client.get("/api/v1/admin/webhook-events", headers=auth_headers_for(test_tutor))
    response = client.get(
        "/api/v1/admin/webhook-events?status=ignored", headers=auth_headers_for(test_admin)
    )

    assert forbidden.status_code == 403
    assert response.status_code == 200
    events = response.json()["events"]
    assert [event["eventId"] for event in events] == ["evt_listed"]
    assert events[0]["deliveryCount"] == 1
