"""HTTP contract of the payment endpoints."""

from datetime import timedelta
from unittest.mock import Mock

from tutorbook.core.enums import LessonStatus, PaymentStatus
from tutorbook.core.exceptions import PaymentAlreadyFinalizedException, PaymentGatewayException
from tutorbook.core.timezone_utils import utc_now

from tests.factories.lesson_builders import (
    create_lesson,
    encode,
    gateway_event,
    payment_intent_object,
    reload_lesson,
)
from tests.factories.payment_gateway_fakes import VALID_SIGNATURE

WEBHOOK_URL = "/api/v1/payments/webhooks/stripe"
CAPTURE_URL = "/api/v1/payments/capture"


class TestStripeWebhook:
    def test_get_is_not_allowed(self, client):
        response = client.get(WEBHOOK_URL)
        assert response.status_code == 405

    def test_missing_signature_is_400(self, client):
        response = client.post(WEBHOOK_URL, content=b'{"id": "evt_1"}')

        assert response.status_code == 400
        assert response.json()["code"] == "WEBHOOK_SIGNATURE_INVALID"

    def test_empty_body_is_400(self, client):
        response = client.post(WEBHOOK_URL, content=b"", headers={"stripe-signature": VALID_SIGNATURE})
        assert response.status_code == 400

    def test_bad_signature_is_400(self, client):
        response = client.post(
            WEBHOOK_URL, content=b'{"id": "evt_1"}', headers={"stripe-signature": "t=1,v1=forged"}
        )
        assert response.status_code == 400

    def test_authorization_schedules_lesson(self, client, db, test_student, test_tutor):
        lesson = create_lesson(
            db,
            tutor=test_tutor,
            student=test_student,
            start=utc_now() + timedelta(days=3),
            status=LessonStatus.PENDING_PAYMENT,
            payment_intent_id="pi_route",
        )
        body = encode(
            gateway_event("payment_intent.succeeded", payment_intent_object("pi_route", lesson_id=lesson.id))
        )

        response = client.post(WEBHOOK_URL, content=body, headers={"stripe-signature": VALID_SIGNATURE})

        assert response.status_code == 200
        assert response.json() == {"received": True}
        assert reload_lesson(db, lesson.id).status == LessonStatus.SCHEDULED.value

    def test_orphan_is_acknowledged(self, client, fake_gateway):
        body = encode(
            gateway_event("payment_intent.succeeded", payment_intent_object("pi_orphan", lesson_id="01GONE"))
        )

        response = client.post(WEBHOOK_URL, content=body, headers={"stripe-signature": VALID_SIGNATURE})

        assert response.status_code == 200
        assert fake_gateway.refunds == ["pi_orphan"]

    def test_unhandled_event_is_acknowledged(self, client):
        body = encode(gateway_event("invoice.paid", {"id": "in_1"}))

        response = client.post(WEBHOOK_URL, content=body, headers={"stripe-signature": VALID_SIGNATURE})

        assert response.status_code == 200

    def test_processing_error_is_500(self, client, fake_gateway):
        fake_gateway.session_lookup_error = RuntimeError("boom")
        body = encode(gateway_event("payment_intent.succeeded", payment_intent_object("pi_lost")))

        response = client.post(WEBHOOK_URL, content=body, headers={"stripe-signature": VALID_SIGNATURE})

        assert response.status_code == 500
        assert response.json()["detail"] == "boom"

    def test_unconfigured_webhook_secret_is_500(self, client, fake_gateway):
        fake_gateway.construct_event = Mock(
            side_effect=PaymentGatewayException("Webhook secret not configured")
        )
        body = encode(gateway_event("payment_intent.succeeded", payment_intent_object("pi_1")))

        response = client.post(WEBHOOK_URL, content=body, headers={"stripe-signature": VALID_SIGNATURE})

        assert response.status_code == 500
        assert response.json()["detail"] == "Webhook secret not configured"


class TestCapture:
    def _completed(self, db, student, tutor):
        return create_lesson(
            db,
            tutor=tutor,
            student=student,
            start=utc_now() - timedelta(hours=2),
            status=LessonStatus.COMPLETED,
            payment_intent_id="pi_cap",
            payment_status=PaymentStatus.PAID.value,
        )

    def test_tutor_captures(self, client, db, test_student, test_tutor, auth_headers_for):
        lesson = self._completed(db, test_student, test_tutor)

        response = client.post(
            CAPTURE_URL,
            json={"lessonId": lesson.id, "paymentIntentId": "pi_cap"},
            headers=auth_headers_for(test_tutor),
        )

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "paymentIntent": {"id": "pi_cap", "status": "succeeded"},
        }
        assert reload_lesson(db, lesson.id).payment_status == PaymentStatus.CHARGED.value

    def test_unauthenticated_is_401(self, client, db, test_student, test_tutor):
        lesson = self._completed(db, test_student, test_tutor)

        response = client.post(CAPTURE_URL, json={"lessonId": lesson.id, "paymentIntentId": "pi_cap"})

        assert response.status_code == 401

    def test_invalid_token_is_401(self, client):
        response = client.post(
            CAPTURE_URL,
            json={"lessonId": "01L", "paymentIntentId": "pi_cap"},
            headers={"Authorization": "Bearer not-a-jwt"},
        )
        assert response.status_code == 401

    def test_missing_parameters_is_400(self, client, test_tutor, auth_headers_for):
        response = client.post(
            CAPTURE_URL, json={"lessonId": "01L"}, headers=auth_headers_for(test_tutor)
        )

        assert response.status_code == 400
        assert response.json()["code"] == "MISSING_PARAMETERS"

    def test_unknown_lesson_is_404(self, client, test_tutor, auth_headers_for):
        response = client.post(
            CAPTURE_URL,
            json={"lessonId": "01NOSUCHLESSON", "paymentIntentId": "pi_cap"},
            headers=auth_headers_for(test_tutor),
        )
        assert response.status_code == 404

    def test_other_tutor_is_403(
        self, client, db, test_student, test_tutor, test_tutor_2, auth_headers_for
    ):
        lesson = self._completed(db, test_student, test_tutor)

        response = client.post(
            CAPTURE_URL,
            json={"lessonId": lesson.id, "paymentIntentId": "pi_cap"},
            headers=auth_headers_for(test_tutor_2),
        )
        assert response.status_code == 403

    def test_not_completed_is_400(self, client, db, test_student, test_tutor, auth_headers_for):
        lesson = create_lesson(
            db,
            tutor=test_tutor,
            student=test_student,
            start=utc_now() + timedelta(days=1),
            payment_intent_id="pi_cap",
        )

        response = client.post(
            CAPTURE_URL,
            json={"lessonId": lesson.id, "paymentIntentId": "pi_cap"},
            headers=auth_headers_for(test_tutor),
        )

        assert response.status_code == 400
        assert response.json()["code"] == "LESSON_NOT_COMPLETED"

    def test_mismatched_intent_is_400(self, client, db, test_student, test_tutor, auth_headers_for):
        lesson = self._completed(db, test_student, test_tutor)

        response = client.post(
            CAPTURE_URL,
            json={"lessonId": lesson.id, "paymentIntentId": "pi_other"},
            headers=auth_headers_for(test_tutor),
        )

        assert response.status_code == 400
        assert response.json()["code"] == "PAYMENT_INTENT_MISMATCH"

    def test_already_finalized_is_400(
        self, client, db, fake_gateway, test_student, test_tutor, auth_headers_for
    ):
        lesson = self._completed(db, test_student, test_tutor)
        fake_gateway.capture_error = PaymentAlreadyFinalizedException("pi_cap", "already captured")

        response = client.post(
            CAPTURE_URL,
            json={"lessonId": lesson.id, "paymentIntentId": "pi_cap"},
            headers=auth_headers_for(test_tutor),
        )

        assert response.status_code == 400
        assert response.json()["code"] == "PAYMENT_ALREADY_FINALIZED"


class TestIntentsAndCheckout:
    def test_intent_requires_login(self, client):
        response = client.post("/api/v1/payments/intents", json={"amount": 5000})
        assert response.status_code == 401

    def test_intent_below_minimum(self, client, test_student, auth_headers_for):
        response = client.post(
            "/api/v1/payments/intents", json={"amount": 50}, headers=auth_headers_for(test_student)
        )

        assert response.status_code == 400
        assert response.json()["code"] == "AMOUNT_BELOW_MINIMUM"

    def test_intent_returns_client_secret(self, client, test_student, auth_headers_for):
        response = client.post(
            "/api/v1/payments/intents",
            json={"amount": 5000, "metadata": {"courseCode": "MATH101"}},
            headers=auth_headers_for(test_student),
        )

        assert response.status_code == 200
        assert response.json() == {"clientSecret": "pi_test_1_secret_abc"}

    def test_checkout_session_uses_origin(self, client, fake_gateway):
        response = client.post(
            "/api/v1/payments/checkout-sessions",
            json={
                "amount": 6500,
                "lesson_id": "01LESSON",
                "tutor_id": "01TUTOR",
                "student_id": "01STUDENT",
                "course_code": "MATH101",
                "lesson_date": "2030-01-10T15:00:00Z",
            },
            headers={"origin": "https://tutorbook.example"},
        )

        assert response.status_code == 200
        assert response.json() == {"url": "https://checkout.stripe.test/cs_test_1"}
        assert fake_gateway.checkout_sessions[0]["success_url"].startswith(
            "https://tutorbook.example/tutor/01TUTOR?booking=success"
        )

    def test_checkout_session_missing_fields(self, client):
        response = client.post("/api/v1/payments/checkout-sessions", json={"amount": 6500})

        assert response.status_code == 400
        assert response.json()["code"] == "MISSING_PARAMETERS"
