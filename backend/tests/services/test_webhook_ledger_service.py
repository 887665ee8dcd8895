from __future__ import annotations

from tutorbook.models.webhook_event import WebhookEvent
from tutorbook.services.webhook_ledger_service import WebhookLedgerService


def test_log_received_creates_event(db):
    service = WebhookLedgerService(db)
    event = service.log_received(
        event_type="payment_intent.succeeded",
        payload={"event_id": "evt_1"},
        event_id="evt_1",
    )

    assert event.id is not None
    assert event.status == "received"
    assert event.delivery_count == 1
    assert event.source == "stripe"

    fetched = db.query(WebhookEvent).filter(WebhookEvent.id == event.id).first()
    assert fetched is not None
    assert fetched.payload == {"event_id": "evt_1"}


def test_log_received_handles_duplicate_event_id(db):
    service = WebhookLedgerService(db)
    first = service.log_received(event_type="payment_intent.succeeded", event_id="evt_123")
    service.mark_processed(first, outcome="scheduled", lesson_id="01L")

    second = service.log_received(event_type="payment_intent.succeeded", event_id="evt_123")

    assert second.id == first.id
    assert second.delivery_count == 2
    assert second.status == "received"
    assert db.query(WebhookEvent).count() == 1


def test_same_event_id_different_source_creates_separate_records(db):
    service = WebhookLedgerService(db)
    stripe_event = service.log_received(event_type="x", event_id="evt_1", source="stripe")
    other_event = service.log_received(event_type="x", event_id="evt_1", source="sandbox")

    assert stripe_event.id != other_event.id


def test_mark_processed_and_ignored(db):
    service = WebhookLedgerService(db)
    processed = service.log_received(event_type="payment_intent.succeeded", event_id="evt_a")
    ignored = service.log_received(event_type="customer.created", event_id="evt_b")

    service.mark_processed(processed, outcome="scheduled", lesson_id="01L")
    service.mark_processed(ignored, outcome="ignored", ignored=True)

    assert processed.status == "processed"
    assert processed.outcome == "scheduled"
    assert processed.lesson_id == "01L"
    assert processed.processed_at is not None
    assert ignored.status == "ignored"


def test_mark_failed_truncates_error(db):
    service = WebhookLedgerService(db)
    event = service.log_received(event_type="payment_intent.succeeded", event_id="evt_fail")

    service.mark_failed(event, "x" * 5000)

    assert event.status == "failed"
    assert len(event.processing_error) == 2000


def test_list_events_filters_by_status(db):
    service = WebhookLedgerService(db)
    done = service.log_received(event_type="a", event_id="evt_done")
    service.log_received(event_type="b", event_id="evt_waiting")
    service.mark_processed(done, outcome="scheduled")

    assert [e.event_id for e in service.list_events(status="processed")] == ["evt_done"]
    assert len(service.list_events()) == 2
