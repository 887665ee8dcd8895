from tutorbook.events.gateway_events import (
    AuthorizationFailed,
    AuthorizationSucceeded,
    CheckoutCompleted,
    CheckoutExpired,
    UnhandledEvent,
    parse_gateway_event,
)

from tests.factories.lesson_builders import gateway_event, payment_intent_object


def test_succeeded_intent_parses_to_authorization():
    payload = gateway_event(
        "payment_intent.succeeded",
        payment_intent_object("pi_1", lesson_id="01LESSON", amount=6500),
        event_id="evt_1",
    )

    event = parse_gateway_event(payload)

    assert isinstance(event, AuthorizationSucceeded)
    assert event.event_id == "evt_1"
    assert event.payment_intent_id == "pi_1"
    assert event.amount == 6500
    assert event.lesson_id == "01LESSON"


def test_amount_capturable_updated_is_an_authorization():
    obj = payment_intent_object("pi_2", lesson_id="01LESSON", amount=7000)
    obj["amount_capturable"] = 7000
    event = parse_gateway_event(gateway_event("payment_intent.amount_capturable_updated", obj))

    assert isinstance(event, AuthorizationSucceeded)
    assert event.amount == 7000


def test_camel_case_lesson_id_is_accepted():
    obj = payment_intent_object("pi_3")
    obj["metadata"] = {"lessonId": "01CAMEL"}

    event = parse_gateway_event(gateway_event("payment_intent.succeeded", obj))

    assert event.lesson_id == "01CAMEL"


def test_failed_intent_carries_error_message():
    payload = gateway_event(
        "payment_intent.payment_failed",
        payment_intent_object("pi_4", lesson_id="01LESSON", error_message="Your card was declined."),
    )

    event = parse_gateway_event(payload)

    assert isinstance(event, AuthorizationFailed)
    assert event.error_message == "Your card was declined."
    assert event.lesson_id == "01LESSON"


def test_checkout_completed_reads_session_fields():
    session = {
        "id": "cs_1",
        "object": "checkout.session",
        "payment_intent": "pi_5",
        "amount_total": 6500,
        "metadata": {"lesson_id": "01LESSON"},
    }

    event = parse_gateway_event(gateway_event("checkout.session.completed", session))

    assert isinstance(event, CheckoutCompleted)
    assert event.session_id == "cs_1"
    assert event.payment_intent_id == "pi_5"
    assert event.amount == 6500
    assert event.lesson_id == "01LESSON"


def test_checkout_completed_with_expanded_intent():
    session = {"id": "cs_2", "payment_intent": {"id": "pi_6"}, "metadata": {}}

    event = parse_gateway_event(gateway_event("checkout.session.completed", session))

    assert event.payment_intent_id == "pi_6"
    assert event.lesson_id is None


def test_checkout_expired_parses():
    session = {"id": "cs_3", "payment_intent": None, "metadata": {"lesson_id": "01LESSON"}}

    event = parse_gateway_event(gateway_event("checkout.session.expired", session))

    assert isinstance(event, CheckoutExpired)
    assert event.payment_intent_id is None
    assert event.lesson_id == "01LESSON"


def test_unknown_type_is_unhandled():
    event = parse_gateway_event(gateway_event("customer.created", {"id": "cus_1"}, event_id="evt_x"))

    assert isinstance(event, UnhandledEvent)
    assert event.to_dict() == {"event_id": "evt_x", "event_type": "customer.created"}


def test_missing_data_object_does_not_crash():
    event = parse_gateway_event({"id": "evt_y", "type": "payment_intent.succeeded"})

    assert isinstance(event, AuthorizationSucceeded)
    assert event.payment_intent_id == ""
    assert event.lesson_id is None
