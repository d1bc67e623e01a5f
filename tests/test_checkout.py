import json
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from app.core.config import settings
from app.models.payment import Payment
from app.schemas.webhook import parse_webhook_event
from app.services.checkout import CheckoutError, CheckoutService
from app.services.webhook import WebhookReconciler
from tests.conftest import CHILD_DOB, INFANT_DOB, checkout_event, make_event, register, register_group, window_around_today


def payments_for(db, registration_id):
    db.expire_all()
    return db.query(Payment).filter(Payment.registration_id == registration_id).all()


def test_opens_session_and_records_pending_payment(db, store, gateway, event):
    registration = register(store, event)

    session = CheckoutService(store, gateway).create_for_registration(registration.id)

    assert session.amount == Decimal("100.00")
    assert session.reused is False
    assert session.url.startswith("https://checkout.stripe.test/")

    call = gateway.created[0]
    assert call["line_items"][0]["price_data"]["unit_amount"] == 10000
    assert call["metadata"]["registration_id"] == registration.id
    assert call["customer_email"] == "ada@example.com"
    assert "{CHECKOUT_SESSION_ID}" in call["success_url"]
    assert call["cancel_url"].endswith("cancelled=true")

    [payment] = payments_for(db, registration.id)
    assert payment.status == "pending"
    assert payment.stripe_session_id == session.session_id
    assert payment.amount == Decimal("100.00")
    assert payment.idempotency_key == f"reg_{registration.id}_0"


def test_open_session_is_reused(db, store, gateway, event):
    registration = register(store, event)
    service = CheckoutService(store, gateway)

    first = service.create_for_registration(registration.id)
    second = service.create_for_registration(registration.id)

    assert second.reused is True
    assert second.session_id == first.session_id
    assert len(gateway.created) == 1
    assert len(payments_for(db, registration.id)) == 1


def test_paid_session_keeps_its_payment_row(db, store, gateway, event):
    registration = register(store, event)
    service = CheckoutService(store, gateway)
    first = service.create_for_registration(registration.id)
    # paid on Stripe, completion webhook not delivered yet
    gateway.pay(first.session_id)

    with pytest.raises(CheckoutError) as exc:
        service.create_for_registration(registration.id)

    assert exc.value.code == "PAYMENT_PROCESSING"
    assert exc.value.status_code == 409
    assert len(gateway.created) == 1
    [payment] = payments_for(db, registration.id)
    assert payment.status == "pending"
    assert payment.stripe_session_id == first.session_id


def test_late_completion_webhook_still_confirms_after_retry(db, store, gateway, event):
    registration = register(store, event)
    service = CheckoutService(store, gateway)
    first = service.create_for_registration(registration.id)
    gateway.pay(first.session_id)
    with pytest.raises(CheckoutError):
        service.create_for_registration(registration.id)

    event_payload = parse_webhook_event(json.loads(checkout_event("checkout.session.completed", first.session_id, "evt_late")))
    outcome = WebhookReconciler(store, gateway).handle(event_payload)

    assert outcome.action == "completed"
    store.refresh(registration)
    assert registration.status == "confirmed"


def test_expired_session_is_replaced_on_the_same_payment_row(db, store, gateway, event):
    registration = register(store, event)
    service = CheckoutService(store, gateway)
    first = service.create_for_registration(registration.id)
    # expired on Stripe, expiry webhook not delivered yet
    gateway.sessions[first.session_id].status = "expired"

    second = service.create_for_registration(registration.id)

    assert second.reused is False
    assert second.session_id != first.session_id
    [payment] = payments_for(db, registration.id)
    assert payment.stripe_session_id == second.session_id
    assert payment.idempotency_key == f"reg_{registration.id}_0"


def test_session_lookup_failure_does_not_open_another_session(db, store, gateway, event):
    registration = register(store, event)
    service = CheckoutService(store, gateway)
    first = service.create_for_registration(registration.id)
    del gateway.sessions[first.session_id]

    with pytest.raises(CheckoutError) as exc:
        service.create_for_registration(registration.id)

    assert exc.value.code == "GATEWAY_ERROR"
    assert len(gateway.created) == 1
    [payment] = payments_for(db, registration.id)
    assert payment.stripe_session_id == first.session_id


def test_price_drift_is_corrected_before_charging(db, store, gateway, event):
    registration = register(store, event)
    service = CheckoutService(store, gateway)
    first = service.create_for_registration(registration.id)

    event.pricing.adult_full_price = Decimal("120.00")
    db.commit()

    second = service.create_for_registration(registration.id)

    assert second.amount == Decimal("120.00")
    assert gateway.created[-1]["line_items"][0]["price_data"]["unit_amount"] == 12000
    # the stale session must not stay payable
    assert first.session_id in gateway.expired

    store.refresh(registration)
    assert registration.computed_amount == Decimal("120.00")
    assert "$120.00" in registration.explanation_detail
    [payment] = payments_for(db, registration.id)
    assert payment.amount == Decimal("120.00")
    assert payment.stripe_session_id == second.session_id


def test_stale_session_that_cannot_be_expired_is_kept(db, store, gateway, event):
    registration = register(store, event)
    service = CheckoutService(store, gateway)
    first = service.create_for_registration(registration.id)
    event.pricing.adult_full_price = Decimal("120.00")
    db.commit()
    gateway.expire_fails.add(first.session_id)

    with pytest.raises(CheckoutError) as exc:
        service.create_for_registration(registration.id)

    assert exc.value.code == "GATEWAY_ERROR"
    assert len(gateway.created) == 1
    [payment] = payments_for(db, registration.id)
    assert payment.stripe_session_id == first.session_id
    assert payment.amount == Decimal("100.00")
    store.refresh(registration)
    assert registration.computed_amount == Decimal("100.00")


def test_stale_session_paid_while_expiring_reports_processing(db, store, gateway, event, monkeypatch):
    registration = register(store, event)
    service = CheckoutService(store, gateway)
    first = service.create_for_registration(registration.id)
    event.pricing.adult_full_price = Decimal("120.00")
    db.commit()

    def paid_before_expiry(session_id):
        gateway.pay(session_id)
        return False

    monkeypatch.setattr(gateway, "expire_session", paid_before_expiry)

    with pytest.raises(CheckoutError) as exc:
        service.create_for_registration(registration.id)

    assert exc.value.code == "PAYMENT_PROCESSING"
    assert len(gateway.created) == 1
    [payment] = payments_for(db, registration.id)
    assert payment.stripe_session_id == first.session_id


def test_strict_mode_rejects_price_drift(db, store, gateway, event):
    registration = register(store, event)
    event.pricing.adult_full_price = Decimal("150.00")
    db.commit()

    strict = settings.model_copy(update={"STRICT_PRICE_MATCH": True})
    with pytest.raises(CheckoutError) as exc:
        CheckoutService(store, gateway, settings=strict).create_for_registration(registration.id)

    assert exc.value.code == "PRICE_MISMATCH"
    assert exc.value.status_code == 409
    assert exc.value.details == {"stored_amount": "100.00", "current_amount": "150.00"}
    assert gateway.created == []


def test_free_registration_is_confirmed_without_checkout(store, gateway, event):
    registration = register(store, event, date_of_birth=INFANT_DOB)
    assert registration.status == "confirmed"

    with pytest.raises(CheckoutError) as exc:
        CheckoutService(store, gateway).create_for_registration(registration.id)
    assert exc.value.code == "ALREADY_CONFIRMED"


def test_pending_registration_that_became_free_is_rejected(db, store, gateway, event):
    registration = register(store, event, is_full_duration=False, is_staying_in_motel=False, num_days=2)
    event.pricing.adult_daily_price = Decimal("0.00")
    db.commit()

    with pytest.raises(CheckoutError) as exc:
        CheckoutService(store, gateway).create_for_registration(registration.id)
    assert exc.value.code == "NO_PAYMENT_REQUIRED"


def test_unknown_and_cancelled_registrations(store, gateway, event):
    service = CheckoutService(store, gateway)
    with pytest.raises(CheckoutError) as exc:
        service.create_for_registration("00000000-0000-0000-0000-000000000000")
    assert exc.value.code == "NOT_FOUND"
    assert exc.value.status_code == 404

    registration = register(store, event)
    store.cancel_registration(registration.id)
    store.commit()
    with pytest.raises(CheckoutError) as exc:
        service.create_for_registration(registration.id)
    assert exc.value.code == "NOT_PENDING"


def test_missing_pricing_config(db, store, gateway, event):
    registration = register(store, event)
    db.delete(event.pricing)
    db.commit()

    with pytest.raises(CheckoutError) as exc:
        CheckoutService(store, gateway).create_for_registration(registration.id)
    assert exc.value.code == "PRICING_NOT_CONFIGURED"


def test_gateway_failure_leaves_no_payment_row(db, store, gateway, event):
    registration = register(store, event)
    gateway.fail_create = True

    with pytest.raises(CheckoutError) as exc:
        CheckoutService(store, gateway).create_for_registration(registration.id)

    assert exc.value.code == "GATEWAY_ERROR"
    assert exc.value.status_code == 500
    assert payments_for(db, registration.id) == []


def test_failed_payment_write_expires_the_new_session(db, store, gateway, event, monkeypatch):
    registration = register(store, event)

    def broken_add_payment(payment):
        raise OperationalError("INSERT INTO payments", {}, Exception("disk I/O error"))

    monkeypatch.setattr(store, "add_payment", broken_add_payment)

    with pytest.raises(CheckoutError) as exc:
        CheckoutService(store, gateway).create_for_registration(registration.id)

    assert exc.value.code == "INTERNAL_ERROR"
    assert gateway.expired == ["cs_test_1"]


def test_expired_payment_gets_a_fresh_row_and_key(db, store, gateway, event):
    registration = register(store, event)
    service = CheckoutService(store, gateway)
    first = service.create_for_registration(registration.id)
    store.expire_payment(first.session_id, "evt_expired")
    store.commit()

    second = service.create_for_registration(registration.id)

    rows = {p.status: p for p in payments_for(db, registration.id)}
    assert set(rows) == {"expired", "pending"}
    assert rows["pending"].stripe_session_id == second.session_id
    assert rows["pending"].idempotency_key == f"reg_{registration.id}_1"


# groups

def test_group_checkout_charges_surcharge_once(db, store, gateway):
    event = make_event(db, surcharge_tiers=[window_around_today()])
    group_id, members = register_group(store, event, [
        {"first_name": "Ada"},
        {"first_name": "Charles"},
        {"first_name": "Byron", "date_of_birth": CHILD_DOB, "is_full_duration": False, "is_staying_in_motel": True},
    ])

    session = CheckoutService(store, gateway).create_for_group(group_id)

    assert session.amount == Decimal("220.00")
    call = gateway.created[0]
    amounts = [item["price_data"]["unit_amount"] for item in call["line_items"]]
    # the free member is not a line item
    assert amounts == [10000, 10000, 2000]
    assert call["line_items"][-1]["price_data"]["product_data"]["name"] == "Late Fee"
    assert call["metadata"]["group_id"] == group_id
    assert call["metadata"]["registration_id"] == members[0].id
    assert f"group_id={group_id}" in call["success_url"]

    [payment] = payments_for(db, members[0].id)
    assert payment.amount == Decimal("220.00")
    assert payment.idempotency_key == f"grp_{group_id}_0"


def test_solo_checkout_on_group_member_uses_group_flow(db, store, gateway, event):
    group_id, members = register_group(store, event, [{"first_name": "Ada"}, {"first_name": "Charles"}])

    session = CheckoutService(store, gateway).create_for_registration(members[1].id)

    assert session.amount == Decimal("200.00")
    assert gateway.created[0]["metadata"]["group_id"] == group_id
    assert len(payments_for(db, members[0].id)) == 1
    assert payments_for(db, members[1].id) == []


def test_confirmed_group_cannot_be_charged_again(store, gateway, event):
    group_id, members = register_group(store, event, [{"first_name": "Ada"}, {"first_name": "Charles"}])
    store.confirm_group(group_id)
    store.commit()

    with pytest.raises(CheckoutError) as exc:
        CheckoutService(store, gateway).create_for_group(group_id)
    assert exc.value.code == "ALREADY_CONFIRMED"


def test_unknown_group(store, gateway):
    with pytest.raises(CheckoutError) as exc:
        CheckoutService(store, gateway).create_for_group("missing")
    assert exc.value.code == "NOT_FOUND"


def test_cancelled_primary_does_not_break_group_checkout(db, store, gateway, event):
    group_id, members = register_group(store, event, [{"first_name": "Ada"}, {"first_name": "Charles"}])
    service = CheckoutService(store, gateway)
    first = service.create_for_group(group_id)
    store.cancel_registration(members[0].id)
    store.commit()

    second = service.create_for_group(group_id)

    assert second.amount == Decimal("100.00")
    # the old session charged for both members and must not stay payable
    assert first.session_id in gateway.expired
    assert gateway.created[-1]["metadata"]["registration_id"] == members[1].id
    [payment] = payments_for(db, members[0].id)
    assert payment.stripe_session_id == second.session_id
    assert payment.amount == Decimal("100.00")
    assert payment.idempotency_key == f"grp_{group_id}_0"
    assert payments_for(db, members[1].id) == []

    assert service.create_for_group(group_id).reused is True


def test_group_key_counts_payments_across_members(db, store, gateway, event):
    group_id, members = register_group(store, event, [{"first_name": "Ada"}, {"first_name": "Charles"}])
    service = CheckoutService(store, gateway)
    first = service.create_for_group(group_id)
    store.expire_payment(first.session_id, "evt_expired")
    store.cancel_registration(members[0].id)
    store.commit()

    second = service.create_for_group(group_id)

    [payment] = payments_for(db, members[1].id)
    assert payment.stripe_session_id == second.session_id
    assert payment.idempotency_key == f"grp_{group_id}_1"


def test_group_paid_through_cancelled_primary_row_confirms_the_rest(db, store, gateway, event):
    group_id, members = register_group(store, event, [{"first_name": "Ada"}, {"first_name": "Charles"}])
    service = CheckoutService(store, gateway)
    service.create_for_group(group_id)
    store.cancel_registration(members[0].id)
    store.commit()
    session = service.create_for_group(group_id)

    event_payload = parse_webhook_event(json.loads(checkout_event("checkout.session.completed", session.session_id, "evt_grp")))
    WebhookReconciler(store, gateway).handle(event_payload)

    db.expire_all()
    statuses = {m.id: m.status for m in store.get_group_registrations(group_id)}
    assert statuses == {members[0].id: "cancelled", members[1].id: "confirmed"}
