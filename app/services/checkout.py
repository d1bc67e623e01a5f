"""Opening checkout sessions for pending registrations.

The amount charged is always recomputed here from the stored registrant
attributes and the current pricing configuration. A stored amount that no
longer matches is corrected in place (or rejected with ``PRICE_MISMATCH``
when ``STRICT_PRICE_MATCH`` is on) before the gateway sees a line item.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional

import stripe
import structlog
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings as default_settings
from app.models.enums import PaymentStatus, RegistrationStatus
from app.models.payment import Payment
from app.models.registration import Registration
from app.services.gateway import CheckoutGateway, GatewaySession
from app.services.pricing import (
    PricingResult,
    compute_group_pricing,
    compute_pricing,
    money,
    pricing_input_for,
    to_cents,
)
from app.services.registration_store import RegistrationStore


logger = structlog.get_logger(__name__)


class CheckoutError(Exception):
    def __init__(self, code: str, status_code: int, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.code = code
        self.status_code = status_code
        self.message = message
        self.details = details or {}


@dataclass
class CheckoutSession:
    session_id: str
    url: str
    amount: Decimal
    reused: bool = False


class CheckoutService:

    def __init__(self, store: RegistrationStore, gateway: CheckoutGateway, settings=default_settings):
        self.store = store
        self.gateway = gateway
        self.settings = settings

    # solo

    def create_for_registration(self, registration_id: str) -> CheckoutSession:
        registration = self.store.get_registration(registration_id)
        if not registration:
            raise CheckoutError("NOT_FOUND", 404, "Registration not found")

        if registration.group_id:
            return self.create_for_group(registration.group_id)

        self._ensure_payable(registration)
        event = registration.event
        pricing = self._pricing_for(event.id)

        result = compute_pricing(pricing_input_for(registration), event, pricing)
        if result.amount == 0:
            raise CheckoutError("NO_PAYMENT_REQUIRED", 400, "No payment required for free registrations")

        self._reconcile_drift(registration, result.amount, result)

        line_items = [self._line_item(event.name, registration, result.amount, result.explanation_detail)]
        return self._open_session(
            primary=registration,
            amount=result.amount,
            line_items=line_items,
            group_id=None,
        )

    # group

    def create_for_group(self, group_id: str) -> CheckoutSession:
        members = self.store.get_group_registrations(group_id)
        if not members:
            raise CheckoutError("NOT_FOUND", 404, "Group not found")

        if any(m.status == RegistrationStatus.CONFIRMED.value for m in members):
            raise CheckoutError("ALREADY_CONFIRMED", 400, "Group registration already confirmed")

        pending = [m for m in members if m.status == RegistrationStatus.PENDING.value]
        if not pending:
            raise CheckoutError("NOT_PENDING", 400, "Group has no pending registrations")

        primary = pending[0]
        event = primary.event
        pricing = self._pricing_for(event.id)

        # one registration moment for the whole group keeps the surcharge tier stable
        group = compute_group_pricing(
            [pricing_input_for(m, registration_date=primary.created_at) for m in pending],
            event,
            pricing,
        )
        if group.grand_total == 0:
            raise CheckoutError("NO_PAYMENT_REQUIRED", 400, "No payment required for free registrations")

        for member, item in zip(pending, group.items):
            self._reconcile_drift(member, item.amount, item)

        line_items = [
            self._line_item(event.name, member, item.amount, item.explanation_detail)
            for member, item in zip(pending, group.items)
            if item.amount > 0
        ]
        if group.surcharge > 0:
            line_items.append({
                "price_data": {
                    "currency": self.settings.CURRENCY,
                    "product_data": {"name": group.surcharge_label or "Late registration"},
                    "unit_amount": to_cents(group.surcharge),
                },
                "quantity": 1,
            })

        return self._open_session(
            primary=primary,
            amount=group.grand_total,
            line_items=line_items,
            group_id=group_id,
        )

    # helpers

    def _ensure_payable(self, registration: Registration):
        if registration.status == RegistrationStatus.CONFIRMED.value:
            raise CheckoutError("ALREADY_CONFIRMED", 400, "Registration already confirmed")
        if registration.status != RegistrationStatus.PENDING.value:
            raise CheckoutError("NOT_PENDING", 400, f"Registration is {registration.status}")

    def _pricing_for(self, event_id: str):
        pricing = self.store.get_pricing_config(event_id)
        if not pricing:
            logger.error("pricing_not_configured", event_id=event_id)
            raise CheckoutError("PRICING_NOT_CONFIGURED", 404, "Pricing not configured")
        return pricing

    def _reconcile_drift(self, registration: Registration, amount: Decimal, result: PricingResult):
        stored = money(registration.computed_amount)
        code = result.explanation_code.value
        if stored == amount and registration.explanation_code == code and registration.explanation_detail == result.explanation_detail:
            return

        if stored != amount and self.settings.STRICT_PRICE_MATCH:
            logger.warning(
                "price_mismatch_rejected",
                registration_id=registration.id,
                stored_amount=str(stored),
                current_amount=str(amount),
            )
            raise CheckoutError(
                "PRICE_MISMATCH",
                409,
                "Pricing has changed since your registration was created. Please re-register to get the updated price.",
                details={"stored_amount": str(stored), "current_amount": str(amount)},
            )

        if stored != amount:
            logger.warning(
                "price_drift_corrected",
                registration_id=registration.id,
                stored_amount=str(stored),
                current_amount=str(amount),
            )
        self.store.apply_pricing_drift(registration, amount, code, result.explanation_detail)

    def _line_item(self, event_name: str, registration: Registration, amount: Decimal, detail: str) -> Dict:
        return {
            "price_data": {
                "currency": self.settings.CURRENCY,
                "product_data": {
                    "name": f"Registration: {event_name}",
                    "description": f"{registration.full_name}: {detail}",
                },
                "unit_amount": to_cents(amount),
            },
            "quantity": 1,
        }

    def _redirect_urls(self, registration_id: str, group_id: Optional[str]):
        query = f"registration_id={registration_id}"
        if group_id:
            query += f"&group_id={group_id}"
        success_url = f"{self.settings.APP_URL}/register/success?session_id={{CHECKOUT_SESSION_ID}}&{query}"
        cancel_url = f"{self.settings.APP_URL}/register/review?{query}&cancelled=true"
        return success_url, cancel_url

    def _new_idempotency_key(self, registration_id: str, group_id: Optional[str]) -> str:
        # one key per payment row; rows are never deleted so the index only grows
        if group_id:
            return f"grp_{group_id}_{self.store.count_group_payments(group_id)}"
        return f"reg_{registration_id}_{self.store.count_payments(registration_id)}"

    def _pending_payment(self, primary: Registration, group_id: Optional[str]) -> Optional[Payment]:
        # the group's row may hang off a member who has since been cancelled
        if group_id:
            return self.store.get_pending_group_payment(group_id)
        return self.store.get_pending_payment(primary.id)

    def _lookup_session(self, session_id: str, log) -> GatewaySession:
        try:
            return self.gateway.retrieve_session(session_id)
        except stripe.StripeError as e:
            self.store.rollback()
            log.error("checkout_session_lookup_failed", session_id=session_id, error=str(e))
            raise CheckoutError("GATEWAY_ERROR", 500, "Failed to create payment session")

    def _ensure_not_paid(self, session: GatewaySession, log):
        if session.status == "complete" or session.payment_status == "paid":
            self.store.rollback()
            log.info("checkout_session_already_paid", session_id=session.id)
            raise CheckoutError(
                "PAYMENT_PROCESSING",
                409,
                "Payment has already been received and is being processed. Please check your registration status shortly.",
            )

    def _reusable_session(self, payment: Payment, amount: Decimal, log) -> Optional[CheckoutSession]:
        """Return the open session when it can be reused.

        ``None`` means the stored session is closed for good and the row may
        take a new one. A session that was paid, or that could not be
        closed, keeps the row and fails the request instead.
        """
        existing = self._lookup_session(payment.stripe_session_id, log)
        self._ensure_not_paid(existing, log)
        if existing.status != "open":
            return None

        if money(payment.amount) == amount and existing.url:
            return CheckoutSession(session_id=existing.id, url=existing.url, amount=amount, reused=True)

        # stale price; the old session must be closed before a new one replaces it
        if self.gateway.expire_session(existing.id):
            return None
        current = self._lookup_session(existing.id, log)
        self._ensure_not_paid(current, log)
        if current.status == "expired":
            return None
        self.store.rollback()
        log.error("checkout_stale_session_still_open", session_id=existing.id)
        raise CheckoutError("GATEWAY_ERROR", 500, "Failed to create payment session")

    def _open_session(self, primary: Registration, amount: Decimal, line_items: List[Dict], group_id: Optional[str]) -> CheckoutSession:
        log = logger.bind(registration_id=primary.id, group_id=group_id)

        existing = self._pending_payment(primary, group_id)
        if existing and existing.stripe_session_id:
            reused = self._reusable_session(existing, amount, log)
            if reused:
                self.store.commit()
                log.info("checkout_session_reused", session_id=reused.session_id)
                return reused

        idempotency_key = existing.idempotency_key if existing else self._new_idempotency_key(primary.id, group_id)

        metadata = {"registration_id": primary.id, "idempotency_key": idempotency_key}
        if group_id:
            metadata["group_id"] = group_id
        success_url, cancel_url = self._redirect_urls(primary.id, group_id)
        expires_at = datetime.now(timezone.utc) + timedelta(minutes=self.settings.CHECKOUT_SESSION_TTL_MINUTES)

        try:
            session = self.gateway.create_session(
                line_items=line_items,
                success_url=success_url,
                cancel_url=cancel_url,
                customer_email=primary.email,
                metadata=metadata,
                expires_at=int(expires_at.timestamp()),
            )
        except stripe.StripeError as e:
            self.store.rollback()
            log.error("checkout_session_create_failed", error=str(e), error_type=type(e).__name__)
            raise CheckoutError("GATEWAY_ERROR", 500, "Failed to create payment session")

        try:
            recorded = False
            if existing:
                recorded = self.store.update_pending_payment_session(existing.id, session.id, amount)
                if not recorded:
                    # the row left pending while the session was being opened
                    self.store.refresh(existing)
                    if existing.status == PaymentStatus.COMPLETED.value:
                        self.store.rollback()
                        self.gateway.expire_session(session.id)
                        log.info("checkout_superseded_by_completed_payment", session_id=session.id)
                        raise CheckoutError("ALREADY_CONFIRMED", 400, "Registration already confirmed")
                    idempotency_key = self._new_idempotency_key(primary.id, group_id)
            if not recorded:
                self.store.add_payment(Payment(
                    registration_id=primary.id,
                    stripe_session_id=session.id,
                    amount=amount,
                    currency=self.settings.CURRENCY,
                    status=PaymentStatus.PENDING.value,
                    idempotency_key=idempotency_key,
                ))
            self.store.commit()
        except SQLAlchemyError as e:
            self.store.rollback()
            log.error("payment_record_failed", session_id=session.id, error=str(e))
            self.gateway.expire_session(session.id)
            raise CheckoutError("INTERNAL_ERROR", 500, "Failed to create payment session")

        log.info("checkout_session_created", session_id=session.id, amount=str(amount))
        return CheckoutSession(session_id=session.id, url=session.url, amount=amount)
