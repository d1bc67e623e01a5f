"""Reconciling gateway webhooks with local payment and registration rows.

Deliveries are at-least-once and may arrive duplicated, concurrently or out
of order. Per checkout session the payment moves ``pending -> completed`` or
``pending -> expired`` and both are terminal. Correctness rests on two
things only:

* the provider event id is recorded on the payment row it transitioned, and
  an event id already on record is acknowledged without further writes;
* every transition is a conditional update guarded on the current status, so
  of two racing handlers exactly one matches a row and the other becomes a
  no-op.

Notifications are returned to the caller as notices and sent after the
response; a failure there never undoes or fails the committed transition.
"""
import json
from dataclasses import dataclass, field
from typing import List, Optional

import stripe
import structlog
from pydantic import ValidationError

from app.core.config import settings as default_settings
from app.models.enums import PaymentStatus, RegistrationStatus
from app.schemas.webhook import (
    CheckoutSessionCompletedEvent,
    CheckoutSessionExpiredEvent,
    WebhookEvent,
    parse_webhook_event,
)
from app.services.gateway import CheckoutGateway
from app.services.notifications import Notice, confirmation_notice, group_receipt_notice
from app.services.pricing import compute_group_pricing, pricing_input_for
from app.services.registration_store import RegistrationStore


logger = structlog.get_logger(__name__)


class WebhookError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


@dataclass
class WebhookOutcome:
    action: str
    duplicate: bool = False
    notifications: List[Notice] = field(default_factory=list)


class WebhookReconciler:

    def __init__(self, store: RegistrationStore, gateway: CheckoutGateway, settings=default_settings):
        self.store = store
        self.gateway = gateway
        self.settings = settings

    def verify(self, payload: bytes, signature: Optional[str]) -> WebhookEvent:
        if not signature:
            raise WebhookError(400, "No signature")

        secret = self.settings.STRIPE_WEBHOOK_SECRET
        if secret:
            try:
                self.gateway.verify_webhook(payload, signature, secret)
            except (stripe.SignatureVerificationError, ValueError) as e:
                logger.warning("webhook_signature_invalid", error=str(e))
                raise WebhookError(400, "Invalid signature")
        elif self.settings.insecure_webhooks_allowed:
            logger.warning("webhook_signature_skipped", reason="ALLOW_INSECURE_WEBHOOKS outside production")
        else:
            logger.error(
                "webhook_secret_not_configured",
                env=self.settings.ENV,
                hint="set STRIPE_WEBHOOK_SECRET",
            )
            raise WebhookError(500, "Webhook secret not configured")

        try:
            return parse_webhook_event(json.loads(payload))
        except (ValueError, ValidationError) as e:
            logger.warning("webhook_payload_invalid", error=str(e))
            raise WebhookError(400, "Invalid payload")

    def handle(self, event: WebhookEvent) -> WebhookOutcome:
        log = logger.bind(event_id=event.id, event_type=event.type)

        if self.store.get_payment_by_event(event.id):
            log.info("webhook_duplicate")
            return WebhookOutcome(action="duplicate", duplicate=True)

        if isinstance(event, CheckoutSessionCompletedEvent):
            return self._complete(event, log)
        if isinstance(event, CheckoutSessionExpiredEvent):
            return self._expire(event, log)

        log.info("webhook_unhandled_type")
        return WebhookOutcome(action="ignored")

    def _complete(self, event: CheckoutSessionCompletedEvent, log) -> WebhookOutcome:
        session = event.data.session
        log = log.bind(session_id=session.id, registration_id=session.metadata.get("registration_id"))

        payment = self.store.get_payment_by_session(session.id)
        if not payment:
            # retries cannot fix a missing row, so acknowledge and surface it
            log.error("webhook_orphaned_session")
            return WebhookOutcome(action="orphaned")

        if payment.status == PaymentStatus.COMPLETED.value:
            log.info("payment_already_completed", payment_id=payment.id)
            return WebhookOutcome(action="already_completed")

        if payment.status != PaymentStatus.PENDING.value:
            log.error("payment_completed_while_not_pending", payment_id=payment.id, status=payment.status)
            return WebhookOutcome(action="not_pending")

        registration = payment.registration
        group_id = registration.group_id

        if not self.store.complete_payment(session.id, session.payment_intent, event.id):
            self.store.rollback()
            log.info("payment_race_lost", payment_id=payment.id)
            return WebhookOutcome(action="race_lost")

        if group_id:
            confirmed = self.store.confirm_group(group_id)
        else:
            confirmed = 1 if self.store.confirm_registration(registration.id) else 0
        self.store.commit()

        log = log.bind(registration_id=registration.id, group_id=group_id)
        if confirmed == 0:
            log.error("payment_completed_without_pending_registration", payment_id=payment.id)
            return WebhookOutcome(action="completed")

        log.info("registration_confirmed", payment_id=payment.id, confirmed_count=confirmed)
        return WebhookOutcome(action="completed", notifications=self._notices_for(registration.id, group_id, log))

    def _expire(self, event: CheckoutSessionExpiredEvent, log) -> WebhookOutcome:
        session = event.data.session
        log = log.bind(session_id=session.id)

        if self.store.expire_payment(session.id, event.id):
            self.store.commit()
            # the registration stays pending so the registrant can retry
            log.info("payment_expired")
            return WebhookOutcome(action="expired")

        self.store.rollback()
        log.info("payment_expire_noop")
        return WebhookOutcome(action="not_pending")

    def _notices_for(self, registration_id: str, group_id: Optional[str], log) -> List[Notice]:
        try:
            if not group_id:
                registration = self.store.get_registration(registration_id)
                return [confirmation_notice(registration, registration.event.name)]

            members = [
                m for m in self.store.get_group_registrations(group_id)
                if m.status == RegistrationStatus.CONFIRMED.value
            ]
            if not members:
                return []
            event = members[0].event
            pricing = self.store.get_pricing_config(event.id)
            group_pricing = None
            if pricing:
                group_pricing = compute_group_pricing(
                    [pricing_input_for(m, registration_date=members[0].created_at) for m in members],
                    event,
                    pricing,
                )
            return [group_receipt_notice(members, event.name, group_pricing)]
        except Exception:
            log.exception("notification_build_failed")
            return []
