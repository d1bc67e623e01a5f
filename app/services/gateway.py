from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import stripe
import structlog

from app.core.config import settings


logger = structlog.get_logger(__name__)


@dataclass
class GatewaySession:
    id: str
    url: Optional[str]
    status: Optional[str] = None
    payment_status: Optional[str] = None


class CheckoutGateway:
    """The slice of the Stripe API the checkout flow uses."""

    def __init__(self, api_key: Optional[str] = None, stripe_client=stripe):
        self._stripe = stripe_client
        self._api_key = api_key if api_key is not None else settings.STRIPE_SECRET_KEY

    def create_session(
        self,
        *,
        line_items: List[Dict[str, Any]],
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str],
        metadata: Dict[str, str],
        expires_at: int,
    ) -> GatewaySession:
        session = self._stripe.checkout.Session.create(
            api_key=self._api_key,
            payment_method_types=["card"],
            line_items=line_items,
            mode="payment",
            success_url=success_url,
            cancel_url=cancel_url,
            customer_email=customer_email,
            metadata=metadata,
            expires_at=expires_at,
        )
        return GatewaySession(id=session.id, url=session.url, status=session.status, payment_status=session.payment_status)

    def retrieve_session(self, session_id: str) -> GatewaySession:
        session = self._stripe.checkout.Session.retrieve(session_id, api_key=self._api_key)
        return GatewaySession(id=session.id, url=session.url, status=session.status, payment_status=session.payment_status)

    def expire_session(self, session_id: str) -> bool:
        """Best-effort; a failure is logged and reported as ``False``."""
        try:
            self._stripe.checkout.Session.expire(session_id, api_key=self._api_key)
        except stripe.StripeError as e:
            logger.warning("checkout_session_expire_failed", session_id=session_id, error=str(e))
            return False
        return True

    def verify_webhook(self, payload: bytes, signature: str, secret: str):
        return self._stripe.Webhook.construct_event(payload, signature, secret)
