from app.models.event import Event, PricingConfig
from app.models.registration import Registration
from app.models.payment import Payment


__all__ = [
    "Event",
    "PricingConfig",
    "Registration",
    "Payment"
]
