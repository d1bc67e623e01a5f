from typing import Annotated, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


CHECKOUT_COMPLETED = "checkout.session.completed"
CHECKOUT_EXPIRED = "checkout.session.expired"


class CheckoutSessionObject(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    payment_intent: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    @field_validator("metadata", mode="before")
    @classmethod
    def metadata_or_empty(cls, v):
        return v or {}

    @field_validator("payment_intent", mode="before")
    @classmethod
    def payment_intent_id(cls, v):
        # expanded objects carry the id under "id"
        if isinstance(v, dict):
            return v.get("id")
        return v


class CheckoutSessionData(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    session: CheckoutSessionObject = Field(alias="object")


class CheckoutSessionCompletedEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    type: Literal["checkout.session.completed"]
    data: CheckoutSessionData


class CheckoutSessionExpiredEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    type: Literal["checkout.session.expired"]
    data: CheckoutSessionData


class UnhandledEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    type: str


HandledEvent = Annotated[
    Union[CheckoutSessionCompletedEvent, CheckoutSessionExpiredEvent],
    Field(discriminator="type"),
]
WebhookEvent = Union[CheckoutSessionCompletedEvent, CheckoutSessionExpiredEvent, UnhandledEvent]

_handled_adapter = TypeAdapter(HandledEvent)


def parse_webhook_event(raw: dict) -> WebhookEvent:
    """Validate a decoded gateway event into one of the known shapes.

    Raises ``pydantic.ValidationError`` when a known event type is missing the
    fields the reconciler relies on.
    """
    if isinstance(raw, dict) and raw.get("type") in (CHECKOUT_COMPLETED, CHECKOUT_EXPIRED):
        return _handled_adapter.validate_python(raw)
    return UnhandledEvent.model_validate(raw)
