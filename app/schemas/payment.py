from pydantic import BaseModel, model_validator
from typing import Optional
from decimal import Decimal
from datetime import datetime


class CheckoutSessionRequest(BaseModel):
    registration_id: Optional[str] = None
    group_id: Optional[str] = None

    @model_validator(mode='after')
    def exactly_one_target(self):
        if bool(self.registration_id) == bool(self.group_id):
            raise ValueError('Provide either registration_id or group_id')
        return self



class CheckoutSessionResponse(BaseModel):
    session_id: str
    url: str
    amount: Decimal
    reused: bool = False



class PaymentOut(BaseModel):
    id: str
    stripe_session_id: Optional[str] = None
    stripe_payment_intent_id: Optional[str] = None
    amount: Decimal
    currency: str
    status: str
    webhook_received_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True
