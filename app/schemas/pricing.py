from pydantic import BaseModel, Field
from typing import List, Optional
from decimal import Decimal
from app.schemas.registration import RegistrantIn


class PricingQuoteRequest(RegistrantIn):
    event_id: str



class GroupQuoteRequest(BaseModel):
    event_id: str
    registrants: List[RegistrantIn] = Field(min_length=1, max_length=20)




class PricingQuoteOut(BaseModel):
    category: str
    age_at_event: int
    amount: Decimal
    base_amount: Decimal
    surcharge: Decimal
    surcharge_label: Optional[str] = None
    explanation_code: str
    explanation_label: str
    explanation_detail: str
    event_name: Optional[str] = None
    duration_days: Optional[int] = None



class GroupQuoteOut(BaseModel):
    items: List[PricingQuoteOut]
    subtotal: Decimal
    surcharge: Decimal
    surcharge_label: Optional[str] = None
    grand_total: Decimal
