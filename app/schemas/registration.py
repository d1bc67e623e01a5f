from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator
from typing import List, Optional
from datetime import date, datetime
from decimal import Decimal
from app.schemas.payment import PaymentOut


class RegistrantIn(BaseModel):
    date_of_birth: date
    is_full_duration: bool
    is_staying_in_motel: Optional[bool] = None
    num_days: Optional[int] = None

    @field_validator('date_of_birth')
    @classmethod
    def validate_date_of_birth(cls, v: date):
        if v > date.today():
            raise ValueError('Date of birth cannot be in the future')
        return v

    @field_validator('num_days')
    @classmethod
    def validate_num_days(cls, v: Optional[int]):
        if v is not None and v < 1:
            raise ValueError('At least 1 day required')
        return v

    @model_validator(mode='after')
    def drop_partial_fields_for_full_duration(self):
        # day count and motel flag only shape partial attendance
        if self.is_full_duration:
            self.num_days = None
        return self



class PersonIn(RegistrantIn):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)

    @field_validator('first_name', 'last_name')
    @classmethod
    def strip_name(cls, v: str):
        v = v.strip()
        if not v:
            raise ValueError('Name is required')
        return v



class RegistrationCreate(PersonIn):
    event_id: str
    email: EmailStr
    phone: Optional[str] = None



class GroupRegistrationCreate(BaseModel):
    event_id: str
    email: EmailStr
    phone: Optional[str] = None
    registrants: List[PersonIn] = Field(min_length=1, max_length=20)



class DuplicateCheckRequest(BaseModel):
    event_id: str
    email: EmailStr




class ResendConfirmationRequest(BaseModel):
    registration_id: str
    email: EmailStr


class SendReceiptRequest(BaseModel):
    confirmation_id: str
    last_name: str = Field(min_length=1, max_length=100)


class EmailSentOut(BaseModel):
    sent: bool



class RegistrationOut(BaseModel):
    id: str
    event_id: str
    group_id: Optional[str] = None
    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None
    date_of_birth: date
    age_at_event: int
    category: str
    is_full_duration: bool
    is_staying_in_motel: Optional[bool] = None
    num_days: Optional[int] = None
    computed_amount: Decimal
    explanation_code: str
    explanation_label: str
    explanation_detail: Optional[str] = None
    status: str
    confirmed_at: Optional[datetime] = None
    created_at: datetime



class RegistrationStatusOut(BaseModel):
    status: str
    confirmed_at: Optional[datetime] = None



class GroupPricingOut(BaseModel):
    subtotal: Decimal
    surcharge: Decimal
    surcharge_label: Optional[str] = None
    grand_total: Decimal



class GroupRegistrationOut(BaseModel):
    group_id: str
    registrations: List[RegistrationOut]
    pricing: GroupPricingOut



class DuplicateRegistrationItem(BaseModel):
    id: str
    status: str
    category: str
    is_full_duration: bool
    num_days: Optional[int] = None
    amount: Decimal
    explanation_code: str
    registered_at: datetime
    confirmed_at: Optional[datetime] = None



class DuplicateCheckOut(BaseModel):
    has_duplicates: bool
    registrations: List[DuplicateRegistrationItem]



class AdminRegistrationOut(RegistrationOut):
    event_name: str
    payments: List[PaymentOut] = []
