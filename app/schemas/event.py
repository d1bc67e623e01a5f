from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List
from datetime import date, datetime
from decimal import Decimal


class SurchargeTierIn(BaseModel):
    start_date: date
    end_date: date
    amount: Decimal = Field(ge=0)
    label: str = Field(min_length=1, max_length=100)

    @model_validator(mode='after')
    def validate_range(self):
        if self.end_date < self.start_date:
            raise ValueError('Surcharge tier end date must not be before its start date')
        return self

    def to_json(self) -> dict:
        return {
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "amount": str(self.amount),
            "label": self.label,
        }


class EventCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    start_date: date
    end_date: date
    adult_age_threshold: int = Field(default=18, ge=1, le=100)
    youth_age_threshold: int = Field(default=13, ge=1, le=100)
    infant_age_threshold: int = Field(default=3, ge=0, le=100)
    is_active: bool = True

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str):
        if not v.strip():
            raise ValueError("Event name is required")
        return v.strip()

    @model_validator(mode='after')
    def validate_dates_and_thresholds(self):
        if self.end_date < self.start_date:
            raise ValueError("End date must not be before start date")
        if not (self.infant_age_threshold < self.youth_age_threshold <= self.adult_age_threshold):
            raise ValueError("Age thresholds must satisfy infant < youth <= adult")
        return self


class PricingConfigIn(BaseModel):
    adult_full_price: Decimal = Field(ge=0)
    adult_daily_price: Decimal = Field(ge=0)
    youth_full_price: Decimal = Field(ge=0)
    youth_daily_price: Decimal = Field(ge=0)
    child_full_price: Decimal = Field(ge=0)
    child_daily_price: Decimal = Field(ge=0)
    motel_stay_free: bool = True
    late_surcharge_tiers: List[SurchargeTierIn] = Field(default_factory=list)




class PricingConfigOut(BaseModel):
    adult_full_price: Decimal
    adult_daily_price: Decimal
    youth_full_price: Decimal
    youth_daily_price: Decimal
    child_full_price: Decimal
    child_daily_price: Decimal
    motel_stay_free: bool
    late_surcharge_tiers: List[dict] = Field(default_factory=list)

    class Config:
        from_attributes = True


class EventOut(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    start_date: date
    end_date: date
    duration_days: int
    adult_age_threshold: int
    youth_age_threshold: int
    infant_age_threshold: int
    is_active: bool
    created_at: datetime
    pricing: Optional[PricingConfigOut] = None

    class Config:
        from_attributes = True
