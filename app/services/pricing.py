"""Registration pricing.

Everything here is pure: the same inputs (including the registration date
override) always produce the same result, down to the explanation string.
Pricing runs once when a registration is created and again right before a
checkout session is opened, and the two runs must agree unless the pricing
configuration changed in between.
"""
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, List, Optional, Sequence

from app.models.enums import AgeCategory, ExplanationCode


CENT = Decimal("0.01")
ZERO = Decimal("0.00")
DEFAULT_INFANT_AGE_THRESHOLD = 3


EXPLANATION_LABELS = {
    ExplanationCode.FREE_INFANT.value: "Infant / Toddler (Free)",
    ExplanationCode.FULL_ADULT.value: "Full Conference - Adult",
    ExplanationCode.FULL_YOUTH.value: "Full Conference - Youth",
    ExplanationCode.FULL_CHILD.value: "Full Conference - Child",
    ExplanationCode.PARTIAL_MOTEL_FREE.value: "Partial Attendance + Motel (Free)",
    ExplanationCode.PARTIAL_ADULT.value: "Partial Attendance - Adult (per day)",
    ExplanationCode.PARTIAL_YOUTH.value: "Partial Attendance - Youth (per day)",
    ExplanationCode.PARTIAL_CHILD.value: "Partial Attendance - Child (per day)",
    ExplanationCode.FULL_MOTEL_FREE.value: "Full Conference + Motel (Free)",
}


def money(value) -> Decimal:
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def to_cents(amount: Decimal) -> int:
    return int((money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def format_money(amount: Decimal) -> str:
    return f"${money(amount):.2f}"


def _as_date(value) -> date:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


@dataclass(frozen=True)
class SurchargeTier:
    start_date: date
    end_date: date
    amount: Decimal
    label: str

    @classmethod
    def from_dict(cls, raw: dict) -> "SurchargeTier":
        return cls(
            start_date=_as_date(raw["start_date"]),
            end_date=_as_date(raw["end_date"]),
            amount=money(raw["amount"]),
            label=str(raw.get("label") or "Late registration"),
        )

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


@dataclass(frozen=True)
class PricingInput:
    date_of_birth: date
    is_full_duration: bool
    is_staying_in_motel: Optional[bool] = None
    num_days: Optional[int] = None
    # original registration time, so a later re-price lands in the same tier
    registration_date: Optional[datetime] = None


@dataclass(frozen=True)
class PricingResult:
    category: AgeCategory
    age_at_event: int
    amount: Decimal
    base_amount: Decimal
    surcharge: Decimal
    surcharge_label: Optional[str]
    explanation_code: ExplanationCode
    explanation_detail: str


@dataclass(frozen=True)
class GroupPricingResult:
    items: List[PricingResult] = field(default_factory=list)
    subtotal: Decimal = ZERO
    surcharge: Decimal = ZERO
    surcharge_label: Optional[str] = None
    grand_total: Decimal = ZERO


def compute_age(date_of_birth, event_start) -> int:
    """Whole years between birth and the event start (not today)."""
    born = _as_date(date_of_birth)
    start = _as_date(event_start)
    years = start.year - born.year
    if (start.month, start.day) < (born.month, born.day):
        years -= 1
    return years


def derive_category(age: int, adult_threshold: int, youth_threshold: int) -> AgeCategory:
    if age >= adult_threshold:
        return AgeCategory.ADULT
    if age >= youth_threshold:
        return AgeCategory.YOUTH
    return AgeCategory.CHILD


def parse_surcharge_tiers(raw_tiers: Optional[Iterable]) -> List[SurchargeTier]:
    tiers = []
    for raw in raw_tiers or []:
        if isinstance(raw, SurchargeTier):
            tiers.append(raw)
            continue
        try:
            tiers.append(SurchargeTier.from_dict(raw))
        except (KeyError, TypeError, ValueError, ArithmeticError):
            # a malformed tier never matches
            continue
    return tiers


def find_surcharge_tier(raw_tiers, registration_date) -> Optional[SurchargeTier]:
    """First tier, in configured order, whose inclusive date range holds the date."""
    day = _as_date(registration_date)
    for tier in parse_surcharge_tiers(raw_tiers):
        if tier.contains(day):
            return tier
    return None


def _registration_moment(pricing_input: PricingInput):
    return pricing_input.registration_date or datetime.now(timezone.utc)


def _full_price(category: AgeCategory, pricing_config) -> Decimal:
    return money(getattr(pricing_config, f"{category.value}_full_price"))


def _daily_price(category: AgeCategory, pricing_config) -> Decimal:
    return money(getattr(pricing_config, f"{category.value}_daily_price"))


def compute_base_pricing(pricing_input: PricingInput, event, pricing_config) -> PricingResult:
    """Price one registrant without any late surcharge.

    The explanation carries only the base arithmetic, which is what a group
    line item shows; ``compute_pricing`` appends the surcharge and total.
    """
    age = compute_age(pricing_input.date_of_birth, event.start_date)
    infant_threshold = event.infant_age_threshold
    if infant_threshold is None:
        infant_threshold = DEFAULT_INFANT_AGE_THRESHOLD

    if age <= infant_threshold:
        return PricingResult(
            category=AgeCategory.CHILD,
            age_at_event=age,
            amount=ZERO,
            base_amount=ZERO,
            surcharge=ZERO,
            surcharge_label=None,
            explanation_code=ExplanationCode.FREE_INFANT,
            explanation_detail=f"Age {age}: children {infant_threshold} and under attend free.",
        )

    category = derive_category(age, event.adult_age_threshold, event.youth_age_threshold)

    if pricing_input.is_full_duration:
        price = _full_price(category, pricing_config)
        return PricingResult(
            category=category,
            age_at_event=age,
            amount=price,
            base_amount=price,
            surcharge=ZERO,
            surcharge_label=None,
            explanation_code=ExplanationCode(f"FULL_{category.name}"),
            explanation_detail=f"Full conference ({category.value}): {format_money(price)}",
        )

    if pricing_input.is_staying_in_motel and pricing_config.motel_stay_free:
        return PricingResult(
            category=category,
            age_at_event=age,
            amount=ZERO,
            base_amount=ZERO,
            surcharge=ZERO,
            surcharge_label=None,
            explanation_code=ExplanationCode.PARTIAL_MOTEL_FREE,
            explanation_detail="Partial attendance with motel stay. Registration is free.",
        )

    num_days = pricing_input.num_days or 1
    rate = _daily_price(category, pricing_config)
    base = money(rate * num_days)
    return PricingResult(
        category=category,
        age_at_event=age,
        amount=base,
        base_amount=base,
        surcharge=ZERO,
        surcharge_label=None,
        explanation_code=ExplanationCode(f"PARTIAL_{category.name}"),
        explanation_detail=f"{num_days} day(s) × {format_money(rate)}/day ({category.value}): {format_money(base)}",
    )


def _is_free_path(result: PricingResult) -> bool:
    return result.explanation_code in (ExplanationCode.FREE_INFANT, ExplanationCode.PARTIAL_MOTEL_FREE)


def compute_pricing(pricing_input: PricingInput, event, pricing_config) -> PricingResult:
    """Price a single registrant, late surcharge included.

    The caller validates ``num_days`` against the event duration first; this
    function does not raise on valid input.
    """
    base = compute_base_pricing(pricing_input, event, pricing_config)
    if _is_free_path(base):
        return base

    tier = find_surcharge_tier(pricing_config.late_surcharge_tiers, _registration_moment(pricing_input))
    surcharge = tier.amount if tier else ZERO
    total = money(base.base_amount + surcharge)

    detail = base.explanation_detail
    if tier and surcharge > 0:
        detail += f" + {format_money(surcharge)} {tier.label}"
    detail += f". Total: {format_money(total)}"

    return replace(
        base,
        amount=total,
        surcharge=surcharge,
        surcharge_label=tier.label if tier else None,
        explanation_detail=detail,
    )


def compute_group_pricing(inputs: Sequence[PricingInput], event, pricing_config) -> GroupPricingResult:
    """Price a group checkout: base amounts per person, one surcharge for the lot."""
    items = [compute_base_pricing(pricing_input, event, pricing_config) for pricing_input in inputs]
    subtotal = money(sum((item.amount for item in items), ZERO))

    registration_moment = inputs[0].registration_date if inputs else None
    tier = find_surcharge_tier(
        pricing_config.late_surcharge_tiers,
        registration_moment or datetime.now(timezone.utc),
    )

    # a zero subtotal stays free even inside a surcharge window
    surcharge = tier.amount if (tier and subtotal > 0) else ZERO
    return GroupPricingResult(
        items=items,
        subtotal=subtotal,
        surcharge=surcharge,
        surcharge_label=tier.label if surcharge > 0 else None,
        grand_total=money(subtotal + surcharge),
    )


def get_explanation_label(code) -> str:
    key = code.value if isinstance(code, ExplanationCode) else str(code)
    return EXPLANATION_LABELS.get(key, key)


def pricing_input_for(registration, registration_date=None) -> PricingInput:
    """Rebuild the pricing input of a stored registration.

    The registration's own ``created_at`` is the default date override, so
    re-pricing at checkout lands in the tier that applied when it was made.
    """
    return PricingInput(
        date_of_birth=registration.date_of_birth,
        is_full_duration=registration.is_full_duration,
        is_staying_in_motel=registration.is_staying_in_motel,
        num_days=registration.num_days,
        registration_date=registration_date or registration.created_at,
    )
