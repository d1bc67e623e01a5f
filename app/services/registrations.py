import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Tuple

import structlog

from app.models.enums import RegistrationStatus
from app.models.registration import Registration
from app.services.notifications import Notice, confirmation_notice, group_receipt_notice
from app.services.pricing import (
    GroupPricingResult,
    PricingInput,
    PricingResult,
    compute_group_pricing,
    compute_pricing,
)
from app.services.registration_store import RegistrationStore


logger = structlog.get_logger(__name__)


class RegistrationError(Exception):
    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def validate_attendance(registrant, event, pricing) -> None:
    """Reject day counts pricing must never see."""
    if registrant.is_full_duration:
        return
    motel_free = bool(registrant.is_staying_in_motel) and pricing.motel_stay_free
    if registrant.num_days is None:
        if motel_free:
            return
        raise RegistrationError(400, "Number of days is required for partial attendance")
    if registrant.num_days < 1:
        raise RegistrationError(400, "At least 1 day required")
    if registrant.num_days > event.duration_days:
        raise RegistrationError(400, f"Number of days cannot exceed event duration ({event.duration_days} days)")


def to_pricing_input(registrant, registration_date=None) -> PricingInput:
    return PricingInput(
        date_of_birth=registrant.date_of_birth,
        is_full_duration=registrant.is_full_duration,
        is_staying_in_motel=registrant.is_staying_in_motel,
        num_days=None if registrant.is_full_duration else registrant.num_days,
        registration_date=registration_date,
    )



class RegistrationService:

    def __init__(self, store: RegistrationStore):
        self.store = store

    def load_event_and_pricing(self, event_id: str):
        event = self.store.get_active_event(event_id)
        if not event:
            raise RegistrationError(404, "Event not found")
        pricing = self.store.get_pricing_config(event_id)
        if not pricing:
            logger.error("pricing_not_configured", event_id=event_id)
            raise RegistrationError(404, "Pricing not configured")
        return event, pricing

    def quote(self, request) -> Tuple[PricingResult, object]:
        event, pricing = self.load_event_and_pricing(request.event_id)
        validate_attendance(request, event, pricing)
        return compute_pricing(to_pricing_input(request), event, pricing), event

    def quote_group(self, request) -> GroupPricingResult:
        event, pricing = self.load_event_and_pricing(request.event_id)
        for registrant in request.registrants:
            validate_attendance(registrant, event, pricing)
        return compute_group_pricing([to_pricing_input(r) for r in request.registrants], event, pricing)

    def create(self, request) -> Tuple[Registration, List[Notice]]:
        event, pricing = self.load_event_and_pricing(request.event_id)
        validate_attendance(request, event, pricing)

        now = datetime.now(timezone.utc)
        result = compute_pricing(to_pricing_input(request, registration_date=now), event, pricing)
        is_free = result.amount == 0

        registration = Registration(
            event_id=event.id,
            first_name=request.first_name,
            last_name=request.last_name,
            email=request.email,
            phone=request.phone,
            date_of_birth=request.date_of_birth,
            age_at_event=result.age_at_event,
            category=result.category.value,
            is_full_duration=request.is_full_duration,
            is_staying_in_motel=request.is_staying_in_motel,
            num_days=None if request.is_full_duration else request.num_days,
            computed_amount=result.amount,
            explanation_code=result.explanation_code.value,
            explanation_detail=result.explanation_detail,
            status=RegistrationStatus.CONFIRMED.value if is_free else RegistrationStatus.PENDING.value,
            confirmed_at=now if is_free else None,
            created_at=now,
        )
        self.store.add_registrations([registration])
        self.store.commit()

        logger.info(
            "registration_created",
            registration_id=registration.id,
            event_id=event.id,
            amount=str(result.amount),
            status=registration.status,
        )
        notices = [confirmation_notice(registration, event.name)] if is_free else []
        return registration, notices

    def create_group(self, request) -> Tuple[str, List[Registration], GroupPricingResult, List[Notice]]:
        event, pricing = self.load_event_and_pricing(request.event_id)
        for registrant in request.registrants:
            validate_attendance(registrant, event, pricing)

        now = datetime.now(timezone.utc)
        group = compute_group_pricing(
            [to_pricing_input(r, registration_date=now) for r in request.registrants],
            event,
            pricing,
        )
        group_id = str(uuid.uuid4())
        is_free = group.grand_total == 0

        registrations = []
        for position, (registrant, item) in enumerate(zip(request.registrants, group.items)):
            registrations.append(Registration(
                event_id=event.id,
                group_id=group_id,
                first_name=registrant.first_name,
                last_name=registrant.last_name,
                email=request.email,
                phone=request.phone,
                date_of_birth=registrant.date_of_birth,
                age_at_event=item.age_at_event,
                category=item.category.value,
                is_full_duration=registrant.is_full_duration,
                is_staying_in_motel=registrant.is_staying_in_motel,
                num_days=None if registrant.is_full_duration else registrant.num_days,
                computed_amount=item.amount,
                explanation_code=item.explanation_code.value,
                explanation_detail=item.explanation_detail,
                status=RegistrationStatus.CONFIRMED.value if is_free else RegistrationStatus.PENDING.value,
                confirmed_at=now if is_free else None,
                # microsecond steps keep submission order; the first member is the primary
                created_at=now + timedelta(microseconds=position),
            ))
        self.store.add_registrations(registrations)
        self.store.commit()

        logger.info(
            "group_registration_created",
            group_id=group_id,
            event_id=event.id,
            members=len(registrations),
            grand_total=str(group.grand_total),
        )
        notices = [group_receipt_notice(registrations, event.name, group)] if is_free else []
        return group_id, registrations, group, notices
