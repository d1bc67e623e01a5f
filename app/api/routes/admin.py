import csv
import io
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, Query, Response, status
from typing import List, Optional
import structlog
from app.api.deps import get_store, require_admin
from app.api.responses import api_error
from app.api.routes.event import to_event_out
from app.api.routes.registration import to_registration_out
from app.models.enums import RegistrationStatus
from app.models.event import Event
from app.models.registration import Registration
from app.schemas.CommonResponse import ApiResponse, PageMeta, PaginatedListResponse
from app.schemas.event import EventCreate, EventOut, PricingConfigIn, PricingConfigOut
from app.schemas.payment import PaymentOut
from app.schemas.registration import AdminRegistrationOut, RegistrationOut
from app.services.pricing import format_money
from app.services.registration_store import RegistrationStore


logger = structlog.get_logger(__name__)

router = APIRouter(prefix='/admin', tags=['Admin'])




@router.post('/events', response_model=ApiResponse[EventOut], status_code=status.HTTP_201_CREATED)
def create_event(event_data: EventCreate, current_user: dict = Depends(require_admin), store: RegistrationStore = Depends(get_store)):
    event = store.add_event(Event(**event_data.model_dump()))
    store.commit()
    logger.info("event_created", event_id=event.id, admin=current_user['email'])
    return ApiResponse(
        success=True,
        statusCode=status.HTTP_201_CREATED,
        message="Event created",
        data=to_event_out(event)
    )




@router.put('/events/{event_id}/pricing', response_model=ApiResponse[PricingConfigOut])
def upsert_event_pricing(event_id: str, pricing_data: PricingConfigIn, current_user: dict = Depends(require_admin), store: RegistrationStore = Depends(get_store)):
    event = store.get_event(event_id)
    if not event:
        return api_error(status.HTTP_404_NOT_FOUND, "Event not found")

    values = pricing_data.model_dump(exclude={"late_surcharge_tiers"})
    values["late_surcharge_tiers"] = [tier.to_json() for tier in pricing_data.late_surcharge_tiers]
    pricing = store.upsert_pricing_config(event.id, values)
    store.commit()
    logger.info("pricing_config_saved", event_id=event.id, admin=current_user['email'], tiers=len(values["late_surcharge_tiers"]))
    return ApiResponse(
        success=True,
        statusCode=status.HTTP_200_OK,
        message="Pricing saved",
        data=PricingConfigOut.model_validate(pricing)
    )




@router.get('/registrations', response_model=ApiResponse[PaginatedListResponse[RegistrationOut]])
def list_registrations(
    event_id: Optional[str] = None,
    registration_status: Optional[RegistrationStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: dict = Depends(require_admin),
    store: RegistrationStore = Depends(get_store)
):
    total, rows = store.list_registrations(
        event_id=event_id,
        status=registration_status.value if registration_status else None,
        offset=(page - 1) * limit,
        limit=limit,
    )
    meta = PageMeta(
        page=page,
        limit=limit,
        total=total,
        pages=(total + limit - 1) // limit,
        has_next=page * limit < total,
        has_previous=page > 1,
    )
    return ApiResponse(
        success=True,
        statusCode=status.HTTP_200_OK,
        message="Registrations retrieved" if total else "No registrations found",
        data=PaginatedListResponse(
            items=[to_registration_out(r) for r in rows],
            pagination=meta
        )
    )




@router.get('/registrations/{registration_id}', response_model=ApiResponse[AdminRegistrationOut])
def get_registration_detail(registration_id: str, current_user: dict = Depends(require_admin), store: RegistrationStore = Depends(get_store)):
    registration = store.get_registration(registration_id)
    if not registration:
        return api_error(status.HTTP_404_NOT_FOUND, "Registration not found")

    payments: List[PaymentOut] = [
        PaymentOut.model_validate(p)
        for p in sorted(registration.payments, key=lambda p: p.created_at)
    ]
    return ApiResponse(
        success=True,
        statusCode=status.HTTP_200_OK,
        message="Registration retrieved",
        data=AdminRegistrationOut(
            **to_registration_out(registration).model_dump(),
            event_name=registration.event.name,
            payments=payments
        )
    )




@router.post('/registrations/{registration_id}/cancel', response_model=ApiResponse[RegistrationOut])
def cancel_registration(registration_id: str, current_user: dict = Depends(require_admin), store: RegistrationStore = Depends(get_store)):
    registration = store.get_registration(registration_id)
    if not registration:
        return api_error(status.HTTP_404_NOT_FOUND, "Registration not found")

    if not store.cancel_registration(registration.id):
        store.rollback()
        return api_error(status.HTTP_409_CONFLICT, f"Only pending registrations can be cancelled (current status: {registration.status})")

    store.commit()
    store.refresh(registration)
    logger.info("registration_cancelled", registration_id=registration.id, admin=current_user['email'])
    return ApiResponse(
        success=True,
        statusCode=status.HTTP_200_OK,
        message="Registration cancelled",
        data=to_registration_out(registration)
    )




EXPORT_COLUMNS = [
    "ID", "Event", "First Name", "Last Name", "Email", "Phone", "DOB", "Age", "Category",
    "Full Duration", "Motel Stay", "Days", "Amount", "Explanation", "Status",
    "Payment Status", "Payment Intent", "Registered At",
]


def yes_no(value: Optional[bool]) -> str:
    if value is None:
        return "N/A"
    return "Yes" if value else "No"


def export_row(registration: Registration) -> List[str]:
    payment = max(registration.payments, key=lambda p: p.created_at, default=None)
    return [
        registration.id,
        registration.event.name if registration.event else "",
        registration.first_name,
        registration.last_name,
        registration.email,
        registration.phone or "",
        registration.date_of_birth.isoformat(),
        registration.age_at_event,
        registration.category,
        yes_no(registration.is_full_duration),
        yes_no(registration.is_staying_in_motel),
        registration.num_days or "N/A",
        format_money(registration.computed_amount),
        registration.explanation_code,
        registration.status,
        payment.status if payment else "N/A",
        (payment.stripe_payment_intent_id if payment else None) or "N/A",
        registration.created_at.isoformat(),
    ]


@router.get('/export')
def export_registrations(
    event_id: Optional[str] = None,
    registration_status: Optional[RegistrationStatus] = Query(None, alias="status"),
    current_user: dict = Depends(require_admin),
    store: RegistrationStore = Depends(get_store)
):
    rows = store.list_registrations_for_export(
        event_id=event_id,
        status=registration_status.value if registration_status else None,
    )

    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(EXPORT_COLUMNS)
    writer.writerows(export_row(r) for r in rows)

    filename = f"registrations-{datetime.now(timezone.utc).date().isoformat()}.csv"
    logger.info("registrations_exported", admin=current_user['email'], count=len(rows), event_id=event_id)
    return Response(
        content=buffer.getvalue(),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"}
    )
