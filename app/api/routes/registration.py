from fastapi import APIRouter, BackgroundTasks, Depends, status
import uuid
import structlog
from app.api.deps import get_notifier, get_store
from app.api.responses import api_error
from app.core.rate_limit import rate_limit
from app.models.registration import Registration
from app.schemas.CommonResponse import ApiResponse
from app.schemas.registration import (
    DuplicateCheckOut,
    DuplicateCheckRequest,
    DuplicateRegistrationItem,
    EmailSentOut,
    GroupPricingOut,
    GroupRegistrationCreate,
    GroupRegistrationOut,
    RegistrationCreate,
    RegistrationOut,
    RegistrationStatusOut,
    ResendConfirmationRequest,
    SendReceiptRequest,
)
from app.services.notifications import confirmation_notice, dispatch_notifications
from app.services.pricing import compute_group_pricing, get_explanation_label, pricing_input_for
from app.services.registration_store import RegistrationStore
from app.services.registrations import RegistrationError, RegistrationService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/registrations", tags=["Registrations"])



def to_registration_out(registration: Registration) -> RegistrationOut:
    return RegistrationOut(
        id=registration.id,
        event_id=registration.event_id,
        group_id=registration.group_id,
        first_name=registration.first_name,
        last_name=registration.last_name,
        email=registration.email,
        phone=registration.phone,
        date_of_birth=registration.date_of_birth,
        age_at_event=registration.age_at_event,
        category=registration.category,
        is_full_duration=registration.is_full_duration,
        is_staying_in_motel=registration.is_staying_in_motel,
        num_days=registration.num_days,
        computed_amount=registration.computed_amount,
        explanation_code=registration.explanation_code,
        explanation_label=get_explanation_label(registration.explanation_code),
        explanation_detail=registration.explanation_detail,
        status=registration.status,
        confirmed_at=registration.confirmed_at,
        created_at=registration.created_at,
    )


def is_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True




@router.post("", response_model=ApiResponse[RegistrationOut], status_code=status.HTTP_201_CREATED, dependencies=[Depends(rate_limit("registrations"))])
def create_registration(
    registration_request: RegistrationCreate,
    background_tasks: BackgroundTasks,
    store: RegistrationStore = Depends(get_store),
    notifier=Depends(get_notifier)
):
    try:
        registration, notices = RegistrationService(store).create(registration_request)
    except RegistrationError as e:
        return api_error(e.status_code, e.message)

    if notices:
        background_tasks.add_task(dispatch_notifications, notifier, notices)

    return ApiResponse(
        success=True,
        statusCode=status.HTTP_201_CREATED,
        message="Registration created",
        data=to_registration_out(registration)
    )




@router.post("/group", response_model=ApiResponse[GroupRegistrationOut], status_code=status.HTTP_201_CREATED, dependencies=[Depends(rate_limit("registrations-group"))])
def create_group_registration(
    group_request: GroupRegistrationCreate,
    background_tasks: BackgroundTasks,
    store: RegistrationStore = Depends(get_store),
    notifier=Depends(get_notifier)
):
    try:
        group_id, registrations, group, notices = RegistrationService(store).create_group(group_request)
    except RegistrationError as e:
        return api_error(e.status_code, e.message)

    if notices:
        background_tasks.add_task(dispatch_notifications, notifier, notices)

    return ApiResponse(
        success=True,
        statusCode=status.HTTP_201_CREATED,
        message="Group registration created",
        data=GroupRegistrationOut(
            group_id=group_id,
            registrations=[to_registration_out(r) for r in registrations],
            pricing=GroupPricingOut(
                subtotal=group.subtotal,
                surcharge=group.surcharge,
                surcharge_label=group.surcharge_label,
                grand_total=group.grand_total
            )
        )
    )




@router.post("/check-duplicate", response_model=ApiResponse[DuplicateCheckOut], dependencies=[Depends(rate_limit("check-duplicate"))])
def check_duplicate(request: DuplicateCheckRequest, store: RegistrationStore = Depends(get_store)):
    existing = store.find_active_registrations(request.event_id, request.email)
    return ApiResponse(
        success=True,
        statusCode=status.HTTP_200_OK,
        message="Duplicate check complete",
        data=DuplicateCheckOut(
            has_duplicates=len(existing) > 0,
            registrations=[
                DuplicateRegistrationItem(
                    id=r.id,
                    status=r.status,
                    category=r.category,
                    is_full_duration=r.is_full_duration,
                    num_days=r.num_days,
                    amount=r.computed_amount,
                    explanation_code=r.explanation_code,
                    registered_at=r.created_at,
                    confirmed_at=r.confirmed_at
                )
                for r in existing
            ]
        )
    )




def queue_confirmation(registration: Registration, background_tasks: BackgroundTasks, notifier) -> ApiResponse[EmailSentOut]:
    notice = confirmation_notice(registration, registration.event.name)
    background_tasks.add_task(dispatch_notifications, notifier, [notice])
    logger.info("confirmation_email_queued", registration_id=registration.id)
    return ApiResponse(
        success=True,
        statusCode=status.HTTP_200_OK,
        message="Confirmation email sent",
        data=EmailSentOut(sent=True)
    )


@router.post("/resend-confirmation", response_model=ApiResponse[EmailSentOut], dependencies=[Depends(rate_limit("resend-confirmation"))])
def resend_confirmation(
    request: ResendConfirmationRequest,
    background_tasks: BackgroundTasks,
    store: RegistrationStore = Depends(get_store),
    notifier=Depends(get_notifier)
):
    if not is_uuid(request.registration_id):
        return api_error(status.HTTP_400_BAD_REQUEST, "Invalid registration ID")

    registration = store.get_registration(request.registration_id)
    # a wrong email answers like an unknown id
    if not registration or registration.email.strip().lower() != request.email.strip().lower():
        return api_error(status.HTTP_404_NOT_FOUND, "Registration not found")

    return queue_confirmation(registration, background_tasks, notifier)




@router.post("/send-receipt", response_model=ApiResponse[EmailSentOut], dependencies=[Depends(rate_limit("send-receipt"))])
def send_receipt(
    request: SendReceiptRequest,
    background_tasks: BackgroundTasks,
    store: RegistrationStore = Depends(get_store),
    notifier=Depends(get_notifier)
):
    if not is_uuid(request.confirmation_id):
        return api_error(status.HTTP_400_BAD_REQUEST, "Invalid confirmation ID")

    registration = store.get_registration(request.confirmation_id)
    if not registration or (registration.last_name or "").strip().lower() != request.last_name.strip().lower():
        return api_error(status.HTTP_404_NOT_FOUND, "Registration not found")

    return queue_confirmation(registration, background_tasks, notifier)




@router.get("/group/{group_id}", response_model=ApiResponse[GroupRegistrationOut])
def get_group_registration(group_id: str, store: RegistrationStore = Depends(get_store)):
    members = store.get_group_registrations(group_id)
    if not members:
        return api_error(status.HTTP_404_NOT_FOUND, "Group not found")

    event = members[0].event
    pricing = store.get_pricing_config(event.id)
    if pricing:
        group = compute_group_pricing(
            [pricing_input_for(m, registration_date=members[0].created_at) for m in members],
            event,
            pricing,
        )
        pricing_out = GroupPricingOut(
            subtotal=group.subtotal,
            surcharge=group.surcharge,
            surcharge_label=group.surcharge_label,
            grand_total=group.grand_total
        )
    else:
        subtotal = sum((m.computed_amount for m in members), start=0)
        pricing_out = GroupPricingOut(subtotal=subtotal, surcharge=0, grand_total=subtotal)

    return ApiResponse(
        success=True,
        statusCode=status.HTTP_200_OK,
        message="Group registration retrieved",
        data=GroupRegistrationOut(
            group_id=group_id,
            registrations=[to_registration_out(m) for m in members],
            pricing=pricing_out
        )
    )




@router.get("/{registration_id}", response_model=ApiResponse[RegistrationOut])
def get_registration(registration_id: str, store: RegistrationStore = Depends(get_store)):
    registration = store.get_registration(registration_id)
    if not registration:
        return api_error(status.HTTP_404_NOT_FOUND, "Registration not found")
    return ApiResponse(
        success=True,
        statusCode=status.HTTP_200_OK,
        message="Registration retrieved",
        data=to_registration_out(registration)
    )




@router.get("/{registration_id}/status", response_model=ApiResponse[RegistrationStatusOut])
def get_registration_status(registration_id: str, store: RegistrationStore = Depends(get_store)):
    if not is_uuid(registration_id):
        return api_error(status.HTTP_400_BAD_REQUEST, "Invalid registration ID")

    registration = store.get_registration(registration_id)
    if not registration:
        return api_error(status.HTTP_404_NOT_FOUND, "Registration not found")
    return ApiResponse(
        success=True,
        statusCode=status.HTTP_200_OK,
        message="Registration status retrieved",
        data=RegistrationStatusOut(
            status=registration.status,
            confirmed_at=registration.confirmed_at
        )
    )
