from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
import structlog
from app.api.deps import get_gateway, get_notifier, get_store
from app.api.responses import api_error
from app.core.rate_limit import rate_limit
from app.schemas.CommonResponse import ApiResponse
from app.schemas.payment import CheckoutSessionRequest, CheckoutSessionResponse
from app.services.checkout import CheckoutError, CheckoutService
from app.services.gateway import CheckoutGateway
from app.services.notifications import dispatch_notifications
from app.services.registration_store import RegistrationStore
from app.services.webhook import WebhookError, WebhookReconciler


logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/payments", tags=["Payment"])


@router.post("/create-session", response_model=ApiResponse[CheckoutSessionResponse], dependencies=[Depends(rate_limit("create-session"))])
def create_checkout_session(
    checkout_request: CheckoutSessionRequest,
    store: RegistrationStore = Depends(get_store),
    gateway: CheckoutGateway = Depends(get_gateway)
):
    service = CheckoutService(store, gateway)
    try:
        if checkout_request.group_id:
            session = service.create_for_group(checkout_request.group_id)
        else:
            session = service.create_for_registration(checkout_request.registration_id)
    except CheckoutError as e:
        return api_error(e.status_code, e.message, data={"error": e.code, **e.details})

    return ApiResponse(
        success=True,
        statusCode=status.HTTP_200_OK,
        message="Checkout session reused" if session.reused else "Checkout session created",
        data=CheckoutSessionResponse(
            session_id=session.session_id,
            url=session.url,
            amount=session.amount,
            reused=session.reused
        )
    )




@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    store: RegistrationStore = Depends(get_store),
    gateway: CheckoutGateway = Depends(get_gateway),
    notifier=Depends(get_notifier)
):
    payload = await request.body()
    sig_header = request.headers.get("Stripe-Signature")
    reconciler = WebhookReconciler(store, gateway)

    try:
        event = reconciler.verify(payload, sig_header)
    except WebhookError as e:
        return JSONResponse(status_code=e.status_code, content={"error": e.message})

    try:
        outcome = await run_in_threadpool(reconciler.handle, event)
    except Exception:
        # provider redelivers on 5xx
        await run_in_threadpool(store.rollback)
        logger.exception("webhook_processing_failed", event_id=event.id, event_type=event.type)
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": "Webhook processing failed"})

    if outcome.notifications:
        background_tasks.add_task(dispatch_notifications, notifier, outcome.notifications)

    content = {"received": True}
    if outcome.duplicate:
        content["duplicate"] = True
    return content
