from fastapi import APIRouter, Depends, status
from app.api.deps import get_store
from app.api.responses import api_error
from app.core.rate_limit import rate_limit
from app.schemas.CommonResponse import ApiResponse
from app.schemas.pricing import GroupQuoteOut, GroupQuoteRequest, PricingQuoteOut, PricingQuoteRequest
from app.services.pricing import PricingResult, get_explanation_label
from app.services.registration_store import RegistrationStore
from app.services.registrations import RegistrationError, RegistrationService

router = APIRouter(prefix="/pricing", tags=["Pricing"])



def to_quote_out(result: PricingResult, event=None) -> PricingQuoteOut:
    return PricingQuoteOut(
        category=result.category.value,
        age_at_event=result.age_at_event,
        amount=result.amount,
        base_amount=result.base_amount,
        surcharge=result.surcharge,
        surcharge_label=result.surcharge_label,
        explanation_code=result.explanation_code.value,
        explanation_label=get_explanation_label(result.explanation_code),
        explanation_detail=result.explanation_detail,
        event_name=event.name if event is not None else None,
        duration_days=event.duration_days if event is not None else None,
    )




@router.post("/quote", response_model=ApiResponse[PricingQuoteOut], dependencies=[Depends(rate_limit("pricing-quote"))])
def quote(request: PricingQuoteRequest, store: RegistrationStore = Depends(get_store)):
    try:
        result, event = RegistrationService(store).quote(request)
    except RegistrationError as e:
        return api_error(e.status_code, e.message)
    return ApiResponse(
        success=True,
        statusCode=status.HTTP_200_OK,
        message="Price computed",
        data=to_quote_out(result, event)
    )




@router.post("/quote-group", response_model=ApiResponse[GroupQuoteOut], dependencies=[Depends(rate_limit("quote-group"))])
def quote_group(request: GroupQuoteRequest, store: RegistrationStore = Depends(get_store)):
    try:
        group = RegistrationService(store).quote_group(request)
    except RegistrationError as e:
        return api_error(e.status_code, e.message)
    return ApiResponse(
        success=True,
        statusCode=status.HTTP_200_OK,
        message="Group price computed",
        data=GroupQuoteOut(
            items=[to_quote_out(item) for item in group.items],
            subtotal=group.subtotal,
            surcharge=group.surcharge,
            surcharge_label=group.surcharge_label,
            grand_total=group.grand_total,
        )
    )
