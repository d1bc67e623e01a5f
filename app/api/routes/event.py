from fastapi import APIRouter, Depends, status
from typing import List
from app.api.deps import get_store
from app.api.responses import api_error
from app.schemas.CommonResponse import ApiResponse
from app.schemas.event import EventOut, PricingConfigOut
from app.models.event import Event
from app.services.registration_store import RegistrationStore

router = APIRouter(prefix="/events", tags=["Events"])




def to_event_out(event: Event, include_pricing: bool = False) -> EventOut:
    return EventOut(
        id=event.id,
        name=event.name,
        description=event.description,
        start_date=event.start_date,
        end_date=event.end_date,
        duration_days=event.duration_days,
        adult_age_threshold=event.adult_age_threshold,
        youth_age_threshold=event.youth_age_threshold,
        infant_age_threshold=event.infant_age_threshold,
        is_active=event.is_active,
        created_at=event.created_at,
        pricing=PricingConfigOut.model_validate(event.pricing) if include_pricing and event.pricing else None,
    )




@router.get("", response_model=ApiResponse[List[EventOut]])
def list_active_events(store: RegistrationStore = Depends(get_store)):
    events = store.list_active_events()
    return ApiResponse(
        success=True,
        statusCode=status.HTTP_200_OK,
        message="Events retrieved",
        data=[to_event_out(e) for e in events]
    )




@router.get("/{event_id}", response_model=ApiResponse[EventOut])
def get_event(event_id: str, store: RegistrationStore = Depends(get_store)):
    event = store.get_active_event(event_id)
    if not event:
        return api_error(status.HTTP_404_NOT_FOUND, "Event not found")
    return ApiResponse(
        success=True,
        statusCode=status.HTTP_200_OK,
        message="Event retrieved",
        data=to_event_out(event, include_pricing=True)
    )
