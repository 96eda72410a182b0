from typing import Annotated, List
import uuid
from fastapi import APIRouter, Depends, Request

from miturn.api.deps import get_current_user, get_services
from miturn.core.rate_limit import limiter
from miturn.models.user import User, get_utc_now
from miturn.schemas.response import APIResponse
from miturn.schemas.schedule import RecurringContributionCreate, RecurringContributionRead, RecurringContributionUpdate
from miturn.services.registry import Services

router = APIRouter()

@router.post("/", response_model=APIResponse[RecurringContributionRead])
@limiter.limit("10/minute")
async def create_recurring_contribution(
    request: Request,
    entry_in: RecurringContributionCreate,
    current_user: Annotated[User, Depends(get_current_user)],
    services: Annotated[Services, Depends(get_services)]
):
    """
    Set up an automatic contribution to one of your circles.
    """
    today = get_utc_now().date()
    entry = await services.schedules.create(current_user.id, entry_in, today)
    return APIResponse(message="Recurring contribution created", data=services.schedules.to_read(entry, today))

@router.get("/", response_model=APIResponse[List[RecurringContributionRead]])
async def get_recurring_contributions(
    current_user: Annotated[User, Depends(get_current_user)],
    services: Annotated[Services, Depends(get_services)]
):
    today = get_utc_now().date()
    entries = await services.schedules.list_for_user(current_user.id)
    return APIResponse(
        message="Recurring contributions retrieved",
        data=[services.schedules.to_read(entry, today) for entry in entries],
    )

@router.patch("/{entry_id}", response_model=APIResponse[RecurringContributionRead])
async def update_recurring_contribution(
    entry_id: uuid.UUID,
    entry_in: RecurringContributionUpdate,
    current_user: Annotated[User, Depends(get_current_user)],
    services: Annotated[Services, Depends(get_services)]
):
    """
    Change the amount or cadence. A new cadence recomputes the next run date.
    """
    today = get_utc_now().date()
    entry = await services.schedules.update(entry_id, current_user.id, entry_in, today)
    return APIResponse(message="Recurring contribution updated", data=services.schedules.to_read(entry, today))

@router.post("/{entry_id}/pause", response_model=APIResponse[RecurringContributionRead])
async def pause_recurring_contribution(
    entry_id: uuid.UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    services: Annotated[Services, Depends(get_services)]
):
    entry = await services.schedules.pause(entry_id, current_user.id)
    return APIResponse(message="Recurring contribution paused", data=services.schedules.to_read(entry, get_utc_now().date()))

@router.post("/{entry_id}/resume", response_model=APIResponse[RecurringContributionRead])
async def resume_recurring_contribution(
    entry_id: uuid.UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    services: Annotated[Services, Depends(get_services)]
):
    today = get_utc_now().date()
    entry = await services.schedules.resume(entry_id, current_user.id, today)
    return APIResponse(message="Recurring contribution resumed", data=services.schedules.to_read(entry, today))
