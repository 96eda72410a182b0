from datetime import date
from typing import Annotated
from fastapi import APIRouter, Depends

from miturn.api.deps import get_current_admin, get_services
from miturn.models.user import User, get_utc_now
from miturn.schemas.passes import AllocationPassSummary, PayoutPassSummary, RecurringPassSummary
from miturn.schemas.response import APIResponse
from miturn.services.registry import Services

router = APIRouter()

# Operators can run the scheduled passes on demand; every pass is safe to repeat.

@router.post("/allocations", response_model=APIResponse[AllocationPassSummary])
async def run_allocation_pass(
    current_admin: Annotated[User, Depends(get_current_admin)],
    services: Annotated[Services, Depends(get_services)],
    run_on: date | None = None,
):
    summary = await services.allocations.run_pass(run_on or get_utc_now().date())
    return APIResponse(message="Allocation pass finished", data=summary)

@router.post("/recurring-contributions", response_model=APIResponse[RecurringPassSummary])
async def run_recurring_contribution_pass(
    current_admin: Annotated[User, Depends(get_current_admin)],
    services: Annotated[Services, Depends(get_services)],
    run_on: date | None = None,
):
    summary = await services.schedules.run_pass(run_on or get_utc_now().date())
    return APIResponse(message="Recurring contribution pass finished", data=summary)

@router.post("/payouts", response_model=APIResponse[PayoutPassSummary])
async def run_payout_pass(
    current_admin: Annotated[User, Depends(get_current_admin)],
    services: Annotated[Services, Depends(get_services)],
):
    summary = await services.rotation.run_pass(get_utc_now())
    return APIResponse(message="Payout pass finished", data=summary)
