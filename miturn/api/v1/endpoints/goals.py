from typing import Annotated, List
import uuid
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from miturn.api.deps import get_current_user, get_db, get_services
from miturn.core.exceptions import AllocationFailed
from miturn.models.enums import AllocationStatus
from miturn.models.goal import DailyAllocation, SavingsGoal, SavingsPreference
from miturn.models.user import User, get_utc_now
from miturn.schemas.goal import (
    AllocationSuggestion,
    DailyAllocationRead,
    GoalContribution,
    SavingsGoalCreate,
    SavingsGoalRead,
    SavingsPreferenceRead,
    SavingsPreferenceUpdate,
)
from miturn.schemas.response import APIResponse
from miturn.schemas.transaction import TransactionRead
from miturn.services.registry import Services

router = APIRouter()

async def get_own_goal(session: AsyncSession, goal_id: uuid.UUID, user: User) -> SavingsGoal:
    goal = await session.get(SavingsGoal, goal_id)
    if not goal or goal.user_id != user.id:
        raise HTTPException(status_code=404, detail="Savings goal not found")
    return goal

@router.post("/", response_model=APIResponse[SavingsGoalRead])
async def create_goal(
    goal_in: SavingsGoalCreate,
    current_user: Annotated[User, Depends(get_current_user)],
    session: Annotated[AsyncSession, Depends(get_db)]
):
    if goal_in.deadline <= get_utc_now().date():
        raise HTTPException(status_code=400, detail="Deadline must be in the future")

    goal = SavingsGoal.model_validate(goal_in, update={"user_id": current_user.id})
    session.add(goal)
    await session.commit()
    await session.refresh(goal)
    return APIResponse(message="Savings goal created", data=goal)

@router.get("/", response_model=APIResponse[List[SavingsGoalRead]])
async def get_goals(
    current_user: Annotated[User, Depends(get_current_user)],
    session: Annotated[AsyncSession, Depends(get_db)]
):
    query = select(SavingsGoal).where(SavingsGoal.user_id == current_user.id).order_by(SavingsGoal.deadline)
    result = await session.execute(query)
    return APIResponse(message="Savings goals retrieved", data=result.scalars().all())

@router.put("/preferences", response_model=APIResponse[SavingsPreferenceRead])
async def update_preferences(
    preferences_in: SavingsPreferenceUpdate,
    current_user: Annotated[User, Depends(get_current_user)],
    session: Annotated[AsyncSession, Depends(get_db)]
):
    """
    Set the monthly savings limit or switch vacation mode on and off.
    """
    preference = await session.get(SavingsPreference, current_user.id)
    if not preference:
        preference = SavingsPreference(user_id=current_user.id)
    preference.max_monthly_limit = preferences_in.max_monthly_limit
    preference.vacation_mode = preferences_in.vacation_mode
    session.add(preference)
    await session.commit()
    await session.refresh(preference)
    return APIResponse(message="Savings preferences updated", data=preference)

@router.get("/{goal_id}/allocations", response_model=APIResponse[List[DailyAllocationRead]])
async def get_allocations(
    goal_id: uuid.UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    session: Annotated[AsyncSession, Depends(get_db)],
    status: AllocationStatus | None = None,
    limit: Annotated[int, Query(ge=1, le=100)] = 30,
):
    goal = await get_own_goal(session, goal_id, current_user)
    query = select(DailyAllocation).where(DailyAllocation.goal_id == goal.id)
    if status:
        query = query.where(DailyAllocation.status == status)
    result = await session.execute(query.order_by(DailyAllocation.date.desc()).limit(limit))
    return APIResponse(message="Allocations retrieved", data=result.scalars().all())

@router.post("/{goal_id}/allocations/suggest", response_model=APIResponse[AllocationSuggestion])
async def suggest_allocation(
    goal_id: uuid.UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    services: Annotated[Services, Depends(get_services)],
    account_balance: Annotated[int | None, Query(gt=0, description="Funding account balance in cents")] = None,
):
    """
    Suggest today's contribution toward a goal.

    A met goal yields no suggestion; a missed deadline yields a ``failed`` allocation.
    """
    today = get_utc_now().date()
    try:
        allocation = await services.allocations.suggest_for_goal(goal_id, current_user.id, today, account_balance)
    except AllocationFailed as e:
        return APIResponse(
            message=e.message,
            data=AllocationSuggestion(
                goal_id=goal_id,
                status=AllocationStatus.FAILED,
                allocation=DailyAllocationRead.model_validate(e.allocation) if e.allocation else None,
                message=e.message,
            ),
        )

    if allocation is None:
        return APIResponse(
            message="No allocation needed today",
            data=AllocationSuggestion(goal_id=goal_id, status="none", message="Goal met or suggestions paused"),
        )
    return APIResponse(
        message="Allocation suggested",
        data=AllocationSuggestion(
            goal_id=goal_id,
            status=allocation.status,
            allocation=DailyAllocationRead.model_validate(allocation),
        ),
    )

@router.post("/{goal_id}/contribute", response_model=APIResponse[TransactionRead])
async def contribute_to_goal(
    goal_id: uuid.UUID,
    contribution_in: GoalContribution,
    current_user: Annotated[User, Depends(get_current_user)],
    session: Annotated[AsyncSession, Depends(get_db)],
    services: Annotated[Services, Depends(get_services)]
):
    goal = await get_own_goal(session, goal_id, current_user)
    transaction = await services.contributions.contribute_to_goal(goal, current_user.id, contribution_in.amount, get_utc_now())
    return APIResponse(message="Contribution completed", data=transaction)
