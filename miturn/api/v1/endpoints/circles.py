from typing import Annotated, List
import uuid
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from miturn.api.deps import get_current_user, get_db, get_services
from miturn.core.config import settings
from miturn.core.exceptions import PayoutDeferred
from miturn.core.rate_limit import limiter
from miturn.models.circle import Circle, CircleMember
from miturn.models.enums import CircleRole, CircleStatus, CycleStatus, UserRole
from miturn.models.user import User, get_utc_now
from miturn.schemas.circle import (
    CircleCreate,
    CircleDetail,
    CircleMemberRead,
    CircleRead,
    PayoutResult,
    ReminderRead,
    ReminderRequest,
    RotationStatus,
)
from miturn.schemas.response import APIResponse
from miturn.schemas.transaction import TransactionRead
from miturn.services.registry import Services

router = APIRouter()

async def get_circle_for_member(session: AsyncSession, circle_id: uuid.UUID, user: User, host_only: bool = False) -> Circle:
    """
    Load a circle the user belongs to; admins may act on any circle.
    """
    circle = await session.get(Circle, circle_id)
    if not circle:
        raise HTTPException(status_code=404, detail="Circle not found")
    if user.role == UserRole.ADMIN:
        return circle

    member = await session.get(CircleMember, (user.id, circle_id))
    if not member:
        raise HTTPException(status_code=403, detail="Not a member of this circle")
    if host_only and member.role != CircleRole.HOST:
        raise HTTPException(status_code=403, detail="Only the host can do this")
    return circle

@router.post("/", response_model=APIResponse[CircleRead])
async def create_circle(
    circle_in: CircleCreate,
    current_user: Annotated[User, Depends(get_current_user)],
    session: Annotated[AsyncSession, Depends(get_db)]
):
    """
    Create a new circle.

    The user creating the circle becomes the host and holds payout position 1.
    """
    if circle_in.target_members is not None and circle_in.target_members > settings.MAX_CIRCLE_MEMBERS:
        raise HTTPException(status_code=400, detail=f"Target members cannot exceed {settings.MAX_CIRCLE_MEMBERS}")

    circle = Circle.model_validate(
        circle_in,
        update={
            "invite_code": str(uuid.uuid4())[:8],
            "status": CircleStatus.PENDING,
            "created_by": current_user.id,
        }
    )
    session.add(circle)
    await session.commit()
    await session.refresh(circle)

    session.add(CircleMember(
        circle_id=circle.id,
        user_id=current_user.id,
        role=CircleRole.HOST,
        payout_position=1,
    ))
    await session.commit()

    return APIResponse(message="Circle created successfully", data=circle)

@router.get("/", response_model=APIResponse[List[CircleRead]])
async def get_circles(
    current_user: Annotated[User, Depends(get_current_user)],
    session: Annotated[AsyncSession, Depends(get_db)]
):
    """
    List all circles where the current user is a member.
    """
    query = select(Circle).join(CircleMember).where(CircleMember.user_id == current_user.id)
    result = await session.execute(query.order_by(Circle.created_at))
    return APIResponse(message="Circles retrieved", data=result.scalars().all())

@router.get("/{circle_id}", response_model=APIResponse[CircleDetail])
async def get_circle(
    circle_id: uuid.UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    session: Annotated[AsyncSession, Depends(get_db)],
    services: Annotated[Services, Depends(get_services)]
):
    """
    Get details of a specific circle, including its ledger balance.
    """
    circle = await get_circle_for_member(session, circle_id, current_user)
    balance = await services.ledger.balance_of(circle.id)
    return APIResponse(
        message="Circle details retrieved",
        data=CircleDetail.model_validate(circle, update={"balance": balance}),
    )

@router.post("/join", response_model=APIResponse[dict])
async def join_circle(
    invite_code: str,
    current_user: Annotated[User, Depends(get_current_user)],
    session: Annotated[AsyncSession, Depends(get_db)]
):
    """
    Join a circle using an invite code.

    Assigns the next payout position. Positions are frozen once the circle starts.
    """
    result = await session.execute(select(Circle).where(Circle.invite_code == invite_code))
    circle = result.scalar_one_or_none()
    if not circle:
        raise HTTPException(status_code=404, detail="Circle not found")
    if circle.status != CircleStatus.PENDING:
        raise HTTPException(status_code=400, detail="Circle has already started")

    if await session.get(CircleMember, (current_user.id, circle.id)):
        raise HTTPException(status_code=400, detail="Already a member")

    result = await session.execute(select(CircleMember).where(CircleMember.circle_id == circle.id))
    members = result.scalars().all()
    if len(members) >= (circle.target_members or settings.MAX_CIRCLE_MEMBERS):
        raise HTTPException(status_code=400, detail="Circle is full")

    next_position = max((m.payout_position for m in members), default=0) + 1
    session.add(CircleMember(
        circle_id=circle.id,
        user_id=current_user.id,
        role=CircleRole.MEMBER,
        payout_position=next_position,
    ))
    await session.commit()

    return APIResponse(message="Joined circle successfully", data={"circle_id": circle.id, "payout_position": next_position})

@router.post("/{circle_id}/start", response_model=APIResponse[CircleRead])
async def start_circle(
    circle_id: uuid.UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    session: Annotated[AsyncSession, Depends(get_db)],
    services: Annotated[Services, Depends(get_services)]
):
    """
    Start the circle. Freezes payout positions and opens cycle 1.
    """
    circle = await get_circle_for_member(session, circle_id, current_user, host_only=True)
    circle = await services.rotation.initialize(circle)
    return APIResponse(message="Circle started successfully", data=circle)

@router.get("/{circle_id}/members", response_model=APIResponse[List[CircleMemberRead]])
async def get_circle_members(
    circle_id: uuid.UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    session: Annotated[AsyncSession, Depends(get_db)],
    services: Annotated[Services, Depends(get_services)]
):
    circle = await get_circle_for_member(session, circle_id, current_user)
    members = await services.rotation.members_of(circle.id, active_only=False)
    return APIResponse(message="Members retrieved", data=members)

@router.get("/{circle_id}/rotation", response_model=APIResponse[RotationStatus])
async def get_rotation(
    circle_id: uuid.UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    session: Annotated[AsyncSession, Depends(get_db)],
    services: Annotated[Services, Depends(get_services)]
):
    """
    Who has been paid, who is next, and when.
    """
    circle = await get_circle_for_member(session, circle_id, current_user)
    status = await services.rotation.rotation_status(circle)
    return APIResponse(message="Rotation status retrieved", data=status)

@router.post("/{circle_id}/contribute", response_model=APIResponse[TransactionRead])
@limiter.limit("10/minute")
async def contribute_to_circle(
    request: Request,
    circle_id: uuid.UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    session: Annotated[AsyncSession, Depends(get_db)],
    services: Annotated[Services, Depends(get_services)]
):
    """
    Contribute the circle amount for the earliest cycle still owed.
    """
    circle = await get_circle_for_member(session, circle_id, current_user)
    transaction = await services.contributions.contribute(circle, current_user.id, get_utc_now())
    return APIResponse(message=f"Contribution for cycle {transaction.cycle_number} completed", data=transaction)

@router.post("/{circle_id}/payouts", response_model=APIResponse[PayoutResult])
async def process_payout(
    circle_id: uuid.UUID,
    current_user: Annotated[User, Depends(get_current_user)],
    session: Annotated[AsyncSession, Depends(get_db)],
    services: Annotated[Services, Depends(get_services)]
):
    """
    Pay out the current cycle if it is ready.

    A deferred payout is a normal outcome and comes back with status ``deferred``.
    """
    circle = await get_circle_for_member(session, circle_id, current_user, host_only=True)
    cycle = circle.current_cycle
    try:
        outcome = await services.rotation.process_circle(circle, get_utc_now())
    except PayoutDeferred as e:
        return APIResponse(
            message=e.message,
            data=PayoutResult(
                circle_id=circle_id,
                cycle_number=cycle,
                status=CycleStatus.DEFERRED,
                reason=e.reason,
                overdue_user_ids=e.overdue_user_ids,
            ),
        )

    result = PayoutResult(
        circle_id=circle_id,
        cycle_number=outcome.cycle_number,
        status=outcome.status,
        overdue_user_ids=[m.user_id for m in outcome.overdue_members],
        transaction=TransactionRead.model_validate(outcome.transaction) if outcome.transaction else None,
    )
    message = "Payout completed" if outcome.status == CycleStatus.PAID else "Contributions still being collected"
    return APIResponse(message=message, data=result)

@router.post("/{circle_id}/members/{member_id}/remind", response_model=APIResponse[ReminderRead])
@limiter.limit("10/minute")
async def remind_member(
    request: Request,
    circle_id: uuid.UUID,
    member_id: uuid.UUID,
    reminder_in: ReminderRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    session: Annotated[AsyncSession, Depends(get_db)],
    services: Annotated[Services, Depends(get_services)]
):
    """
    Send a payment reminder to a member. Each tier goes out once per cycle.
    """
    circle = await get_circle_for_member(session, circle_id, current_user, host_only=True)
    result = await services.reminders.dispatch(circle.id, member_id, reminder_in.tier, reminder_in.cycle_number)
    message = "Reminder sent" if result.success else "Reminder could not be delivered"
    return APIResponse(message=message, data=ReminderRead.model_validate(result))
