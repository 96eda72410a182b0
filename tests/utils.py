import uuid
from datetime import datetime, timedelta
from sqlalchemy.ext.asyncio import AsyncSession
from miturn.core.security import create_access_token
from miturn.models.circle import Circle, CircleMember
from miturn.models.enums import CircleRole, Frequency, PayoutPreference, UserRole
from miturn.models.user import User

# Monday; weekly cycle 1 is due a week later
START = datetime(2026, 1, 5, 9, 0)

async def create_user(session: AsyncSession, email: str = None, role: str = UserRole.USER, display_name: str = "Test User") -> User:
    if not email:
        email = f"user_{uuid.uuid4().hex[:8]}@example.com"
    user = User(email=email, display_name=display_name, role=role)
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user

def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}

async def create_circle(
    session: AsyncSession,
    host: User,
    members: list = (),
    contribution_amount: int = 10000,
    frequency: Frequency = Frequency.WEEKLY,
    start: datetime | None = START,
    payout_preference: PayoutPreference = PayoutPreference.FIXED,
    grace_period_days: int | None = None,
) -> Circle:
    circle = Circle(
        name="Test Circle",
        contribution_amount=contribution_amount,
        frequency=frequency,
        cycle_start_date=start,
        invite_code=uuid.uuid4().hex[:8],
        payout_preference=payout_preference,
        grace_period_days=grace_period_days,
        created_by=host.id,
    )
    session.add(circle)
    await session.commit()
    await session.refresh(circle)

    joined = datetime(2025, 12, 1)
    for position, user in enumerate([host, *members], start=1):
        session.add(CircleMember(
            circle_id=circle.id,
            user_id=user.id,
            payout_position=position,
            role=CircleRole.HOST if position == 1 else CircleRole.MEMBER,
            join_date=joined + timedelta(hours=position),
        ))
    await session.commit()
    return circle

async def started_circle(session: AsyncSession, services, size: int = 4, **kwargs):
    """
    A circle of ``size`` fresh users, started through the rotation engine.
    """
    users = [await create_user(session, display_name=f"Member {i}") for i in range(1, size + 1)]
    circle = await create_circle(session, users[0], users[1:], **kwargs)
    circle = await services.rotation.initialize(circle)
    return circle, users
