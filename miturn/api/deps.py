from typing import Annotated
import uuid
from fastapi import Depends, HTTPException, Query, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import SQLModel

from miturn.core.config import settings
from miturn.db.session import get_db
from miturn.models.enums import UserRole
from miturn.models.user import User
from miturn.services.analytics import AnalyticsService, analytics_service
from miturn.services.notifications import NotificationService, notification_service
from miturn.services.registry import Collaborators, Services
from miturn.services.transfers import TransferService

class TokenPayload(SQLModel):
    sub: uuid.UUID | None = None

class PageParams:
    def __init__(
        self,
        page: Annotated[int, Query(ge=1, description="Page number")] = 1,
        limit: Annotated[int, Query(ge=1, le=100, description="Items per page")] = 50,
    ):
        self.page = page
        self.limit = limit

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit

reuseable_oauth2 = HTTPBearer(auto_error=True)

async def get_current_user(session: Annotated[AsyncSession, Depends(get_db)], token: Annotated[HTTPAuthorizationCredentials, Depends(reuseable_oauth2)]) -> User:
    try:
        payload = jwt.decode(token.credentials, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        token_data = TokenPayload(**payload)
    except (JWTError, ValidationError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Could not validate credentials")

    user = await session.get(User, token_data.sub) if token_data.sub else None
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=400, detail="Inactive user")
    return user

async def get_current_admin(current_user: Annotated[User, Depends(get_current_user)]) -> User:
    if current_user.role != UserRole.ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin privileges required")
    return current_user

def get_transfer_service() -> TransferService:
    return TransferService()

def get_notification_service() -> NotificationService:
    return notification_service

def get_analytics() -> AnalyticsService:
    return analytics_service

async def get_services(
    session: Annotated[AsyncSession, Depends(get_db)],
    transfers: Annotated[TransferService, Depends(get_transfer_service)],
    notifier: Annotated[NotificationService, Depends(get_notification_service)],
    analytics: Annotated[AnalyticsService, Depends(get_analytics)],
) -> Services:
    return Services(session, Collaborators(transfers=transfers, notifier=notifier, analytics=analytics))
