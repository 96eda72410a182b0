import uuid
from datetime import datetime, timezone
from sqlmodel import SQLModel, Field
from pydantic import EmailStr

def get_utc_now() -> datetime:
    """Returns a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)

class UserBase(SQLModel):
    """
    Base User model containing shared attributes.
    """
    email: EmailStr = Field(unique=True, index=True, description="User's email address")
    display_name: str | None = Field(default=None, description="Name shown to other circle members")
    phone_number: str | None = Field(default=None, description="User's phone number")
    avatar_url: str | None = Field(default=None, description="URL to user's avatar image")
    is_active: bool = Field(default=True, description="Whether the user account is active")
    role: str = Field(default="user", description="User role (e.g., 'user', 'admin')")

class User(UserBase, table=True):
    """
    User database model. Credentials live with the identity provider.
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True, description="Unique identifier for the user")
    created_at: datetime = Field(default_factory=get_utc_now, description="Timestamp when the user was created")
