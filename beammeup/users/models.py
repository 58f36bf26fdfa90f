"""User and session SQLAlchemy models and Pydantic schemas."""

import enum
import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import Boolean, DateTime, ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from beammeup.db.session import Base


class Role(str, enum.Enum):
    """Panel roles, most to least privileged."""

    OWNER = "OWNER"
    ADMIN = "ADMIN"
    OPERATOR = "OPERATOR"
    VIEWER = "VIEWER"


def _new_id() -> str:
    return uuid.uuid4().hex


class User(Base):
    """Panel user. username is the login identifier."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    username: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default=Role.VIEWER.value)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_login: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class UserSession(Base):
    """Server-side record of an issued session cookie."""

    __tablename__ = "sessions"

    token: Mapped[str] = mapped_column(String(512), primary_key=True)
    user_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


# Pydantic schemas for API
USERNAME_PATTERN = r"^[a-zA-Z0-9_\-]{3,32}$"


class UserCreate(BaseModel):
    """Payload for an owner/admin creating a new user."""

    username: str = Field(pattern=USERNAME_PATTERN)
    password: str = Field(min_length=8, max_length=256)
    email: Optional[str] = Field(default=None, max_length=255)
    role: Role


class UserUpdate(BaseModel):
    """Partial update; omitted fields are left unchanged."""

    model_config = ConfigDict(populate_by_name=True)

    role: Optional[Role] = None
    is_active: Optional[bool] = Field(default=None, alias="isActive")
    password: Optional[str] = Field(default=None, min_length=8, max_length=256)


class OwnerCreate(BaseModel):
    """First-run setup payload."""

    model_config = ConfigDict(populate_by_name=True)

    username: str = Field(pattern=USERNAME_PATTERN)
    password: str = Field(min_length=8, max_length=256)
    confirm_password: str = Field(alias="confirmPassword")
    email: Optional[str] = Field(default=None, max_length=255)


class UserSummary(BaseModel):
    """Minimal user as returned after login and create."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    username: str
    role: str


class UserResponse(UserSummary):
    """User as listed for admins (no password)."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    email: Optional[str] = None
    is_active: bool = Field(alias="isActive")
    last_login: Optional[datetime] = Field(default=None, alias="lastLogin")
    created_at: datetime = Field(alias="createdAt")


class MeResponse(UserSummary):
    email: Optional[str] = None


class UserLogin(BaseModel):
    """Login request body."""

    username: str = Field(min_length=1, max_length=32)
    password: str = Field(min_length=1, max_length=256)


class LoginResponse(BaseModel):
    user: UserSummary
