"""Audit log SQLAlchemy model and Pydantic schemas."""

import enum
import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import DateTime, ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from beammeup.db.session import Base


class AuditAction(str, enum.Enum):
    USER_LOGIN = "USER_LOGIN"
    USER_LOGOUT = "USER_LOGOUT"
    USER_CREATE = "USER_CREATE"
    USER_UPDATE = "USER_UPDATE"
    USER_DELETE = "USER_DELETE"
    CONFIG_VIEW = "CONFIG_VIEW"
    CONFIG_UPDATE = "CONFIG_UPDATE"
    AUTHKEY_REPLACE = "AUTHKEY_REPLACE"
    MOD_UPLOAD = "MOD_UPLOAD"
    MOD_DELETE = "MOD_DELETE"
    MAP_LABEL_UPDATE = "MAP_LABEL_UPDATE"
    SERVER_RESTART = "SERVER_RESTART"
    LOGS_VIEW = "LOGS_VIEW"
    DIAGNOSTICS_EXPORT = "DIAGNOSTICS_EXPORT"


class AuditLog(Base):
    """One recorded user action. details holds sanitized JSON."""

    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=lambda: uuid.uuid4().hex)
    # Kept when the user is deleted so history survives
    user_id: Mapped[Optional[str]] = mapped_column(
        String(32), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    username: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    action: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    resource: Mapped[str] = mapped_column(String(32), nullable=False)
    resource_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )


class AuditLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: str
    user_id: Optional[str] = Field(default=None, alias="userId")
    username: Optional[str] = None
    action: str
    resource: str
    resource_id: Optional[str] = Field(default=None, alias="resourceId")
    details: Optional[str] = None
    ip_address: Optional[str] = Field(default=None, alias="ipAddress")
    created_at: datetime = Field(alias="createdAt")


class AuditLogPage(BaseModel):
    logs: list[AuditLogResponse]
    total: int
    limit: int
    offset: int
