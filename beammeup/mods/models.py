"""Mod file, map index cache and map label models, plus API schemas."""

import uuid
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from beammeup.db.session import Base

# Cached in place of map paths when a scanned archive holds no map manifest
NO_MAPS_SENTINEL = "__no_maps__"

MAX_LABEL_LENGTH = 80


class ModFile(Base):
    """Uploaded mod archive. The DB row is the source of truth for which mods exist."""

    __tablename__ = "mod_files"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=lambda: uuid.uuid4().hex)
    stored_filename: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    original_name: Mapped[str] = mapped_column(String(255), nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    sha256: Mapped[str] = mapped_column(String(64), nullable=False)  # informational, not a dedup key
    uploaded_by_user_id: Mapped[Optional[str]] = mapped_column(
        String(32), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class ModMapIndexEntry(Base):
    """
    One map manifest path found in one archive, or NO_MAPS_SENTINEL. Entries are
    valid only for the (filename, size, mtime) identity they were scanned at.
    """

    __tablename__ = "mod_map_index"
    __table_args__ = (Index("ix_mod_map_index_identity", "mod_filename", "mod_size_bytes", "mod_mtime"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    mod_filename: Mapped[str] = mapped_column(String(255), nullable=False)
    mod_size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    mod_mtime: Mapped[int] = mapped_column(BigInteger, nullable=False)  # milliseconds
    map_path: Mapped[str] = mapped_column(String(512), nullable=False)


class MapLabel(Base):
    """User-assigned friendly name for a map path."""

    __tablename__ = "map_labels"

    map_path: Mapped[str] = mapped_column(String(512), primary_key=True)
    label: Mapped[str] = mapped_column(String(MAX_LABEL_LENGTH), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


# Pydantic schemas for API
class UploaderRef(BaseModel):
    id: str
    username: str


class ModResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    original_name: str = Field(alias="originalName")
    size: int
    sha256: str
    uploaded_at: datetime = Field(alias="uploadedAt")
    uploaded_by: Optional[UploaderRef] = Field(default=None, alias="uploadedBy")


class StoredModResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    filename: str
    original_name: str = Field(alias="originalName")
    sha256: str


class MapOption(BaseModel):
    value: str
    label: Optional[str] = None
    source: Literal["mod"] = "mod"


class MapListResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    maps: List[MapOption]
    timed_out: bool = Field(alias="timedOut")
    scanned_files: int = Field(alias="scannedFiles")
    skipped_large: int = Field(alias="skippedLarge")


class MapLabelUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    map_path: str = Field(alias="mapPath", max_length=512)
    label: str

    @field_validator("map_path")
    @classmethod
    def _map_path_under_levels(cls, v: str) -> str:
        if not v.startswith("/levels/"):
            raise ValueError("mapPath must start with /levels/")
        return v

    @field_validator("label")
    @classmethod
    def _label_length(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("label must not be empty")
        if len(v) > MAX_LABEL_LENGTH:
            raise ValueError(f"label must be at most {MAX_LABEL_LENGTH} characters")
        return v


class MapLabelResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    map_path: str = Field(alias="mapPath")
    label: str
