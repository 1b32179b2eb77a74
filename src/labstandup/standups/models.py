"""Standup persistence models.

SQLAlchemy models for the standup pipeline:
- LabModel / UserModel: Read-only mirrors of externally owned tables
- StandupModel: One team meeting instance (soft-deleted via is_active)
- TranscriptArchiveModel: 1:1 with a standup, carries expires_at
- ActionItemModel, BlockerModel, DecisionModel: Extracted artifacts
- StandupParticipantModel: Standup <-> User join rows

Relationships default to lazy="raise"; repositories choose what to load
with explicit selectinload options so nothing lazy-loads under asyncio.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.labstandup.core.database import Base


class LabModel(Base):
    """Research lab. Owned by the lab management service."""

    __tablename__ = "labs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)


class UserModel(Base):
    """Application user. Owned by the account service; matched by name here."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    first_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    email: Mapped[str | None] = mapped_column(String(300), nullable=True)


class StandupModel(Base):
    """A single standup meeting for a lab."""

    __tablename__ = "standups"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    lab_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("labs.id"), nullable=False, index=True
    )
    date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    audio_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default=text("true"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )

    lab: Mapped[LabModel] = relationship(lazy="raise")
    transcript_archive: Mapped[TranscriptArchiveModel | None] = relationship(
        back_populates="standup", lazy="raise", uselist=False
    )
    action_items: Mapped[list[ActionItemModel]] = relationship(
        lazy="raise", order_by="ActionItemModel.created_at"
    )
    blockers: Mapped[list[BlockerModel]] = relationship(
        lazy="raise", order_by="BlockerModel.created_at"
    )
    decisions: Mapped[list[DecisionModel]] = relationship(
        lazy="raise", order_by="DecisionModel.created_at"
    )
    participants: Mapped[list[StandupParticipantModel]] = relationship(
        lazy="raise"
    )


class TranscriptArchiveModel(Base):
    """Archived transcript text with a sliding expiration date."""

    __tablename__ = "transcript_archives"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    standup_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("standups.id"), nullable=False, unique=True
    )
    transcript: Mapped[str] = mapped_column(Text, nullable=False)
    word_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    audio_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    duration: Mapped[float | None] = mapped_column(Float, nullable=True)
    language: Mapped[str] = mapped_column(
        String(10), default="en", server_default=text("'en'"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )

    standup: Mapped[StandupModel] = relationship(
        back_populates="transcript_archive", lazy="raise"
    )


class ActionItemModel(Base):
    """Action item extracted from a standup transcript."""

    __tablename__ = "action_items"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    standup_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("standups.id"), nullable=False, index=True
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    assignee_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=True
    )
    due_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    assignee: Mapped[UserModel | None] = relationship(lazy="raise")


class BlockerModel(Base):
    """Blocker raised during a standup."""

    __tablename__ = "blockers"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    standup_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("standups.id"), nullable=False, index=True
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    resolved: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class DecisionModel(Base):
    """Decision recorded during a standup. Append-only."""

    __tablename__ = "decisions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    standup_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("standups.id"), nullable=False, index=True
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class StandupParticipantModel(Base):
    """Link between a standup and a participating user."""

    __tablename__ = "standup_participants"
    __table_args__ = (
        UniqueConstraint("standup_id", "user_id", name="uq_standup_participant"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    standup_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("standups.id"), nullable=False, index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), nullable=False
    )

    user: Mapped[UserModel] = relationship(lazy="raise")
