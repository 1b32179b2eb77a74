"""Pydantic v2 schemas for the standup pipeline.

Defines the data contracts shared by the audio store, transcript archive,
model adapters and the orchestrator: standup records with their artifacts,
transcript archives, the strict extraction contract, and the structured
result objects every component returns instead of raising.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


# ── Enums ────────────────────────────────────────────────────────────────────


class ProcessingStep(str, Enum):
    """Pipeline step at which a processing attempt stopped."""

    UPLOAD = "upload"
    TRANSCRIBE = "transcribe"
    ARCHIVE = "archive"
    EXTRACT = "extract"
    PERSIST = "persist"


# ── Standup Artifacts ────────────────────────────────────────────────────────


class UserRef(BaseModel):
    """Minimal view of a user referenced by a standup."""

    id: uuid.UUID
    name: str = ""
    first_name: str = ""
    last_name: str = ""
    email: str | None = None


class ActionItem(BaseModel):
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    standup_id: uuid.UUID
    description: str
    assignee_id: uuid.UUID | None = None
    assignee: UserRef | None = None
    due_date: datetime | None = None
    completed: bool = False


class Blocker(BaseModel):
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    standup_id: uuid.UUID
    description: str
    resolved: bool = False


class Decision(BaseModel):
    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    standup_id: uuid.UUID
    description: str


class StandupParticipant(BaseModel):
    standup_id: uuid.UUID
    user_id: uuid.UUID
    user: UserRef | None = None


# ── Transcript Archive ───────────────────────────────────────────────────────


class TranscriptArchive(BaseModel):
    """Archived transcript with retention metadata."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    standup_id: uuid.UUID
    transcript: str
    word_count: int
    audio_url: str | None = None
    duration: float | None = None
    language: str = "en"
    created_at: datetime
    expires_at: datetime
    lab_id: uuid.UUID | None = None
    lab_name: str | None = None
    standup_date: datetime | None = None


class TranscriptArchiveCreate(BaseModel):
    standup_id: uuid.UUID
    transcript: str
    audio_url: str | None = None
    duration: float | None = None
    language: str | None = None


class TranscriptArchiveUpdate(BaseModel):
    """Partial update. Only fields that are set are applied."""

    transcript: str | None = None
    audio_url: str | None = None
    duration: float | None = None
    language: str | None = None


# ── Standup ──────────────────────────────────────────────────────────────────


class Standup(BaseModel):
    """A standup with all of its relations loaded."""

    id: uuid.UUID
    lab_id: uuid.UUID
    lab_name: str | None = None
    date: datetime
    audio_url: str | None = None
    is_active: bool = True
    created_at: datetime
    updated_at: datetime
    participants: list[StandupParticipant] = Field(default_factory=list)
    action_items: list[ActionItem] = Field(default_factory=list)
    blockers: list[Blocker] = Field(default_factory=list)
    decisions: list[Decision] = Field(default_factory=list)
    transcript_archive: TranscriptArchive | None = None


class StandupCreate(BaseModel):
    lab_id: uuid.UUID
    date: datetime | None = None
    participant_ids: list[uuid.UUID] = Field(default_factory=list)


class StandupUpdate(BaseModel):
    """Partial update. Only fields that are set are applied."""

    date: datetime | None = None
    audio_url: str | None = None
    is_active: bool | None = None


class StandupStats(BaseModel):
    total_standups: int = 0
    total_action_items: int = 0
    completed_action_items: int = 0
    total_blockers: int = 0
    resolved_blockers: int = 0
    average_action_items_per_standup: float = 0.0


# ── Extraction Contract ──────────────────────────────────────────────────────


class ExtractedActionItem(BaseModel):
    """Action item as emitted by the extraction model."""

    description: str = Field(description="Clear description of the action item")
    assignee: str | None = Field(
        None, description="Person's name if mentioned, otherwise null"
    )
    due_date: str | None = Field(
        None, description="ISO date string if mentioned, otherwise null"
    )


class ExtractedBlocker(BaseModel):
    description: str = Field(description="Description of the blocker")
    resolved: bool = Field(False, description="Whether the blocker is already resolved")


class ExtractedDecision(BaseModel):
    description: str = Field(description="Description of the decision")


class ExtractedStandup(BaseModel):
    """Structured standup artifacts. All top-level keys are required."""

    summary: str = Field(description="Brief 2-3 sentence summary of the standup")
    action_items: list[ExtractedActionItem] = Field(
        description="Action items with assignees and due dates when mentioned"
    )
    blockers: list[ExtractedBlocker] = Field(
        description="Blockers or impediments mentioned"
    )
    decisions: list[ExtractedDecision] = Field(
        description="Important decisions made"
    )
    participants: list[str] = Field(
        description="Names of participants mentioned in the transcript"
    )


# ── Component Results ────────────────────────────────────────────────────────


class AudioUploadOptions(BaseModel):
    max_size: int | None = None
    allowed_types: list[str] | None = None


class AudioValidation(BaseModel):
    valid: bool
    error: str | None = None


class AudioUploadResult(BaseModel):
    success: bool
    message: str
    audio_url: str | None = None
    file_path: str | None = None
    file_size: int | None = None


class AudioFileInfo(BaseModel):
    exists: bool
    path: str | None = None
    url: str | None = None


class AudioDeleteResult(BaseModel):
    success: bool
    message: str


class AudioStats(BaseModel):
    total_standups: int = 0
    standups_with_audio: int = 0
    total_audio_size: int = 0
    average_audio_size: float = 0.0


class CleanupResult(BaseModel):
    """Outcome of a partial-failure-tolerant batch sweep."""

    deleted_count: int = 0
    errors: list[str] = Field(default_factory=list)


class TranscriptionResult(BaseModel):
    success: bool
    transcript: str | None = None
    error: str | None = None


class ExtractionResult(BaseModel):
    success: bool
    data: ExtractedStandup | None = None
    error: str | None = None


class RetentionExtension(BaseModel):
    success: bool
    new_expiry_date: datetime | None = None
    error: str | None = None


class TranscriptExportMetadata(BaseModel):
    standup_date: datetime | None = None
    lab_name: str | None = None
    word_count: int
    created_at: datetime
    expires_at: datetime


class TranscriptExportData(BaseModel):
    transcript: str
    metadata: TranscriptExportMetadata


class TranscriptExport(BaseModel):
    success: bool
    data: TranscriptExportData | None = None
    error: str | None = None


class ArchiveStats(BaseModel):
    total_transcripts: int = 0
    total_words: int = 0
    average_word_count: int = 0
    total_duration: float = 0.0
    expiring_within_7_days: int = 0
    expired_count: int = 0
    language_breakdown: dict[str, int] = Field(default_factory=dict)


class ProcessingResult(BaseModel):
    """Result of an orchestrated processing attempt."""

    success: bool
    standup: Standup | None = None
    error: str | None = None
    failed_step: ProcessingStep | None = None


StandupOrderField = Literal["date", "created_at"]
SortOrder = Literal["asc", "desc"]
