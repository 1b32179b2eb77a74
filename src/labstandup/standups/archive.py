"""TranscriptArchiveService -- lifecycle of archived standup transcripts.

A transcript archive is created once per standup when transcription
completes and expires after a fixed retention window (30 days by default).
Retention can be extended; extensions compound from the current expiry,
never from now, so a previously extended window is never shortened.
Expired archives are removed by cleanup_expired(), which the scheduler
runs outside the request path.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import structlog

from src.labstandup.standups.repository import TranscriptArchiveRepository
from src.labstandup.standups.schemas import (
    ArchiveStats,
    CleanupResult,
    RetentionExtension,
    TranscriptArchive,
    TranscriptArchiveCreate,
    TranscriptArchiveUpdate,
    TranscriptExport,
    TranscriptExportData,
    TranscriptExportMetadata,
)

logger = structlog.get_logger(__name__)

RETENTION_DAYS = 30
EXPIRY_WARNING_DAYS = 7
DEFAULT_LANGUAGE = "en"


def count_words(transcript: str) -> int:
    """Number of whitespace-delimited, non-empty tokens."""
    return len(transcript.split())


class TranscriptArchiveService:
    """Transcript retention, search, export and statistics.

    Args:
        repository: TranscriptArchiveRepository for row access.
        retention_days: Retention window applied at creation.
        warning_days: Window used by stats() for "expiring soon".
    """

    def __init__(
        self,
        repository: TranscriptArchiveRepository,
        retention_days: int = RETENTION_DAYS,
        warning_days: int = EXPIRY_WARNING_DAYS,
    ) -> None:
        self._repository = repository
        self._retention_days = retention_days
        self._warning_days = warning_days

    async def create(self, data: TranscriptArchiveCreate) -> TranscriptArchive:
        """Archive a transcript with expires_at = now + retention window.

        Raises:
            TranscriptArchiveExistsError: If the standup already has an archive.
        """
        now = datetime.now(timezone.utc)
        archive = await self._repository.create(
            standup_id=str(data.standup_id),
            transcript=data.transcript,
            word_count=count_words(data.transcript),
            created_at=now,
            expires_at=now + timedelta(days=self._retention_days),
            audio_url=data.audio_url,
            duration=data.duration,
            language=data.language or DEFAULT_LANGUAGE,
        )
        logger.info(
            "archive.created",
            standup_id=str(data.standup_id),
            word_count=archive.word_count,
            expires_at=archive.expires_at.isoformat(),
        )
        return archive

    async def get_by_standup_id(self, standup_id: str) -> TranscriptArchive | None:
        return await self._repository.get_by_standup_id(standup_id)

    async def update(
        self, standup_id: str, data: TranscriptArchiveUpdate
    ) -> TranscriptArchive:
        """Apply a partial update; word count follows the transcript text.

        Raises:
            ValueError: If no archive exists for the standup.
        """
        values = data.model_dump(exclude_unset=True)
        if values.get("transcript") is not None:
            values["word_count"] = count_words(values["transcript"])
        elif "transcript" in values:
            del values["transcript"]
        return await self._repository.update(standup_id, values)

    async def delete(self, standup_id: str) -> bool:
        try:
            await self._repository.delete_by_standup_id(standup_id)
        except Exception:
            logger.warning("archive.delete_failed", standup_id=standup_id, exc_info=True)
            return False
        return True

    async def cleanup_expired(self) -> CleanupResult:
        """Delete every archive with expires_at <= now, one at a time."""
        result = CleanupResult()
        try:
            expired = await self._repository.list_expired(datetime.now(timezone.utc))
        except Exception as exc:
            logger.warning("archive.cleanup_failed", exc_info=True)
            result.errors.append(f"Cleanup failed: {exc}")
            return result

        for archive in expired:
            try:
                await self._repository.delete(str(archive.id))
                result.deleted_count += 1
            except Exception as exc:
                result.errors.append(f"Failed to delete transcript {archive.id}: {exc}")

        logger.info(
            "archive.expired_cleaned",
            deleted=result.deleted_count,
            errors=len(result.errors),
        )
        return result

    async def get_expiring_soon(
        self, lab_id: str | None = None, days_threshold: int = EXPIRY_WARNING_DAYS
    ) -> list[TranscriptArchive]:
        """Archives expiring within the next ``days_threshold`` days, soonest first."""
        now = datetime.now(timezone.utc)
        return await self._repository.list_expiring(
            now, now + timedelta(days=days_threshold), lab_id
        )

    async def extend_retention(
        self, standup_id: str, additional_days: int = RETENTION_DAYS
    ) -> RetentionExtension:
        """Push expires_at out by ``additional_days`` from the current expiry."""
        if additional_days <= 0:
            return RetentionExtension(
                success=False, error="additional_days must be a positive number"
            )

        try:
            archive = await self._repository.get_by_standup_id(standup_id)
            if archive is None:
                return RetentionExtension(success=False, error="Transcript not found")

            new_expiry = archive.expires_at + timedelta(days=additional_days)
            await self._repository.update(standup_id, {"expires_at": new_expiry})
        except Exception as exc:
            logger.warning("archive.extend_failed", standup_id=standup_id, exc_info=True)
            return RetentionExtension(success=False, error=str(exc) or "Extension failed")

        logger.info(
            "archive.retention_extended",
            standup_id=standup_id,
            additional_days=additional_days,
            new_expiry=new_expiry.isoformat(),
        )
        return RetentionExtension(success=True, new_expiry_date=new_expiry)

    async def search(
        self,
        term: str,
        lab_id: str | None = None,
        limit: int = 20,
        offset: int = 0,
        include_expired: bool = False,
    ) -> list[TranscriptArchive]:
        """Case-insensitive substring search, newest first."""
        return await self._repository.search(
            term,
            lab_id=lab_id,
            limit=limit,
            offset=offset,
            not_expired_at=None if include_expired else datetime.now(timezone.utc),
        )

    async def export_transcript(self, standup_id: str) -> TranscriptExport:
        try:
            archive = await self._repository.get_by_standup_id(standup_id)
        except Exception as exc:
            logger.warning("archive.export_failed", standup_id=standup_id, exc_info=True)
            return TranscriptExport(success=False, error=str(exc) or "Export failed")

        if archive is None:
            return TranscriptExport(success=False, error="Transcript not found")

        return TranscriptExport(
            success=True,
            data=TranscriptExportData(
                transcript=archive.transcript,
                metadata=TranscriptExportMetadata(
                    standup_date=archive.standup_date,
                    lab_name=archive.lab_name,
                    word_count=archive.word_count,
                    created_at=archive.created_at,
                    expires_at=archive.expires_at,
                ),
            ),
        )

    async def stats(self, lab_id: str | None = None) -> ArchiveStats:
        now = datetime.now(timezone.utc)
        totals = await self._repository.aggregate(lab_id)
        expiring = await self._repository.count_expiring(
            now, now + timedelta(days=self._warning_days), lab_id
        )
        expired = await self._repository.count_expired(now, lab_id)
        languages = await self._repository.language_breakdown(lab_id)

        return ArchiveStats(
            total_transcripts=int(totals["total"]),
            total_words=int(totals["total_words"]),
            average_word_count=round(totals["average_words"]),
            total_duration=totals["total_duration"],
            expiring_within_7_days=expiring,
            expired_count=expired,
            language_breakdown=languages,
        )
