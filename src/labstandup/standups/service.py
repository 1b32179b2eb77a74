"""StandupService -- orchestrates the standup audio-processing pipeline.

process_standup_audio() runs five strictly sequential steps:

1. upload      AudioStore persists the bytes and sets the standup's URL
2. transcribe  TranscriptionAdapter turns the bytes into text
3. archive     TranscriptArchiveService records the text (1:1 per standup)
4. extract     ExtractionAdapter turns the text into structured artifacts
5. persist     StandupRepository writes all artifacts in one transaction

Each step commits before the next one starts. A failure stops the run and
is reported with the step it stopped at; work from earlier steps stays in
place. The audio file is kept when transcription fails, and the archived
transcript is kept when extraction or persistence fails, so
retry_transcription() and reprocess_extraction() can resume without
redoing successful steps.

The rest of the service is thin CRUD and reporting over the repository.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog

from src.labstandup.standups.archive import TranscriptArchiveService
from src.labstandup.standups.audio_store import AudioStore, file_extension
from src.labstandup.standups.extraction import ExtractionAdapter
from src.labstandup.standups.repository import StandupRepository
from src.labstandup.standups.schemas import (
    ProcessingResult,
    ProcessingStep,
    SortOrder,
    Standup,
    StandupCreate,
    StandupOrderField,
    StandupStats,
    StandupUpdate,
    TranscriptArchiveCreate,
    TranscriptArchiveUpdate,
)
from src.labstandup.standups.transcription import TranscriptionAdapter

logger = structlog.get_logger(__name__)


class StandupService:
    """End-to-end standup processing plus standup CRUD.

    Args:
        repository: StandupRepository for standups and artifacts.
        audio_store: AudioStore for recordings.
        archive: TranscriptArchiveService for transcript text.
        transcriber: TranscriptionAdapter (speech-to-text).
        extractor: ExtractionAdapter (transcript -> artifacts).
    """

    def __init__(
        self,
        repository: StandupRepository,
        audio_store: AudioStore,
        archive: TranscriptArchiveService,
        transcriber: TranscriptionAdapter,
        extractor: ExtractionAdapter,
    ) -> None:
        self._repository = repository
        self._audio_store = audio_store
        self._archive = archive
        self._transcriber = transcriber
        self._extractor = extractor
        # Serializes processing runs for the same standup within this process.
        # An entry lives only while some run holds or waits for its lock.
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    @asynccontextmanager
    async def _standup_lock(self, standup_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(standup_id, asyncio.Lock())
        self._lock_users[standup_id] = self._lock_users.get(standup_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[standup_id] -= 1
            if self._lock_users[standup_id] == 0:
                del self._lock_users[standup_id]
                del self._locks[standup_id]

    # ── Pipeline ─────────────────────────────────────────────────────────

    async def process_standup_audio(
        self, standup_id: str, audio: bytes, mime_type: str | None
    ) -> ProcessingResult:
        """Upload, transcribe, archive, extract and persist a recording.

        Returns:
            ProcessingResult with the fully loaded standup on success, or the
            error and the failed step otherwise. Never raises.
        """
        async with self._standup_lock(standup_id):
            step = ProcessingStep.UPLOAD
            try:
                upload = await self._audio_store.store(standup_id, audio, mime_type)
                if not upload.success:
                    return self._failed(standup_id, step, upload.message)

                step = ProcessingStep.TRANSCRIBE
                transcription = await self._transcriber.transcribe(
                    audio, f"standup-{standup_id}.{file_extension(mime_type)}"
                )
                if not transcription.success or not transcription.transcript:
                    return self._failed(
                        standup_id, step, transcription.error or "Transcription failed"
                    )

                step = ProcessingStep.ARCHIVE
                await self._archive.create(
                    TranscriptArchiveCreate(
                        standup_id=uuid.UUID(standup_id),
                        transcript=transcription.transcript,
                        audio_url=upload.audio_url,
                    )
                )
                await self._repository.set_audio_url(standup_id, upload.audio_url)

                step = ProcessingStep.EXTRACT

                return await self._extract_and_persist(
                    standup_id, transcription.transcript
                )
            except Exception as exc:
                logger.error(
                    "standup.processing_error",
                    standup_id=standup_id,
                    step=step.value,
                    exc_info=True,
                )
                return self._failed(standup_id, step, str(exc) or "Processing failed")

    async def reprocess_extraction(self, standup_id: str) -> ProcessingResult:
        """Re-run extract + persist against the archived transcript."""
        async with self._standup_lock(standup_id):
            try:
                archive = await self._archive.get_by_standup_id(standup_id)
                if archive is None:
                    return self._failed(
                        standup_id, ProcessingStep.EXTRACT, "Transcript not found"
                    )
                return await self._extract_and_persist(standup_id, archive.transcript)
            except Exception as exc:
                logger.error(
                    "standup.reprocess_error", standup_id=standup_id, exc_info=True
                )
                return self._failed(
                    standup_id, ProcessingStep.EXTRACT, str(exc) or "Processing failed"
                )

    async def retry_transcription(
        self, standup_id: str, language: str | None = None
    ) -> ProcessingResult:
        """Re-run the pipeline from the stored audio file.

        An existing archive has its text replaced; otherwise one is created.
        """
        async with self._standup_lock(standup_id):
            step = ProcessingStep.TRANSCRIBE
            try:
                info = await self._audio_store.retrieve(standup_id)
                audio = await self._audio_store.load(standup_id)
                if audio is None or info.url is None:
                    return self._failed(standup_id, step, "Audio file not found")

                extension = info.url.rsplit(".", 1)[-1] if "." in info.url else "webm"
                transcription = await self._transcriber.transcribe(
                    audio, f"standup-{standup_id}.{extension}", language=language
                )
                if not transcription.success or not transcription.transcript:
                    return self._failed(
                        standup_id, step, transcription.error or "Transcription failed"
                    )

                step = ProcessingStep.ARCHIVE
                if await self._archive.get_by_standup_id(standup_id) is None:
                    await self._archive.create(
                        TranscriptArchiveCreate(
                            standup_id=uuid.UUID(standup_id),
                            transcript=transcription.transcript,
                            audio_url=info.url,
                            language=language,
                        )
                    )
                else:
                    await self._archive.update(
                        standup_id,
                        TranscriptArchiveUpdate(transcript=transcription.transcript),
                    )

                step = ProcessingStep.EXTRACT

                return await self._extract_and_persist(
                    standup_id, transcription.transcript
                )
            except Exception as exc:
                logger.error(
                    "standup.retry_transcription_error",
                    standup_id=standup_id,
                    step=step.value,
                    exc_info=True,
                )
                return self._failed(standup_id, step, str(exc) or "Processing failed")

    async def _extract_and_persist(
        self, standup_id: str, transcript: str
    ) -> ProcessingResult:
        """Steps 4 and 5; a persistence error is reported as a PERSIST failure."""
        extraction = await self._extractor.extract(transcript)
        if not extraction.success or extraction.data is None:
            return self._failed(
                standup_id,
                ProcessingStep.EXTRACT,
                extraction.error or "Analysis failed",
            )

        try:
            standup = await self._repository.persist_artifacts(standup_id, extraction.data)
        except Exception as exc:
            logger.error(
                "standup.persist_failed", standup_id=standup_id, exc_info=True
            )
            return self._failed(
                standup_id, ProcessingStep.PERSIST, str(exc) or "Processing failed"
            )

        logger.info(
            "standup.processed",
            standup_id=standup_id,
            action_items=len(standup.action_items),
            blockers=len(standup.blockers),
            decisions=len(standup.decisions),
        )
        return ProcessingResult(success=True, standup=standup)

    @staticmethod
    def _failed(standup_id: str, step: ProcessingStep, error: str) -> ProcessingResult:
        logger.warning(
            "standup.processing_failed",
            standup_id=standup_id,
            step=step.value,
            error=error,
        )
        return ProcessingResult(success=False, error=error, failed_step=step)

    # ── CRUD ─────────────────────────────────────────────────────────────

    async def create_standup(self, data: StandupCreate) -> Standup:
        return await self._repository.create_standup(data)

    async def get_standup_by_id(self, standup_id: str) -> Standup | None:
        return await self._repository.get_standup(standup_id)

    async def get_standups_by_lab(
        self,
        lab_id: str,
        limit: int = 20,
        offset: int = 0,
        order_by: StandupOrderField = "date",
        order: SortOrder = "desc",
    ) -> list[Standup]:
        return await self._repository.list_standups(
            lab_id, limit=limit, offset=offset, order_by=order_by, order=order
        )

    async def update_standup(self, standup_id: str, data: StandupUpdate) -> Standup:
        return await self._repository.update_standup(standup_id, data)

    async def delete_standup(self, standup_id: str) -> bool:
        """Soft-delete the standup row and physically delete its audio file.

        Structured data is kept (is_active=False); the recording is removed.
        Audio removal is best-effort: once the soft delete has committed the
        standup counts as deleted even if the file could not be removed.
        """
        try:
            await self._repository.soft_delete_standup(standup_id)
        except Exception:
            logger.warning("standup.delete_failed", standup_id=standup_id, exc_info=True)
            return False

        result = await self._audio_store.delete(standup_id)
        if not result.success:
            logger.warning(
                "standup.audio_delete_failed",
                standup_id=standup_id,
                message=result.message,
            )
        return True

    # ── Reporting ────────────────────────────────────────────────────────

    async def get_standup_stats(self, lab_id: str) -> StandupStats:
        return await self._repository.get_stats(lab_id)

    async def search_standups(self, lab_id: str, term: str) -> list[Standup]:
        """Transcript search, then the matching active standups, newest first."""
        archives = await self._archive.search(term, lab_id=lab_id, include_expired=False)
        standup_ids = [str(a.standup_id) for a in archives]
        if not standup_ids:
            return []
        return await self._repository.list_standups_by_ids(lab_id, standup_ids)

    # ── Artifact Status ──────────────────────────────────────────────────

    async def update_action_item_status(self, action_item_id: str, completed: bool) -> bool:
        try:
            await self._repository.set_action_item_completed(action_item_id, completed)
        except Exception:
            logger.warning(
                "standup.action_item_update_failed",
                action_item_id=action_item_id,
                exc_info=True,
            )
            return False
        return True

    async def update_blocker_status(self, blocker_id: str, resolved: bool) -> bool:
        try:
            await self._repository.set_blocker_resolved(blocker_id, resolved)
        except Exception:
            logger.warning(
                "standup.blocker_update_failed", blocker_id=blocker_id, exc_info=True
            )
            return False
        return True

    # ── Helpers ──────────────────────────────────────────────────────────

    async def _find_user_by_name(self, name: str) -> uuid.UUID | None:
        """Full name, then first name, case-insensitive; None means unassigned."""
        return await self._repository.resolve_user_by_name(name)
