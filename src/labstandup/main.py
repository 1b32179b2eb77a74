"""Composition root for the standup pipeline.

build_services() wires repositories, the audio store, the model adapters,
the transcript archive, and StandupService from Settings. lifespan()
configures logging, initializes the database, runs the background cleanup
loops, and tears everything down on exit.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import structlog

from src.labstandup.config import Settings, get_settings
from src.labstandup.core.database import close_db, get_session, init_db
from src.labstandup.core.logging_config import configure_structlog
from src.labstandup.standups.archive import TranscriptArchiveService
from src.labstandup.standups.audio_store import AudioStore
from src.labstandup.standups.extraction import ExtractionAdapter
from src.labstandup.standups.repository import (
    StandupRepository,
    TranscriptArchiveRepository,
)
from src.labstandup.standups.scheduler import (
    ExpiryNotifier,
    TranscriptCleanupJob,
    setup_cleanup_tasks,
    start_scheduler_background,
    stop_scheduler,
)
from src.labstandup.standups.service import StandupService
from src.labstandup.standups.transcription import TranscriptionAdapter

logger = structlog.get_logger(__name__)


@dataclass
class StandupServices:
    """Wired service graph handed to callers (API layer, scripts, workers)."""

    standup_repository: StandupRepository
    archive_repository: TranscriptArchiveRepository
    audio_store: AudioStore
    transcriber: TranscriptionAdapter
    extractor: ExtractionAdapter
    archive: TranscriptArchiveService
    standups: StandupService
    cleanup_job: TranscriptCleanupJob


def build_services(settings: Settings | None = None, session_factory=get_session) -> StandupServices:
    """Construct the service graph from settings."""
    settings = settings or get_settings()

    standup_repository = StandupRepository(session_factory)
    archive_repository = TranscriptArchiveRepository(session_factory)

    audio_store = AudioStore(
        standup_repository,
        upload_dir=settings.AUDIO_UPLOAD_DIR,
        public_prefix=settings.AUDIO_PUBLIC_PREFIX,
        max_size=settings.AUDIO_MAX_SIZE_BYTES,
    )
    transcriber = TranscriptionAdapter(
        model=settings.TRANSCRIPTION_MODEL,
        api_key=settings.OPENAI_API_KEY,
        timeout=settings.LLM_TIMEOUT,
    )
    extractor = ExtractionAdapter(
        model=settings.EXTRACTION_MODEL,
        api_key=settings.OPENAI_API_KEY,
        timeout=settings.LLM_TIMEOUT,
    )
    archive = TranscriptArchiveService(
        archive_repository,
        retention_days=settings.TRANSCRIPT_RETENTION_DAYS,
        warning_days=settings.TRANSCRIPT_EXPIRY_WARNING_DAYS,
    )
    standups = StandupService(
        repository=standup_repository,
        audio_store=audio_store,
        archive=archive,
        transcriber=transcriber,
        extractor=extractor,
    )

    return StandupServices(
        standup_repository=standup_repository,
        archive_repository=archive_repository,
        audio_store=audio_store,
        transcriber=transcriber,
        extractor=extractor,
        archive=archive,
        standups=standups,
        cleanup_job=TranscriptCleanupJob(archive),
    )


@asynccontextmanager
async def lifespan(
    notifier: ExpiryNotifier | None = None,
    start_scheduler: bool = True,
) -> AsyncGenerator[StandupServices, None]:
    """Application lifespan: init DB and scheduler on entry, close on exit."""
    configure_structlog()
    await init_db()

    services = build_services()
    background_tasks = []

    if start_scheduler:
        try:
            tasks = setup_cleanup_tasks(
                services.audio_store,
                services.archive,
                notifier=notifier,
                cleanup_job=services.cleanup_job,
            )
            background_tasks = await start_scheduler_background(tasks)
        except Exception:
            logger.warning("lifespan.scheduler_start_failed", exc_info=True)

    logger.info("lifespan.started", scheduler=bool(background_tasks))
    try:
        yield services
    finally:
        if background_tasks:
            await stop_scheduler(background_tasks)
        await close_db()
        logger.info("lifespan.stopped")
