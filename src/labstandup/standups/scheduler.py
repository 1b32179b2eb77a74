"""Scheduler configuration for background standup maintenance tasks.

Defines async task functions for the expired-transcript sweep, the orphaned
audio sweep, and expiring-soon reminders. Tasks are decoupled from the loop
implementation so tests and the CLI script can run them directly.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

import structlog

from src.labstandup.config import get_settings
from src.labstandup.standups.archive import TranscriptArchiveService
from src.labstandup.standups.audio_store import AudioStore
from src.labstandup.standups.schemas import CleanupResult, TranscriptArchive

logger = structlog.get_logger(__name__)

ExpiryNotifier = Callable[[list[TranscriptArchive]], Awaitable[None]]


class TranscriptCleanupJob:
    """Expired-transcript sweep with a re-entrancy guard.

    A run that starts while another is still in progress is skipped and
    reported as such rather than queued.
    """

    def __init__(self, archive_service: TranscriptArchiveService) -> None:
        self._archive_service = archive_service
        self._is_running = False
        self._last_run_at: datetime | None = None
        self._last_result: CleanupResult | None = None

    @property
    def is_running(self) -> bool:
        return self._is_running

    async def run_cleanup(self) -> CleanupResult | None:
        """Run one sweep. Returns None when a sweep is already running."""
        if self._is_running:
            logger.info("cleanup.already_running")
            return None

        self._is_running = True
        try:
            logger.info("cleanup.started")
            result = await self._archive_service.cleanup_expired()
            self._last_run_at = datetime.now(timezone.utc)
            self._last_result = result

            if result.errors:
                logger.warning(
                    "cleanup.completed_with_errors",
                    deleted=result.deleted_count,
                    errors=result.errors,
                )
            else:
                logger.info("cleanup.completed", deleted=result.deleted_count)

            stats = await self._archive_service.stats()
            logger.info(
                "cleanup.archive_stats",
                total_transcripts=stats.total_transcripts,
                expiring_soon=stats.expiring_within_7_days,
                expired=stats.expired_count,
            )
            return result
        finally:
            self._is_running = False

    async def run_manual_cleanup(self) -> CleanupResult:
        """Trigger a sweep on demand; a concurrent run yields an error entry."""
        result = await self.run_cleanup()
        if result is None:
            return CleanupResult(errors=["Cleanup already in progress"])
        return result

    def get_status(self) -> dict:
        return {
            "is_running": self._is_running,
            "last_run_at": self._last_run_at.isoformat() if self._last_run_at else None,
            "last_deleted_count": (
                self._last_result.deleted_count if self._last_result else None
            ),
        }


def setup_cleanup_tasks(
    audio_store: AudioStore,
    archive_service: TranscriptArchiveService,
    notifier: ExpiryNotifier | None = None,
    cleanup_job: TranscriptCleanupJob | None = None,
) -> dict:
    """Configure background maintenance tasks.

    Each task catches and logs its own failures so one bad run never stops
    the loop. Returns a dict mapping task name to async callable.

    Args:
        audio_store: AudioStore for the orphan sweep.
        archive_service: TranscriptArchiveService for expiry and reminders.
        notifier: Optional async callable receiving expiring archives.
        cleanup_job: Shared TranscriptCleanupJob; created if omitted.
    """
    job = cleanup_job or TranscriptCleanupJob(archive_service)
    warning_days = get_settings().TRANSCRIPT_EXPIRY_WARNING_DAYS

    async def cleanup_expired_transcripts_task():
        try:
            result = await job.run_cleanup()
            return result.deleted_count if result else 0
        except Exception:
            logger.warning("scheduler.transcript_cleanup_failed", exc_info=True)
            return 0

    async def cleanup_orphaned_audio_task():
        try:
            result = await audio_store.cleanup_orphans()
            logger.info(
                "scheduler.orphaned_audio_cleaned",
                deleted=result.deleted_count,
                errors=len(result.errors),
            )
            return result.deleted_count
        except Exception:
            logger.warning("scheduler.orphan_cleanup_failed", exc_info=True)
            return 0

    async def remind_expiring_transcripts_task():
        try:
            expiring = await archive_service.get_expiring_soon(
                days_threshold=warning_days
            )
            logger.info("scheduler.expiring_transcripts_found", count=len(expiring))
            if expiring and notifier is not None:
                await notifier(expiring)
            return len(expiring)
        except Exception:
            logger.warning("scheduler.expiry_reminder_failed", exc_info=True)
            return 0

    return {
        "cleanup_expired_transcripts": cleanup_expired_transcripts_task,
        "cleanup_orphaned_audio": cleanup_orphaned_audio_task,
        "remind_expiring_transcripts": remind_expiring_transcripts_task,
    }


def get_task_intervals() -> dict[str, int]:
    """Interval per task in seconds, from settings."""
    settings = get_settings()
    return {
        "cleanup_expired_transcripts": settings.CLEANUP_INTERVAL_SECONDS,
        "cleanup_orphaned_audio": settings.ORPHAN_CLEANUP_INTERVAL_SECONDS,
        "remind_expiring_transcripts": settings.EXPIRY_REMINDER_INTERVAL_SECONDS,
    }


async def start_scheduler_background(
    tasks: dict,
    intervals: dict[str, int] | None = None,
    run_on_startup: tuple[str, ...] = ("cleanup_expired_transcripts",),
) -> list[asyncio.Task]:
    """Start each task as an asyncio background loop.

    Tasks named in ``run_on_startup`` run once immediately before their
    first sleep.

    Returns:
        The created asyncio tasks; pass them to stop_scheduler() on shutdown.
    """
    intervals = intervals or get_task_intervals()
    background_tasks: list[asyncio.Task] = []

    for task_name, task_fn in tasks.items():
        interval = intervals.get(task_name, 24 * 60 * 60)

        async def _loop(fn=task_fn, name=task_name, sleep=interval,
                        immediate=task_name in run_on_startup):
            if immediate:
                try:
                    await fn()
                except Exception:
                    logger.warning("scheduler.startup_run_error", task=name, exc_info=True)
            while True:
                try:
                    await asyncio.sleep(sleep)
                    await fn()
                except asyncio.CancelledError:
                    logger.info("scheduler.task_cancelled", task=name)
                    break
                except Exception:
                    logger.warning("scheduler.task_loop_error", task=name, exc_info=True)

        bg_task = asyncio.create_task(_loop(), name=f"standup_scheduler_{task_name}")
        background_tasks.append(bg_task)

    logger.info(
        "scheduler.background_tasks_started",
        task_count=len(background_tasks),
        tasks=list(tasks.keys()),
    )
    return background_tasks


async def stop_scheduler(background_tasks: list[asyncio.Task]) -> None:
    """Cancel background loops and wait for them to finish."""
    for task in background_tasks:
        task.cancel()
    await asyncio.gather(*background_tasks, return_exceptions=True)
    logger.info("scheduler.stopped", task_count=len(background_tasks))
