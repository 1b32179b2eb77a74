"""AudioStore -- durable storage of standup audio recordings.

Writes raw audio bytes into a content directory, owns the standup's audio
URL, and provides the lifecycle helpers around it (retrieve, delete, orphan
sweep, stats). Files are named ``{standup_id}-{epoch_millis}.{ext}`` so
concurrent uploads for different standups never collide, and the public URL
mirrors that relative path under AUDIO_PUBLIC_PREFIX.

This store sits behind a user-facing upload flow: every operation degrades
to a structured result instead of raising. Blocking filesystem calls run in
asyncio.to_thread().
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import re
import time
from pathlib import Path, PurePosixPath

import structlog

from src.labstandup.standups.repository import StandupRepository
from src.labstandup.standups.schemas import (
    AudioDeleteResult,
    AudioFileInfo,
    AudioStats,
    AudioUploadOptions,
    AudioUploadResult,
    AudioValidation,
    CleanupResult,
)

logger = structlog.get_logger(__name__)


# ── Constants ────────────────────────────────────────────────────────────────

DEFAULT_MAX_SIZE = 50 * 1024 * 1024  # 50MB

ALLOWED_TYPES: tuple[str, ...] = (
    "audio/webm",
    "audio/mp4",
    "audio/mpeg",
    "audio/wav",
    "audio/ogg",
    "audio/x-m4a",
)

MIME_TO_EXT: dict[str, str] = {
    "audio/webm": "webm",
    "audio/mp4": "m4a",
    "audio/mpeg": "mp3",
    "audio/wav": "wav",
    "audio/ogg": "ogg",
    "audio/x-m4a": "m4a",
}

_DATA_URL_PREFIX = re.compile(r"^data:audio/[\w.+-]+(;[\w=.+-]+)*;base64,", re.IGNORECASE)


def normalize_mime_type(mime_type: str | None) -> str | None:
    """Strip parameters such as ``;codecs=opus`` and lowercase."""
    if not mime_type:
        return None
    return mime_type.split(";", 1)[0].strip().lower() or None


def file_extension(mime_type: str | None) -> str:
    """Extension for a MIME type; unknown types fall back to webm."""
    return MIME_TO_EXT.get(normalize_mime_type(mime_type) or "", "webm")


def _format_megabytes(size: int) -> str:
    return f"{size / (1024 * 1024):g}"


class AudioStore:
    """Filesystem-backed store for standup audio.

    Args:
        repository: StandupRepository used to read and write audio URLs.
        upload_dir: Content directory; created on demand.
        public_prefix: URL prefix under which upload_dir is served.
        max_size: Default size ceiling in bytes.
    """

    def __init__(
        self,
        repository: StandupRepository,
        upload_dir: str | Path,
        public_prefix: str = "/standups/audio",
        max_size: int = DEFAULT_MAX_SIZE,
    ) -> None:
        self._repository = repository
        self._upload_dir = Path(upload_dir)
        self._public_prefix = public_prefix.rstrip("/")
        self._max_size = max_size

    @property
    def upload_dir(self) -> Path:
        return self._upload_dir

    def _path_for_url(self, audio_url: str) -> Path:
        return self._upload_dir / PurePosixPath(audio_url).name

    # ── Validation ───────────────────────────────────────────────────────

    def validate(
        self,
        audio: bytes,
        mime_type: str | None = None,
        options: AudioUploadOptions | None = None,
    ) -> AudioValidation:
        """Check size and MIME type. Never raises for invalid input."""
        max_size = (options.max_size if options and options.max_size else None) or self._max_size
        allowed = (options.allowed_types if options and options.allowed_types else None) or list(
            ALLOWED_TYPES
        )

        if len(audio) > max_size:
            return AudioValidation(
                valid=False,
                error=f"File size exceeds {_format_megabytes(max_size)}MB limit",
            )

        normalized = normalize_mime_type(mime_type)
        if normalized and normalized not in allowed:
            return AudioValidation(
                valid=False,
                error=(
                    "File type not supported. Please upload an audio file "
                    "(WebM, MP3, WAV, etc.)"
                ),
            )

        return AudioValidation(valid=True)

    # ── Upload ───────────────────────────────────────────────────────────

    async def store(
        self,
        standup_id: str,
        audio: bytes,
        mime_type: str | None = None,
        options: AudioUploadOptions | None = None,
    ) -> AudioUploadResult:
        """Validate, write to disk, and point the standup at the new file."""
        validation = self.validate(audio, mime_type, options)
        if not validation.valid:
            logger.info(
                "audio.rejected",
                standup_id=standup_id,
                size=len(audio),
                mime_type=mime_type,
                reason=validation.error,
            )
            return AudioUploadResult(success=False, message=validation.error or "Invalid audio")

        filename = f"{standup_id}-{int(time.time() * 1000)}.{file_extension(mime_type)}"
        file_path = self._upload_dir / filename
        public_url = f"{self._public_prefix}/{filename}"

        try:
            await asyncio.to_thread(self._upload_dir.mkdir, parents=True, exist_ok=True)
            await asyncio.to_thread(file_path.write_bytes, audio)
            await self._repository.set_audio_url(standup_id, public_url)
        except Exception as exc:
            logger.warning("audio.store_failed", standup_id=standup_id, exc_info=True)
            return AudioUploadResult(success=False, message=f"Upload failed: {exc}")

        logger.info(
            "audio.stored",
            standup_id=standup_id,
            audio_url=public_url,
            size=len(audio),
        )
        return AudioUploadResult(
            success=True,
            message="Audio uploaded successfully",
            audio_url=public_url,
            file_path=str(file_path),
            file_size=len(audio),
        )

    async def store_from_base64(
        self,
        standup_id: str,
        payload: str,
        mime_type: str | None = None,
        options: AudioUploadOptions | None = None,
    ) -> AudioUploadResult:
        """Decode a base64 payload (data-URL prefix allowed) and store it."""
        content = _DATA_URL_PREFIX.sub("", payload.strip())
        try:
            audio = base64.b64decode(content, validate=True)
        except (binascii.Error, ValueError) as exc:
            logger.info("audio.base64_invalid", standup_id=standup_id)
            return AudioUploadResult(success=False, message=f"Upload failed: {exc}")
        return await self.store(standup_id, audio, mime_type, options)

    # ── Retrieval ────────────────────────────────────────────────────────

    async def retrieve(self, standup_id: str) -> AudioFileInfo:
        """Locate a standup's audio file. Missing standup or file -> exists=False."""
        try:
            audio_url = await self._repository.get_audio_url(standup_id)
            if not audio_url:
                return AudioFileInfo(exists=False)

            file_path = self._path_for_url(audio_url)
            exists = await asyncio.to_thread(file_path.is_file)
            return AudioFileInfo(
                exists=exists,
                path=str(file_path) if exists else None,
                url=audio_url,
            )
        except Exception:
            logger.warning("audio.retrieve_failed", standup_id=standup_id, exc_info=True)
            return AudioFileInfo(exists=False)

    async def load(self, standup_id: str) -> bytes | None:
        """Read back a standup's stored audio, or None if unavailable."""
        info = await self.retrieve(standup_id)
        if not info.exists or info.path is None:
            return None
        try:
            return await asyncio.to_thread(Path(info.path).read_bytes)
        except OSError:
            logger.warning("audio.load_failed", standup_id=standup_id, exc_info=True)
            return None

    # ── Deletion ─────────────────────────────────────────────────────────

    async def delete(self, standup_id: str) -> AudioDeleteResult:
        """Remove the file (missing is fine) and clear the standup's URL."""
        try:
            audio_url = await self._repository.get_audio_url(standup_id)
            if audio_url:
                file_path = self._path_for_url(audio_url)
                try:
                    await asyncio.to_thread(file_path.unlink)
                except FileNotFoundError:
                    logger.info("audio.file_already_missing", path=str(file_path))
                except OSError:
                    logger.warning("audio.unlink_failed", path=str(file_path), exc_info=True)

            await self._repository.set_audio_url(standup_id, None)
        except Exception as exc:
            logger.warning("audio.delete_failed", standup_id=standup_id, exc_info=True)
            return AudioDeleteResult(success=False, message=f"Delete failed: {exc}")

        logger.info("audio.deleted", standup_id=standup_id)
        return AudioDeleteResult(success=True, message="Audio deleted successfully")

    async def cleanup_orphans(self) -> CleanupResult:
        """Delete files no active standup references.

        Per-file failures are collected; the sweep always runs to the end.
        """
        result = CleanupResult()
        try:
            urls = await self._repository.list_audio_urls(active_only=True)
            referenced = {PurePosixPath(url).name for url in urls}

            if not await asyncio.to_thread(self._upload_dir.is_dir):
                return result
            entries = await asyncio.to_thread(lambda: list(self._upload_dir.iterdir()))
        except Exception as exc:
            logger.warning("audio.cleanup_failed", exc_info=True)
            result.errors.append(f"Cleanup failed: {exc}")
            return result

        for entry in entries:
            if entry.name in referenced or not entry.is_file():
                continue
            try:
                await asyncio.to_thread(entry.unlink)
                result.deleted_count += 1
            except OSError as exc:
                result.errors.append(f"Failed to delete {entry.name}: {exc}")

        logger.info(
            "audio.orphans_cleaned",
            deleted=result.deleted_count,
            errors=len(result.errors),
        )
        return result

    # ── Stats ────────────────────────────────────────────────────────────

    async def stats(self) -> AudioStats:
        """Counts and on-disk sizes. Missing files are left out of the totals."""
        try:
            total_standups = await self._repository.count_standups()
            standups_with_audio = await self._repository.count_standups(with_audio=True)
            urls = await self._repository.list_audio_urls()
        except Exception:
            logger.warning("audio.stats_failed", exc_info=True)
            return AudioStats()

        total_size = 0
        for url in urls:
            try:
                stat = await asyncio.to_thread(self._path_for_url(url).stat)
            except OSError:
                continue
            total_size += stat.st_size

        return AudioStats(
            total_standups=total_standups,
            standups_with_audio=standups_with_audio,
            total_audio_size=total_size,
            average_audio_size=(
                total_size / standups_with_audio if standups_with_audio > 0 else 0.0
            ),
        )
