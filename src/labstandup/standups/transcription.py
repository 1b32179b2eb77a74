"""TranscriptionAdapter -- speech-to-text for standup recordings.

Wraps litellm's async transcription endpoint (Whisper by default). The
adapter is stateless: each call uploads the buffer with a synthetic
filename whose extension tells the provider the container format.
Provider failures are converted into TranscriptionResult(success=False)
instead of propagating.
"""

from __future__ import annotations

import io

import structlog

from src.labstandup.standups.schemas import TranscriptionResult

logger = structlog.get_logger(__name__)

DEFAULT_MODEL = "whisper-1"


class TranscriptionAdapter:
    """Converts audio bytes to plain transcript text.

    Args:
        model: litellm model identifier for transcription.
        api_key: Provider API key; falls back to litellm's environment lookup.
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        api_key: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self._model = model
        self._api_key = api_key or None
        self._timeout = timeout

    async def transcribe(
        self,
        audio: bytes,
        filename: str,
        language: str | None = None,
        prompt: str | None = None,
    ) -> TranscriptionResult:
        """Transcribe an audio buffer. Never raises.

        Args:
            audio: Raw audio bytes.
            filename: Synthetic filename carrying the extension (e.g. .webm).
            language: Optional ISO-639-1 hint.
            prompt: Optional vocabulary/context hint for the model.

        Returns:
            TranscriptionResult with the transcript or an error message.
        """
        import litellm

        audio_file = io.BytesIO(audio)
        audio_file.name = filename

        kwargs: dict = {"model": self._model, "file": audio_file}
        if language:
            kwargs["language"] = language
        if prompt:
            kwargs["prompt"] = prompt
        if self._api_key:
            kwargs["api_key"] = self._api_key
        if self._timeout:
            kwargs["timeout"] = self._timeout

        try:
            response = await litellm.atranscription(**kwargs)
        except Exception as exc:
            logger.warning(
                "transcription.failed",
                filename=filename,
                size=len(audio),
                exc_info=True,
            )
            return TranscriptionResult(success=False, error=str(exc) or "Failed to transcribe audio")

        text = getattr(response, "text", None)
        if text is None and isinstance(response, dict):
            text = response.get("text")
        if not text or not str(text).strip():
            logger.warning("transcription.empty", filename=filename)
            return TranscriptionResult(success=False, error="Empty transcription returned")

        logger.info(
            "transcription.completed",
            filename=filename,
            characters=len(text),
        )
        return TranscriptionResult(success=True, transcript=str(text).strip())
