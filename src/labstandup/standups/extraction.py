"""ExtractionAdapter -- structured standup artifacts from a transcript.

Uses the instructor + litellm pattern for structured LLM extraction: the
ExtractedStandup Pydantic model is the response contract, so a reply that
is empty, not JSON, or missing any of the five top-level keys (summary,
action_items, blockers, decisions, participants) fails validation and is
reported as ExtractionResult(success=False). Exactly one request is made
per call; retry policy belongs to the caller.
"""

from __future__ import annotations

import structlog

from src.labstandup.standups.schemas import ExtractedStandup, ExtractionResult

logger = structlog.get_logger(__name__)


# ── Constants ────────────────────────────────────────────────────────────────

DEFAULT_MODEL = "gpt-4o"
MAX_TOKENS = 2000
TEMPERATURE = 0.3

SYSTEM_PROMPT = (
    "You are an assistant specialized in analyzing standup meeting transcripts "
    "for a research lab. Extract the key information and structure it.\n\n"
    "Guidelines:\n"
    "1. Identify action items with clear descriptions and assignees (if mentioned)\n"
    "2. Extract blockers or impediments mentioned\n"
    "3. Note any important decisions made\n"
    "4. List participants if their names are mentioned\n"
    "5. Provide a brief 2-3 sentence summary of the meeting\n"
    "6. If a due date is mentioned for an action item, include it as an ISO date\n\n"
    "Use empty lists when nothing of a kind was mentioned. Do not invent "
    "names, dates or items that are not in the transcript."
)


class ExtractionAdapter:
    """Extracts ExtractedStandup from transcript text with a single LLM call.

    Args:
        model: litellm model identifier.
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

    async def extract(self, transcript: str) -> ExtractionResult:
        """Extract summary, action items, blockers, decisions and participants.

        Never raises: provider errors and schema violations both come back
        as a failed ExtractionResult.
        """
        if not transcript or not transcript.strip():
            return ExtractionResult(success=False, error="Transcript is empty")

        try:
            data = await self._request(transcript)
        except Exception as exc:
            logger.warning(
                "extraction.failed",
                model=self._model,
                transcript_chars=len(transcript),
                exc_info=True,
            )
            return ExtractionResult(success=False, error=str(exc) or "Failed to analyze transcript")

        if data is None:
            return ExtractionResult(success=False, error="No response from model")

        logger.info(
            "extraction.completed",
            action_items=len(data.action_items),
            blockers=len(data.blockers),
            decisions=len(data.decisions),
            participants=len(data.participants),
        )
        return ExtractionResult(success=True, data=data)

    async def _request(self, transcript: str) -> ExtractedStandup | None:
        """Issue the structured-output request.

        Uses instructor.from_litellm(litellm.acompletion) with
        max_retries=1, i.e. a single attempt.
        """
        import instructor
        import litellm

        client = instructor.from_litellm(litellm.acompletion)

        kwargs: dict = {}
        if self._api_key:
            kwargs["api_key"] = self._api_key
        if self._timeout:
            kwargs["timeout"] = self._timeout

        return await client.chat.completions.create(
            model=self._model,
            response_model=ExtractedStandup,
            max_retries=1,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": f"Please analyze this standup transcript:\n\n{transcript}",
                },
            ],
            max_tokens=MAX_TOKENS,
            temperature=TEMPERATURE,
            **kwargs,
        )
