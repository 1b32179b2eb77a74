"""Shared fixtures for standup pipeline tests.

Provides in-memory test doubles that mirror StandupRepository and
TranscriptArchiveRepository, plus a fully wired StandupService whose model
adapters are AsyncMocks. No database or model provider is touched.
"""

from __future__ import annotations

import os
import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

# Keep litellm offline in tests: use its bundled model cost map instead of
# fetching the remote one at import time.
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")

from src.labstandup.standups.archive import TranscriptArchiveService
from src.labstandup.standups.audio_store import AudioStore
from src.labstandup.standups.repository import (
    TranscriptArchiveExistsError,
    _parse_due_date,
)
from src.labstandup.standups.schemas import (
    ActionItem,
    Blocker,
    Decision,
    ExtractedStandup,
    ExtractionResult,
    Standup,
    StandupCreate,
    StandupParticipant,
    StandupStats,
    StandupUpdate,
    TranscriptArchive,
    TranscriptionResult,
    UserRef,
)
from src.labstandup.standups.service import StandupService

LAB_ID = uuid.uuid4()
LAB_NAME = "Neuro Lab"


class InMemoryStandupRepository:
    """In-memory test double for StandupRepository.

    persist_artifacts() builds the new state on a copy and only swaps it in
    at the end, so a failure (see ``fail_persist_with``) leaves the stored
    standup untouched like a rolled-back transaction.
    """

    def __init__(self) -> None:
        self.standups: dict[str, Standup] = {}
        self.users: list[UserRef] = []
        self.fail_persist_with: Exception | None = None
        self.fail_soft_delete_with: Exception | None = None
        self.persist_calls = 0

    def add_user(self, name: str) -> UserRef:
        first, _, last = name.partition(" ")
        user = UserRef(id=uuid.uuid4(), name=name, first_name=first, last_name=last)
        self.users.append(user)
        return user

    def _user(self, user_id: uuid.UUID | None) -> UserRef | None:
        return next((u for u in self.users if u.id == user_id), None)

    async def create_standup(self, data: StandupCreate) -> Standup:
        now = datetime.now(timezone.utc)
        standup_id = uuid.uuid4()
        standup = Standup(
            id=standup_id,
            lab_id=data.lab_id,
            lab_name=LAB_NAME if data.lab_id == LAB_ID else None,
            date=data.date or now,
            created_at=now,
            updated_at=now,
            participants=[
                StandupParticipant(standup_id=standup_id, user_id=uid, user=self._user(uid))
                for uid in dict.fromkeys(data.participant_ids)
            ],
        )
        self.standups[str(standup_id)] = standup
        return standup

    async def get_standup(self, standup_id: str) -> Standup | None:
        return self.standups.get(standup_id)

    async def list_standups(
        self,
        lab_id: str,
        limit: int = 20,
        offset: int = 0,
        order_by: str = "date",
        order: str = "desc",
    ) -> list[Standup]:
        rows = [
            s for s in self.standups.values() if str(s.lab_id) == lab_id and s.is_active
        ]
        key = (lambda s: s.created_at) if order_by == "created_at" else (lambda s: s.date)
        rows.sort(key=key, reverse=order != "asc")
        return rows[offset : offset + limit]

    async def list_standups_by_ids(
        self, lab_id: str, standup_ids: list[str]
    ) -> list[Standup]:
        rows = [
            s
            for sid, s in self.standups.items()
            if sid in standup_ids and str(s.lab_id) == lab_id and s.is_active
        ]
        return sorted(rows, key=lambda s: s.date, reverse=True)

    def _require(self, standup_id: str) -> Standup:
        standup = self.standups.get(standup_id)
        if standup is None:
            raise ValueError(f"Standup not found: id={standup_id}")
        return standup

    async def update_standup(self, standup_id: str, data: StandupUpdate) -> Standup:
        standup = self._require(standup_id)
        updated = standup.model_copy(
            update={**data.model_dump(exclude_unset=True), "updated_at": datetime.now(timezone.utc)}
        )
        self.standups[standup_id] = updated
        return updated

    async def set_audio_url(self, standup_id: str, audio_url: str | None) -> None:
        standup = self._require(standup_id)
        self.standups[standup_id] = standup.model_copy(update={"audio_url": audio_url})

    async def get_audio_url(self, standup_id: str) -> str | None:
        standup = self.standups.get(standup_id)
        return standup.audio_url if standup else None

    async def list_audio_urls(self, active_only: bool = False) -> list[str]:
        return [
            s.audio_url
            for s in self.standups.values()
            if s.audio_url and (s.is_active or not active_only)
        ]

    async def count_standups(self, with_audio: bool = False) -> int:
        return sum(1 for s in self.standups.values() if s.audio_url or not with_audio)

    async def soft_delete_standup(self, standup_id: str) -> None:
        if self.fail_soft_delete_with is not None:
            raise self.fail_soft_delete_with
        standup = self._require(standup_id)
        self.standups[standup_id] = standup.model_copy(update={"is_active": False})

    async def resolve_user_by_name(self, name: str) -> uuid.UUID | None:
        needle = name.strip().lower()
        if not needle:
            return None
        for attr in ("name", "first_name"):
            matches = [u.id for u in self.users if getattr(u, attr).lower() == needle]
            if len(matches) == 1:
                return matches[0]
            if len(matches) > 1:
                return None
        return None

    async def persist_artifacts(
        self, standup_id: str, extracted: ExtractedStandup
    ) -> Standup:
        self.persist_calls += 1
        standup = self._require(standup_id)
        sid = standup.id

        action_items = list(standup.action_items)
        for item in extracted.action_items:
            assignee_id = (
                await self.resolve_user_by_name(item.assignee) if item.assignee else None
            )
            action_items.append(
                ActionItem(
                    standup_id=sid,
                    description=item.description,
                    assignee_id=assignee_id,
                    assignee=self._user(assignee_id),
                    due_date=_parse_due_date(item.due_date),
                )
            )
        blockers = standup.blockers + [
            Blocker(standup_id=sid, description=b.description, resolved=b.resolved)
            for b in extracted.blockers
        ]
        decisions = standup.decisions + [
            Decision(standup_id=sid, description=d.description)
            for d in extracted.decisions
        ]

        participants = standup.participants
        if extracted.participants:
            user_ids: list[uuid.UUID] = []
            for name in extracted.participants:
                user_id = await self.resolve_user_by_name(name)
                if user_id is not None and user_id not in user_ids:
                    user_ids.append(user_id)
            participants = [
                StandupParticipant(standup_id=sid, user_id=uid, user=self._user(uid))
                for uid in user_ids
            ]

        if self.fail_persist_with is not None:
            raise self.fail_persist_with

        updated = standup.model_copy(
            update={
                "action_items": action_items,
                "blockers": blockers,
                "decisions": decisions,
                "participants": participants,
            }
        )
        self.standups[standup_id] = updated
        return updated

    async def set_action_item_completed(self, action_item_id: str, completed: bool) -> None:
        for sid, standup in self.standups.items():
            for i, item in enumerate(standup.action_items):
                if str(item.id) == action_item_id:
                    items = list(standup.action_items)
                    items[i] = item.model_copy(update={"completed": completed})
                    self.standups[sid] = standup.model_copy(update={"action_items": items})
                    return
        raise ValueError(f"Action item not found: id={action_item_id}")

    async def set_blocker_resolved(self, blocker_id: str, resolved: bool) -> None:
        for sid, standup in self.standups.items():
            for i, blocker in enumerate(standup.blockers):
                if str(blocker.id) == blocker_id:
                    blockers = list(standup.blockers)
                    blockers[i] = blocker.model_copy(update={"resolved": resolved})
                    self.standups[sid] = standup.model_copy(update={"blockers": blockers})
                    return
        raise ValueError(f"Blocker not found: id={blocker_id}")

    async def get_stats(self, lab_id: str) -> StandupStats:
        rows = [
            s for s in self.standups.values() if str(s.lab_id) == lab_id and s.is_active
        ]
        items = [a for s in rows for a in s.action_items]
        blockers = [b for s in rows for b in s.blockers]
        return StandupStats(
            total_standups=len(rows),
            total_action_items=len(items),
            completed_action_items=sum(1 for a in items if a.completed),
            total_blockers=len(blockers),
            resolved_blockers=sum(1 for b in blockers if b.resolved),
            average_action_items_per_standup=len(items) / len(rows) if rows else 0.0,
        )


class InMemoryTranscriptArchiveRepository:
    """In-memory test double for TranscriptArchiveRepository."""

    def __init__(self, standups: InMemoryStandupRepository | None = None) -> None:
        self.archives: dict[str, TranscriptArchive] = {}
        self.standups = standups
        self.fail_delete_ids: set[str] = set()

    def _lab_id(self, archive: TranscriptArchive) -> uuid.UUID | None:
        if self.standups is not None:
            standup = self.standups.standups.get(str(archive.standup_id))
            if standup is not None:
                return standup.lab_id
        return archive.lab_id

    def _in_lab(self, archive: TranscriptArchive, lab_id: str | None) -> bool:
        return lab_id is None or str(self._lab_id(archive)) == lab_id

    async def create(
        self,
        standup_id: str,
        transcript: str,
        word_count: int,
        created_at: datetime,
        expires_at: datetime,
        audio_url: str | None = None,
        duration: float | None = None,
        language: str = "en",
    ) -> TranscriptArchive:
        if standup_id in self.archives:
            raise TranscriptArchiveExistsError(standup_id)
        standup = self.standups.standups.get(standup_id) if self.standups else None
        archive = TranscriptArchive(
            standup_id=uuid.UUID(standup_id),
            transcript=transcript,
            word_count=word_count,
            audio_url=audio_url,
            duration=duration,
            language=language,
            created_at=created_at,
            expires_at=expires_at,
            lab_id=standup.lab_id if standup else None,
            lab_name=standup.lab_name if standup else None,
            standup_date=standup.date if standup else None,
        )
        self.archives[standup_id] = archive
        return archive

    def put(self, standup_id: str, **fields) -> TranscriptArchive:
        """Insert an archive directly, bypassing the service."""
        now = datetime.now(timezone.utc)
        values = {
            "transcript": "placeholder transcript",
            "word_count": 2,
            "created_at": now,
            "expires_at": now + timedelta(days=30),
            **fields,
        }
        archive = TranscriptArchive(standup_id=uuid.UUID(standup_id), **values)
        self.archives[standup_id] = archive
        return archive

    async def get_by_standup_id(self, standup_id: str) -> TranscriptArchive | None:
        return self.archives.get(standup_id)

    async def update(self, standup_id: str, values: dict) -> TranscriptArchive:
        archive = self.archives.get(standup_id)
        if archive is None:
            raise ValueError(f"Transcript archive not found: standup_id={standup_id}")
        updated = archive.model_copy(update=values)
        self.archives[standup_id] = updated
        return updated

    async def delete_by_standup_id(self, standup_id: str) -> None:
        if self.archives.pop(standup_id, None) is None:
            raise ValueError(f"Transcript archive not found: standup_id={standup_id}")

    async def delete(self, archive_id: str) -> None:
        if archive_id in self.fail_delete_ids:
            raise RuntimeError("database unavailable")
        for sid, archive in list(self.archives.items()):
            if str(archive.id) == archive_id:
                del self.archives[sid]
                return
        raise ValueError(f"Transcript archive not found: id={archive_id}")

    async def list_expired(self, now: datetime) -> list[TranscriptArchive]:
        return [a for a in self.archives.values() if a.expires_at <= now]

    async def list_expiring(
        self, start: datetime, end: datetime, lab_id: str | None = None
    ) -> list[TranscriptArchive]:
        rows = [
            a
            for a in self.archives.values()
            if start <= a.expires_at <= end and self._in_lab(a, lab_id)
        ]
        return sorted(rows, key=lambda a: a.expires_at)

    async def search(
        self,
        term: str,
        lab_id: str | None = None,
        limit: int = 20,
        offset: int = 0,
        not_expired_at: datetime | None = None,
    ) -> list[TranscriptArchive]:
        rows = [
            a
            for a in self.archives.values()
            if term.lower() in a.transcript.lower()
            and self._in_lab(a, lab_id)
            and (not_expired_at is None or a.expires_at >= not_expired_at)
        ]
        rows.sort(key=lambda a: a.created_at, reverse=True)
        return rows[offset : offset + limit]

    async def aggregate(self, lab_id: str | None = None) -> dict[str, float]:
        rows = [a for a in self.archives.values() if self._in_lab(a, lab_id)]
        total_words = sum(a.word_count for a in rows)
        return {
            "total": len(rows),
            "total_words": total_words,
            "average_words": total_words / len(rows) if rows else 0,
            "total_duration": float(sum(a.duration or 0 for a in rows)),
        }

    async def count_expiring(
        self, start: datetime, end: datetime, lab_id: str | None = None
    ) -> int:
        return len(await self.list_expiring(start, end, lab_id))

    async def count_expired(self, before: datetime, lab_id: str | None = None) -> int:
        return sum(
            1
            for a in self.archives.values()
            if a.expires_at < before and self._in_lab(a, lab_id)
        )

    async def language_breakdown(self, lab_id: str | None = None) -> dict[str, int]:
        counts: dict[str, int] = {}
        for archive in self.archives.values():
            if self._in_lab(archive, lab_id):
                counts[archive.language] = counts.get(archive.language, 0) + 1
        return counts


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture
def standup_repo() -> InMemoryStandupRepository:
    return InMemoryStandupRepository()


@pytest.fixture
def archive_repo(standup_repo) -> InMemoryTranscriptArchiveRepository:
    return InMemoryTranscriptArchiveRepository(standup_repo)


@pytest.fixture
def audio_store(standup_repo, tmp_path) -> AudioStore:
    return AudioStore(standup_repo, upload_dir=tmp_path / "audio")


@pytest.fixture
def archive_service(archive_repo) -> TranscriptArchiveService:
    return TranscriptArchiveService(archive_repo)


@pytest.fixture
def transcriber() -> AsyncMock:
    mock = AsyncMock()
    mock.transcribe.return_value = TranscriptionResult(
        success=True,
        transcript="Alice will fix the bug. Bob is blocked on IRB approval.",
    )
    return mock


@pytest.fixture
def extractor() -> AsyncMock:
    mock = AsyncMock()
    mock.extract.return_value = ExtractionResult(
        success=True,
        data=ExtractedStandup(
            summary="Alice is fixing a bug; Bob is waiting on IRB approval.",
            action_items=[{"description": "Fix the bug", "assignee": "Alice"}],
            blockers=[{"description": "IRB approval pending"}],
            decisions=[],
            participants=["Alice", "Bob"],
        ),
    )
    return mock


@pytest.fixture
def service(standup_repo, audio_store, archive_service, transcriber, extractor) -> StandupService:
    return StandupService(
        repository=standup_repo,
        audio_store=audio_store,
        archive=archive_service,
        transcriber=transcriber,
        extractor=extractor,
    )


@pytest_asyncio.fixture
async def standup(standup_repo) -> Standup:
    return await standup_repo.create_standup(StandupCreate(lab_id=LAB_ID))


@pytest.fixture
def lab_id() -> uuid.UUID:
    return LAB_ID
