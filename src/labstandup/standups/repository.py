"""Standup repositories -- async persistence for the standup pipeline.

Provides StandupRepository and TranscriptArchiveRepository with the
session_factory callable pattern. Both convert SQLAlchemy models to the
Pydantic schemas in src.labstandup.standups.schemas before returning, so
nothing outside this module touches ORM instances.

persist_artifacts() is the single multi-statement transaction of the
pipeline: action items, blockers, decisions and the participant set for a
standup are written together or not at all.
"""

from __future__ import annotations

import itertools
import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from src.labstandup.standups.models import (
    ActionItemModel,
    BlockerModel,
    DecisionModel,
    StandupModel,
    StandupParticipantModel,
    TranscriptArchiveModel,
    UserModel,
)
from src.labstandup.standups.schemas import (
    ActionItem,
    Blocker,
    Decision,
    ExtractedStandup,
    SortOrder,
    Standup,
    StandupCreate,
    StandupOrderField,
    StandupParticipant,
    StandupStats,
    StandupUpdate,
    TranscriptArchive,
    UserRef,
)

logger = structlog.get_logger(__name__)

SessionFactory = Callable[..., AsyncGenerator[AsyncSession, None]]


class TranscriptArchiveExistsError(ValueError):
    """Raised when a standup already has a transcript archive."""

    def __init__(self, standup_id: str) -> None:
        super().__init__(f"Transcript archive already exists for standup {standup_id}")
        self.standup_id = standup_id


# ── Loader Options ──────────────────────────────────────────────────────────

_STANDUP_LOAD_OPTIONS = (
    selectinload(StandupModel.lab),
    selectinload(StandupModel.transcript_archive),
    selectinload(StandupModel.participants).selectinload(StandupParticipantModel.user),
    selectinload(StandupModel.action_items).selectinload(ActionItemModel.assignee),
    selectinload(StandupModel.blockers),
    selectinload(StandupModel.decisions),
)

_ARCHIVE_LOAD_OPTIONS = (
    selectinload(TranscriptArchiveModel.standup).selectinload(StandupModel.lab),
)


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_user(model: UserModel | None) -> UserRef | None:
    if model is None:
        return None
    return UserRef(
        id=model.id,
        name=model.name or "",
        first_name=model.first_name or "",
        last_name=model.last_name or "",
        email=model.email,
    )


def _model_to_archive(
    model: TranscriptArchiveModel, standup: StandupModel | None = None
) -> TranscriptArchive:
    """Convert TranscriptArchiveModel to TranscriptArchive schema.

    ``standup`` is passed explicitly when the archive is reached from an
    already-loaded standup; otherwise the archive's own standup relation
    must have been loaded with _ARCHIVE_LOAD_OPTIONS.
    """
    parent = standup if standup is not None else model.standup
    return TranscriptArchive(
        id=model.id,
        standup_id=model.standup_id,
        transcript=model.transcript,
        word_count=model.word_count,
        audio_url=model.audio_url,
        duration=model.duration,
        language=model.language or "en",
        created_at=model.created_at,
        expires_at=model.expires_at,
        lab_id=parent.lab_id if parent is not None else None,
        lab_name=parent.lab.name if parent is not None and parent.lab else None,
        standup_date=parent.date if parent is not None else None,
    )


def _model_to_standup(model: StandupModel) -> Standup:
    """Convert a fully loaded StandupModel to Standup schema."""
    return Standup(
        id=model.id,
        lab_id=model.lab_id,
        lab_name=model.lab.name if model.lab else None,
        date=model.date,
        audio_url=model.audio_url,
        is_active=model.is_active,
        created_at=model.created_at,
        updated_at=model.updated_at or model.created_at,
        participants=[
            StandupParticipant(
                standup_id=p.standup_id,
                user_id=p.user_id,
                user=_model_to_user(p.user),
            )
            for p in model.participants
        ],
        action_items=[
            ActionItem(
                id=a.id,
                standup_id=a.standup_id,
                description=a.description,
                assignee_id=a.assignee_id,
                assignee=_model_to_user(a.assignee),
                due_date=a.due_date,
                completed=a.completed,
            )
            for a in model.action_items
        ],
        blockers=[
            Blocker(
                id=b.id,
                standup_id=b.standup_id,
                description=b.description,
                resolved=b.resolved,
            )
            for b in model.blockers
        ],
        decisions=[
            Decision(id=d.id, standup_id=d.standup_id, description=d.description)
            for d in model.decisions
        ],
        transcript_archive=(
            _model_to_archive(model.transcript_archive, standup=model)
            if model.transcript_archive is not None
            else None
        ),
    )


def _parse_due_date(value: str | None) -> datetime | None:
    """Parse an ISO date/datetime emitted by the extraction model.

    Unparseable dates are dropped rather than failing the transaction.
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        logger.info("standup.due_date_unparseable", value=value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


async def _resolve_user_id(session: AsyncSession, name: str) -> uuid.UUID | None:
    """Resolve a free-text name to a single user id.

    Matching rules, in order:
    1. Exact case-insensitive match on the full name.
    2. Exact case-insensitive match on the first name.

    A level with exactly one match wins. A level with several matches is
    ambiguous and resolves to None; no match at either level resolves to
    None. Callers treat None as "unassigned".
    """
    needle = name.strip().lower()
    if not needle:
        return None

    for column in (UserModel.name, UserModel.first_name):
        stmt = select(UserModel.id).where(func.lower(column) == needle).limit(2)
        result = await session.execute(stmt)
        ids = list(result.scalars().all())
        if len(ids) == 1:
            return ids[0]
        if len(ids) > 1:
            logger.info("standup.user_name_ambiguous", name=name)
            return None
    return None


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


# ── Standup Repository ──────────────────────────────────────────────────────


class StandupRepository:
    """Async CRUD operations for standups and their extracted artifacts.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def _load_standup(
        self, session: AsyncSession, standup_id: uuid.UUID
    ) -> StandupModel | None:
        stmt = (
            select(StandupModel)
            .where(StandupModel.id == standup_id)
            .options(*_STANDUP_LOAD_OPTIONS)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    # ── Standups ─────────────────────────────────────────────────────────

    async def create_standup(self, data: StandupCreate) -> Standup:
        """Create a standup, optionally with an initial participant set."""
        async for session in self._session_factory():
            model = StandupModel(
                lab_id=data.lab_id,
                date=data.date or datetime.now(timezone.utc),
            )
            session.add(model)
            await session.flush()
            for user_id in dict.fromkeys(data.participant_ids):
                session.add(StandupParticipantModel(standup_id=model.id, user_id=user_id))
            await session.commit()
            standup_id = model.id

            session.expunge_all()
            loaded = await self._load_standup(session, standup_id)
            return _model_to_standup(loaded)

    async def get_standup(self, standup_id: str) -> Standup | None:
        """Get a standup with all relations, or None if it does not exist."""
        async for session in self._session_factory():
            model = await self._load_standup(session, uuid.UUID(standup_id))
            if model is None:
                return None
            return _model_to_standup(model)

    async def list_standups(
        self,
        lab_id: str,
        limit: int = 20,
        offset: int = 0,
        order_by: StandupOrderField = "date",
        order: SortOrder = "desc",
    ) -> list[Standup]:
        """List active standups for a lab with pagination."""
        column = StandupModel.created_at if order_by == "created_at" else StandupModel.date
        ordering = column.asc() if order == "asc" else column.desc()
        async for session in self._session_factory():
            stmt = (
                select(StandupModel)
                .where(
                    StandupModel.lab_id == uuid.UUID(lab_id),
                    StandupModel.is_active.is_(True),
                )
                .options(*_STANDUP_LOAD_OPTIONS)
                .order_by(ordering)
                .limit(limit)
                .offset(offset)
            )
            result = await session.execute(stmt)
            return [_model_to_standup(m) for m in result.scalars().all()]

    async def list_standups_by_ids(
        self, lab_id: str, standup_ids: list[str]
    ) -> list[Standup]:
        """Active standups of a lab among the given ids, newest date first."""
        if not standup_ids:
            return []
        async for session in self._session_factory():
            stmt = (
                select(StandupModel)
                .where(
                    StandupModel.id.in_([uuid.UUID(s) for s in standup_ids]),
                    StandupModel.lab_id == uuid.UUID(lab_id),
                    StandupModel.is_active.is_(True),
                )
                .options(*_STANDUP_LOAD_OPTIONS)
                .order_by(StandupModel.date.desc())
            )
            result = await session.execute(stmt)
            return [_model_to_standup(m) for m in result.scalars().all()]

    async def update_standup(self, standup_id: str, data: StandupUpdate) -> Standup:
        """Apply the fields set on ``data`` to a standup.

        Raises:
            ValueError: If standup not found.
        """
        changes = data.model_dump(exclude_unset=True)
        async for session in self._session_factory():
            model = await session.get(StandupModel, uuid.UUID(standup_id))
            if model is None:
                raise ValueError(f"Standup not found: id={standup_id}")

            for field, value in changes.items():
                setattr(model, field, value)
            model.updated_at = datetime.now(timezone.utc)
            await session.commit()

            session.expunge_all()
            loaded = await self._load_standup(session, uuid.UUID(standup_id))
            return _model_to_standup(loaded)

    async def set_audio_url(self, standup_id: str, audio_url: str | None) -> None:
        """Set or clear the standup's audio URL.

        Raises:
            ValueError: If standup not found.
        """
        async for session in self._session_factory():
            model = await session.get(StandupModel, uuid.UUID(standup_id))
            if model is None:
                raise ValueError(f"Standup not found: id={standup_id}")
            model.audio_url = audio_url
            model.updated_at = datetime.now(timezone.utc)
            await session.commit()

    async def get_audio_url(self, standup_id: str) -> str | None:
        async for session in self._session_factory():
            stmt = select(StandupModel.audio_url).where(
                StandupModel.id == uuid.UUID(standup_id)
            )
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def list_audio_urls(self, active_only: bool = False) -> list[str]:
        """Audio URLs of all standups that have one."""
        async for session in self._session_factory():
            stmt = select(StandupModel.audio_url).where(StandupModel.audio_url.is_not(None))
            if active_only:
                stmt = stmt.where(StandupModel.is_active.is_(True))
            result = await session.execute(stmt)
            return [url for url in result.scalars().all() if url]

    async def count_standups(self, with_audio: bool = False) -> int:
        async for session in self._session_factory():
            stmt = select(func.count()).select_from(StandupModel)
            if with_audio:
                stmt = stmt.where(StandupModel.audio_url.is_not(None))
            result = await session.execute(stmt)
            return int(result.scalar_one())

    async def soft_delete_standup(self, standup_id: str) -> None:
        """Flip is_active to False.

        Raises:
            ValueError: If standup not found.
        """
        async for session in self._session_factory():
            model = await session.get(StandupModel, uuid.UUID(standup_id))
            if model is None:
                raise ValueError(f"Standup not found: id={standup_id}")
            model.is_active = False
            model.updated_at = datetime.now(timezone.utc)
            await session.commit()

    # ── Users ────────────────────────────────────────────────────────────

    async def resolve_user_by_name(self, name: str) -> uuid.UUID | None:
        """Resolve a name to a user id (see _resolve_user_id for the rules)."""
        async for session in self._session_factory():
            return await _resolve_user_id(session, name)

    # ── Artifacts ────────────────────────────────────────────────────────

    async def persist_artifacts(
        self, standup_id: str, extracted: ExtractedStandup
    ) -> Standup:
        """Write extracted artifacts for a standup in one transaction.

        Inserts action items (assignees resolved by name), blockers and
        decisions. When participant names were extracted, the existing
        participant links are deleted and replaced by the resolved set.
        Any failure rolls back every row written here.

        Returns:
            The standup with all relations, read inside the transaction.

        Raises:
            ValueError: If standup not found.
        """
        sid = uuid.UUID(standup_id)
        # Rows of one call share a transaction, so now() would tie them;
        # stepped timestamps keep relationship order equal to extraction order.
        base = datetime.now(timezone.utc)
        stamps = (base + timedelta(microseconds=i) for i in itertools.count())
        async for session in self._session_factory():
            async with session.begin():
                exists = await session.execute(
                    select(StandupModel.id).where(StandupModel.id == sid)
                )
                if exists.scalar_one_or_none() is None:
                    raise ValueError(f"Standup not found: id={standup_id}")

                for item in extracted.action_items:
                    assignee_id = (
                        await _resolve_user_id(session, item.assignee)
                        if item.assignee
                        else None
                    )
                    session.add(
                        ActionItemModel(
                            standup_id=sid,
                            description=item.description,
                            assignee_id=assignee_id,
                            due_date=_parse_due_date(item.due_date),
                            created_at=next(stamps),
                        )
                    )

                session.add_all(
                    BlockerModel(
                        standup_id=sid,
                        description=b.description,
                        resolved=b.resolved,
                        created_at=next(stamps),
                    )
                    for b in extracted.blockers
                )
                session.add_all(
                    DecisionModel(
                        standup_id=sid,
                        description=d.description,
                        created_at=next(stamps),
                    )
                    for d in extracted.decisions
                )

                if extracted.participants:
                    user_ids: list[uuid.UUID] = []
                    for name in extracted.participants:
                        user_id = await _resolve_user_id(session, name)
                        if user_id is not None and user_id not in user_ids:
                            user_ids.append(user_id)

                    await session.execute(
                        delete(StandupParticipantModel).where(
                            StandupParticipantModel.standup_id == sid
                        )
                    )
                    session.add_all(
                        StandupParticipantModel(standup_id=sid, user_id=uid)
                        for uid in user_ids
                    )

                await session.flush()
                session.expunge_all()
                model = await self._load_standup(session, sid)
                standup = _model_to_standup(model)

            logger.info(
                "standup.artifacts_persisted",
                standup_id=standup_id,
                action_items=len(extracted.action_items),
                blockers=len(extracted.blockers),
                decisions=len(extracted.decisions),
                participants=len(standup.participants),
            )
            return standup

    async def set_action_item_completed(self, action_item_id: str, completed: bool) -> None:
        """Raises ValueError if the action item does not exist."""
        async for session in self._session_factory():
            model = await session.get(ActionItemModel, uuid.UUID(action_item_id))
            if model is None:
                raise ValueError(f"Action item not found: id={action_item_id}")
            model.completed = completed
            await session.commit()

    async def set_blocker_resolved(self, blocker_id: str, resolved: bool) -> None:
        """Raises ValueError if the blocker does not exist."""
        async for session in self._session_factory():
            model = await session.get(BlockerModel, uuid.UUID(blocker_id))
            if model is None:
                raise ValueError(f"Blocker not found: id={blocker_id}")
            model.resolved = resolved
            await session.commit()

    async def get_stats(self, lab_id: str) -> StandupStats:
        """Aggregate artifact counts over a lab's active standups."""
        lid = uuid.UUID(lab_id)
        active_in_lab = (StandupModel.lab_id == lid, StandupModel.is_active.is_(True))

        async for session in self._session_factory():
            total_standups = (
                await session.execute(
                    select(func.count()).select_from(StandupModel).where(*active_in_lab)
                )
            ).scalar_one()

            async def _count(model: Any, *extra: Any) -> int:
                stmt = (
                    select(func.count(model.id))
                    .join(StandupModel, StandupModel.id == model.standup_id)
                    .where(*active_in_lab, *extra)
                )
                return int((await session.execute(stmt)).scalar_one())

            total_action_items = await _count(ActionItemModel)
            completed_action_items = await _count(
                ActionItemModel, ActionItemModel.completed.is_(True)
            )
            total_blockers = await _count(BlockerModel)
            resolved_blockers = await _count(BlockerModel, BlockerModel.resolved.is_(True))

            return StandupStats(
                total_standups=total_standups,
                total_action_items=total_action_items,
                completed_action_items=completed_action_items,
                total_blockers=total_blockers,
                resolved_blockers=resolved_blockers,
                average_action_items_per_standup=(
                    total_action_items / total_standups if total_standups > 0 else 0.0
                ),
            )


# ── Transcript Archive Repository ───────────────────────────────────────────


class TranscriptArchiveRepository:
    """Async persistence for transcript archives.

    Retention arithmetic and word counting live in TranscriptArchiveService;
    this class only reads and writes rows.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    async def _load(
        self, session: AsyncSession, standup_id: uuid.UUID
    ) -> TranscriptArchiveModel | None:
        stmt = (
            select(TranscriptArchiveModel)
            .where(TranscriptArchiveModel.standup_id == standup_id)
            .options(*_ARCHIVE_LOAD_OPTIONS)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    def _lab_filter(self, stmt: Any, lab_id: str | None) -> Any:
        if lab_id is None:
            return stmt
        return stmt.join(
            StandupModel, StandupModel.id == TranscriptArchiveModel.standup_id
        ).where(StandupModel.lab_id == uuid.UUID(lab_id))

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
        """Insert the archive row for a standup.

        Raises:
            TranscriptArchiveExistsError: If the standup already has one.
        """
        sid = uuid.UUID(standup_id)
        async for session in self._session_factory():
            if await self._load(session, sid) is not None:
                raise TranscriptArchiveExistsError(standup_id)

            session.add(
                TranscriptArchiveModel(
                    standup_id=sid,
                    transcript=transcript,
                    word_count=word_count,
                    audio_url=audio_url,
                    duration=duration,
                    language=language,
                    created_at=created_at,
                    expires_at=expires_at,
                )
            )
            try:
                await session.commit()
            except IntegrityError as exc:
                # Unique key on standup_id lost a race with another writer
                await session.rollback()
                raise TranscriptArchiveExistsError(standup_id) from exc

            session.expunge_all()
            return _model_to_archive(await self._load(session, sid))

    async def get_by_standup_id(self, standup_id: str) -> TranscriptArchive | None:
        async for session in self._session_factory():
            model = await self._load(session, uuid.UUID(standup_id))
            return _model_to_archive(model) if model is not None else None

    async def update(self, standup_id: str, values: dict[str, Any]) -> TranscriptArchive:
        """Apply column values to a standup's archive.

        Raises:
            ValueError: If no archive exists for the standup.
        """
        sid = uuid.UUID(standup_id)
        async for session in self._session_factory():
            model = await self._load(session, sid)
            if model is None:
                raise ValueError(f"Transcript archive not found: standup_id={standup_id}")
            for field, value in values.items():
                setattr(model, field, value)
            await session.commit()
            return _model_to_archive(model)

    async def delete_by_standup_id(self, standup_id: str) -> None:
        """Raises ValueError if no archive exists for the standup."""
        async for session in self._session_factory():
            result = await session.execute(
                delete(TranscriptArchiveModel).where(
                    TranscriptArchiveModel.standup_id == uuid.UUID(standup_id)
                )
            )
            if result.rowcount == 0:
                raise ValueError(f"Transcript archive not found: standup_id={standup_id}")
            await session.commit()

    async def delete(self, archive_id: str) -> None:
        """Raises ValueError if the archive does not exist."""
        async for session in self._session_factory():
            result = await session.execute(
                delete(TranscriptArchiveModel).where(
                    TranscriptArchiveModel.id == uuid.UUID(archive_id)
                )
            )
            if result.rowcount == 0:
                raise ValueError(f"Transcript archive not found: id={archive_id}")
            await session.commit()

    async def list_expired(self, now: datetime) -> list[TranscriptArchive]:
        """Archives with expires_at <= now."""
        async for session in self._session_factory():
            stmt = (
                select(TranscriptArchiveModel)
                .where(TranscriptArchiveModel.expires_at <= now)
                .options(*_ARCHIVE_LOAD_OPTIONS)
            )
            result = await session.execute(stmt)
            return [_model_to_archive(m) for m in result.scalars().all()]

    async def list_expiring(
        self, start: datetime, end: datetime, lab_id: str | None = None
    ) -> list[TranscriptArchive]:
        """Archives expiring within [start, end], soonest first."""
        async for session in self._session_factory():
            stmt = select(TranscriptArchiveModel).where(
                TranscriptArchiveModel.expires_at >= start,
                TranscriptArchiveModel.expires_at <= end,
            )
            stmt = (
                self._lab_filter(stmt, lab_id)
                .options(*_ARCHIVE_LOAD_OPTIONS)
                .order_by(TranscriptArchiveModel.expires_at.asc())
            )
            result = await session.execute(stmt)
            return [_model_to_archive(m) for m in result.scalars().all()]

    async def search(
        self,
        term: str,
        lab_id: str | None = None,
        limit: int = 20,
        offset: int = 0,
        not_expired_at: datetime | None = None,
    ) -> list[TranscriptArchive]:
        """Case-insensitive substring search over transcript text.

        When ``not_expired_at`` is given, archives with expires_at before it
        are excluded.
        """
        async for session in self._session_factory():
            stmt = select(TranscriptArchiveModel).where(
                TranscriptArchiveModel.transcript.ilike(
                    f"%{_escape_like(term)}%", escape="\\"
                )
            )
            if not_expired_at is not None:
                stmt = stmt.where(TranscriptArchiveModel.expires_at >= not_expired_at)
            stmt = (
                self._lab_filter(stmt, lab_id)
                .options(*_ARCHIVE_LOAD_OPTIONS)
                .order_by(TranscriptArchiveModel.created_at.desc())
                .limit(limit)
                .offset(offset)
            )
            result = await session.execute(stmt)
            return [_model_to_archive(m) for m in result.scalars().all()]

    async def aggregate(self, lab_id: str | None = None) -> dict[str, float]:
        """Count, word and duration totals, and average word count."""
        async for session in self._session_factory():
            stmt = select(
                func.count(TranscriptArchiveModel.id),
                func.coalesce(func.sum(TranscriptArchiveModel.word_count), 0),
                func.coalesce(func.avg(TranscriptArchiveModel.word_count), 0),
                func.coalesce(func.sum(TranscriptArchiveModel.duration), 0),
            )
            row = (await session.execute(self._lab_filter(stmt, lab_id))).one()
            return {
                "total": int(row[0]),
                "total_words": int(row[1]),
                "average_words": float(row[2]),
                "total_duration": float(row[3]),
            }

    async def count_expiring(
        self, start: datetime, end: datetime, lab_id: str | None = None
    ) -> int:
        async for session in self._session_factory():
            stmt = select(func.count(TranscriptArchiveModel.id)).where(
                TranscriptArchiveModel.expires_at >= start,
                TranscriptArchiveModel.expires_at <= end,
            )
            return int((await session.execute(self._lab_filter(stmt, lab_id))).scalar_one())

    async def count_expired(self, before: datetime, lab_id: str | None = None) -> int:
        async for session in self._session_factory():
            stmt = select(func.count(TranscriptArchiveModel.id)).where(
                TranscriptArchiveModel.expires_at < before
            )
            return int((await session.execute(self._lab_filter(stmt, lab_id))).scalar_one())

    async def language_breakdown(self, lab_id: str | None = None) -> dict[str, int]:
        async for session in self._session_factory():
            stmt = select(
                TranscriptArchiveModel.language, func.count(TranscriptArchiveModel.id)
            )
            stmt = self._lab_filter(stmt, lab_id).group_by(TranscriptArchiveModel.language)
            result = await session.execute(stmt)
            return {language: int(count) for language, count in result.all() if language}
