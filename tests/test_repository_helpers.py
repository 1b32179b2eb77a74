"""Tests for repository helpers that do not need a database.

Covers due-date parsing, LIKE escaping, the name-resolution rules (against
a mocked AsyncSession), settings defaults, and the migration driver.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import create_engine

from src.labstandup.config import Environment, Settings
from src.labstandup.standups.repository import (
    TranscriptArchiveExistsError,
    _escape_like,
    _parse_due_date,
    _resolve_user_id,
)


def _session_returning(*id_lists: list[uuid.UUID]) -> AsyncMock:
    """AsyncSession mock whose successive execute() calls yield these ids."""
    results = []
    for ids in id_lists:
        result = MagicMock()
        result.scalars.return_value.all.return_value = ids
        results.append(result)
    session = AsyncMock()
    session.execute.side_effect = results
    return session


class TestParseDueDate:
    def test_date_only(self):
        assert _parse_due_date("2026-03-14") == datetime(2026, 3, 14, tzinfo=timezone.utc)

    def test_zulu_datetime(self):
        assert _parse_due_date("2026-03-14T09:30:00Z") == datetime(
            2026, 3, 14, 9, 30, tzinfo=timezone.utc
        )

    @pytest.mark.parametrize("value", [None, "", "tomorrow", "14/03/2026"])
    def test_unparseable_is_none(self, value):
        assert _parse_due_date(value) is None


class TestEscapeLike:
    def test_wildcards_escaped(self):
        assert _escape_like("50%_off\\") == "50\\%\\_off\\\\"


class TestResolveUserId:
    @pytest.mark.asyncio
    async def test_full_name_match_wins(self):
        user_id = uuid.uuid4()
        session = _session_returning([user_id])

        assert await _resolve_user_id(session, "Grace Hopper") == user_id
        assert session.execute.await_count == 1

    @pytest.mark.asyncio
    async def test_falls_back_to_first_name(self):
        user_id = uuid.uuid4()
        session = _session_returning([], [user_id])

        assert await _resolve_user_id(session, "grace") == user_id
        assert session.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_ambiguous_full_name_is_none(self):
        session = _session_returning([uuid.uuid4(), uuid.uuid4()])

        assert await _resolve_user_id(session, "Alex Kim") is None
        assert session.execute.await_count == 1

    @pytest.mark.asyncio
    async def test_ambiguous_first_name_is_none(self):
        session = _session_returning([], [uuid.uuid4(), uuid.uuid4()])
        assert await _resolve_user_id(session, "Alex") is None

    @pytest.mark.asyncio
    async def test_no_match_is_none(self):
        session = _session_returning([], [])
        assert await _resolve_user_id(session, "Nobody") is None

    @pytest.mark.asyncio
    async def test_blank_name_skips_queries(self):
        session = _session_returning()
        assert await _resolve_user_id(session, "   ") is None
        session.execute.assert_not_awaited()


class TestErrors:
    def test_archive_exists_error(self):
        err = TranscriptArchiveExistsError("abc")
        assert isinstance(err, ValueError)
        assert str(err) == "Transcript archive already exists for standup abc"
        assert err.standup_id == "abc"


class TestSettings:
    def test_defaults(self, monkeypatch):
        for key in ("ENVIRONMENT", "AUDIO_MAX_SIZE_BYTES", "TRANSCRIPT_RETENTION_DAYS"):
            monkeypatch.delenv(key, raising=False)
        settings = Settings(_env_file=None)

        assert settings.ENVIRONMENT == Environment.development
        assert settings.AUDIO_MAX_SIZE_BYTES == 50 * 1024 * 1024
        assert settings.TRANSCRIPT_RETENTION_DAYS == 30
        assert settings.TRANSCRIPT_EXPIRY_WARNING_DAYS == 7
        assert settings.AUDIO_PUBLIC_PREFIX == "/standups/audio"

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("TRANSCRIPT_RETENTION_DAYS", "45")
        assert Settings(_env_file=None).TRANSCRIPT_RETENTION_DAYS == 45


class TestMigrationEngine:
    def test_sync_url_driver_is_importable(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        url = Settings(_env_file=None).DATABASE_URL.replace("+asyncpg", "")

        # create_engine imports the DBAPI module without connecting
        engine = create_engine(url)
        try:
            assert engine.dialect.driver == "psycopg2"
        finally:
            engine.dispose()
