#!/usr/bin/env python3
"""One-shot standup maintenance sweep for cron.

Usage:
    python scripts/run_cleanup.py              # expired transcripts + orphaned audio
    python scripts/run_cleanup.py --transcripts
    python scripts/run_cleanup.py --audio

Reads DATABASE_URL and AUDIO_UPLOAD_DIR from environment or .env file.
Exits non-zero if any sweep reported errors.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Ensure project root is on sys.path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))

import structlog  # noqa: E402

from src.labstandup.core.database import close_db  # noqa: E402
from src.labstandup.core.logging_config import configure_structlog  # noqa: E402
from src.labstandup.main import build_services  # noqa: E402

logger = structlog.get_logger(__name__)


async def run(transcripts: bool, audio: bool) -> int:
    services = build_services()
    error_count = 0
    try:
        if transcripts:
            result = await services.cleanup_job.run_manual_cleanup()
            error_count += len(result.errors)
            print(f"Expired transcripts deleted: {result.deleted_count}")
            for error in result.errors:
                print(f"  ERROR: {error}")

        if audio:
            result = await services.audio_store.cleanup_orphans()
            error_count += len(result.errors)
            print(f"Orphaned audio files deleted: {result.deleted_count}")
            for error in result.errors:
                print(f"  ERROR: {error}")
    finally:
        await close_db()

    return 1 if error_count else 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Run standup maintenance sweeps once")
    parser.add_argument(
        "--transcripts", action="store_true", help="Only delete expired transcripts"
    )
    parser.add_argument(
        "--audio", action="store_true", help="Only delete orphaned audio files"
    )
    args = parser.parse_args()

    run_all = not args.transcripts and not args.audio
    configure_structlog()
    logger.info("cleanup_script.started", transcripts=run_all or args.transcripts, audio=run_all or args.audio)
    sys.exit(asyncio.run(run(run_all or args.transcripts, run_all or args.audio)))


if __name__ == "__main__":
    main()
