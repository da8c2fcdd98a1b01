"""Copy device-local badges into the configured remote store.

Usage: ``python scripts/migrate_local_store.py --user Petar --verify`` or
``--all`` to migrate every username found in the local store.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from lumi.config import Settings, get_settings
from lumi.db.session import build_engine, init_schema
from lumi.facade import create_storage_facade
from lumi.logging_config import configure_logging
from lumi.migration import MigrationService
from lumi.models import MigrationResult
from lumi.telemetry import event_counts

logger = logging.getLogger("migrate_local_store")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Migrate device-local badges into the remote store.")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--user", action="append", dest="users", help="Username to migrate (repeatable).")
    target.add_argument("--all", action="store_true", help="Migrate every user in the local store.")
    parser.add_argument("--local-store", type=Path, default=None, help="Directory holding lumi_users.json.")
    parser.add_argument("--verify", action="store_true", help="Compare local and remote badge counts afterwards.")
    parser.add_argument("--log-level", default=None, help="Override LUMI_LOG_LEVEL for this run.")
    parser.add_argument(
        "--init-schema",
        action="store_true",
        help="Create the users and badges tables first (database backend only).",
    )
    return parser.parse_args(argv)


async def run(args: argparse.Namespace, settings: Settings) -> int:
    if not settings.is_enabled():
        logger.error("Remote storage is not enabled; set LUMI_REMOTE_ENABLED and the backend credentials.")
        return 1
    if args.init_schema and settings.remote_backend == "database" and settings.database_url:
        engine = build_engine(settings.database_url, settings)
        try:
            init_schema(engine)
        finally:
            engine.dispose()

    if args.local_store is not None:
        settings = settings.model_copy(update={"local_store_dir": args.local_store})
    facade = create_storage_facade(settings)
    service = MigrationService(facade.local_store, facade)
    try:
        if args.all:
            results: List[MigrationResult] = await service.migrate_all_users()
        else:
            results = [await service.migrate_user_data(username) for username in args.users]

        exit_code = 0
        for result in results:
            logger.info(
                "%s: %s (migrated=%d, failed=%d)",
                result.username,
                result.message,
                result.migrated_count,
                result.failed_count,
            )
            if not result.success or result.failed_count:
                exit_code = 1
            if args.verify and result.success:
                verification = await service.verify_migration(result.username)
                logger.info("%s: %s", result.username, verification.message)
                if not verification.success:
                    exit_code = 1
        logger.info("Telemetry summary: %s", event_counts())
        return exit_code
    finally:
        await facade.aclose()


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)
    return asyncio.run(run(args, get_settings()))


if __name__ == "__main__":
    sys.exit(main())
