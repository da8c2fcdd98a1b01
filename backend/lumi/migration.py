"""Copy device-local badges into the remote store and check the copy."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List

from .errors import StorageError
from .facade import StorageFacade
from .local_store import LocalStore
from .models import MigrationResult, VerificationResult, normalize_username
from .telemetry import record_migration

logger = logging.getLogger(__name__)


class MigrationService:
    """One-shot utility; writes only to the remote store, reads from both."""

    def __init__(self, local_store: LocalStore, facade: StorageFacade) -> None:
        self._local = local_store
        self._facade = facade

    async def migrate_user_data(self, username: str) -> MigrationResult:
        try:
            normalized = normalize_username(username)
        except StorageError as exc:
            return MigrationResult(username=str(username), success=False, message="Migration failed", error=str(exc))

        logger.info("Starting migration for %s", normalized)
        badges = self._local.get_badges(normalized)
        if not badges:
            logger.info("No local badges to migrate for %s", normalized)
            return MigrationResult(username=normalized, success=True, message="No data to migrate")

        try:
            await self._facade.ensure_remote_user(normalized)
        except StorageError as exc:
            logger.error("Migration for %s could not create the remote user (%s): %s", normalized, exc.kind, exc)
            return MigrationResult(username=normalized, success=False, message="Migration failed", error=str(exc))

        migrated = 0
        failed = 0
        for badge in badges:
            if badge.earned_at is None:
                # Legacy entries carry no timestamp; stamp them at copy time.
                badge = badge.model_copy(update={"earned_at": datetime.now(timezone.utc)})
            if await self._facade.add_remote_badge(normalized, badge):
                migrated += 1
            else:
                failed += 1

        logger.info("Migration complete for %s: %d succeeded, %d failed", normalized, migrated, failed)
        record_migration(normalized, migrated, failed)
        message = f"Successfully migrated {migrated} badges"
        if failed:
            message += f" ({failed} failed)"
        return MigrationResult(
            username=normalized,
            success=True,
            migrated_count=migrated,
            failed_count=failed,
            message=message,
        )

    async def migrate_all_users(self) -> List[MigrationResult]:
        usernames = list(self._local.get_all())
        logger.info("Starting migration for %d users", len(usernames))
        results: List[MigrationResult] = []
        for username in usernames:
            results.append(await self.migrate_user_data(username))
        return results

    async def verify_migration(self, username: str) -> VerificationResult:
        try:
            normalized = normalize_username(username)
            local_count = len(self._local.get_badges(normalized))
            remote_count = len(await self._facade.read_remote_badges(normalized, use_cache=False))
        except StorageError as exc:
            logger.error("Verification failed for %s (%s): %s", username, exc.kind, exc)
            return VerificationResult(username=str(username), success=False, message="Verification failed", error=str(exc))

        logger.info("Verification for %s: %d local, %d remote", normalized, local_count, remote_count)
        if local_count == remote_count:
            message = "Migration verified successfully"
        else:
            message = f"Mismatch: {local_count} on this device vs {remote_count} in the remote store"
        return VerificationResult(
            username=normalized,
            success=local_count == remote_count,
            local_count=local_count,
            remote_count=remote_count,
            message=message,
        )


__all__ = ["MigrationService"]
