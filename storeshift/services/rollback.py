"""Compensating rollback of an import and restore from a stored snapshot."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..loaders.base import DestinationStore, Predicate
from ..models.errors import (
    DestinationError,
    MigrationIssue,
    RestoreError,
    RollbackError,
)
from ..models.schema import IMPORT_ORDER, ROLLBACK_ORDER
from .backup import BackupSnapshot, FileBackupStore, new_backup_id

logger = logging.getLogger(__name__)


@dataclass
class RollbackResult:
    """Outcome of a rollback, including what survived it."""
    success: bool = False
    backup_id: Optional[str] = None
    deleted_counts: Dict[str, int] = field(default_factory=dict)
    remaining_counts: Dict[str, int] = field(default_factory=dict)
    preserved_identities: int = 0
    errors: List[MigrationIssue] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def total_deleted(self) -> int:
        return sum(self.deleted_counts.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "backup_id": self.backup_id,
            "deleted_counts": self.deleted_counts,
            "total_deleted": self.total_deleted,
            "remaining_counts": self.remaining_counts,
            "preserved_identities": self.preserved_identities,
            "errors": [e.to_dict() for e in self.errors],
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass
class RestoreResult:
    """Outcome of replaying a snapshot into the destination."""
    backup_id: str
    success: bool = False
    restored_counts: Dict[str, int] = field(default_factory=dict)
    skipped_counts: Dict[str, int] = field(default_factory=dict)
    errors: List[MigrationIssue] = field(default_factory=list)

    @property
    def total_restored(self) -> int:
        return sum(self.restored_counts.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "backup_id": self.backup_id,
            "success": self.success,
            "restored_counts": self.restored_counts,
            "total_restored": self.total_restored,
            "skipped_counts": self.skipped_counts,
            "errors": [e.to_dict() for e in self.errors],
        }


class RollbackManager:
    """
    Undoes an import by deleting everything in reverse dependency order.

    Identities whose email is in the preserved list survive the rollback.
    Deletion never starts without explicit confirmation, and, when a backup
    is requested, never starts unless that backup was stored.
    """

    def __init__(
        self,
        destination: DestinationStore,
        backup_store: FileBackupStore,
        preserved_identity_emails: Optional[List[str]] = None,
    ):
        self.destination = destination
        self.backup_store = backup_store
        self.preserved_identity_emails = list(preserved_identity_emails or [])

    def _delete_predicate(self, table: str) -> Predicate:
        if table == "users" and self.preserved_identity_emails:
            return Predicate("email", "not_in", self.preserved_identity_emails)
        return Predicate.all_rows()

    async def create_backup(self, description: str = "Pre-rollback backup") -> BackupSnapshot:
        """Copy every destination table into a new stored snapshot."""
        tables = {}
        for table in IMPORT_ORDER:
            tables[table] = await self.destination.select(table)
        snapshot = BackupSnapshot(
            backup_id=new_backup_id(),
            created_at=datetime.now(timezone.utc).isoformat(),
            kind="rollback",
            description=description,
            tables=tables,
        )
        self.backup_store.save(snapshot)
        return snapshot

    async def rollback(self, confirm: bool = False, create_backup: bool = True) -> RollbackResult:
        """
        Delete migrated data.

        Args:
            confirm: Must be True, otherwise nothing is touched
            create_backup: Snapshot the destination first

        Returns:
            RollbackResult; per-table delete failures are collected, not raised
        """
        result = RollbackResult(started_at=datetime.now(timezone.utc))

        if not confirm:
            result.errors.append(RollbackError(
                "Rollback requires explicit confirmation (confirm=True)"
            ).to_issue())
            result.completed_at = datetime.now(timezone.utc)
            logger.error("Rollback refused: not confirmed")
            return result

        if create_backup:
            try:
                snapshot = await self.create_backup()
                result.backup_id = snapshot.backup_id
            except (DestinationError, RollbackError) as e:
                result.errors.append(e.to_issue())
                result.completed_at = datetime.now(timezone.utc)
                logger.error(f"Rollback aborted, backup failed: {e}")
                return result

        for table in ROLLBACK_ORDER:
            try:
                deleted = await self.destination.delete_where(table, self._delete_predicate(table))
                result.deleted_counts[table] = deleted
                logger.info(f"Deleted {deleted} rows from {table}")
            except DestinationError as e:
                issue = RollbackError(f"Failed to delete {table}: {e.message}", table=table).to_issue()
                result.errors.append(issue)
                logger.error(issue.message)

        await self._verify_empty(result)
        result.success = not result.errors
        result.completed_at = datetime.now(timezone.utc)
        return result

    async def _verify_empty(self, result: RollbackResult) -> None:
        """Re-count every table; anything beyond preserved identities is a survivor."""
        for table in ROLLBACK_ORDER:
            try:
                total = await self.destination.count(table)
                result.remaining_counts[table] = total
                survivors = total
                if table == "users" and self.preserved_identity_emails:
                    survivors = await self.destination.count(table, filters=[self._delete_predicate(table)])
                    result.preserved_identities = total - survivors
                if survivors:
                    result.errors.append(RollbackError(
                        f"{survivors} rows remain in {table} after rollback",
                        table=table,
                        remaining=survivors,
                    ).to_issue())
            except DestinationError as e:
                result.errors.append(RollbackError(
                    f"Could not verify {table} after rollback: {e.message}",
                    table=table,
                ).to_issue())

    async def restore(self, backup_id: str) -> RestoreResult:
        """
        Replay a snapshot in forward dependency order.

        Rows whose id already exists (preserved identities) are skipped.
        Restoring stops at the first table the destination rejects.
        """
        result = RestoreResult(backup_id=backup_id)
        try:
            snapshot = self.backup_store.load(backup_id)
        except RestoreError as e:
            result.errors.append(e.to_issue())
            logger.error(str(e))
            return result

        for table in IMPORT_ORDER:
            rows = snapshot.tables.get(table, [])
            try:
                existing = {str(r["id"]) for r in await self.destination.select(table, columns=["id"])}
                pending = [row for row in rows if str(row.get("id")) not in existing]
                result.skipped_counts[table] = len(rows) - len(pending)
                result.restored_counts[table] = await self.destination.insert_batch(table, pending) if pending else 0
                logger.info(f"Restored {result.restored_counts[table]} rows into {table}")
            except DestinationError as e:
                result.errors.append(RestoreError(
                    f"Failed to restore {table}: {e.message}",
                    table=table,
                    backup_id=backup_id,
                ).to_issue())
                logger.error(f"Restore of {backup_id} stopped at {table}")
                break

        result.success = not result.errors
        return result
