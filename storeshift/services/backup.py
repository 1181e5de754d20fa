"""Destination snapshots written to local JSON files."""

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

from ..models.errors import BackupNotFoundError, RollbackError

logger = logging.getLogger(__name__)

BACKUP_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


def new_backup_id(prefix: str = "rollback_backup") -> str:
    """Id of the form <prefix>_<epoch milliseconds>."""
    return f"{prefix}_{int(datetime.now(timezone.utc).timestamp() * 1000)}"


@dataclass(frozen=True)
class BackupSnapshot:
    """Full copy of the destination tables at one point in time."""
    backup_id: str
    created_at: str
    kind: str = "rollback"
    description: str = ""
    tables: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)

    @property
    def record_counts(self) -> Dict[str, int]:
        return {table: len(rows) for table, rows in self.tables.items()}

    def metadata(self) -> Dict[str, Any]:
        return {
            "backup_id": self.backup_id,
            "created_at": self.created_at,
            "kind": self.kind,
            "description": self.description,
            "record_counts": self.record_counts,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {"metadata": self.metadata(), "data": self.tables}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BackupSnapshot":
        metadata = data.get("metadata", {})
        return cls(
            backup_id=metadata["backup_id"],
            created_at=metadata.get("created_at", ""),
            kind=metadata.get("kind", "rollback"),
            description=metadata.get("description", ""),
            tables=data.get("data", {}),
        )


class FileBackupStore:
    """
    One JSON file per snapshot in a backup directory.

    Snapshots are write-once: saving an id that already exists fails.
    """

    def __init__(self, directory: str):
        self.directory = Path(directory)

    def _path(self, backup_id: str) -> Path:
        if not BACKUP_ID_PATTERN.match(backup_id):
            raise BackupNotFoundError(f"Invalid backup id: {backup_id!r}", backup_id=backup_id)
        return self.directory / f"{backup_id}.json"

    def save(self, snapshot: BackupSnapshot) -> Path:
        """Write a snapshot; never overwrites."""
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(snapshot.backup_id)
        try:
            with open(path, "x") as f:
                json.dump(snapshot.to_dict(), f, indent=2, default=str)
        except FileExistsError as e:
            raise RollbackError(
                f"Backup {snapshot.backup_id} already exists",
                backup_id=snapshot.backup_id,
            ) from e
        logger.info(f"Saved backup {snapshot.backup_id} ({sum(snapshot.record_counts.values())} rows) to {path}")
        return path

    def load(self, backup_id: str) -> BackupSnapshot:
        """
        Load a snapshot by id.

        Raises:
            BackupNotFoundError: if no such backup exists
        """
        path = self._path(backup_id)
        if not path.exists():
            raise BackupNotFoundError(f"Backup not found: {backup_id}", backup_id=backup_id)
        with open(path, "r") as f:
            return BackupSnapshot.from_dict(json.load(f))

    def exists(self, backup_id: str) -> bool:
        return BACKUP_ID_PATTERN.match(backup_id) is not None and self._path(backup_id).exists()

    def list_backups(self) -> List[Dict[str, Any]]:
        """Metadata of every stored snapshot, newest first."""
        if not self.directory.exists():
            return []

        backups = []
        for path in self.directory.glob("*.json"):
            try:
                with open(path, "r") as f:
                    backups.append(json.load(f)["metadata"])
            except (OSError, ValueError, KeyError) as e:
                logger.warning(f"Skipping unreadable backup file {path}: {e}")
        return sorted(backups, key=lambda m: m.get("created_at", ""), reverse=True)
