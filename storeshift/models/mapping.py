"""Identifier mapping from legacy keys to destination surrogate keys."""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
import json
import logging
import uuid

from .errors import DuplicateMappingError, UnmappedIdentifierError

logger = logging.getLogger(__name__)

# Scope for identities created by the pipeline itself.
SYSTEM_SCOPE = "system"
# Roster entries that become their own identity.
MEMBER_IDENTITY_SCOPE = "member_identities"


@dataclass
class IdentifierMapping:
    """
    Append-only association of (scope, source key) to a destination UUID.

    Scopes are usually table names. Within one scope a source key maps to
    exactly one surrogate key for the lifetime of a run.
    """
    entries: Dict[str, Dict[str, str]] = field(default_factory=dict)

    def assign(self, scope: str, source_key: Any, surrogate: Optional[str] = None) -> str:
        """
        Assign a new surrogate key.

        Raises:
            DuplicateMappingError: if the source key is already mapped in scope
        """
        key = str(source_key)
        scope_entries = self.entries.setdefault(scope, {})
        if key in scope_entries:
            raise DuplicateMappingError(
                f"Source key {key!r} already mapped in scope {scope!r}",
                table=scope,
                record_id=key,
                existing=scope_entries[key],
            )
        scope_entries[key] = surrogate or str(uuid.uuid4())
        return scope_entries[key]

    def get_or_assign(self, scope: str, source_key: Any) -> str:
        """Return the existing surrogate key or assign a fresh one."""
        existing = self.get(scope, source_key)
        if existing is not None:
            return existing
        return self.assign(scope, source_key)

    def resolve(self, scope: str, source_key: Any) -> str:
        """
        Look up a surrogate key.

        Raises:
            UnmappedIdentifierError: if nothing was assigned for the key
        """
        surrogate = self.get(scope, source_key)
        if surrogate is None:
            raise UnmappedIdentifierError(
                f"No surrogate key for {source_key!r} in scope {scope!r}",
                table=scope,
                record_id=str(source_key),
            )
        return surrogate

    def get(self, scope: str, source_key: Any) -> Optional[str]:
        if source_key is None:
            return None
        return self.entries.get(scope, {}).get(str(source_key))

    def contains(self, scope: str, source_key: Any) -> bool:
        return self.get(scope, source_key) is not None

    def reverse(self, scope: str) -> Dict[str, str]:
        """Surrogate key -> source key for one scope."""
        return {v: k for k, v in self.entries.get(scope, {}).items()}

    def scope(self, scope: str) -> Dict[str, str]:
        return dict(self.entries.get(scope, {}))

    def __len__(self) -> int:
        return sum(len(v) for v in self.entries.values())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {"entries": {scope: dict(v) for scope, v in self.entries.items()}}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IdentifierMapping":
        """Create from dictionary."""
        entries = data.get("entries", data)
        return cls(entries={scope: dict(v) for scope, v in entries.items()})

    def save(self, path: str) -> None:
        """Write the mapping as JSON."""
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)
        logger.info(f"Saved identifier mapping ({len(self)} entries) to {path}")

    @classmethod
    def load(cls, path: str) -> "IdentifierMapping":
        """Read a mapping written by save()."""
        with open(path, "r") as f:
            return cls.from_dict(json.load(f))
