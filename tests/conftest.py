"""Shared fixtures: a temporary legacy SQLite store and an in-memory destination."""

import copy
import sqlite3
from typing import Any, Dict, List, Optional, Sequence

import pytest

from storeshift.loaders.base import DestinationStore, Predicate
from storeshift.models.errors import DestinationError
from storeshift.models.migration import MigrationConfig
from storeshift.models.schema import IMPORT_ORDER
from storeshift.orchestrator import MigrationOrchestrator
from storeshift.services.backup import FileBackupStore
from storeshift.services.progress import FileReportSink

SOURCE_COLUMNS: Dict[str, List[str]] = {
    "users": [
        "id", "email", "name", "role", "status", "github_username", "avatar_url",
        "password_hash", "created_at", "updated_at", "last_login", "password_reset_expires",
    ],
    "team_members": [
        "id", "name", "email", "role", "status", "assignments", "expertise",
        "workload", "created_at", "updated_at",
    ],
    "tasks": [
        "id", "title", "description", "type", "priority", "status", "assignee_id",
        "reporter_id", "estimated_hours", "actual_hours", "related_commits",
        "related_pull_requests", "dependencies", "blocked_by", "confidentiality_level",
        "authorized_users", "authorized_roles", "created_at", "due_date", "completed_at",
    ],
    "security_alerts": [
        "id", "type", "severity", "title", "description", "ai_explanation", "trigger_data",
        "status", "assigned_to", "detected_at", "resolved_at", "rollback_suggested", "evidence",
    ],
    "audit_logs": [
        "id", "action_type", "description", "ai_reasoning", "context_data", "user_id",
        "timestamp", "requires_approval", "approved", "approved_by", "approved_at",
    ],
    "deployments": [
        "id", "environment", "version", "status", "deployed_by", "deployed_at",
        "pipeline_config", "logs", "health_checks", "rollback_available",
    ],
    "snapshots": [
        "id", "environment", "git_commit", "config_files", "database_backup",
        "created_at", "verified",
    ],
    "specifications": [
        "id", "raw_input", "ai_interpretation", "status", "assigned_to", "approved_by",
        "created_at", "approved_at", "suggested_branch_name", "suggested_commit_message",
        "placeholder_diff",
    ],
}

# 2023-11-14T22:13:20Z in epoch milliseconds
T0 = 1700000000000
DAY = 86400000


def build_source(path, rows: Dict[str, List[Dict[str, Any]]]) -> str:
    """Create a legacy SQLite file with every table, filled from rows."""
    conn = sqlite3.connect(str(path))
    try:
        for table, columns in SOURCE_COLUMNS.items():
            column_sql = ", ".join(f'"{c}"' for c in columns)
            conn.execute(f'CREATE TABLE "{table}" ({column_sql})')
            for row in rows.get(table, []):
                names = list(row)
                placeholders = ", ".join("?" for _ in names)
                conn.execute(
                    f'INSERT INTO "{table}" ({", ".join(names)}) VALUES ({placeholders})',
                    [row[n] for n in names],
                )
        conn.commit()
    finally:
        conn.close()
    return str(path)


def sample_rows() -> Dict[str, List[Dict[str, Any]]]:
    """A small legacy dataset touching every table."""
    return {
        "users": [
            {"id": "u1", "email": "alice@example.com", "name": "Alice", "role": "admin",
             "status": "active", "password_hash": "x", "created_at": T0, "updated_at": T0},
            {"id": "u2", "email": "bob@example.com", "name": "Bob", "role": "security_reviewer",
             "status": "offline", "created_at": T0, "updated_at": T0},
        ],
        "team_members": [
            {"id": "m1", "name": "Alice", "email": "ALICE@example.com", "role": "admin",
             "status": "active", "assignments": "t1,t2", "expertise": "python, sql",
             "workload": 3, "created_at": T0, "updated_at": T0},
            {"id": "m2", "name": "Carol", "email": "carol@example.com", "role": "developer",
             "status": "bench", "assignments": "", "expertise": "go", "workload": 1.6,
             "created_at": T0, "updated_at": T0},
        ],
        "tasks": [
            {"id": "t1", "title": "Build login", "description": "Password and OAuth sign-in",
             "type": "feature", "priority": "high",
             "status": "in_progress", "assignee_id": "m1", "reporter_id": "u2",
             "dependencies": "t2", "blocked_by": "", "authorized_users": "u1,m2",
             "confidentiality_level": "team", "created_at": T0, "due_date": T0 + 7 * DAY},
            {"id": "t2", "title": "Design schema", "description": "Tables for the hosted store",
             "type": "research", "priority": "medium",
             "status": "completed", "assignee_id": "m2", "reporter_id": "u1",
             "dependencies": "t404", "created_at": T0, "completed_at": T0 + DAY},
        ],
        "security_alerts": [
            {"id": "a1", "type": "secret_leak", "severity": "high", "title": "Leaked API key",
             "description": "Service key committed to .env",
             "status": "investigating", "assigned_to": "u2", "trigger_data": '{"file": ".env"}',
             "evidence": '["commit abc"]', "detected_at": T0, "rollback_suggested": 1},
        ],
        "audit_logs": [
            {"id": "l1", "action_type": "deploy", "description": "Release", "user_id": "u1",
             "context_data": '{"env": "prod"}', "timestamp": T0, "requires_approval": 1,
             "approved": 1, "approved_by": "u2", "approved_at": T0 + DAY},
        ],
        "deployments": [
            {"id": "d1", "environment": "prod", "version": "1.2.0", "status": "success",
             "deployed_by": "u1", "deployed_at": T0, "pipeline_config": '{"steps": 3}',
             "logs": "ok", "health_checks": "all green"},
        ],
        "snapshots": [
            {"id": "s1", "environment": "production", "git_commit": None,
             "config_files": "app.yaml,db.yaml", "created_at": T0, "verified": 1},
        ],
        "specifications": [
            {"id": "sp1", "raw_input": "Add rate limiting " * 20,
             "ai_interpretation": "Limit requests per API key to 100 per minute and return 429 when exceeded",
             "status": "in_progress", "assigned_to": "m2", "approved_by": "u1",
             "created_at": T0, "approved_at": T0 + DAY},
        ],
    }


class InMemoryDestination(DestinationStore):
    """
    Destination store held in dictionaries.

    Failure injection:
    - fail_insert / fail_delete / fail_count / fail_select: tables whose calls raise
    - lossy_tables: tables whose inserts silently drop the last row
    """

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {t: [] for t in IMPORT_ORDER}
        self.fail_insert = set()
        self.fail_delete = set()
        self.fail_count = set()
        self.fail_select = set()
        self.lossy_tables = set()
        self.calls: List[tuple] = []

    def _fail(self, op: str, table: str):
        raise DestinationError(f"{op} {table} rejected", table=table, status_code=500)

    async def insert_batch(self, table: str, rows: Sequence[Dict[str, Any]]) -> int:
        self.calls.append(("insert", table))
        if table in self.fail_insert:
            self._fail("insert", table)
        rows = copy.deepcopy(list(rows))
        if table in self.lossy_tables and rows:
            rows = rows[:-1]
        self.tables.setdefault(table, []).extend(rows)
        return len(rows)

    async def select(
        self,
        table: str,
        columns: Optional[List[str]] = None,
        filters: Optional[List[Predicate]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        self.calls.append(("select", table))
        if table in self.fail_select:
            self._fail("select", table)
        rows = [r for r in self.tables.get(table, []) if all(p.matches(r) for p in filters or [])]
        if columns:
            rows = [{c: r.get(c) for c in columns} for r in rows]
        if limit is not None:
            rows = rows[:limit]
        return copy.deepcopy(rows)

    async def delete_where(self, table: str, predicate: Predicate) -> int:
        self.calls.append(("delete", table))
        if table in self.fail_delete:
            self._fail("delete", table)
        kept = [r for r in self.tables.get(table, []) if not predicate.matches(r)]
        deleted = len(self.tables.get(table, [])) - len(kept)
        self.tables[table] = kept
        return deleted

    async def count(self, table: str, filters: Optional[List[Predicate]] = None) -> int:
        self.calls.append(("count", table))
        if table in self.fail_count:
            self._fail("count", table)
        return len([r for r in self.tables.get(table, []) if all(p.matches(r) for p in filters or [])])

    def snapshot(self) -> Dict[str, List[Dict[str, Any]]]:
        return copy.deepcopy(self.tables)

    def writes(self) -> List[tuple]:
        return [c for c in self.calls if c[0] in ("insert", "delete")]


SYSTEM_IDENTITY = {
    "id": "00000000-0000-0000-0000-000000000001",
    "email": "system@storeshift.local",
    "name": "System",
    "role": "admin",
    "status": "active",
}


@pytest.fixture
def source_path(tmp_path):
    return build_source(tmp_path / "legacy.db", sample_rows())


@pytest.fixture
def destination():
    return InMemoryDestination()


@pytest.fixture
def seeded_destination():
    """Destination that already holds the preserved system identity."""
    destination = InMemoryDestination()
    destination.tables["users"].append(dict(SYSTEM_IDENTITY))
    return destination


@pytest.fixture
def backup_store(tmp_path):
    return FileBackupStore(str(tmp_path / "backups"))


@pytest.fixture
def report_sink(tmp_path):
    return FileReportSink(str(tmp_path / "reports"))


@pytest.fixture
def config(tmp_path, source_path):
    return MigrationConfig(
        source_path=source_path,
        destination_url="https://project.supabase.co",
        destination_api_key="service-key",
        output_dir=str(tmp_path / "out"),
    )


def make_orchestrator(config, destination) -> MigrationOrchestrator:
    return MigrationOrchestrator(config, destination=destination)


@pytest.fixture
def orchestrator(config, destination):
    return make_orchestrator(config, destination)
