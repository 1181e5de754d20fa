"""Tests for backups, rollback and restore."""

import json

import pytest

from storeshift.extractors.sqlite_extractor import SQLiteSourceStore, SourceExporter
from storeshift.loaders.importer import DestinationImporter
from storeshift.models.errors import BackupNotFoundError, ErrorKind, RollbackError
from storeshift.models.schema import IMPORT_ORDER, ROLLBACK_ORDER
from storeshift.services.backup import BackupSnapshot, new_backup_id
from storeshift.services.rollback import RollbackManager
from storeshift.services.transformer import MigrationTransformer

from conftest import SYSTEM_IDENTITY


async def migrate(source_path, destination):
    dataset = SourceExporter(SQLiteSourceStore(source_path)).export()
    transformed = MigrationTransformer(admin_email="migration-admin@storeshift.local").transform(dataset)
    result = await DestinationImporter(destination).import_all(transformed.records)
    assert result.success


def manager(destination, backup_store):
    return RollbackManager(destination, backup_store, preserved_identity_emails=[SYSTEM_IDENTITY["email"]])


class TestBackupStore:
    def test_backup_id_format(self):
        backup_id = new_backup_id()
        prefix, millis = backup_id.rsplit("_", 1)
        assert prefix == "rollback_backup"
        assert millis.isdigit() and len(millis) >= 13

    def test_save_load_and_list(self, backup_store):
        snapshot = BackupSnapshot(
            backup_id="rollback_backup_1",
            created_at="2024-01-01T00:00:00+00:00",
            tables={"users": [{"id": "a"}], "tasks": []},
        )
        path = backup_store.save(snapshot)

        with open(path) as f:
            stored = json.load(f)
        assert stored["metadata"]["record_counts"] == {"users": 1, "tasks": 0}
        assert backup_store.load("rollback_backup_1").tables == snapshot.tables
        assert [m["backup_id"] for m in backup_store.list_backups()] == ["rollback_backup_1"]

    def test_backups_are_write_once(self, backup_store):
        snapshot = BackupSnapshot(backup_id="rollback_backup_2", created_at="")
        backup_store.save(snapshot)
        with pytest.raises(RollbackError):
            backup_store.save(snapshot)

    def test_missing_backup(self, backup_store):
        with pytest.raises(BackupNotFoundError):
            backup_store.load("rollback_backup_404")
        with pytest.raises(BackupNotFoundError):
            backup_store.load("../etc/passwd")


class TestRollback:
    @pytest.mark.asyncio
    async def test_requires_confirmation(self, source_path, destination, backup_store):
        await migrate(source_path, destination)
        before = destination.snapshot()

        result = await manager(destination, backup_store).rollback(confirm=False)

        assert not result.success
        assert result.errors[0].kind == ErrorKind.ROLLBACK_ERROR
        assert destination.snapshot() == before
        assert backup_store.list_backups() == []

    @pytest.mark.asyncio
    async def test_deletes_everything_but_preserved_identities(self, source_path, seeded_destination, backup_store):
        await migrate(source_path, seeded_destination)

        result = await manager(seeded_destination, backup_store).rollback(confirm=True)

        assert result.success, [e.to_dict() for e in result.errors]
        for table in IMPORT_ORDER:
            expected = 1 if table == "users" else 0
            assert len(seeded_destination.tables[table]) == expected
        assert seeded_destination.tables["users"][0]["email"] == SYSTEM_IDENTITY["email"]
        assert result.preserved_identities == 1
        assert result.deleted_counts["users"] == 4
        assert result.deleted_counts["tasks"] == 2

    @pytest.mark.asyncio
    async def test_deletes_in_reverse_dependency_order(self, source_path, destination, backup_store):
        await migrate(source_path, destination)
        destination.calls.clear()

        await manager(destination, backup_store).rollback(confirm=True, create_backup=False)

        deletes = [table for op, table in destination.calls if op == "delete"]
        assert deletes == ROLLBACK_ORDER

    @pytest.mark.asyncio
    async def test_backup_taken_first(self, source_path, destination, backup_store):
        await migrate(source_path, destination)
        before = destination.snapshot()

        result = await manager(destination, backup_store).rollback(confirm=True)

        snapshot = backup_store.load(result.backup_id)
        assert snapshot.tables == before

    @pytest.mark.asyncio
    async def test_failed_backup_aborts(self, source_path, destination, backup_store):
        await migrate(source_path, destination)
        destination.fail_select.add("tasks")
        before = destination.snapshot()

        result = await manager(destination, backup_store).rollback(confirm=True)

        assert not result.success
        assert result.backup_id is None
        assert destination.snapshot() == before

    @pytest.mark.asyncio
    async def test_delete_failure_is_collected(self, source_path, destination, backup_store):
        await migrate(source_path, destination)
        destination.fail_delete.add("tasks")

        result = await manager(destination, backup_store).rollback(confirm=True, create_backup=False)

        assert not result.success
        assert "tasks" not in result.deleted_counts
        assert destination.tables["security_alerts"] == []
        assert result.remaining_counts["tasks"] == 2
        assert {e.table for e in result.errors} >= {"tasks"}


class TestRestore:
    @pytest.mark.asyncio
    async def test_round_trip(self, source_path, seeded_destination, backup_store):
        await migrate(source_path, seeded_destination)
        before = seeded_destination.snapshot()
        rollback_manager = manager(seeded_destination, backup_store)

        rolled_back = await rollback_manager.rollback(confirm=True)
        restored = await rollback_manager.restore(rolled_back.backup_id)

        assert restored.success
        assert restored.skipped_counts["users"] == 1
        for table in IMPORT_ORDER:
            restored_rows = sorted(seeded_destination.tables[table], key=lambda row: row["id"])
            assert restored_rows == sorted(before[table], key=lambda row: row["id"])

    @pytest.mark.asyncio
    async def test_unknown_backup(self, destination, backup_store):
        result = await manager(destination, backup_store).restore("rollback_backup_0")

        assert not result.success
        assert result.errors[0].kind == ErrorKind.RESTORE_ERROR
        assert destination.writes() == []

    @pytest.mark.asyncio
    async def test_stops_at_first_rejected_table(self, source_path, destination, backup_store):
        await migrate(source_path, destination)
        rollback_manager = manager(destination, backup_store)
        rolled_back = await rollback_manager.rollback(confirm=True)
        destination.fail_insert.add("tasks")

        result = await rollback_manager.restore(rolled_back.backup_id)

        assert not result.success
        assert "tasks" not in result.restored_counts
        assert "security_alerts" not in result.restored_counts
        assert result.restored_counts["team_members"] == 2
