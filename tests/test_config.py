"""Tests for configuration loading and the run model."""

import json
import os

import pytest

from storeshift.models.errors import MigrationIssue, ErrorKind, RunFinalizedError
from storeshift.models.migration import MigrationConfig, MigrationRun


def test_defaults():
    config = MigrationConfig()
    assert config.sample_size == 10
    assert config.create_backup is True
    assert config.request_timeout is None
    assert config.backup_dir == os.path.join("./migration_output", "backups")


def test_from_json_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "source_path": "legacy.db",
        "destination_url": "https://project.supabase.co",
        "destination_api_key": "secret",
        "output_dir": str(tmp_path / "out"),
        "sample_size": 3,
        "preserved_identity_emails": ["ops@example.com"],
        "dry_run": True,
    }))

    config = MigrationConfig.from_json_file(str(path))

    assert config.source_path == "legacy.db"
    assert config.sample_size == 3
    assert config.dry_run is True
    assert config.preserved_identity_emails == ["ops@example.com"]
    assert config.report_dir == os.path.join(str(tmp_path / "out"), "reports")


def test_environment_fallbacks(monkeypatch):
    monkeypatch.setenv("STORESHIFT_SOURCE_PATH", "/data/legacy.db")
    monkeypatch.setenv("STORESHIFT_DESTINATION_URL", "https://env.supabase.co")
    monkeypatch.setenv("STORESHIFT_DESTINATION_KEY", "env-key")

    config = MigrationConfig.from_dict({})

    assert config.source_path == "/data/legacy.db"
    assert config.destination_url == "https://env.supabase.co"
    assert config.destination_api_key == "env-key"


def test_api_key_never_serialized():
    config = MigrationConfig(destination_api_key="secret")
    assert "secret" not in json.dumps(config.to_dict())


def test_run_is_frozen_after_finish():
    run = MigrationRun(dry_run=True)
    run.add_issue(MigrationIssue(kind=ErrorKind.EXPORT_ERROR, message="missing file"))
    run.finish(False, {"error": "missing file"})

    assert run.finalized
    assert run.duration_seconds is not None
    assert run.to_dict()["issues"][0]["kind"] == "export_error"
    with pytest.raises(RunFinalizedError):
        run.add_issue(MigrationIssue(kind=ErrorKind.EXPORT_ERROR, message="again"))
    with pytest.raises(RunFinalizedError):
        run.phase = None
    with pytest.raises(AttributeError):
        run.issues.append("x")
