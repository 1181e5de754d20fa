"""Tests for post-import verification."""

import pytest

from storeshift.extractors.sqlite_extractor import SQLiteSourceStore, SourceExporter
from storeshift.loaders.importer import DestinationImporter
from storeshift.models.errors import ErrorKind
from storeshift.services.transformer import MigrationTransformer
from storeshift.services.verifier import MigrationVerifier, values_match


@pytest.fixture
def transformed(source_path):
    dataset = SourceExporter(SQLiteSourceStore(source_path)).export()
    return MigrationTransformer(admin_email="migration-admin@storeshift.local").transform(dataset)


async def imported(destination, transformed):
    result = await DestinationImporter(destination).import_all(transformed.records)
    assert result.success
    return result


def test_values_match_datetimes_against_iso_text(transformed):
    created = transformed.records["tasks"][0].data["created_at"]
    assert values_match(created, created.isoformat())
    assert values_match(created, created.isoformat().replace("+00:00", "Z"))
    assert not values_match(created, None)


@pytest.mark.asyncio
async def test_clean_import_passes_every_check(destination, transformed):
    result = await imported(destination, transformed)

    report = await MigrationVerifier(destination).verify_all(
        transformed.records, transformed.mapping, result.baseline_counts
    )

    assert report.success, report.to_dict()
    assert [c.check_name for c in report.checks] == [
        "counts", "samples", "relationships", "consistency",
    ]


@pytest.mark.asyncio
async def test_counts_include_baseline(seeded_destination, transformed):
    result = await imported(seeded_destination, transformed)
    verifier = MigrationVerifier(seeded_destination)

    assert (await verifier.verify_counts(transformed.records, result.baseline_counts)).passed
    assert not (await verifier.verify_counts(transformed.records, {})).passed


@pytest.mark.asyncio
async def test_count_shortfall(destination, transformed):
    destination.lossy_tables.add("tasks")
    await imported(destination, transformed)

    check = await MigrationVerifier(destination).verify_counts(transformed.records, {})

    assert not check.passed
    assert check.discrepancies == [
        {"table": "tasks", "issue": "Count mismatch", "expected": 2, "actual": 1},
    ]


@pytest.mark.asyncio
async def test_sample_field_mismatch(destination, transformed):
    await imported(destination, transformed)
    destination.tables["users"][0]["name"] = "Someone Else"

    check = await MigrationVerifier(destination).verify_samples(transformed.records, transformed.mapping)

    assert not check.passed
    assert check.discrepancies[0]["fields"] == ["name"]


@pytest.mark.asyncio
async def test_dangling_reference(destination, transformed):
    await imported(destination, transformed)
    destination.tables["team_members"] = [
        m for m in destination.tables["team_members"]
        if m["id"] != transformed.mapping.resolve("team_members", "m1")
    ]

    check = await MigrationVerifier(destination).verify_relationships()

    assert not check.passed
    assert {d["field"] for d in check.discrepancies} == {"assignee_id"}


@pytest.mark.asyncio
async def test_consistency_flags_bad_enum(destination, transformed):
    await imported(destination, transformed)
    destination.tables["tasks"][0]["status"] = "pending"

    check = await MigrationVerifier(destination).verify_consistency()

    assert not check.passed
    assert check.discrepancies[0]["field"] == "status"


@pytest.mark.asyncio
async def test_destination_error_fails_check(destination, transformed):
    await imported(destination, transformed)
    destination.fail_select.add("users")

    report = await MigrationVerifier(destination).verify_all(transformed.records, transformed.mapping)

    assert not report.success
    assert report.check("samples").error
    issues = report.as_issues()
    assert issues and all(i.kind == ErrorKind.VERIFICATION_DISCREPANCY for i in issues)
