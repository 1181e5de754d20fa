"""Tests for dataset validation."""

from datetime import datetime, timedelta, timezone

from storeshift.extractors.sqlite_extractor import SQLiteSourceStore, SourceExporter
from storeshift.models.errors import ErrorKind
from storeshift.models.record import RecordStatus, TransformedRecord
from storeshift.services.transformer import MigrationTransformer
from storeshift.services.validator import DatasetValidator, ValidationRules

from conftest import build_source, sample_rows


def transformed(path):
    dataset = SourceExporter(SQLiteSourceStore(path)).export()
    return MigrationTransformer(admin_email="migration-admin@storeshift.local").transform(dataset)


class TestValidationRules:
    def test_email(self):
        assert ValidationRules.email("a.b@example.co") is None
        assert ValidationRules.email("not-an-email") is not None
        assert ValidationRules.email(None) is not None

    def test_min_length(self):
        assert ValidationRules.min_length("ab", 2) is None
        assert ValidationRules.min_length(" a ", 2) is not None
        assert ValidationRules.min_length(None, 2) == "Required field is missing"

    def test_max_length(self):
        assert ValidationRules.max_length("abc", 3) is None
        assert ValidationRules.max_length("abcd", 3) is not None
        assert ValidationRules.max_length(None, 3) is None

    def test_pattern(self):
        version = r"v?\d+\.\d+\.\d+"
        assert ValidationRules.pattern("1.2.0", version) is None
        assert ValidationRules.pattern("v10.0.3-rc1", version) is None
        assert ValidationRules.pattern("release-7", version) is not None
        assert ValidationRules.pattern(None, version) is not None

    def test_commit_hash(self):
        assert ValidationRules.commit_hash("a" * 40) is None
        assert ValidationRules.commit_hash("abc123") is not None

    def test_date_order(self):
        now = datetime.now(timezone.utc)
        assert ValidationRules.date_order(now, None, "created_at") is None
        assert ValidationRules.date_order(now, now + timedelta(days=1), "created_at") is None
        assert ValidationRules.date_order(now, now - timedelta(days=1), "created_at") is not None
        assert ValidationRules.date_order(now.isoformat(), (now - timedelta(days=1)).isoformat(), "x")


class TestDatasetValidator:
    def test_clean_dataset_passes(self, source_path):
        result = transformed(source_path)
        report = DatasetValidator().validate(result.records)

        assert report.success, [e.to_dict() for e in report.errors]
        assert report.records_checked == result.total_records
        assert all(r.status == RecordStatus.VALIDATED for r in result.all_records())

    def test_invalid_email_gives_one_aggregated_issue(self, tmp_path):
        rows = sample_rows()
        rows["users"][1]["email"] = "bob-at-example"
        result = transformed(build_source(tmp_path / "bad_email.db", rows))

        report = DatasetValidator().validate(result.records)

        assert not report.success
        assert len(report.errors) == 1
        assert report.errors[0].field == "email"
        issue = report.as_issue()
        assert issue.kind == ErrorKind.VALIDATION_ERROR
        assert len(issue.context["violations"]) == 1

    def test_collects_every_violation(self, tmp_path):
        rows = sample_rows()
        rows["tasks"][0]["title"] = "ab"
        rows["security_alerts"][0]["title"] = "Key"
        rows["tasks"][1]["completed_at"] = rows["tasks"][1]["created_at"] - 1000
        result = transformed(build_source(tmp_path / "many.db", rows))

        report = DatasetValidator().validate(result.records)

        assert report.errors_by_table() == {"tasks": 2, "security_alerts": 1}

    def test_duplicate_email_case_insensitive(self, tmp_path):
        rows = sample_rows()
        rows["users"][1]["email"] = "Alice@Example.com"
        result = transformed(build_source(tmp_path / "dup.db", rows))

        report = DatasetValidator().validate(result.records)
        assert [e.error_type for e in report.errors] == ["unique"]

    def test_reference_outside_batch(self):
        record = TransformedRecord(
            id="m-1",
            table="team_members",
            data={"user_id": "nobody", "name": "Dana", "email": "dana@example.com"},
            source_key="m1",
        )
        report = DatasetValidator().validate({"users": [], "team_members": [record]})

        assert len(report.errors) == 1
        assert report.errors[0].error_type == "reference"
        assert record.status == RecordStatus.TRANSFORMED

    def test_required_reference_missing(self):
        record = TransformedRecord(
            id="m-1", table="team_members", data={"user_id": None, "name": "Dana", "email": "dana@example.com"}
        )
        report = DatasetValidator().validate({"team_members": [record]})
        assert [e.message for e in report.errors] == ["Required reference is missing"]

    def test_missing_descriptions_are_rejected_before_import(self, tmp_path):
        rows = sample_rows()
        for task in rows["tasks"]:
            task["description"] = None
        rows["security_alerts"][0]["description"] = "short"
        rows["audit_logs"][0]["description"] = "ok"
        result = transformed(build_source(tmp_path / "no_desc.db", rows))

        report = DatasetValidator().validate(result.records)

        assert report.errors_by_table() == {"tasks": 2, "security_alerts": 1, "audit_logs": 1}
        assert {e.field for e in report.errors} == {"description"}

    def test_specification_and_deployment_formats(self, tmp_path):
        rows = sample_rows()
        rows["specifications"][0]["raw_input"] = "Fix"
        rows["specifications"][0]["ai_interpretation"] = "Too short to be a spec"
        rows["deployments"][0]["version"] = "latest"
        result = transformed(build_source(tmp_path / "formats.db", rows))

        report = DatasetValidator().validate(result.records)

        failures = {(e.table, e.field, e.error_type) for e in report.errors}
        assert failures == {
            ("specifications", "title", "min_length"),
            ("specifications", "content", "min_length"),
            ("deployments", "version", "format"),
        }

    def test_roster_entries_need_name_and_email(self, tmp_path):
        rows = sample_rows()
        rows["team_members"][1]["name"] = "C"
        rows["team_members"][1]["email"] = "carol at example"
        result = transformed(build_source(tmp_path / "roster.db", rows))

        report = DatasetValidator().validate(result.records)

        team_errors = sorted(e.field for e in report.errors if e.table == "team_members")
        assert team_errors == ["email", "name"]
