"""
Post-import verification against the live destination.

Four checks, all run even when an earlier one fails:
1. Count parity per table (baseline plus transformed rows)
2. Field-by-field comparison of a bounded sample, located via the mapping
3. Referential integrity of every reference column
4. Domain consistency: unique fields, enum values, email shape, date order
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set
from datetime import datetime

from ..loaders.base import DestinationStore, Predicate
from ..models.errors import DestinationError, ErrorKind, MigrationIssue
from ..models.mapping import IdentifierMapping, MEMBER_IDENTITY_SCOPE, SYSTEM_SCOPE
from ..models.record import TransformedRecord, to_jsonable
from ..models.schema import DESTINATION_TABLES, DestinationTableSpec, IMPORT_ORDER
from .validator import ValidationRules, coerce_datetime

logger = logging.getLogger(__name__)


@dataclass
class CheckResult:
    """Outcome of one verification check."""
    check_name: str
    passed: bool
    expected: Dict[str, int] = field(default_factory=dict)
    actual: Dict[str, int] = field(default_factory=dict)
    discrepancies: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def summary(self) -> str:
        """Human-readable summary of the check."""
        status = "PASSED" if self.passed else "FAILED"
        msg = f"{status}: {self.check_name}"
        if not self.passed:
            if self.error:
                msg += f" - Error: {self.error}"
            elif self.discrepancies:
                msg += f" - {len(self.discrepancies)} discrepancies found"
        return msg

    def to_dict(self) -> Dict[str, Any]:
        return {
            "check_name": self.check_name,
            "passed": self.passed,
            "expected": self.expected,
            "actual": self.actual,
            "discrepancies": self.discrepancies,
            "error": self.error,
        }


@dataclass
class VerificationReport:
    """All check results for one verification pass."""
    checks: List[CheckResult] = field(default_factory=list)
    passed: bool = True

    def add_check(self, result: CheckResult) -> None:
        """Add a verification check result."""
        self.checks.append(result)
        if not result.passed:
            self.passed = False

    @property
    def success(self) -> bool:
        return self.passed and bool(self.checks)

    @property
    def failed_checks(self) -> List[CheckResult]:
        return [c for c in self.checks if not c.passed]

    def check(self, name: str) -> Optional[CheckResult]:
        for result in self.checks:
            if result.check_name == name:
                return result
        return None

    def as_issues(self) -> List[MigrationIssue]:
        return [
            MigrationIssue(
                kind=ErrorKind.VERIFICATION_DISCREPANCY,
                message=c.summary,
                context={"discrepancies": c.discrepancies[:20], "error": c.error},
            )
            for c in self.failed_checks
        ]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "total_checks": len(self.checks),
            "failed_checks": len(self.failed_checks),
            "checks": [c.to_dict() for c in self.checks],
        }


def values_match(expected: Any, actual: Any) -> bool:
    """Compare a transformed value with what the destination returned."""
    if expected is None or actual is None:
        return expected is None and actual is None
    if isinstance(expected, datetime):
        try:
            return coerce_datetime(expected) == coerce_datetime(actual)
        except (ValueError, OverflowError):
            return str(expected) == str(actual)
    return to_jsonable(expected) == actual


class MigrationVerifier:
    """Checks the destination against a transformed dataset and its mapping."""

    CHECK_COUNTS = "counts"
    CHECK_SAMPLES = "samples"
    CHECK_RELATIONSHIPS = "relationships"
    CHECK_CONSISTENCY = "consistency"

    def __init__(
        self,
        destination: DestinationStore,
        sample_size: int = 10,
        tables: Optional[Dict[str, DestinationTableSpec]] = None,
    ):
        """
        Args:
            destination: Store to verify
            sample_size: Records compared field-by-field per table
            tables: Destination table declarations
        """
        self.destination = destination
        self.sample_size = sample_size
        self.tables = tables or DESTINATION_TABLES

    async def verify_all(
        self,
        records_by_table: Dict[str, List[TransformedRecord]],
        mapping: IdentifierMapping,
        baseline_counts: Optional[Dict[str, int]] = None,
    ) -> VerificationReport:
        """
        Run every check and return the combined report.

        Args:
            records_by_table: Rows that were imported
            mapping: Identifier mapping of the run
            baseline_counts: Per-table counts before import (0 when omitted)
        """
        report = VerificationReport()
        report.add_check(await self.verify_counts(records_by_table, baseline_counts or {}))
        report.add_check(await self.verify_samples(records_by_table, mapping))
        report.add_check(await self.verify_relationships())
        report.add_check(await self.verify_consistency())

        for check in report.checks:
            log = logger.info if check.passed else logger.error
            log(check.summary)
        return report

    async def verify_counts(
        self,
        records_by_table: Dict[str, List[TransformedRecord]],
        baseline_counts: Dict[str, int],
    ) -> CheckResult:
        """Verify destination counts equal baseline plus imported rows."""
        result = CheckResult(check_name=self.CHECK_COUNTS, passed=True)
        try:
            for table in IMPORT_ORDER:
                expected = baseline_counts.get(table, 0) + len(records_by_table.get(table, []))
                actual = await self.destination.count(table)
                result.expected[table] = expected
                result.actual[table] = actual
                if expected != actual:
                    result.discrepancies.append({
                        "table": table,
                        "issue": "Count mismatch",
                        "expected": expected,
                        "actual": actual,
                    })
        except DestinationError as e:
            result.error = str(e)
        result.passed = result.error is None and not result.discrepancies
        return result

    @staticmethod
    def _mapping_scope(record: TransformedRecord) -> str:
        if record.source_key is None:
            return SYSTEM_SCOPE
        if record.table == "users" and record.source_table == "team_members":
            return MEMBER_IDENTITY_SCOPE
        return record.table

    async def verify_samples(
        self,
        records_by_table: Dict[str, List[TransformedRecord]],
        mapping: IdentifierMapping,
    ) -> CheckResult:
        """Compare a bounded sample per table field-by-field."""
        result = CheckResult(check_name=self.CHECK_SAMPLES, passed=True)
        try:
            for table in IMPORT_ORDER:
                sample = [r for r in records_by_table.get(table, []) if r.source_key is not None]
                sample = sample[:self.sample_size]
                result.expected[table] = len(sample)
                if not sample:
                    result.actual[table] = 0
                    continue

                surrogates = {}
                for record in sample:
                    surrogate = mapping.get(self._mapping_scope(record), record.source_key)
                    if surrogate is None:
                        result.discrepancies.append({
                            "table": table,
                            "source_key": record.source_key,
                            "issue": "Source key has no mapping entry",
                        })
                    else:
                        surrogates[surrogate] = record

                rows = await self.destination.select(
                    table, filters=[Predicate("id", "in", list(surrogates))]
                ) if surrogates else []
                found = {str(row.get("id")): row for row in rows}
                result.actual[table] = len(found)

                for surrogate, record in surrogates.items():
                    row = found.get(surrogate)
                    if row is None:
                        result.discrepancies.append({
                            "table": table,
                            "source_key": record.source_key,
                            "id": surrogate,
                            "issue": "Missing in destination",
                        })
                        continue
                    mismatched = [
                        name for name, value in record.data.items()
                        if name in row and not values_match(value, row[name])
                    ]
                    if mismatched:
                        result.discrepancies.append({
                            "table": table,
                            "source_key": record.source_key,
                            "id": surrogate,
                            "issue": "Field mismatch",
                            "fields": mismatched,
                        })
        except DestinationError as e:
            result.error = str(e)
        result.passed = result.error is None and not result.discrepancies
        return result

    async def _ids(self, table: str, cache: Dict[str, Set[str]]) -> Set[str]:
        if table not in cache:
            rows = await self.destination.select(table, columns=["id"])
            cache[table] = {str(row["id"]) for row in rows}
        return cache[table]

    async def verify_relationships(self) -> CheckResult:
        """Every reference column must point at an existing row."""
        result = CheckResult(check_name=self.CHECK_RELATIONSHIPS, passed=True)
        id_cache: Dict[str, Set[str]] = {}
        try:
            for table in IMPORT_ORDER:
                spec = self.tables.get(table)
                if spec is None or not spec.references:
                    continue
                columns = ["id"] + list(spec.references)
                rows = await self.destination.select(table, columns=columns)
                result.actual[table] = len(rows)
                for row in rows:
                    for field_name, ref in spec.references.items():
                        value = row.get(field_name)
                        targets = (value or []) if ref.many else ([] if value is None else [value])
                        known = await self._ids(ref.table, id_cache)
                        dangling = [str(v) for v in targets if str(v) not in known]
                        if dangling:
                            result.discrepancies.append({
                                "table": table,
                                "id": row.get("id"),
                                "field": field_name,
                                "issue": f"Dangling reference to {ref.table}",
                                "values": dangling,
                            })
        except DestinationError as e:
            result.error = str(e)
        result.passed = result.error is None and not result.discrepancies
        return result

    async def verify_consistency(self) -> CheckResult:
        """Duplicates, illegal enum values, bad emails and reversed dates."""
        result = CheckResult(check_name=self.CHECK_CONSISTENCY, passed=True)
        try:
            for table in IMPORT_ORDER:
                spec = self.tables.get(table)
                if spec is None:
                    continue
                rows = await self.destination.select(table)
                result.actual[table] = len(rows)

                def add(row: Dict[str, Any], field_name: str, issue: Optional[str]) -> None:
                    if issue:
                        result.discrepancies.append({
                            "table": table,
                            "id": row.get("id"),
                            "field": field_name,
                            "issue": issue,
                        })

                for field_name in spec.unique_fields:
                    seen: Set[str] = set()
                    for row in rows:
                        value = row.get(field_name)
                        if value is None:
                            continue
                        key = str(value).lower()
                        add(row, field_name, "Duplicate value" if key in seen else None)
                        seen.add(key)

                for row in rows:
                    for field_name, allowed in spec.enums.items():
                        add(row, field_name, ValidationRules.enum_member(row.get(field_name), allowed))
                    for field_name in spec.email_fields:
                        add(row, field_name, ValidationRules.email(row.get(field_name)))
                    for earlier, later in spec.date_order:
                        add(row, later, ValidationRules.date_order(row.get(earlier), row.get(later), earlier))
        except DestinationError as e:
            result.error = str(e)
        result.passed = result.error is None and not result.discrepancies
        return result
