"""Validation of the transformed dataset before anything is written."""

import re
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set
from datetime import datetime, timezone

from dateutil import parser as date_parser

from ..models.errors import ErrorKind, MigrationIssue
from ..models.record import RecordStatus, TransformedRecord, ValidationError
from ..models.schema import DESTINATION_TABLES, DestinationTableSpec, IMPORT_ORDER

logger = logging.getLogger(__name__)


def coerce_datetime(value: Any) -> Optional[datetime]:
    """Datetime or ISO string to an aware datetime; None stays None."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = date_parser.isoparse(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class ValidationRules:
    """Constraint checks shared by the validator and the verifier."""

    EMAIL_PATTERN = r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"
    COMMIT_HASH_LENGTH = 40

    @staticmethod
    def email(value: Any) -> Optional[str]:
        """Validate email format."""
        if value is None or not re.match(ValidationRules.EMAIL_PATTERN, str(value)):
            return "Invalid email format"
        return None

    @staticmethod
    def min_length(value: Any, minimum: int) -> Optional[str]:
        if value is None:
            return "Required field is missing"
        if len(str(value).strip()) < minimum:
            return f"Must be at least {minimum} characters"
        return None

    @staticmethod
    def max_length(value: Any, maximum: int) -> Optional[str]:
        if value is not None and len(str(value)) > maximum:
            return f"Must be at most {maximum} characters"
        return None

    @staticmethod
    def pattern(value: Any, regex: str) -> Optional[str]:
        if value is None or not re.match(regex, str(value)):
            return f"Does not match format {regex}"
        return None

    @staticmethod
    def commit_hash(value: Any) -> Optional[str]:
        if value is None or len(str(value)) != ValidationRules.COMMIT_HASH_LENGTH:
            return f"Commit hash must be exactly {ValidationRules.COMMIT_HASH_LENGTH} characters"
        return None

    @staticmethod
    def enum_member(value: Any, allowed: Iterable[str]) -> Optional[str]:
        if value not in allowed:
            return f"Value not in {sorted(allowed)}"
        return None

    @staticmethod
    def date_order(earlier: Any, later: Any, earlier_name: str) -> Optional[str]:
        """Later may be missing; when present it must not precede earlier."""
        try:
            start = coerce_datetime(earlier)
            end = coerce_datetime(later)
        except (ValueError, OverflowError):
            return "Unparseable timestamp"
        if start is None or end is None:
            return None
        if end < start:
            return f"Must not be earlier than {earlier_name}"
        return None


@dataclass
class ValidationReport:
    """Every violation found in one pass over the dataset."""
    errors: List[ValidationError] = field(default_factory=list)
    records_checked: int = 0
    tables_checked: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def errors_by_table(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for error in self.errors:
            counts[error.table] = counts.get(error.table, 0) + 1
        return counts

    def as_issue(self) -> MigrationIssue:
        """Collapse the report into a single aggregated error entry."""
        return MigrationIssue(
            kind=ErrorKind.VALIDATION_ERROR,
            message=f"{len(self.errors)} validation error(s) in {len(self.errors_by_table())} table(s)",
            context={"violations": [e.to_dict() for e in self.errors]},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "records_checked": self.records_checked,
            "tables_checked": self.tables_checked,
            "error_count": len(self.errors),
            "errors_by_table": self.errors_by_table(),
            "errors": [e.to_dict() for e in self.errors],
        }


class DatasetValidator:
    """
    Checks transformed rows against destination constraints, in memory.

    Checks:
    - Length bounds and required text fields
    - Email shape on identities and roster entries
    - Value formats such as release versions
    - 40-character commit hashes
    - Enum membership of translated fields
    - Logical date ordering
    - Unique fields within the batch
    - Every reference pointing at an id present in the batch
    """

    def __init__(self, tables: Optional[Dict[str, DestinationTableSpec]] = None):
        self.tables = tables or DESTINATION_TABLES

    def validate(self, records_by_table: Dict[str, List[TransformedRecord]]) -> ValidationReport:
        """
        Validate the whole dataset.

        Returns:
            One aggregate report; nothing is raised for violations
        """
        report = ValidationReport()
        ids_by_table: Dict[str, Set[str]] = {
            table: {r.id for r in rows} for table, rows in records_by_table.items()
        }

        for table in IMPORT_ORDER:
            spec = self.tables.get(table)
            rows = records_by_table.get(table, [])
            if spec is None:
                continue
            report.tables_checked.append(table)
            before = len(report.errors)

            for record in rows:
                record_errors = self.validate_record(record, spec, ids_by_table)
                report.errors.extend(record_errors)
                report.records_checked += 1
                if not record_errors:
                    record.status = RecordStatus.VALIDATED

            report.errors.extend(self._check_unique(rows, spec))

            found = len(report.errors) - before
            if found:
                logger.warning(f"{table}: {found} validation error(s)")

        if report.success:
            logger.info(f"Validation passed for {report.records_checked} records")
        else:
            logger.error(f"Validation failed with {len(report.errors)} error(s)")
        return report

    def validate_record(
        self,
        record: TransformedRecord,
        spec: DestinationTableSpec,
        ids_by_table: Dict[str, Set[str]],
    ) -> List[ValidationError]:
        """Validate a single record against its table spec."""
        errors = []
        data = record.data

        def add(field_name: str, message: Optional[str], error_type: str) -> None:
            if message:
                errors.append(ValidationError(
                    table=spec.name,
                    record_id=record.id,
                    field=field_name,
                    message=message,
                    error_type=error_type,
                    value=data.get(field_name),
                ))

        for field_name, minimum in spec.min_lengths.items():
            add(field_name, ValidationRules.min_length(data.get(field_name), minimum), "min_length")

        for field_name, maximum in spec.max_lengths.items():
            add(field_name, ValidationRules.max_length(data.get(field_name), maximum), "max_length")

        for field_name, regex in spec.patterns.items():
            add(field_name, ValidationRules.pattern(data.get(field_name), regex), "format")

        for field_name in spec.email_fields:
            add(field_name, ValidationRules.email(data.get(field_name)), "email")

        for field_name in spec.hash_fields:
            add(field_name, ValidationRules.commit_hash(data.get(field_name)), "commit_hash")

        for field_name, allowed in spec.enums.items():
            add(field_name, ValidationRules.enum_member(data.get(field_name), allowed), "enum")

        for earlier, later in spec.date_order:
            add(later, ValidationRules.date_order(data.get(earlier), data.get(later), earlier), "date_order")

        for field_name, ref in spec.references.items():
            value = data.get(field_name)
            known = ids_by_table.get(ref.table, set())
            if ref.many:
                missing = [v for v in value or [] if v not in known]
                if missing:
                    add(field_name, f"References unknown {ref.table} ids: {missing}", "reference")
            elif value is None:
                if not ref.nullable:
                    add(field_name, "Required reference is missing", "reference")
            elif value not in known:
                add(field_name, f"References unknown {ref.table} id {value}", "reference")

        return errors

    def _check_unique(self, rows: List[TransformedRecord], spec: DestinationTableSpec) -> List[ValidationError]:
        errors = []
        for field_name in spec.unique_fields:
            seen: Dict[str, str] = {}
            for record in rows:
                value = record.data.get(field_name)
                if value is None:
                    continue
                key = str(value).lower()
                if key in seen:
                    errors.append(ValidationError(
                        table=spec.name,
                        record_id=record.id,
                        field=field_name,
                        message=f"Duplicate {field_name}; also used by {seen[key]}",
                        error_type="unique",
                        value=value,
                    ))
                else:
                    seen[key] = record.id
        return errors
