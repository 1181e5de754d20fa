"""Migration orchestrator - coordinates the complete migration process."""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .extractors.base import ExportedDataset, SourceStore
from .extractors.sqlite_extractor import SQLiteSourceStore, SourceExporter
from .loaders.base import DestinationStore, ImportResult
from .loaders.importer import DestinationImporter
from .loaders.postgrest import PostgrestDestination
from .models.errors import (
    ExportError,
    MigrationIssue,
    RestoreError,
    RollbackError,
    TransformationError,
)
from .models.mapping import IdentifierMapping
from .models.migration import MigrationConfig, MigrationPhase, MigrationRun
from .services.backup import FileBackupStore
from .services.progress import FileReportSink, ProgressTracker, RunReport
from .services.rollback import RestoreResult, RollbackManager, RollbackResult
from .services.transformer import MigrationTransformer, TransformationResult
from .services.validator import DatasetValidator, ValidationReport
from .services.verifier import MigrationVerifier, VerificationReport

logger = logging.getLogger(__name__)


@dataclass
class MigrationResult:
    """Outcome of the export-transform-validate-import part of a run."""
    run_id: str
    success: bool = False
    dry_run: bool = False
    export: Optional[ExportedDataset] = None
    transformation: Optional[TransformationResult] = None
    validation: Optional[ValidationReport] = None
    import_result: Optional[ImportResult] = None
    mapping_path: Optional[str] = None
    error: Optional[MigrationIssue] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "success": self.success,
            "dry_run": self.dry_run,
            "export": self.export.to_dict() if self.export else None,
            "transformation": self.transformation.to_dict() if self.transformation else None,
            "validation": self.validation.to_dict() if self.validation else None,
            "import": self.import_result.to_dict() if self.import_result else None,
            "mapping_path": self.mapping_path,
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass
class CompleteMigrationResult:
    """The full sub-result chain of one run."""
    success: bool
    migration: MigrationResult
    verification: Optional[VerificationReport] = None
    rollback: Optional[RollbackResult] = None
    error: Optional[str] = None
    report_path: Optional[str] = None
    issues: List[MigrationIssue] = field(default_factory=list)
    run: Optional[MigrationRun] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "migration": self.migration.to_dict(),
            "verification": self.verification.to_dict() if self.verification else None,
            "rollback": self.rollback.to_dict() if self.rollback else None,
            "error": self.error,
            "report_path": self.report_path,
            "issues": [i.to_dict() for i in self.issues],
            "run": self.run.to_dict() if self.run else None,
        }


class MigrationOrchestrator:
    """
    Orchestrates the complete migration process.

    Handles:
    - Export of the legacy store
    - Two-pass transformation and identifier mapping
    - Validation before any write
    - Import in dependency order
    - Verification, with compensating rollback on failure
    - Progress tracking and the run report
    """

    def __init__(
        self,
        config: MigrationConfig,
        source: Optional[SourceStore] = None,
        destination: Optional[DestinationStore] = None,
        backup_store: Optional[FileBackupStore] = None,
        report_sink: Optional[FileReportSink] = None,
        tracker: Optional[ProgressTracker] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Migration configuration
            source: Legacy store (defaults to SQLite at config.source_path)
            destination: Hosted store (defaults to PostgREST at config.destination_url)
            backup_store: Snapshot storage (defaults to config.backup_dir)
            report_sink: Report storage (defaults to config.report_dir)
            tracker: Progress tracker (defaults to one built from config thresholds)
        """
        self.config = config
        self._source = source
        self._destination = destination
        self._owns_destination = destination is None
        self.backup_store = backup_store or FileBackupStore(config.backup_dir)
        self.report_sink = report_sink or FileReportSink(config.report_dir)
        self.tracker = tracker or ProgressTracker(
            slow_run_seconds=config.slow_run_seconds,
            slow_phase_seconds=config.slow_phase_seconds,
            error_rate_threshold=config.error_rate_threshold,
            heartbeat_interval=config.heartbeat_interval,
        )
        self.last_result: Optional[CompleteMigrationResult] = None
        self.last_report: Optional[RunReport] = None

    @property
    def source(self) -> SourceStore:
        if self._source is None:
            self._source = SQLiteSourceStore(self.config.source_path)
        return self._source

    @property
    def destination(self) -> DestinationStore:
        if self._destination is None:
            self._destination = PostgrestDestination(
                url=self.config.destination_url,
                api_key=self.config.destination_api_key or "",
                schema=self.config.destination_schema,
                timeout=self.config.request_timeout,
                max_retries=self.config.max_retries,
                backoff_factor=self.config.backoff_factor,
            )
        return self._destination

    @property
    def rollback_manager(self) -> RollbackManager:
        return RollbackManager(
            self.destination,
            self.backup_store,
            preserved_identity_emails=self.config.preserved_identity_emails,
        )

    @property
    def is_migration_in_progress(self) -> bool:
        return self.tracker.is_in_progress

    @property
    def status_summary(self) -> Dict[str, Any]:
        summary = self.tracker.status_summary()
        summary["last_success"] = self.last_result.success if self.last_result else None
        return summary

    def _progress_callback(self, verb: str):
        def on_table(table: str, index: int, total: int) -> None:
            self.tracker.update(index / total, f"{verb} {table}")
        return on_table

    # Full run

    async def execute_complete_migration(
        self,
        dry_run: Optional[bool] = None,
        skip_validation: Optional[bool] = None,
        auto_verify: Optional[bool] = None,
        create_backup: Optional[bool] = None,
    ) -> CompleteMigrationResult:
        """
        Run the complete migration. Unset flags fall back to the config.

        Raises:
            InvalidPhaseTransition: if another run is still in progress
        """
        run = MigrationRun(
            dry_run=self.config.dry_run if dry_run is None else dry_run,
            skip_validation=self.config.skip_validation if skip_validation is None else skip_validation,
            auto_verify=self.config.auto_verify if auto_verify is None else auto_verify,
            create_backup=self.config.create_backup if create_backup is None else create_backup,
        )
        self.tracker.start(run.id)
        logger.info(f"=== MIGRATION {run.id} STARTED (dry_run={run.dry_run}) ===")

        migration = MigrationResult(run_id=run.id, dry_run=run.dry_run)
        result = CompleteMigrationResult(success=False, migration=migration, run=run)

        try:
            await self._run_phases(run, result)
        except Exception as e:
            logger.exception(f"Migration {run.id} failed unexpectedly")
            result.success = False
            result.error = result.error or str(e)
            if self.tracker.is_in_progress:
                self.tracker.transition(MigrationPhase.FAILED, f"Unexpected error: {e}")
        finally:
            result.issues = [issue for _, issue in self.tracker.issues]
            run.phase = self.tracker.phase
            for issue in result.issues:
                run.add_issue(issue)
            run.finish(result.success, {"success": result.success, "error": result.error})
            self.last_report = self.tracker.generate_report(result.to_dict())
            result.report_path = str(self.report_sink.write(self.last_report))
            self.last_result = result
            status = "COMPLETED" if result.success else "FAILED"
            logger.info(f"=== MIGRATION {run.id} {status} ===")
            await self.close()

        return result

    def _fail(self, result: CompleteMigrationResult, issue: MigrationIssue) -> None:
        self.tracker.record_failure(issue)
        result.migration.error = result.migration.error or issue
        result.error = result.error or issue.message
        self.tracker.transition(MigrationPhase.FAILED, issue.message)

    async def _run_phases(self, run: MigrationRun, result: CompleteMigrationResult) -> None:
        migration = result.migration

        # Phase 1: Export
        self.tracker.transition(MigrationPhase.EXPORTING, "Exporting legacy store")
        try:
            exporter = SourceExporter(self.source, on_table=self._progress_callback("Exported"))
            migration.export = exporter.export()
        except ExportError as e:
            self._fail(result, e.to_issue())
            return
        finally:
            self.source.close()
        self.tracker.record_success(migration.export.total_records)

        # Phase 2: Transform
        self.tracker.transition(MigrationPhase.TRANSFORMING, "Transforming records")
        try:
            transformer = MigrationTransformer(
                admin_email=self.config.admin_email,
                admin_name=self.config.admin_name,
                on_table=self._progress_callback("Transformed"),
            )
            migration.transformation = transformer.transform(migration.export)
        except TransformationError as e:
            self._fail(result, e.to_issue())
            return
        self.tracker.record_success(migration.transformation.total_records)

        # Phase 3: Validate
        if not run.skip_validation:
            self.tracker.transition(MigrationPhase.VALIDATING, "Validating transformed data")
            migration.validation = DatasetValidator().validate(migration.transformation.records)
            if not migration.validation.success:
                self._fail(result, migration.validation.as_issue())
                return

        if run.dry_run:
            logger.info("DRY RUN - no data written")
            migration.success = True
            result.success = True
            self.tracker.transition(MigrationPhase.COMPLETED, "Dry run completed")
            return

        # Phase 4: Import
        self.tracker.transition(MigrationPhase.IMPORTING, "Importing into destination")
        importer = DestinationImporter(self.destination, on_table=self._progress_callback("Imported"))
        migration.import_result = await importer.import_all(migration.transformation.records)
        if not migration.import_result.success:
            for issue in migration.import_result.errors[1:]:
                self.tracker.record_failure(issue)
            self._fail(result, migration.import_result.errors[0])
            if run.create_backup:
                await self._compensate(result, "Rolling back partial import")
            else:
                logger.warning(
                    f"Tables left committed after failed import: {migration.import_result.tables_written}"
                )
            return
        self.tracker.record_success(migration.import_result.total_imported)
        migration.mapping_path = self._save_mapping(
            run.id, migration.transformation.mapping, migration.import_result.baseline_counts
        )
        migration.success = True

        # Phase 5: Verify
        if run.auto_verify:
            self.tracker.transition(MigrationPhase.VERIFYING, "Verifying destination")
            verifier = MigrationVerifier(self.destination, sample_size=self.config.sample_size)
            result.verification = await verifier.verify_all(
                migration.transformation.records,
                migration.transformation.mapping,
                migration.import_result.baseline_counts,
            )
            if not result.verification.success:
                issues = result.verification.as_issues()
                if run.create_backup:
                    for issue in issues[1:]:
                        self.tracker.record_failure(issue)
                    self._fail(result, issues[0])
                    await self._compensate(result, "Rolling back after failed verification")
                    return
                # Non-fatal without a backup: keep the data and report the discrepancies.
                for issue in issues:
                    self.tracker.record_failure(issue)
                logger.warning(f"Verification found {len(issues)} discrepancies; data left in place")

        result.success = True
        self.tracker.transition(MigrationPhase.COMPLETED, "Migration completed")

    async def _compensate(self, result: CompleteMigrationResult, label: str) -> None:
        """Roll back a failed import or verification. The run stays a failure."""
        self.tracker.transition(MigrationPhase.ROLLING_BACK, label)
        result.rollback = await self.rollback_manager.rollback(confirm=True, create_backup=True)
        if result.rollback.success:
            self.tracker.transition(MigrationPhase.COMPLETED, "Rollback completed")
        else:
            for issue in result.rollback.errors:
                self.tracker.record_failure(issue)
            self.tracker.transition(MigrationPhase.FAILED, "Rollback failed")

    def _save_mapping(self, run_id: str, mapping: IdentifierMapping, baseline: Dict[str, int]) -> str:
        """Persist the run mapping for later standalone verification."""
        directory = Path(self.config.mapping_dir)
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / f"{run_id}.json"
        payload = mapping.to_dict()
        payload["run_id"] = run_id
        payload["created_at"] = datetime.now(timezone.utc).isoformat()
        payload["baseline_counts"] = baseline
        with open(path, "w") as f:
            json.dump(payload, f, indent=2)
        logger.info(f"Saved identifier mapping to {path}")
        return str(path)

    # Standalone operations

    async def verify_migration(self, mapping_path: str) -> VerificationReport:
        """
        Verify the destination against a persisted run mapping.

        The legacy store is exported and transformed again with the mapping
        as seed, which reproduces the surrogate keys of that run.
        """
        with open(mapping_path, "r") as f:
            payload = json.load(f)
        mapping = IdentifierMapping.from_dict(payload)

        try:
            dataset = SourceExporter(self.source).export()
        finally:
            self.source.close()
        transformed = MigrationTransformer(
            admin_email=self.config.admin_email,
            admin_name=self.config.admin_name,
            seed_mapping=mapping,
        ).transform(dataset)

        verifier = MigrationVerifier(self.destination, sample_size=self.config.sample_size)
        return await verifier.verify_all(
            transformed.records,
            mapping,
            payload.get("baseline_counts", {}),
        )

    async def rollback_migration(self, confirm: bool = False, preserve_backup: bool = True) -> RollbackResult:
        """Delete migrated data, snapshotting it first when preserve_backup is set."""
        if self.is_migration_in_progress:
            result = RollbackResult()
            result.errors.append(RollbackError("A migration is in progress").to_issue())
            return result
        return await self.rollback_manager.rollback(confirm=confirm, create_backup=preserve_backup)

    async def restore_from_backup(self, backup_id: str) -> RestoreResult:
        if self.is_migration_in_progress:
            result = RestoreResult(backup_id=backup_id)
            result.errors.append(RestoreError("A migration is in progress").to_issue())
            return result
        return await self.rollback_manager.restore(backup_id)

    async def close(self) -> None:
        """Close a destination client this orchestrator built itself."""
        if self._owns_destination and self._destination is not None:
            await self._destination.close()
            self._destination = None

    def list_backups(self) -> List[Dict[str, Any]]:
        return self.backup_store.list_backups()

    def generate_report(self, run_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Stored report for run_id, or the most recent one."""
        if run_id:
            return self.report_sink.load(run_id)
        if self.last_report is not None:
            return self.last_report.to_dict()
        return self.report_sink.latest()
