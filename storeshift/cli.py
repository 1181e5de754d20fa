"""Operator CLI for the storeshift migration."""

import argparse
import asyncio
import json
import logging
import os
import sys

from .models.migration import MigrationConfig
from .orchestrator import MigrationOrchestrator

logger = logging.getLogger(__name__)


def load_config(args) -> MigrationConfig:
    """Config from --config, or from environment variables alone."""
    if args.config:
        return MigrationConfig.from_json_file(args.config)
    return MigrationConfig.from_dict({})


def _print_banner(title: str):
    print("\n" + "=" * 60)
    print(title)
    print("=" * 60)


def _print_issues(issues):
    for issue in issues:
        location = f" [{issue.table}]" if issue.table else ""
        print(f"  - {issue.kind.value}{location}: {issue.message}")


def main():
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="storeshift - Migrate a legacy SQLite store into a hosted PostgREST database"
    )
    parser.add_argument("--config", help="Path to migration config JSON file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Run migration
    migrate_parser = subparsers.add_parser("migrate", help="Run the complete migration")
    migrate_parser.add_argument("--dry-run", action="store_true", help="Stop after validation; write nothing")
    migrate_parser.add_argument("--skip-validation", action="store_true", help="Import without validating")
    migrate_parser.add_argument("--no-auto-verify", action="store_true", help="Skip post-import verification")
    migrate_parser.add_argument("--no-backup", action="store_true", help="Do not roll back on failed verification")

    # Verify
    verify_parser = subparsers.add_parser("verify", help="Verify the destination against a saved run mapping")
    verify_parser.add_argument("--mapping", required=True, help="Path to a mapping file written by a run")

    # Rollback
    rollback_parser = subparsers.add_parser("rollback", help="Delete migrated data from the destination")
    rollback_parser.add_argument("--confirm", action="store_true", help="Required to actually delete")
    rollback_parser.add_argument("--no-backup", action="store_true", help="Do not snapshot before deleting")

    # Restore
    restore_parser = subparsers.add_parser("restore", help="Restore a backup into the destination")
    restore_parser.add_argument("--backup-id", required=True, help="Backup id to restore")
    restore_parser.add_argument("--confirm", action="store_true", help="Required to actually restore")

    # Backups
    subparsers.add_parser("backups", help="List stored backups")

    # Report
    report_parser = subparsers.add_parser("report", help="Show a run report")
    report_parser.add_argument("--run-id", help="Run id (default: most recent run)")

    # Serve HTTP API
    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    serve_parser.add_argument("--port", type=int, default=8000, help="Bind port")

    args = parser.parse_args()

    # Set up logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    if args.command == "serve":
        run_serve(args)
        return

    commands = {
        "migrate": run_migrate,
        "verify": run_verify,
        "rollback": run_rollback,
        "restore": run_restore,
        "backups": run_backups,
        "report": run_report,
    }
    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return

    orchestrator = MigrationOrchestrator(load_config(args))
    try:
        ok = handler(orchestrator, args)
    finally:
        asyncio.run(orchestrator.close())
    sys.exit(0 if ok else 1)


def run_serve(args):
    """Serve the HTTP API; routes read the same config file."""
    from .api.main import run_server

    if args.config:
        os.environ["STORESHIFT_CONFIG"] = os.path.abspath(args.config)
    run_server(host=args.host, port=args.port)


def run_migrate(orchestrator: MigrationOrchestrator, args) -> bool:
    """Run the complete migration."""
    result = asyncio.run(orchestrator.execute_complete_migration(
        dry_run=True if args.dry_run else None,
        skip_validation=True if args.skip_validation else None,
        auto_verify=False if args.no_auto_verify else None,
        create_backup=False if args.no_backup else None,
    ))

    _print_banner("MIGRATION COMPLETE" if result.success else "MIGRATION FAILED")
    migration = result.migration
    print(f"Run: {migration.run_id}")
    print(f"Dry run: {migration.dry_run}")
    if migration.transformation:
        print(f"Records transformed: {migration.transformation.total_records}")
        for table, count in migration.transformation.counts().items():
            print(f"  {table}: {count}")
    if migration.import_result:
        print(f"Records imported: {migration.import_result.total_imported}")
    if result.verification:
        print(f"Verification: {'passed' if result.verification.success else 'failed'}")
    if result.rollback:
        print(f"Rolled back: {result.rollback.success} (backup {result.rollback.backup_id})")
    if result.issues:
        print(f"\nIssues ({len(result.issues)}):")
        _print_issues(result.issues)
    print(f"\nReport: {result.report_path}")
    return result.success


def run_verify(orchestrator: MigrationOrchestrator, args) -> bool:
    """Verify a previous run."""
    report = asyncio.run(orchestrator.verify_migration(args.mapping))

    _print_banner("VERIFICATION PASSED" if report.success else "VERIFICATION FAILED")
    for check in report.checks:
        print(f"  {'PASS' if check.passed else 'FAIL'} {check.summary}")
        for discrepancy in check.discrepancies[:10]:
            print(f"      {discrepancy}")
    return report.success


def run_rollback(orchestrator: MigrationOrchestrator, args) -> bool:
    """Delete migrated data."""
    if not args.confirm:
        print("Rollback deletes migrated data from the destination. Re-run with --confirm.")
        return False

    result = asyncio.run(orchestrator.rollback_migration(
        confirm=True,
        preserve_backup=not args.no_backup,
    ))

    _print_banner("ROLLBACK COMPLETE" if result.success else "ROLLBACK FAILED")
    if result.backup_id:
        print(f"Backup: {result.backup_id}")
    print(f"Rows deleted: {result.total_deleted}")
    for table, count in result.deleted_counts.items():
        print(f"  {table}: {count}")
    print(f"Preserved identities: {result.preserved_identities}")
    if result.errors:
        print(f"\nErrors ({len(result.errors)}):")
        _print_issues(result.errors)
    return result.success


def run_restore(orchestrator: MigrationOrchestrator, args) -> bool:
    """Restore a stored backup."""
    if not args.confirm:
        print(f"Restore writes backup {args.backup_id} into the destination. Re-run with --confirm.")
        return False

    result = asyncio.run(orchestrator.restore_from_backup(args.backup_id))

    _print_banner("RESTORE COMPLETE" if result.success else "RESTORE FAILED")
    print(f"Rows restored: {result.total_restored}")
    for table, count in result.restored_counts.items():
        skipped = result.skipped_counts.get(table, 0)
        print(f"  {table}: {count} (skipped {skipped})")
    if result.errors:
        print(f"\nErrors ({len(result.errors)}):")
        _print_issues(result.errors)
    return result.success


def run_backups(orchestrator: MigrationOrchestrator, args) -> bool:
    """List stored backups."""
    backups = orchestrator.list_backups()
    print("\n=== Backups ===")
    if not backups:
        print("No backups found")
        return True

    for metadata in backups:
        total = sum(metadata.get("record_counts", {}).values())
        print(f"{metadata['backup_id']}  {metadata.get('created_at', '')}  {total} rows")
        if metadata.get("description"):
            print(f"    {metadata['description']}")
    return True


def run_report(orchestrator: MigrationOrchestrator, args) -> bool:
    """Print a stored run report."""
    try:
        report = orchestrator.generate_report(args.run_id)
    except FileNotFoundError:
        print(f"No report found for run {args.run_id}")
        return False

    if report is None:
        print("No run reports found")
        return False

    print(json.dumps(report, indent=2, default=str))
    return True


if __name__ == "__main__":
    main()
