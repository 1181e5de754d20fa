"""Migration execution, status, rollback and restore endpoints."""

import logging
import os
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request

from ...models.errors import InvalidPhaseTransition
from ...models.migration import MigrationConfig
from ...orchestrator import MigrationOrchestrator
from ..models import (
    BackupListResponse,
    MigrationRunRequest,
    MigrationStartedResponse,
    MigrationStatusResponse,
    RestoreRequest,
    RestoreResponse,
    RollbackRequest,
    RollbackResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def build_orchestrator() -> MigrationOrchestrator:
    """Orchestrator configured from STORESHIFT_CONFIG or the environment."""
    config_path = os.environ.get("STORESHIFT_CONFIG")
    if config_path:
        config = MigrationConfig.from_json_file(config_path)
    else:
        config = MigrationConfig.from_dict({})
    return MigrationOrchestrator(config)


def get_orchestrator(request: Request) -> MigrationOrchestrator:
    """The orchestrator held on app.state, built on first use."""
    state = request.app.state
    if getattr(state, "orchestrator", None) is None:
        state.orchestrator = build_orchestrator()
    return state.orchestrator


async def run_migration_task(orchestrator: MigrationOrchestrator, request: MigrationRunRequest):
    """Background task to run the migration."""
    try:
        result = await orchestrator.execute_complete_migration(
            dry_run=request.dry_run,
            skip_validation=request.skip_validation,
            auto_verify=request.auto_verify,
            create_backup=request.create_backup,
        )
        logger.info(f"Background migration {result.migration.run_id} finished: success={result.success}")
    except InvalidPhaseTransition as e:
        logger.error(f"Background migration not started: {e}")


def _require_idle(orchestrator: MigrationOrchestrator):
    if orchestrator.is_migration_in_progress:
        raise HTTPException(status_code=409, detail="A migration is already in progress")


@router.post("/run", response_model=MigrationStartedResponse)
async def start_migration(
    request: MigrationRunRequest,
    background_tasks: BackgroundTasks,
    orchestrator: MigrationOrchestrator = Depends(get_orchestrator),
):
    """Start a migration run in the background."""
    _require_idle(orchestrator)
    background_tasks.add_task(run_migration_task, orchestrator, request)
    return MigrationStartedResponse(status="started", dry_run=request.dry_run)


@router.get("/status", response_model=MigrationStatusResponse)
async def migration_status(orchestrator: MigrationOrchestrator = Depends(get_orchestrator)):
    """Current phase and progress."""
    summary = orchestrator.status_summary
    return MigrationStatusResponse(
        run_id=summary["run_id"],
        phase=summary["phase"],
        progress=summary["progress"],
        label=summary["label"],
        in_progress=summary["in_progress"],
        started_at=summary["started_at"],
        last_success=summary["last_success"],
        statistics=summary["statistics"],
    )


@router.get("/report")
async def migration_report(
    run_id: Optional[str] = None,
    orchestrator: MigrationOrchestrator = Depends(get_orchestrator),
) -> Dict[str, Any]:
    """Report of the given run, or of the most recent one."""
    try:
        report = orchestrator.generate_report(run_id)
    except FileNotFoundError:
        raise HTTPException(status_code=404, detail=f"Report not found for run {run_id}")
    if report is None:
        raise HTTPException(status_code=404, detail="No run reports found")
    return report


@router.post("/rollback", response_model=RollbackResponse)
async def rollback_migration(
    request: RollbackRequest,
    orchestrator: MigrationOrchestrator = Depends(get_orchestrator),
):
    """Delete migrated data. Requires confirm=true."""
    if not request.confirm:
        raise HTTPException(status_code=400, detail="Rollback requires confirm=true")
    _require_idle(orchestrator)

    result = await orchestrator.rollback_migration(
        confirm=True,
        preserve_backup=request.preserve_backup,
    )
    return result.to_dict()


@router.post("/restore", response_model=RestoreResponse)
async def restore_backup(
    request: RestoreRequest,
    orchestrator: MigrationOrchestrator = Depends(get_orchestrator),
):
    """Restore a stored backup. Requires confirm=true."""
    if not request.confirm:
        raise HTTPException(status_code=400, detail="Restore requires confirm=true")
    _require_idle(orchestrator)
    if not orchestrator.backup_store.exists(request.backup_id):
        raise HTTPException(status_code=404, detail=f"Backup not found: {request.backup_id}")

    result = await orchestrator.restore_from_backup(request.backup_id)
    return result.to_dict()


@router.get("/backups", response_model=BackupListResponse)
async def list_backups(orchestrator: MigrationOrchestrator = Depends(get_orchestrator)):
    """List stored backups, newest first."""
    backups = orchestrator.list_backups()
    return BackupListResponse(backups=backups, total=len(backups))
