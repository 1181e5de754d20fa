"""HTTP wrapper around the migration orchestrator."""
