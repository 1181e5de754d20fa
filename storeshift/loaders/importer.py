"""Writes a transformed dataset into the destination in dependency order."""

import logging
from typing import Callable, Dict, List, Optional
from datetime import datetime, timezone

from .base import DestinationStore, ImportResult, LoadResult
from ..models.errors import DestinationError
from ..models.record import RecordStatus, TransformedRecord
from ..models.schema import IMPORT_ORDER

logger = logging.getLogger(__name__)


class DestinationImporter:
    """
    Inserts each table as one batch, owners before dependents.

    A failed batch stops the import. Tables already written stay committed
    and the partial result says exactly which ones they are.
    """

    def __init__(
        self,
        destination: DestinationStore,
        order: Optional[List[str]] = None,
        on_table: Optional[Callable[[str, int, int], None]] = None,
    ):
        self.destination = destination
        self.order = order or list(IMPORT_ORDER)
        self.on_table = on_table

    async def record_baseline(self) -> Dict[str, int]:
        """Row counts present before anything is written."""
        baseline = {}
        for table in self.order:
            baseline[table] = await self.destination.count(table)
        return baseline

    async def import_all(self, records_by_table: Dict[str, List[TransformedRecord]]) -> ImportResult:
        """
        Import every table in order.

        Args:
            records_by_table: Dictionary of table -> transformed records

        Returns:
            ImportResult; failed_table is set when a batch was rejected
        """
        result = ImportResult()

        try:
            result.baseline_counts = await self.record_baseline()
        except DestinationError as e:
            logger.error(f"Could not read destination baseline: {e}")
            result.errors.append(e.to_issue())
            result.failed_table = e.table
            return result

        for index, table in enumerate(self.order, start=1):
            records = records_by_table.get(table, [])
            load = LoadResult(table=table, total_attempted=len(records))
            load.started_at = datetime.now(timezone.utc)
            result.results[table] = load

            if records:
                logger.info(f"Importing {len(records)} {table} records...")
                try:
                    load.total_succeeded = await self.destination.insert_batch(
                        table, [r.to_row() for r in records]
                    )
                except DestinationError as e:
                    load.error = e.message
                    load.completed_at = datetime.now(timezone.utc)
                    for record in records:
                        record.status = RecordStatus.FAILED
                    issue = e.to_issue()
                    issue.table = table
                    result.errors.append(issue)
                    result.failed_table = table
                    logger.error(
                        f"Import stopped at {table}; already written: {result.tables_written or 'none'}"
                    )
                    return result

                load.created_ids = [r.id for r in records]
                for record in records:
                    record.status = RecordStatus.IMPORTED

            load.completed_at = datetime.now(timezone.utc)
            result.tables_written.append(table)
            logger.info(f"Imported {table}: {load.total_succeeded}/{load.total_attempted}")
            if self.on_table:
                self.on_table(table, index, len(self.order))

        return result
