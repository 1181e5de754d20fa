"""Source-side readers for the legacy store."""

from .base import SourceStore, ExtractionResult, ExportedDataset
from .sqlite_extractor import SQLiteSourceStore, SourceExporter

__all__ = [
    "SourceStore",
    "ExtractionResult",
    "ExportedDataset",
    "SQLiteSourceStore",
    "SourceExporter",
]
