"""Destination-side writers for the hosted store."""

from .base import DestinationStore, Predicate, LoadResult, ImportResult
from .postgrest import PostgrestDestination
from .importer import DestinationImporter

__all__ = [
    "DestinationStore",
    "Predicate",
    "LoadResult",
    "ImportResult",
    "PostgrestDestination",
    "DestinationImporter",
]
