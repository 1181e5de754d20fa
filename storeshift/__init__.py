"""storeshift - migrate a legacy SQLite store into a hosted PostgREST database."""

__version__ = "0.1.0"
