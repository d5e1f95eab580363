"""Storage layer -- async SQLite transaction journal and its Pydantic model."""

from begin_cli.storage.database import Database
from begin_cli.storage.journal import TransactionJournal
from begin_cli.storage.models import TransactionRecord

__all__ = [
    "Database",
    "TransactionJournal",
    "TransactionRecord",
]
