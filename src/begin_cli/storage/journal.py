"""Local journal of transaction outcomes.

Keeps the transaction id of every submission so one that timed out
unconfirmed can be checked again later with ``begin tx status``.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, AsyncIterator, Optional

from pydantic import ValidationError

from begin_cli.errors import BeginCliError, ErrorKind
from begin_cli.storage.database import Database
from begin_cli.storage.models import TransactionRecord

if TYPE_CHECKING:
    from begin_cli.core.lifecycle import LifecycleResult

logger = logging.getLogger("begin_cli.storage.journal")

_COLUMNS = (
    "id, tx_id, wallet, network, recipient, lovelace, state, stage, error, "
    "created_at, updated_at"
)


class TransactionJournal:
    """Records lifecycle results in SQLite; opens the database per call."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)

    @asynccontextmanager
    async def _open(self) -> AsyncIterator[Database]:
        """Connected database; SQLite and filesystem faults become journal errors."""
        try:
            async with Database(self.db_path) as db:
                yield db
        except (sqlite3.Error, OSError) as exc:
            raise BeginCliError(
                ErrorKind.UNSUPPORTED_FORMAT,
                f"Transaction journal {self.db_path} is unreadable: {exc}",
                code="JOURNAL_ERROR",
            ) from exc

    def _records(self, rows: list[dict]) -> list[TransactionRecord]:
        try:
            return [TransactionRecord.model_validate(r) for r in rows]
        except ValidationError as exc:
            raise BeginCliError(
                ErrorKind.UNSUPPORTED_FORMAT,
                f"Transaction journal {self.db_path} holds a malformed record: {exc}",
                code="JOURNAL_ERROR",
            ) from exc

    async def record(self, result: LifecycleResult, network: str) -> Optional[TransactionRecord]:
        """Insert (or update, keyed by tx id) the outcome of a run.

        Runs that never got past resolving a wallet are not recorded.
        """
        if result.tx_id is None and result.intent is None:
            return None

        record = TransactionRecord(
            tx_id=result.tx_id,
            wallet=result.wallet,
            network=network,
            recipient=result.intent.recipient if result.intent else None,
            lovelace=str(result.intent.lovelace) if result.intent else None,
            state=result.state.value,
            stage=result.error.stage if result.error else None,
            error=result.error.message if result.error else None,
        )

        async with self._open() as db:
            existing = None
            if record.tx_id:
                existing = await db.fetch_one(
                    "SELECT id, created_at FROM transactions WHERE tx_id = ?", (record.tx_id,)
                )
            if existing:
                record.id = existing["id"]
                await db.execute(
                    "UPDATE transactions SET state = ?, stage = ?, error = ?, updated_at = ? "
                    "WHERE id = ?",
                    (record.state, record.stage, record.error,
                     record.updated_at.isoformat(), record.id),
                )
            else:
                await db.execute(
                    f"INSERT INTO transactions ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        record.id, record.tx_id, record.wallet, record.network,
                        record.recipient, record.lovelace, record.state, record.stage,
                        record.error, record.created_at.isoformat(), record.updated_at.isoformat(),
                    ),
                )
        logger.info(f"Journal: {record.tx_id or record.id} -> {record.state}")
        return record

    async def update_state(self, tx_id: str, state: str) -> None:
        async with self._open() as db:
            await db.execute(
                "UPDATE transactions SET state = ?, error = NULL, updated_at = ? WHERE tx_id = ?",
                (state, datetime.now(timezone.utc).isoformat(), tx_id),
            )

    async def get(self, tx_id: str) -> Optional[TransactionRecord]:
        async with self._open() as db:
            row = await db.fetch_one(
                f"SELECT {_COLUMNS} FROM transactions WHERE tx_id = ?", (tx_id,)
            )
        return self._records([row])[0] if row else None

    async def list(self, limit: int = 20, state: Optional[str] = None) -> list[TransactionRecord]:
        """Most recent records first."""
        async with self._open() as db:
            if state:
                rows = await db.fetch_all(
                    f"SELECT {_COLUMNS} FROM transactions WHERE state = ? "
                    "ORDER BY created_at DESC LIMIT ?",
                    (state, limit),
                )
            else:
                rows = await db.fetch_all(
                    f"SELECT {_COLUMNS} FROM transactions ORDER BY created_at DESC LIMIT ?",
                    (limit,),
                )
        return self._records(rows)
