"""Pydantic model mapping to the journal's ``transactions`` table."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field


def _new_id() -> str:
    """Generate a short hex ID (12 characters)."""
    return uuid.uuid4().hex[:12]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class TransactionRecord(BaseModel):
    """One lifecycle outcome."""

    id: str = Field(default_factory=_new_id)
    tx_id: Optional[str] = None
    wallet: Optional[str] = None
    network: str
    recipient: Optional[str] = None
    lovelace: Optional[str] = None
    state: str
    stage: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)
