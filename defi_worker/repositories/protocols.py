"""Capability interfaces the jobs depend on.

Jobs receive these by injection; the SQLAlchemy implementations live in
``defi_worker.repositories.sql`` and tests use in-memory fakes. Every
method raises ``RepositoryError`` on persistence failure.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Protocol

from defi_worker.core.types import Alert, AlertHistoryEntry, YieldPoolSnapshot


class TokenRepository(Protocol):
    async def list_tracked_token_ids(self) -> list[str]:
        """Token ids (lower-case symbols) whose price should be refreshed."""
        ...

    async def upsert_token_price(
        self,
        token_id: str,
        price_usd: float,
        change_24h: float | None,
        updated_at: datetime,
    ) -> None:
        ...

    async def get_token_price(self, token_id: str) -> float | None:
        """Last persisted USD price, ``None`` if unknown or never priced."""
        ...


class YieldPoolRepository(Protocol):
    async def list_tracked_pool_ids(self) -> list[str]:
        ...

    async def upsert_yield_pool(
        self, snapshot: YieldPoolSnapshot, updated_at: datetime
    ) -> None:
        ...

    async def get_pool_apy(self, pool_id: str) -> float | None:
        ...


class AlertRepository(Protocol):
    async def list_eligible_alerts(
        self, now: datetime, cooldown: timedelta
    ) -> list[Alert]:
        """Active alerts out of cooldown, oldest ``created_at`` first."""
        ...

    async def insert_alert_history(self, entry: AlertHistoryEntry) -> None:
        ...

    async def mark_alert_triggered(self, alert_id: uuid.UUID, now: datetime) -> None:
        """Set ``last_triggered_at = now`` and increment ``trigger_count``."""
        ...
