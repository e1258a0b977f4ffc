"""SQLAlchemy 2.0 async implementations of the repository interfaces.

Each public method opens its own session from the injected factory and runs
in a single transaction. Driver and ORM failures are re-raised as
``RepositoryError`` with the original exception chained.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from defi_worker.core.enums import AlertStatus, AlertType
from defi_worker.core.errors import RepositoryError
from defi_worker.core.models import (
    AlertHistoryRecord,
    AlertRecord,
    Balance,
    PriceHistory,
    Token,
    YieldPool,
)
from defi_worker.core.types import (
    Alert,
    AlertConditions,
    AlertHistoryEntry,
    AlertNotification,
    YieldPoolSnapshot,
)
from defi_worker.core.utils.logging_config import get_logger

PRICE_SOURCE = "coingecko"


def target_identifier(raw: Any) -> str:
    """Extract the observed identifier from an alert ``target`` document.

    Accepts a bare string or an object such as
    ``{"type": "token", "identifier": "ETH", "chainId": 1}``.

    Raises:
        ValueError: If no identifier can be found.
    """
    if isinstance(raw, str) and raw:
        return raw
    if isinstance(raw, dict):
        for key in ("identifier", "pool_id", "token", "symbol"):
            value = raw.get(key)
            if isinstance(value, str) and value:
                return value
    raise ValueError(f"alert target has no identifier: {raw!r}")


def alert_from_record(record: AlertRecord) -> Alert:
    """Convert an ``alerts`` row into the domain Alert.

    Raises:
        ValueError: If a JSON column or enum value is malformed.
    """
    return Alert(
        id=record.id,
        user_id=record.user_id,
        type=AlertType(record.type),
        status=AlertStatus(record.status),
        target=target_identifier(record.target),
        conditions=AlertConditions.from_json(record.conditions or {}),
        notification=AlertNotification.from_json(record.notification or {}),
        created_at=record.created_at,
        last_triggered_at=record.last_triggered_at,
        trigger_count=record.trigger_count or 0,
    )


class _SqlRepository:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        log: structlog.BoundLogger | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.log = log or get_logger(type(self).__name__)


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------
class SqlTokenRepository(_SqlRepository):
    """Tokens are addressed by lower-cased symbol across all chains."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        log: structlog.BoundLogger | None = None,
        stale_after: timedelta = timedelta(minutes=15),
        limit: int = 100,
    ) -> None:
        super().__init__(session_factory, log)
        self.stale_after = stale_after
        self.limit = limit

    async def list_tracked_token_ids(self) -> list[str]:
        symbol = func.lower(Token.symbol)
        stmt = (
            select(symbol)
            .join(Balance, Balance.token_id == Token.id)
            .where(
                or_(
                    Balance.balance > 0,
                    Token.last_updated.is_(None),
                    Token.last_updated < func.now() - self.stale_after,
                )
            )
            .group_by(symbol)
            .order_by(func.max(Token.market_cap).desc().nulls_last(), symbol)
            .limit(self.limit)
        )
        try:
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return [row[0] for row in result.all()]
        except SQLAlchemyError as exc:
            raise RepositoryError(f"failed to list tracked tokens: {exc}") from exc

    async def upsert_token_price(
        self,
        token_id: str,
        price_usd: float,
        change_24h: float | None,
        updated_at: datetime,
    ) -> None:
        """Write the price to every token row with this symbol and log history."""
        stmt = (
            update(Token)
            .where(func.lower(Token.symbol) == token_id.lower())
            .values(
                price_usd=price_usd,
                price_change_24h=change_24h,
                last_updated=updated_at,
                updated_at=updated_at,
            )
            .returning(Token.id)
        )
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(stmt)
                    ids = [row[0] for row in result.all()]
                    if ids:
                        await session.execute(
                            pg_insert(PriceHistory).values(
                                [
                                    {
                                        "id": uuid.uuid4(),
                                        "token_id": tid,
                                        "price_usd": price_usd,
                                        "timestamp": updated_at,
                                        "source": PRICE_SOURCE,
                                    }
                                    for tid in ids
                                ]
                            )
                        )
        except SQLAlchemyError as exc:
            raise RepositoryError(f"failed to upsert price for {token_id}: {exc}") from exc

        if not ids:
            self.log.debug("token_price_no_rows", token_id=token_id)

    async def get_token_price(self, token_id: str) -> float | None:
        key = token_id.lower()
        stmt = (
            select(Token.price_usd)
            .where(
                or_(func.lower(Token.symbol) == key, func.lower(Token.address) == key),
                Token.price_usd.is_not(None),
            )
            .order_by(Token.last_updated.desc().nulls_last())
            .limit(1)
        )
        try:
            async with self._session_factory() as session:
                value = (await session.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise RepositoryError(f"failed to read price for {token_id}: {exc}") from exc
        return float(value) if value is not None else None


# ---------------------------------------------------------------------------
# Yield pools
# ---------------------------------------------------------------------------
class SqlYieldPoolRepository(_SqlRepository):
    """Tracked pools are active rows plus the targets of active APR alerts."""

    async def list_tracked_pool_ids(self) -> list[str]:
        pools_stmt = (
            select(YieldPool.pool_id)
            .where(YieldPool.is_active.is_(True))
            .order_by(YieldPool.pool_id)
        )
        alerts_stmt = (
            select(AlertRecord.target)
            .where(
                AlertRecord.type == AlertType.APR.value,
                AlertRecord.status == AlertStatus.ACTIVE.value,
            )
            .order_by(AlertRecord.created_at)
        )
        try:
            async with self._session_factory() as session:
                pool_ids = list((await session.execute(pools_stmt)).scalars().all())
                targets = list((await session.execute(alerts_stmt)).scalars().all())
        except SQLAlchemyError as exc:
            raise RepositoryError(f"failed to list tracked pools: {exc}") from exc

        for raw in targets:
            try:
                pool_ids.append(target_identifier(raw))
            except ValueError:
                self.log.warning("alert_target_unparseable", target=raw)
        return list(dict.fromkeys(pool_ids))

    async def upsert_yield_pool(
        self, snapshot: YieldPoolSnapshot, updated_at: datetime
    ) -> None:
        """Insert the pool or overwrite its metrics, keyed by ``pool_id``.

        ``is_active`` is left as it is on conflict.
        """
        metrics = {
            "tvl_usd": snapshot.tvl_usd,
            "apy": snapshot.apy,
            "apy_base": snapshot.apy_base,
            "apy_reward": snapshot.apy_reward,
            "il_7d": snapshot.impermanent_loss_7d,
            "stable_coin": snapshot.is_stable,
            "updated_at": updated_at,
        }
        stmt = pg_insert(YieldPool).values(
            id=uuid.uuid4(),
            pool_id=snapshot.pool_id,
            protocol=snapshot.protocol,
            pool_name=snapshot.symbol or snapshot.pool_id,
            chain=snapshot.chain,
            symbol=snapshot.symbol,
            is_active=True,
            **metrics,
        )
        stmt = stmt.on_conflict_do_update(index_elements=["pool_id"], set_=metrics)
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await session.execute(stmt)
        except SQLAlchemyError as exc:
            raise RepositoryError(
                f"failed to upsert pool {snapshot.pool_id}: {exc}"
            ) from exc

    async def get_pool_apy(self, pool_id: str) -> float | None:
        stmt = select(YieldPool.apy).where(YieldPool.pool_id == pool_id).limit(1)
        try:
            async with self._session_factory() as session:
                value = (await session.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise RepositoryError(f"failed to read apy for {pool_id}: {exc}") from exc
        return float(value) if value is not None else None


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------
class SqlAlertRepository(_SqlRepository):
    @staticmethod
    def eligible_alerts_statement(now: datetime, cooldown: timedelta):
        return (
            select(AlertRecord)
            .where(
                AlertRecord.status == AlertStatus.ACTIVE.value,
                or_(
                    AlertRecord.last_triggered_at.is_(None),
                    AlertRecord.last_triggered_at < now - cooldown,
                ),
            )
            .order_by(AlertRecord.created_at)
        )

    async def list_eligible_alerts(
        self, now: datetime, cooldown: timedelta
    ) -> list[Alert]:
        """Load eligible alerts. Rows that fail to parse are logged and skipped."""
        stmt = self.eligible_alerts_statement(now, cooldown)
        try:
            async with self._session_factory() as session:
                records = list((await session.execute(stmt)).scalars().all())
        except SQLAlchemyError as exc:
            raise RepositoryError(f"failed to list eligible alerts: {exc}") from exc

        alerts: list[Alert] = []
        for record in records:
            try:
                alerts.append(alert_from_record(record))
            except ValueError as exc:
                self.log.warning("alert_row_invalid", alert_id=str(record.id), error=str(exc))
        return alerts

    async def insert_alert_history(self, entry: AlertHistoryEntry) -> None:
        stmt = pg_insert(AlertHistoryRecord).values(
            id=uuid.uuid4(),
            alert_id=entry.alert_id,
            triggered_at=entry.triggered_at,
            conditions_snapshot=entry.conditions_snapshot,
            triggered_value=entry.triggered_value,
            notification_sent=entry.notification_sent,
            notification_error=entry.notification_error,
        )
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await session.execute(stmt)
        except SQLAlchemyError as exc:
            raise RepositoryError(
                f"failed to insert history for alert {entry.alert_id}: {exc}"
            ) from exc

    async def mark_alert_triggered(self, alert_id: uuid.UUID, now: datetime) -> None:
        stmt = (
            update(AlertRecord)
            .where(AlertRecord.id == alert_id)
            .values(
                last_triggered_at=now,
                trigger_count=AlertRecord.trigger_count + 1,
                updated_at=now,
            )
        )
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await session.execute(stmt)
        except SQLAlchemyError as exc:
            raise RepositoryError(f"failed to mark alert {alert_id} triggered: {exc}") from exc
