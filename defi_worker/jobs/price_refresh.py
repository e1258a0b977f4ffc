"""Price Refresh Job -- token prices from CoinGecko, yield pools from DefiLlama.

One run:
1. Load tracked token ids and tracked pool ids (failure aborts the run).
2. Map token ids to CoinGecko ids, dedupe, and fetch prices in batches;
   a failing batch is logged and the remaining batches continue.
3. Fetch all yield pools once and upsert the tracked ones plus those that
   pass the pool filter (supported chain and protocol, minimum TVL).

The token half and the pool half run concurrently in one task group, so
neither outlives the run. Each half processes its items in a deterministic
order.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol

import structlog

from defi_worker.connectors.coingecko import TOKEN_ID_MAPPINGS, resolve_coingecko_id
from defi_worker.core.config import Settings
from defi_worker.core.errors import WorkerError
from defi_worker.core.types import TokenPrice, YieldPoolSnapshot
from defi_worker.core.utils.logging_config import get_logger
from defi_worker.repositories.protocols import TokenRepository, YieldPoolRepository


class PriceSource(Protocol):
    async def fetch_token_prices(self, ids: Iterable[str]) -> dict[str, TokenPrice]:
        ...


class PoolSource(Protocol):
    async def fetch_yield_pools(self) -> list[YieldPoolSnapshot]:
        ...


@dataclass(frozen=True)
class PoolFilter:
    """Which untracked pools are worth persisting."""

    chains: frozenset[str] = frozenset({"Ethereum", "Polygon", "Arbitrum", "Optimism", "Base"})
    protocols: frozenset[str] = frozenset(
        {
            "aave-v3",
            "aave-v2",
            "compound-v3",
            "compound-v2",
            "uniswap-v3",
            "curve",
            "balancer-v2",
            "yearn",
            "convex",
            "stargate",
        }
    )
    min_tvl_usd: float = 100_000.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "PoolFilter":
        return cls(
            chains=settings.supported_chain_set,
            protocols=settings.supported_protocol_set,
            min_tvl_usd=settings.min_pool_tvl_usd,
        )

    def accepts(self, pool: YieldPoolSnapshot) -> bool:
        return (
            pool.chain in self.chains
            and pool.protocol.lower() in self.protocols
            and pool.tvl_usd >= self.min_tvl_usd
        )


@dataclass
class PriceRefreshResult:
    batches_ok: int = 0
    batches_failed: int = 0
    prices_upserted: int = 0
    pools_fetched: int = 0
    pools_upserted: int = 0
    errors: list[str] = field(default_factory=list)


def chunked(items: list[str], size: int) -> list[list[str]]:
    """Split *items* into consecutive batches of at most *size*."""
    if size <= 0:
        raise ValueError(f"batch size must be positive, got {size}")
    return [items[i : i + size] for i in range(0, len(items), size)]


class PriceRefreshJob:
    """Refreshes persisted token prices and yield-pool metrics.

    Args:
        price_source: Bulk price client (CoinGecko).
        pool_source: Yield-pool client (DefiLlama).
        tokens: Token repository.
        pools: Yield-pool repository.
        token_id_mappings: Symbol -> CoinGecko id table.
        batch_size: Maximum ids per bulk price call.
        pool_filter: Filter for untracked pools.
        clock: Returns the current UTC time.
        log: Optional bound logger.
    """

    name = "price_refresh"

    def __init__(
        self,
        *,
        price_source: PriceSource,
        pool_source: PoolSource,
        tokens: TokenRepository,
        pools: YieldPoolRepository,
        token_id_mappings: Mapping[str, str] = TOKEN_ID_MAPPINGS,
        batch_size: int = 50,
        pool_filter: PoolFilter | None = None,
        clock: Callable[[], datetime] | None = None,
        log: structlog.BoundLogger | None = None,
    ) -> None:
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.price_source = price_source
        self.pool_source = pool_source
        self.tokens = tokens
        self.pools = pools
        self.token_id_mappings = token_id_mappings
        self.batch_size = batch_size
        self.pool_filter = pool_filter or PoolFilter()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.log = (log or get_logger("jobs")).bind(job=self.name)

    async def run(self) -> PriceRefreshResult:
        """Execute one refresh pass.

        Raises:
            RepositoryError: If the tracked token or pool ids cannot be loaded.
        """
        now = self._clock()
        token_ids = await self.tokens.list_tracked_token_ids()
        tracked_pools = set(await self.pools.list_tracked_pool_ids())

        result = PriceRefreshResult()
        async with asyncio.TaskGroup() as tg:
            tg.create_task(self._refresh_token_prices(token_ids, now, result))
            tg.create_task(self._refresh_yield_pools(tracked_pools, now, result))

        self.log.info(
            "price_refresh_completed",
            tokens=len(token_ids),
            batches_ok=result.batches_ok,
            batches_failed=result.batches_failed,
            prices_upserted=result.prices_upserted,
            pools_upserted=result.pools_upserted,
            errors=len(result.errors),
        )
        return result

    def group_by_coingecko_id(self, token_ids: Iterable[str]) -> dict[str, list[str]]:
        """Map CoinGecko id -> token ids sharing it, in first-seen order."""
        groups: dict[str, list[str]] = {}
        for token_id in token_ids:
            members = groups.setdefault(
                resolve_coingecko_id(token_id, self.token_id_mappings), []
            )
            if token_id not in members:
                members.append(token_id)
        return groups

    # ---------------------------------------------------------------------------
    # Token prices
    # ---------------------------------------------------------------------------
    async def _refresh_token_prices(
        self, token_ids: list[str], now: datetime, result: PriceRefreshResult
    ) -> None:
        if not token_ids:
            self.log.warning("no_tracked_tokens")
            return

        groups = self.group_by_coingecko_id(token_ids)
        batches = chunked(list(groups), self.batch_size)
        for index, batch in enumerate(batches, start=1):
            try:
                prices = await self.price_source.fetch_token_prices(batch)
            except Exception as exc:
                result.batches_failed += 1
                result.errors.append(f"batch {index}/{len(batches)}: {exc}")
                self.log.error(
                    "price_batch_failed",
                    batch=index,
                    batches=len(batches),
                    size=len(batch),
                    error=str(exc),
                    exc_info=not isinstance(exc, WorkerError),
                )
                continue

            result.batches_ok += 1
            for coin_id in batch:
                price = prices.get(coin_id)
                if price is None:
                    self.log.debug("price_missing", coin_id=coin_id)
                    continue
                for token_id in groups[coin_id]:
                    await self._upsert_price(token_id, price, now, result)

    async def _upsert_price(
        self,
        token_id: str,
        price: TokenPrice,
        now: datetime,
        result: PriceRefreshResult,
    ) -> None:
        try:
            await self.tokens.upsert_token_price(
                token_id, price.usd_price, price.change_24h, now
            )
        except Exception as exc:
            result.errors.append(f"token {token_id}: {exc}")
            self.log.error(
                "token_price_upsert_failed",
                token_id=token_id,
                error=str(exc),
                exc_info=not isinstance(exc, WorkerError),
            )
            return
        result.prices_upserted += 1

    # ---------------------------------------------------------------------------
    # Yield pools
    # ---------------------------------------------------------------------------
    async def _refresh_yield_pools(
        self, tracked: set[str], now: datetime, result: PriceRefreshResult
    ) -> None:
        try:
            snapshots = await self.pool_source.fetch_yield_pools()
        except Exception as exc:
            result.errors.append(f"pools: {exc}")
            self.log.error(
                "yield_pools_fetch_failed",
                error=str(exc),
                exc_info=not isinstance(exc, WorkerError),
            )
            return

        result.pools_fetched = len(snapshots)
        for snapshot in snapshots:
            if snapshot.pool_id not in tracked and not self.pool_filter.accepts(snapshot):
                continue
            try:
                await self.pools.upsert_yield_pool(snapshot, now)
            except Exception as exc:
                result.errors.append(f"pool {snapshot.pool_id}: {exc}")
                self.log.error(
                    "yield_pool_upsert_failed",
                    pool_id=snapshot.pool_id,
                    error=str(exc),
                    exc_info=not isinstance(exc, WorkerError),
                )
                continue
            result.pools_upserted += 1
