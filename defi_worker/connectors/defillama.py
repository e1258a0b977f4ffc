"""DefiLlama connector -- yield pools and protocol TVL.

Endpoints:
    GET /pools            -> {"status": "success", "data": [{pool, project, chain, ...}]}
    GET /protocol/{slug}  -> {"name": ..., "tvl": {"current": 1.2e9, ...}, ...}

Rate limit: about 300 requests per minute.
"""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

from defi_worker.connectors.base import (
    BaseConnector,
    DataParsingError,
    InvalidFormatError,
)
from defi_worker.core.types import ProtocolTVL, YieldPoolSnapshot

# Lower-case chain alias -> DefiLlama chain name
CHAIN_MAPPINGS: Mapping[str, str] = MappingProxyType(
    {
        "ethereum": "Ethereum",
        "eth": "Ethereum",
        "polygon": "Polygon",
        "matic": "Polygon",
        "arbitrum": "Arbitrum",
        "optimism": "Optimism",
        "base": "Base",
        "bsc": "BSC",
        "binance": "BSC",
    }
)


def normalize_chain(chain: str, mappings: Mapping[str, str] = CHAIN_MAPPINGS) -> str:
    """Return the DefiLlama spelling of *chain*, or *chain* itself if unknown."""
    return mappings.get(chain.strip().lower(), chain)


def filter_pools_by_chain(
    pools: list[YieldPoolSnapshot],
    chain: str,
    chain_mappings: Mapping[str, str] = CHAIN_MAPPINGS,
) -> list[YieldPoolSnapshot]:
    """Keep the pools on *chain*, preserving order. No network access."""
    wanted = normalize_chain(chain, chain_mappings)
    return [p for p in pools if p.chain == wanted]


def _optional_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    raise ValueError(f"expected number, got {value!r}")


def _parse_pool(item: Any) -> YieldPoolSnapshot:
    if not isinstance(item, dict):
        raise ValueError(f"expected object, got {type(item).__name__}")
    pool_id = item.get("pool")
    if not isinstance(pool_id, str) or not pool_id:
        raise ValueError("missing pool id")
    return YieldPoolSnapshot(
        pool_id=pool_id,
        protocol=str(item.get("project") or ""),
        chain=str(item.get("chain") or ""),
        symbol=str(item.get("symbol") or ""),
        tvl_usd=_optional_float(item.get("tvlUsd")) or 0.0,
        apy=_optional_float(item.get("apy")),
        apy_base=_optional_float(item.get("apyBase")),
        apy_reward=_optional_float(item.get("apyReward")),
        impermanent_loss_7d=_optional_float(item.get("il7d")),
        is_stable=bool(item.get("stablecoin", False)),
    )


class DefiLlamaConnector(BaseConnector):
    """Async client for the DefiLlama API."""

    SOURCE_NAME: str = "DEFILLAMA"
    BASE_URL: str = "https://api.llama.fi"
    RATE_LIMIT_PER_MINUTE: int = 300
    MAX_RETRIES: int = 3
    TIMEOUT_SECONDS: float = 10.0
    API_KEY_HEADER: str = "x-api-key"

    def __init__(self, *, api_key_header: str | None = None, **kwargs: Any) -> None:
        if api_key_header:
            self.API_KEY_HEADER = api_key_header
        super().__init__(**kwargs)

    async def fetch_yield_pools(self) -> list[YieldPoolSnapshot]:
        """Fetch every pool DefiLlama tracks.

        Entries that cannot be parsed are skipped with a warning.

        Raises:
            DataParsingError: If ``data`` is missing or not a list.
        """
        payload = await self._get_json("/pools")
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list):
            raise DataParsingError(f"{self.SOURCE_NAME}: /pools 'data' is not a list")

        pools: list[YieldPoolSnapshot] = []
        skipped = 0
        for item in data:
            try:
                pools.append(_parse_pool(item))
            except ValueError as exc:
                skipped += 1
                self.log.warning("pool_entry_skipped", error=str(exc))

        self.log.info("pools_fetched", count=len(pools), skipped=skipped)
        return pools

    async def fetch_pools_by_chain(self, chain: str) -> list[YieldPoolSnapshot]:
        """Fetch all pools and keep those on *chain*."""
        return filter_pools_by_chain(await self.fetch_yield_pools(), chain)

    async def fetch_protocol_tvl(self, slug: str) -> ProtocolTVL:
        """Fetch the current TVL of protocol *slug*.

        Raises:
            InvalidFormatError: If ``tvl`` is not an object or ``tvl.current``
                is not a number.
        """
        payload = await self._get_json(f"/protocol/{slug}")
        tvl = payload.get("tvl") if isinstance(payload, dict) else None
        if not isinstance(tvl, dict):
            raise InvalidFormatError(f"{self.SOURCE_NAME}: invalid TVL data format for {slug}")
        current = tvl.get("current")
        if isinstance(current, bool) or not isinstance(current, (int, float)):
            raise InvalidFormatError(
                f"{self.SOURCE_NAME}: invalid current TVL format for {slug}"
            )
        return ProtocolTVL(name=slug, tvl=float(current))
