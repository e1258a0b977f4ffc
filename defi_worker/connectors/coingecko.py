"""CoinGecko connector -- current token prices and price history.

Endpoints:
    GET /simple/price?ids=a,b&vs_currencies=usd&include_24hr_change=true
        -> {"ethereum": {"usd": 2650.0, "usd_24h_change": 1.2}, ...}
    GET /coins/{id}/market_chart?vs_currency=usd&days=N
        -> {"prices": [[timestamp_ms, price], ...], ...}

The free tier allows about 50 requests per minute; a pro key is sent in the
``x-cg-pro-api-key`` header when configured.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any

from defi_worker.connectors.base import BaseConnector, DataParsingError
from defi_worker.core.types import PricePoint, TokenPrice

# Lower-case token symbol -> CoinGecko coin id
TOKEN_ID_MAPPINGS: Mapping[str, str] = MappingProxyType(
    {
        "eth": "ethereum",
        "weth": "weth",
        "usdc": "usd-coin",
        "usdt": "tether",
        "dai": "dai",
        "wbtc": "wrapped-bitcoin",
        "uni": "uniswap",
        "aave": "aave",
        "link": "chainlink",
        "matic": "matic-network",
    }
)


def resolve_coingecko_id(
    symbol: str, mappings: Mapping[str, str] = TOKEN_ID_MAPPINGS
) -> str:
    """Map a token symbol to its CoinGecko id, passing unknown ids through."""
    key = symbol.strip().lower()
    return mappings.get(key, key)


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


class CoinGeckoConnector(BaseConnector):
    """Async client for the CoinGecko public/pro API."""

    SOURCE_NAME: str = "COINGECKO"
    BASE_URL: str = "https://api.coingecko.com/api/v3"
    RATE_LIMIT_PER_MINUTE: int = 50
    MAX_RETRIES: int = 3
    TIMEOUT_SECONDS: float = 10.0
    API_KEY_HEADER: str = "x-cg-pro-api-key"

    async def fetch_token_prices(self, ids: Iterable[str]) -> dict[str, TokenPrice]:
        """Fetch current USD prices for *ids* in one bulk call.

        Args:
            ids: CoinGecko coin ids.

        Returns:
            Prices keyed by coin id. Ids the API does not know are absent.

        Raises:
            UpstreamError: On a non-2xx status after retries.
            FetchError: On transport failure after retries.
            DataParsingError: If the payload is not a JSON object.
        """
        id_list = [i for i in ids if i]
        if not id_list:
            return {}

        payload = await self._get_json(
            "/simple/price",
            params={
                "ids": ",".join(id_list),
                "vs_currencies": "usd",
                "include_24hr_change": "true",
            },
        )
        if not isinstance(payload, dict):
            raise DataParsingError(
                f"{self.SOURCE_NAME}: expected object from /simple/price, "
                f"got {type(payload).__name__}"
            )

        prices: dict[str, TokenPrice] = {}
        for coin_id, entry in payload.items():
            usd = _as_number(entry.get("usd")) if isinstance(entry, dict) else None
            if usd is None:
                self.log.warning("price_entry_skipped", coin_id=coin_id)
                continue
            prices[coin_id] = TokenPrice(
                token_id=coin_id,
                usd_price=usd,
                change_24h=_as_number(entry.get("usd_24h_change")),
            )

        self.log.info("prices_fetched", requested=len(id_list), received=len(prices))
        return prices

    async def fetch_price_history(self, coin_id: str, days: int) -> list[PricePoint]:
        """Fetch the USD price series of *coin_id* over the last *days* days.

        Raises:
            DataParsingError: If ``prices`` is missing or not a list of pairs.
        """
        payload = await self._get_json(
            f"/coins/{coin_id}/market_chart",
            params={"vs_currency": "usd", "days": str(days)},
        )
        raw = payload.get("prices") if isinstance(payload, dict) else None
        if not isinstance(raw, list):
            raise DataParsingError(
                f"{self.SOURCE_NAME}: missing 'prices' in market_chart for {coin_id}"
            )

        points: list[PricePoint] = []
        for item in raw:
            if not isinstance(item, (list, tuple)) or len(item) < 2:
                raise DataParsingError(
                    f"{self.SOURCE_NAME}: malformed price point {item!r} for {coin_id}"
                )
            ts_ms, price = _as_number(item[0]), _as_number(item[1])
            if ts_ms is None or price is None:
                raise DataParsingError(
                    f"{self.SOURCE_NAME}: malformed price point {item!r} for {coin_id}"
                )
            points.append(
                PricePoint(
                    timestamp=datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc),
                    price=price,
                )
            )
        return points
