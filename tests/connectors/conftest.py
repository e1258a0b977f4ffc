"""Connector-specific pytest fixtures.

Sample upstream payloads for the CoinGecko and DefiLlama connector tests.
"""

from __future__ import annotations

from typing import Any

import pytest


@pytest.fixture
def simple_price_response() -> dict[str, Any]:
    """Sample CoinGecko /simple/price response."""
    return {
        "ethereum": {"usd": 2650.12, "usd_24h_change": 1.53},
        "usd-coin": {"usd": 1.0001, "usd_24h_change": -0.01},
        "wrapped-bitcoin": {"usd": 64210},
    }


@pytest.fixture
def market_chart_response() -> dict[str, Any]:
    """Sample CoinGecko /coins/{id}/market_chart response."""
    return {
        "prices": [
            [1710374400000, 3950.5],
            [1710460800000, 3880.25],
            [1710547200000, 3712.0],
        ],
        "market_caps": [],
        "total_volumes": [],
    }


@pytest.fixture
def pools_response() -> dict[str, Any]:
    """Sample DefiLlama /pools response."""
    return {
        "status": "success",
        "data": [
            {
                "pool": "747c1d2a-c668-4682-b9f9-296708a3dd90",
                "chain": "Ethereum",
                "project": "aave-v3",
                "symbol": "WETH",
                "tvlUsd": 1_250_000_000,
                "apyBase": 1.9,
                "apyReward": None,
                "apy": 1.9,
                "il7d": None,
                "stablecoin": False,
            },
            {
                "pool": "aa70268e-4b52-42bf-a116-608b370f9501",
                "chain": "Polygon",
                "project": "aave-v3",
                "symbol": "USDC",
                "tvlUsd": 48_000_000.5,
                "apyBase": 4.2,
                "apyReward": 0.8,
                "apy": 5.0,
                "il7d": 0,
                "stablecoin": True,
            },
            {
                "pool": "c5e3b1a4-0000-4000-8000-000000000001",
                "chain": "Arbitrum",
                "project": "uniswap-v3",
                "symbol": "WETH-USDC",
                "tvlUsd": 310_000,
                "apy": 12.4,
                "stablecoin": False,
            },
        ],
    }
