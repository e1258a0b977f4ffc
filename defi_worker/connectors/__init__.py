"""Upstream API connectors (CoinGecko, DefiLlama) and their rate limiter."""

from .base import (
    BaseConnector,
    ConnectorError,
    DataParsingError,
    FetchError,
    InvalidFormatError,
    RateLimitError,
    UpstreamError,
)
from .coingecko import TOKEN_ID_MAPPINGS, CoinGeckoConnector, resolve_coingecko_id
from .defillama import CHAIN_MAPPINGS, DefiLlamaConnector, filter_pools_by_chain
from .rate_limiter import TokenBucketRateLimiter

__all__ = [
    "BaseConnector",
    "ConnectorError",
    "UpstreamError",
    "RateLimitError",
    "DataParsingError",
    "InvalidFormatError",
    "FetchError",
    "TokenBucketRateLimiter",
    "CoinGeckoConnector",
    "DefiLlamaConnector",
    "TOKEN_ID_MAPPINGS",
    "CHAIN_MAPPINGS",
    "resolve_coingecko_id",
    "filter_pools_by_chain",
]
