"""Persistence capabilities used by the jobs and their SQL implementations."""

from .protocols import AlertRepository, TokenRepository, YieldPoolRepository
from .sql import SqlAlertRepository, SqlTokenRepository, SqlYieldPoolRepository

__all__ = [
    "TokenRepository",
    "YieldPoolRepository",
    "AlertRepository",
    "SqlTokenRepository",
    "SqlYieldPoolRepository",
    "SqlAlertRepository",
]
