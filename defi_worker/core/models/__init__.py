"""SQLAlchemy 2.0 ORM models for the DeFi portfolio worker.

Re-exports Base and the six mapped tables:
  - tokens: Token, PriceHistory, Balance
  - yield pools: YieldPool
  - alerts: AlertRecord, AlertHistoryRecord
"""

from .alerts import AlertHistoryRecord, AlertRecord
from .base import Base, TimestampMixin
from .tokens import Balance, PriceHistory, Token
from .yield_pools import YieldPool

__all__ = [
    "Base",
    "TimestampMixin",
    "Token",
    "PriceHistory",
    "Balance",
    "YieldPool",
    "AlertRecord",
    "AlertHistoryRecord",
]
