"""Yield pool table -- one row per DefiLlama pool id.

Natural key: ``pool_id`` for idempotent upserts. Refreshes overwrite the
metric columns and bump ``updated_at``; ``is_active`` is only changed by an
explicit deactivation, never by the refresh job.
"""

import uuid
from typing import Optional

from sqlalchemy import Boolean, Float, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class YieldPool(TimestampMixin, Base):
    __tablename__ = "yield_pools"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    pool_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    protocol: Mapped[str] = mapped_column(String(100), nullable=False)
    pool_name: Mapped[str] = mapped_column(String(255), nullable=False)
    chain: Mapped[str] = mapped_column(String(50), nullable=False)
    symbol: Mapped[str] = mapped_column(String(100), nullable=False)
    tvl_usd: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    apy: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    apy_base: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    apy_reward: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    il_7d: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    stable_coin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
