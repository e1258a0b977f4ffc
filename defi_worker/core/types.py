"""Domain dataclasses shared by connectors, repositories and jobs.

These are plain value objects -- ORM rows are converted into them at the
repository boundary so jobs never touch SQLAlchemy sessions directly.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from defi_worker.core.enums import (
    AlertStatus,
    AlertType,
    Comparator,
    JobTrigger,
    NotificationChannel,
)

DEFAULT_ALERT_COOLDOWN = timedelta(hours=1)


# ---------------------------------------------------------------------------
# Upstream data
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class TokenPrice:
    """Current USD price of one token as reported by the price source."""

    token_id: str
    usd_price: float
    change_24h: float | None = None


@dataclass(frozen=True)
class PricePoint:
    """One ``(timestamp, price)`` sample of a price history."""

    timestamp: datetime
    price: float


@dataclass(frozen=True)
class YieldPoolSnapshot:
    """Metrics of a yield pool at fetch time, keyed by ``pool_id``."""

    pool_id: str
    protocol: str
    chain: str
    symbol: str = ""
    tvl_usd: float = 0.0
    apy: float | None = None
    apy_base: float | None = None
    apy_reward: float | None = None
    impermanent_loss_7d: float | None = None
    is_stable: bool = False


@dataclass(frozen=True)
class ProtocolTVL:
    """Current total value locked of a protocol."""

    name: str
    tvl: float


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class AlertConditions:
    """Threshold + comparator. Evaluated strictly in both directions."""

    threshold: float
    comparator: Comparator

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> AlertConditions:
        """Parse the ``conditions`` JSON column.

        Accepts ``comparator`` or the older ``condition`` key.

        Raises:
            ValueError: If the threshold is missing/non-numeric or the
                comparator is unknown.
        """
        raw_threshold = data.get("threshold")
        if isinstance(raw_threshold, bool) or raw_threshold is None:
            raise ValueError(f"invalid threshold: {raw_threshold!r}")
        comparator = data.get("comparator", data.get("condition"))
        return cls(threshold=float(raw_threshold), comparator=Comparator(comparator))

    def to_json(self) -> dict[str, Any]:
        return {"threshold": self.threshold, "comparator": self.comparator.value}


@dataclass(frozen=True)
class AlertNotification:
    """Where to deliver a triggered alert."""

    channel: NotificationChannel
    destination: str

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> AlertNotification:
        destination = data.get("destination")
        if not destination:
            raise ValueError("notification destination is required")
        return cls(
            channel=NotificationChannel(data.get("channel")),
            destination=str(destination),
        )


@dataclass
class Alert:
    """A user-defined alert as seen by the evaluator.

    Attributes:
        id: Alert UUID.
        user_id: Owning user UUID.
        type: What is observed (price, apr, allowance).
        status: Only ``ACTIVE`` alerts are evaluated.
        target: Token symbol/id (price, allowance) or pool id (apr).
        conditions: Threshold and comparator.
        notification: Delivery channel and destination.
        created_at: Creation time, used for oldest-first ordering.
        last_triggered_at: Time of the last trigger, ``None`` if never.
        trigger_count: Number of recorded triggers.
    """

    id: uuid.UUID
    user_id: uuid.UUID
    type: AlertType
    status: AlertStatus
    target: str
    conditions: AlertConditions
    notification: AlertNotification
    created_at: datetime
    last_triggered_at: datetime | None = None
    trigger_count: int = 0


def is_alert_eligible(
    alert: Alert,
    now: datetime,
    cooldown: timedelta = DEFAULT_ALERT_COOLDOWN,
) -> bool:
    """Return True when *alert* may be evaluated at *now*.

    The alert must be active and its cooldown must have strictly elapsed:
    an alert triggered exactly ``cooldown`` ago is still excluded.
    """
    if alert.status != AlertStatus.ACTIVE:
        return False
    if alert.last_triggered_at is None:
        return True
    return alert.last_triggered_at < now - cooldown


@dataclass(frozen=True)
class AlertHistoryEntry:
    """Append-only record of one alert trigger."""

    alert_id: uuid.UUID
    triggered_at: datetime
    conditions_snapshot: dict[str, Any]
    triggered_value: dict[str, Any]
    notification_sent: bool
    notification_error: str | None = None


# ---------------------------------------------------------------------------
# Job bookkeeping
# ---------------------------------------------------------------------------
@dataclass
class JobRun:
    """Ephemeral record of one job execution, used for logging only."""

    job_name: str
    trigger: JobTrigger
    started_at: datetime
    duration_seconds: float = 0.0
    error: str | None = None


@dataclass
class JobState:
    """Scheduler-side state of a registered job.

    ``running`` False with ``last_error`` set is the Idle-with-LastError
    state.
    """

    running: bool = False
    last_error: str | None = None
    last_run: JobRun | None = None
    runs: int = 0
    skipped_ticks: int = 0
