"""Root pytest configuration and shared fixtures.

Provides common test fixtures used across all test modules:
- now: fixed UTC timestamp used as the job clock
- make_alert: factory for domain Alert objects
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import pytest

from defi_worker.core.enums import AlertStatus, AlertType, Comparator, NotificationChannel
from defi_worker.core.types import Alert, AlertConditions, AlertNotification


@pytest.fixture
def now() -> datetime:
    return datetime(2025, 3, 14, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def make_alert(now: datetime) -> Callable[..., Alert]:
    """Return a factory building alerts with sensible defaults.

    Usage::

        alert = make_alert(target="eth", threshold=2600.0)
    """

    def _make(**overrides: Any) -> Alert:
        fields: dict[str, Any] = {
            "id": uuid.uuid4(),
            "user_id": uuid.uuid4(),
            "type": AlertType.PRICE,
            "status": AlertStatus.ACTIVE,
            "target": "eth",
            "conditions": AlertConditions(
                threshold=overrides.pop("threshold", 2600.0),
                comparator=overrides.pop("comparator", Comparator.ABOVE),
            ),
            "notification": AlertNotification(
                channel=NotificationChannel.WEBHOOK,
                destination="https://hooks.example.com/alerts",
            ),
            "created_at": now,
        }
        fields.update(overrides)
        return Alert(**fields)

    return _make
