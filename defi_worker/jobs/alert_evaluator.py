"""Alert Evaluator Job -- compares persisted state against user alerts.

For each eligible alert (active and out of cooldown, oldest first) the
observed value is resolved by alert type, compared strictly against the
threshold and, on trigger, the notification is sent, a history row is
appended and the alert is marked triggered -- in that order. A failure on
one alert never affects the others.

Triggering is at-least-once: if marking the alert triggered fails after its
history row was inserted, the alert is still eligible and triggers again on
the next pass.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

import structlog

from defi_worker.core.enums import AlertType, Comparator
from defi_worker.core.errors import NotificationError, ResolverError, WorkerError
from defi_worker.core.types import (
    DEFAULT_ALERT_COOLDOWN,
    Alert,
    AlertHistoryEntry,
    is_alert_eligible,
)
from defi_worker.core.utils.logging_config import get_logger
from defi_worker.notifications.dispatcher import Notifier
from defi_worker.repositories.protocols import (
    AlertRepository,
    TokenRepository,
    YieldPoolRepository,
)


def evaluate_condition(observed: float, comparator: Comparator, threshold: float) -> bool:
    """Strict comparison: equality never triggers in either direction."""
    if comparator == Comparator.ABOVE:
        return observed > threshold
    if comparator == Comparator.BELOW:
        return observed < threshold
    raise ValueError(f"unknown comparator: {comparator!r}")


# ---------------------------------------------------------------------------
# Value resolvers
# ---------------------------------------------------------------------------
class ValueResolver(Protocol):
    async def resolve(self, alert: Alert) -> float | None:
        """Current observed value for *alert*, ``None`` if unavailable."""
        ...


class TokenPriceResolver:
    """Persisted ``price_usd`` of the alert's target token."""

    def __init__(self, tokens: TokenRepository) -> None:
        self.tokens = tokens

    async def resolve(self, alert: Alert) -> float | None:
        return await self.tokens.get_token_price(alert.target)


class PoolApyResolver:
    """Persisted ``apy`` of the alert's target pool."""

    def __init__(self, pools: YieldPoolRepository) -> None:
        self.pools = pools

    async def resolve(self, alert: Alert) -> float | None:
        return await self.pools.get_pool_apy(alert.target)


def default_resolvers(
    tokens: TokenRepository, pools: YieldPoolRepository
) -> dict[AlertType, ValueResolver]:
    """Price and APR resolvers. Allowance has no built-in resolver."""
    return {
        AlertType.PRICE: TokenPriceResolver(tokens),
        AlertType.APR: PoolApyResolver(pools),
    }


@dataclass
class AlertEvaluationResult:
    evaluated: int = 0
    triggered: int = 0
    skipped: int = 0
    failed: int = 0


class AlertEvaluatorJob:
    """Evaluates eligible alerts and records/delivers the triggered ones.

    Args:
        alerts: Alert repository.
        notifier: Notification dispatcher.
        resolvers: Observed-value resolver per alert type.
        cooldown: Minimum time between two triggers of one alert.
        clock: Returns the current UTC time.
        log: Optional bound logger.
    """

    name = "alert_evaluation"

    def __init__(
        self,
        *,
        alerts: AlertRepository,
        notifier: Notifier,
        resolvers: Mapping[AlertType, ValueResolver],
        cooldown: timedelta = DEFAULT_ALERT_COOLDOWN,
        clock: Callable[[], datetime] | None = None,
        log: structlog.BoundLogger | None = None,
    ) -> None:
        self.alerts = alerts
        self.notifier = notifier
        self.resolvers = dict(resolvers)
        self.cooldown = cooldown
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.log = (log or get_logger("jobs")).bind(job=self.name)

    async def run(self) -> AlertEvaluationResult:
        """Execute one evaluation pass.

        Raises:
            RepositoryError: If the eligible alerts cannot be loaded.
        """
        now = self._clock()
        alerts = await self.alerts.list_eligible_alerts(now, self.cooldown)

        result = AlertEvaluationResult()
        for alert in alerts:
            if not is_alert_eligible(alert, now, self.cooldown):
                result.skipped += 1
                continue
            try:
                triggered = await self.evaluate_alert(alert, now)
            except WorkerError as exc:
                result.failed += 1
                self.log.error(
                    "alert_evaluation_failed",
                    alert_id=str(alert.id),
                    alert_type=alert.type.value,
                    error=str(exc),
                )
                continue
            except Exception as exc:
                result.failed += 1
                self.log.error(
                    "alert_evaluation_failed",
                    alert_id=str(alert.id),
                    alert_type=alert.type.value,
                    error=f"{type(exc).__name__}: {exc}",
                    exc_info=True,
                )
                continue
            result.evaluated += 1
            if triggered:
                result.triggered += 1

        self.log.info(
            "alert_evaluation_completed",
            candidates=len(alerts),
            evaluated=result.evaluated,
            triggered=result.triggered,
            skipped=result.skipped,
            failed=result.failed,
        )
        return result

    async def resolve_value(self, alert: Alert) -> float:
        """Observed value for *alert*.

        Raises:
            ResolverError: If no resolver handles the type or the value is missing.
        """
        resolver = self.resolvers.get(alert.type)
        if resolver is None:
            raise ResolverError(f"no value resolver for alert type {alert.type.value!r}")
        value = await resolver.resolve(alert)
        if value is None:
            raise ResolverError(
                f"no {alert.type.value} value available for target {alert.target!r}"
            )
        return value

    async def evaluate_alert(self, alert: Alert, now: datetime) -> bool:
        """Evaluate one alert and handle its trigger. Returns True if triggered."""
        observed = await self.resolve_value(alert)
        conditions = alert.conditions
        if not evaluate_condition(observed, conditions.comparator, conditions.threshold):
            return False

        payload = self.build_payload(alert, observed, now)
        error: str | None = None
        try:
            await self.notifier.send(
                alert.notification.channel, alert.notification.destination, payload
            )
        except NotificationError as exc:
            error = str(exc)
            self.log.warning("alert_notification_failed", alert_id=str(alert.id), error=error)
        except Exception as exc:
            error = f"{type(exc).__name__}: {exc}"
            self.log.error(
                "alert_notification_failed", alert_id=str(alert.id), error=error, exc_info=True
            )

        await self.alerts.insert_alert_history(
            AlertHistoryEntry(
                alert_id=alert.id,
                triggered_at=now,
                conditions_snapshot=conditions.to_json(),
                triggered_value={"value": observed, "target": alert.target},
                notification_sent=error is None,
                notification_error=error,
            )
        )
        await self.alerts.mark_alert_triggered(alert.id, now)

        self.log.info(
            "alert_triggered",
            alert_id=str(alert.id),
            alert_type=alert.type.value,
            target=alert.target,
            observed=observed,
            threshold=conditions.threshold,
            notification_sent=error is None,
        )
        return True

    @staticmethod
    def build_payload(alert: Alert, observed: float, now: datetime) -> dict[str, Any]:
        return {
            "alert_id": str(alert.id),
            "user_id": str(alert.user_id),
            "type": alert.type.value,
            "target": alert.target,
            "observed_value": observed,
            "threshold": alert.conditions.threshold,
            "comparator": alert.conditions.comparator.value,
            "triggered_at": now.isoformat(),
        }
