"""Scheduled worker jobs and the scheduler that runs them."""

from .alert_evaluator import (
    AlertEvaluationResult,
    AlertEvaluatorJob,
    PoolApyResolver,
    TokenPriceResolver,
    default_resolvers,
    evaluate_condition,
)
from .price_refresh import PoolFilter, PriceRefreshJob, PriceRefreshResult
from .scheduler import JobScheduler, ShutdownReport

__all__ = [
    "AlertEvaluationResult",
    "AlertEvaluatorJob",
    "PoolApyResolver",
    "TokenPriceResolver",
    "default_resolvers",
    "evaluate_condition",
    "PoolFilter",
    "PriceRefreshJob",
    "PriceRefreshResult",
    "JobScheduler",
    "ShutdownReport",
]
