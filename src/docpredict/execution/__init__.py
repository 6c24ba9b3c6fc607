"""Execution helpers for prediction runs."""

from docpredict.execution.retry import (
    ConstantBackoff,
    ExponentialBackoff,
    LinearBackoff,
    NoRetry,
    RetryContext,
    RetryStrategy,
    strategy_from_settings,
)

__all__ = [
    "ConstantBackoff",
    "ExponentialBackoff",
    "LinearBackoff",
    "NoRetry",
    "RetryContext",
    "RetryStrategy",
    "strategy_from_settings",
]
