"""
Resilience Module

Circuit breaker and bounded retry guarding calendar and CRM calls.

Usage:
    from app.core.resilience import DependencyGuard

    guard = DependencyGuard("calendar", timeout=10.0)
    busy = await guard.call(lambda: client.fetch_busy(start, end), "busy")
"""

from app.core.resilience.breaker import BreakerConfig, BreakerState, CircuitBreaker
from app.core.resilience.guard import DependencyGuard
from app.core.resilience.retry import RetryPolicy, is_retryable

__all__ = [
    "BreakerConfig",
    "BreakerState",
    "CircuitBreaker",
    "DependencyGuard",
    "RetryPolicy",
    "is_retryable",
]
