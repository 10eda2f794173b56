"""
Operation deadlines for backend calls.

Every reconcile operation is a single request/response cycle with a caller
supplied deadline. Expiry surfaces as ReconcileTimeoutError; the backend is
left in whatever state it reached server-side.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any, Optional, TypeVar

import structlog

from provisioner.shared.core.config import get_settings
from provisioner.shared.core.exceptions import ReconcileTimeoutError

logger = structlog.get_logger()

T = TypeVar("T")

OPERATIONS = ("create", "read", "update", "delete")


def get_timeout_config() -> dict[str, float]:
    """Per-operation deadlines (seconds) from settings."""
    settings = get_settings()
    return {
        "create": settings.CREATE_TIMEOUT_SECONDS,
        "read": settings.READ_TIMEOUT_SECONDS,
        "update": settings.UPDATE_TIMEOUT_SECONDS,
        "delete": settings.DELETE_TIMEOUT_SECONDS,
    }


class TimeoutManager:
    """Manages the deadline of one reconcile operation."""

    def __init__(self, operation_type: str, timeout_seconds: Optional[float] = None):
        if operation_type not in OPERATIONS:
            raise ValueError(f"Unknown operation type: {operation_type}")
        if timeout_seconds is not None and timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        self.operation_type = operation_type
        self.timeout_seconds = (
            timeout_seconds
            if timeout_seconds is not None
            else get_timeout_config()[operation_type]
        )

    async def execute_with_timeout(
        self,
        coro: Callable[..., Awaitable[T]],
        *args: Any,
        details: Optional[dict[str, Any]] = None,
        **kwargs: Any,
    ) -> T:
        """Execute a coroutine, converting deadline expiry into ReconcileTimeoutError."""
        start_time = time.perf_counter()
        try:
            result = await asyncio.wait_for(
                coro(*args, **kwargs), timeout=self.timeout_seconds
            )
        except asyncio.TimeoutError as exc:
            execution_time = time.perf_counter() - start_time
            logger.warning(
                "operation_timed_out",
                operation_type=self.operation_type,
                execution_time_seconds=round(execution_time, 3),
                timeout_seconds=self.timeout_seconds,
            )
            raise ReconcileTimeoutError(
                f"{self.operation_type} timed out after {self.timeout_seconds} seconds",
                details={
                    "operation_type": self.operation_type,
                    "timeout_seconds": self.timeout_seconds,
                    **(details or {}),
                },
            ) from exc

        logger.debug(
            "operation_completed_within_timeout",
            operation_type=self.operation_type,
            execution_time_seconds=round(time.perf_counter() - start_time, 3),
            timeout_seconds=self.timeout_seconds,
        )
        return result
