"""
Retry Manager for the catalog aggregator.

Config source fetches that fail with a transient code (timeout, 5xx, network)
are re-attempted with exponential backoff. Definitive failures such as HTTP
4xx or a malformed body return on the first attempt.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from .audit_logger import AuditLogger, ComponentLogging
from .config import RetryConfig
from .enums import FetchErrorCode

T = TypeVar("T")


@dataclass
class RetryResult(Generic[T]):
    """Outcome of ``execute_with_retry``: the value, or every error seen."""

    success: bool
    result: Optional[T]
    attempts: int
    last_error: Optional[Exception]
    errors: list[Exception] = field(default_factory=list)


class RetryManager(ComponentLogging):
    """
    Runs an async operation until it succeeds, fails definitively, or the
    retry budget (``max_retries`` on top of the first attempt) is spent.
    """

    COMPONENT = "RetryManager"

    TRANSIENT_ERROR_CODES = frozenset({
        FetchErrorCode.TIMEOUT.value,
        FetchErrorCode.SERVER_ERROR.value,
        FetchErrorCode.NETWORK_ERROR.value,
    })

    def __init__(self, config: RetryConfig, logger: Optional[AuditLogger] = None) -> None:
        self._config = config
        self._logger = logger

    def _calculate_delay(self, attempt: int) -> float:
        """Backoff before retry number ``attempt + 1``: ``base * 2**attempt``, capped."""
        return min(
            self._config.base_delay_seconds * (2 ** attempt),
            self._config.max_delay_seconds,
        )

    def is_retryable_error(self, error_code) -> bool:
        """True for built-in transient codes and any listed in ``retryable_errors``."""
        code = getattr(error_code, "value", error_code)
        code = str(code)
        return code in self.TRANSIENT_ERROR_CODES or code in self._config.retryable_errors

    def is_retryable_exception(self, error: Exception) -> bool:
        code = getattr(error, "code", None)
        return code is not None and self.is_retryable_error(code)

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        is_retryable: Optional[Callable[[Exception], bool]] = None,
    ) -> RetryResult[T]:
        """
        Await ``operation`` until it returns or the budget runs out.

        ``asyncio.CancelledError`` is not an ``Exception`` subclass and so
        always propagates without a retry.

        Args:
            operation: Zero-argument coroutine factory, called once per attempt
            is_retryable: Predicate over the raised exception; defaults to
                          ``is_retryable_exception``
        """
        should_retry = is_retryable or self.is_retryable_exception
        errors: list[Exception] = []
        budget = self._config.max_retries + 1

        for attempt in range(budget):
            try:
                value = await operation()
            except Exception as e:
                errors.append(e)
                if attempt + 1 >= budget or not should_retry(e):
                    break
                delay = self._calculate_delay(attempt)
                self._log_debug(
                    "Transient failure, backing off",
                    {"attempt": attempt + 1, "delay_seconds": delay, "error_code": getattr(e, "code", None)},
                )
                await asyncio.sleep(delay)
            else:
                return RetryResult(
                    success=True,
                    result=value,
                    attempts=attempt + 1,
                    last_error=None,
                    errors=errors,
                )

        return RetryResult(
            success=False,
            result=None,
            attempts=len(errors),
            last_error=errors[-1] if errors else None,
            errors=errors,
        )
