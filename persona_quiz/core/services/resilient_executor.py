import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from persona_quiz.core.config import GatewayConfig
from persona_quiz.core.constants import MAX_ATTEMPTS, REQUEST_TIMEOUT_S, RETRY_DELAY_S
from persona_quiz.core.logging import log_event
from persona_quiz.providers.exceptions import (
    CallTimeoutError,
    ConfigurationError,
    GatewayError,
    TransportError,
    is_retryable,
)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class RetryPolicy:
    timeout_s: float = REQUEST_TIMEOUT_S
    max_attempts: int = MAX_ATTEMPTS
    retry_delay_s: float = RETRY_DELAY_S

    @classmethod
    def from_config(cls, config: GatewayConfig) -> "RetryPolicy":
        return cls(
            timeout_s=config.request_timeout_s,
            max_attempts=config.max_attempts,
            retry_delay_s=config.retry_delay_s,
        )


class ResilientCallExecutor:
    """Runs one gateway call under a timeout and a bounded retry policy.

    `run` never raises for call failures: once the attempts are used up, or
    the failure is one that retrying cannot fix, it returns the fallback.
    """

    def __init__(self, policy: RetryPolicy | None = None, sleep: Sleep = asyncio.sleep):
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    async def run(
        self,
        api_call: Callable[[], Awaitable[T]],
        fallback: T,
        operation: str = "call",
        **log_fields: Any,
    ) -> T:
        last_error: Exception | None = None
        attempts = 0

        while attempts < self.policy.max_attempts:
            attempts += 1
            try:
                return await asyncio.wait_for(api_call(), timeout=self.policy.timeout_s)
            except TimeoutError as e:
                last_error = e if isinstance(e, GatewayError) else CallTimeoutError(
                    f"{operation} timed out after {self.policy.timeout_s}s"
                )
            except Exception as e:
                last_error = e

            if not is_retryable(last_error):
                break

            if attempts < self.policy.max_attempts:
                log_event(
                    "llm.retry",
                    component="executor",
                    operation=operation,
                    attempt=attempts,
                    max_attempts=self.policy.max_attempts,
                    delay_s=self.policy.retry_delay_s,
                    error_type=type(last_error).__name__,
                    error_msg=str(last_error),
                    level=logging.WARNING,
                    **log_fields,
                )
                await self._sleep(self.policy.retry_delay_s)

        self._log_terminal_error(operation, last_error, attempts, log_fields)
        return fallback

    def _log_terminal_error(
        self, operation: str, error: Exception | None, attempts: int, log_fields: dict[str, Any]
    ) -> None:
        if isinstance(error, TransportError) and error.is_auth_failure:
            # Not transient: the deployment's credential is wrong.
            log_event(
                "llm.auth_failed",
                component="executor",
                operation=operation,
                status_code=error.status_code,
                error_msg=str(error),
                level=logging.ERROR,
                **log_fields,
            )
            reason = "auth_failed"
        elif isinstance(error, ConfigurationError):
            reason = "not_configured"
        else:
            reason = "retries_exhausted"

        log_event(
            "llm.using_fallback",
            component="executor",
            operation=operation,
            reason=reason,
            attempts=attempts,
            error_type=type(error).__name__ if error else None,
            error_msg=str(error) if error else None,
            level=logging.DEBUG if reason == "not_configured" else logging.WARNING,
            **log_fields,
        )
