from __future__ import annotations

import logging

from .errors import ActionTimeoutError
from .executors import Executor
from .operations.base import Operation
from .types import AttemptResult, AttemptStatus, Host, HostOutcome

logger = logging.getLogger(__name__)


class RetryController:
    """Runs an operation against one host until it succeeds or attempts run out.

    Operations that require verification only count as successful once
    their independent probe passes; the action's own exit status is not
    enough. Everything else succeeds on a clean exit.
    """

    def __init__(self, max_attempts: int = 2, *, retry_sync: bool = True):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.retry_sync = retry_sync

    def attempts_for(self, operation: Operation) -> int:
        if operation.requires_verification or self.retry_sync:
            return self.max_attempts
        return 1

    def run(self, host: Host, operation: Operation, executor: Executor) -> HostOutcome:
        outcome = HostOutcome(host=host, action=operation.name)
        limit = self.attempts_for(operation)
        for attempt in range(1, limit + 1):
            result = self._attempt(host, operation, executor, attempt)
            outcome.attempts.append(result)
            executor.note(
                f"attempt {attempt}/{limit} {operation.name}: {result.status.value}"
                + (f" - {result.diagnostic}" if result.diagnostic else "")
            )
            if result.ok:
                logger.debug("host=%s action=%s succeeded on attempt %d", host, operation.name, attempt)
                return outcome
            if attempt < limit:
                logger.warning(
                    "host=%s action=%s attempt %d/%d failed (%s), retrying",
                    host,
                    operation.name,
                    attempt,
                    limit,
                    result.diagnostic,
                )

        last = outcome.attempts[-1].diagnostic if outcome.attempts else "not attempted"
        outcome.error = operation.failure(f"{host}: {operation.name} failed after {limit} attempt(s): {last}")
        logger.error("host=%s action=%s gave up: %s", host, operation.name, last)
        return outcome

    @staticmethod
    def _attempt(host: Host, operation: Operation, executor: Executor, attempt: int) -> AttemptResult:
        try:
            operation.execute(host, executor)
        except ActionTimeoutError as exc:
            return AttemptResult(attempt, AttemptStatus.TIMEOUT, str(exc))
        except operation.failure as exc:
            return AttemptResult(attempt, AttemptStatus.FAILURE, str(exc))

        if not operation.requires_verification:
            return AttemptResult(attempt, AttemptStatus.SUCCESS)

        try:
            verified = operation.verify(host, executor)
        except ActionTimeoutError as exc:
            return AttemptResult(attempt, AttemptStatus.TIMEOUT, f"verification probe: {exc}")
        if verified:
            return AttemptResult(attempt, AttemptStatus.SUCCESS, "verified")
        return AttemptResult(attempt, AttemptStatus.FAILURE, "verification probe failed")
