from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Callable, Optional, Sequence
import logging
import threading

from .errors import ConfigError, InputError
from .executors import Executor, RunLog
from .operations import FileSyncOperation, Operation
from .retry import RetryController
from .types import FleetReport, Host, HostOutcome, SyncRun

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[Host, Operation], None]
ResultCallback = Callable[[HostOutcome], None]


class FleetRunner:
    """Fans one operation out to every resolved host and collects the outcomes."""

    def __init__(
        self,
        hosts: Sequence[Host],
        *,
        run_log: Optional[RunLog] = None,
        retry: Optional[RetryController] = None,
        workers: int = 1,
        executor_factory: Callable[[Host, Optional[RunLog]], Executor] = Executor,
        progress_callback: Optional[ProgressCallback] = None,
        result_callback: Optional[ResultCallback] = None,
    ):
        self.hosts = tuple(hosts)
        self.run_log = run_log
        self.retry = retry or RetryController()
        self.workers = max(1, workers)
        self.executor_factory = executor_factory
        self.progress_callback = progress_callback
        self.result_callback = result_callback
        self._cancelled = threading.Event()
        self._callback_lock = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        if not self._cancelled.is_set():
            logger.warning("cancellation requested; no further hosts will be started")
        self._cancelled.set()

    def push(self, operation: Operation) -> FleetReport:
        self._require_hosts()
        return self._fan_out(operation)

    def sync(self, operations: Sequence[FileSyncOperation]) -> SyncRun:
        if not operations:
            raise InputError("no source paths given")
        self._require_hosts()

        run = SyncRun()
        present: list[FileSyncOperation] = []
        for operation in operations:
            source = operation.spec.source
            if not source.exists():
                logger.warning("source %s not found, skipping", source)
                self._notice(f"skip {source}: not found")
                run.skipped.append(source)
                continue
            present.append(operation)
        if not present:
            raise InputError("none of the given source paths exist")

        for operation in present:
            if self.cancelled:
                run.not_attempted.append(operation.spec.source)
                continue
            run.reports.append(self._fan_out(operation, label=str(operation.spec.source)))
        return run

    def _require_hosts(self) -> None:
        if not self.hosts:
            raise InputError("no target hosts resolved")

    def _fan_out(self, operation: Operation, *, label: Optional[str] = None) -> FleetReport:
        report = FleetReport(self.hosts, label=label)
        if len(report.hosts) != len(self.hosts):
            logger.info("duplicate hosts in target list are processed once")
        logger.debug("action=%s hosts=%s", operation.name, ",".join(str(h) for h in report.hosts))
        try:
            if self.workers == 1:
                self._run_sequential(report, operation)
            else:
                self._run_parallel(report, operation)
        except KeyboardInterrupt:
            self.cancel()
        return report

    def _run_sequential(self, report: FleetReport, operation: Operation) -> None:
        for host in report.hosts:
            outcome = self._run_host(host, operation)
            if outcome is None:
                break
            report.record(outcome)

    def _run_parallel(self, report: FleetReport, operation: Operation) -> None:
        futures: list[Future] = []
        with ThreadPoolExecutor(max_workers=min(self.workers, len(report.hosts))) as pool:
            futures = [pool.submit(self._run_host, host, operation) for host in report.hosts]
            try:
                wait(futures)
            except KeyboardInterrupt:
                self.cancel()
                for future in futures:
                    future.cancel()
                wait(futures)
        for future in futures:
            if future.cancelled():
                continue
            outcome = future.result()
            if outcome is not None:
                report.record(outcome)

    def _run_host(self, host: Host, operation: Operation) -> Optional[HostOutcome]:
        if self.cancelled:
            return None
        self._emit(self.progress_callback, host, operation)
        executor = self.executor_factory(host, self.run_log)
        try:
            outcome = self.retry.run(host, operation, executor)
        except ConfigError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.error("action=%s host=%s failed: %s", operation.name, host, exc, exc_info=True)
            outcome = HostOutcome(host=host, action=operation.name, error=exc)
        self._emit(self.result_callback, outcome)
        return outcome

    def _emit(self, callback: Optional[Callable], *args) -> None:
        if callback is None:
            return
        with self._callback_lock:
            callback(*args)

    def _notice(self, line: str) -> None:
        if self.run_log is not None:
            self.run_log.write(None, [line])


def summarize(
    reports: Sequence[FleetReport],
    *,
    all_clear: str,
    not_attempted: Sequence[Path] = (),
) -> list[str]:
    """Render the end-of-run summary in resolution order."""

    failed: list[str] = []
    pending: list[str] = []
    for report in reports:
        suffix = f" ({report.label})" if report.label and len(reports) > 1 else ""
        failed.extend(f"{host}{suffix}" for host in report.failed)
        pending.extend(f"{host}{suffix}" for host in report.hosts if host not in report)

    if not failed and not pending and not not_attempted:
        return [all_clear]
    lines: list[str] = []
    if failed:
        lines.append("The following hosts failed, check network/password/port/user/firewall:")
        lines.extend(f"  {entry}" for entry in failed)
    if pending:
        lines.append("The following hosts were not attempted (interrupted):")
        lines.extend(f"  {entry}" for entry in pending)
    if not_attempted:
        lines.append("The following sources were not attempted (interrupted):")
        lines.extend(f"  {source}" for source in not_attempted)
    return lines
