from pathlib import Path
from typing import Optional
import threading
import time

import pytest

from fleetpush import runner as runner_mod
from fleetpush.errors import AuthError, ConfigError, InputError
from fleetpush.executors import CommandResult, Executor, RunLog
from fleetpush.operations import FileSyncOperation
from fleetpush.operations.base import Operation
from fleetpush.retry import RetryController
from fleetpush.types import FileSyncSpec, Host


class VerifiedPush(Operation):
    """Push that always exits zero; verification succeeds only for ``trusted`` hosts."""

    name = "authorized_key"
    failure = AuthError
    requires_verification = True

    def __init__(self, trusted: set[str], delays: Optional[dict[str, float]] = None):
        super().__init__({})
        self.trusted = trusted
        self.delays = delays or {}

    def execute(self, host, executor):
        time.sleep(self.delays.get(host.address, 0))
        result = CommandResult(["ssh-copy-id", host.address], "", "", 0)
        executor.record(result)
        return result

    def verify(self, host, executor):
        return host.address in self.trusted


class SyncStub(FileSyncOperation):
    def __init__(self, spec: FileSyncSpec, failing: set[str] = frozenset()):
        super().__init__(spec)
        self.failing = failing
        self.calls: list[str] = []

    def execute(self, host, executor):
        self.calls.append(host.address)
        rc = 23 if host.address in self.failing else 0
        result = CommandResult(self.command(host), "", "", rc)
        executor.record(result)
        if rc:
            raise self.failure(self.error_detail(result))
        return result


def _hosts(*names: str) -> list[Host]:
    return [Host(name) for name in names]


def _log_lines(path: Path) -> list[str]:
    return [line.split(" ", 2)[2] for line in path.read_text().splitlines()]


def test_push_end_to_end_summary_and_log(tmp_path: Path) -> None:
    log_path = tmp_path / "run.log"
    with RunLog(log_path) as run_log:
        runner = runner_mod.FleetRunner(_hosts("h1", "h2"), run_log=run_log, retry=RetryController(2))
        report = runner.push(VerifiedPush(trusted={"h1"}))

    assert report.ok is False
    assert report.failed == [Host("h2")]
    assert isinstance(report.get(Host("h2")).error, AuthError)

    summary = runner_mod.summarize([report], all_clear="all good")
    assert summary == [
        "The following hosts failed, check network/password/port/user/firewall:",
        "  h2",
    ]
    assert not any("success" in line for line in summary)

    lines = _log_lines(log_path)
    assert sum(1 for line in lines if line.startswith("[h1] $ ssh-copy-id")) == 1
    assert sum(1 for line in lines if line.startswith("[h2] $ ssh-copy-id")) == 2
    assert sum(1 for line in lines if line.startswith("[h2] attempt")) == 2


def test_all_clear_summary() -> None:
    runner = runner_mod.FleetRunner(_hosts("h1", "h2"))
    report = runner.push(VerifiedPush(trusted={"h1", "h2"}))

    assert report.ok is True
    assert runner_mod.summarize([report], all_clear="all good") == ["all good"]


def test_parallel_report_keeps_resolution_order() -> None:
    hosts = _hosts("slow", "fast", "mid")
    op = VerifiedPush(trusted=set(), delays={"slow": 0.3, "fast": 0.0, "mid": 0.1})
    finished: list[str] = []

    runner = runner_mod.FleetRunner(
        hosts,
        workers=3,
        retry=RetryController(1),
        result_callback=lambda outcome: finished.append(outcome.host.address),
    )
    report = runner.push(op)

    assert finished[0] == "fast"
    assert [outcome.host.address for outcome in report] == ["slow", "fast", "mid"]
    assert report.failed == hosts


def test_parallel_never_runs_a_host_twice_at_once() -> None:
    active: dict[str, int] = {}
    overlap: list[str] = []
    lock = threading.Lock()

    class Tracking(VerifiedPush):
        def execute(self, host, executor):
            with lock:
                active[host.address] = active.get(host.address, 0) + 1
                if active[host.address] > 1:
                    overlap.append(host.address)
            time.sleep(0.05)
            with lock:
                active[host.address] -= 1
            return CommandResult([], "", "", 0)

    hosts = _hosts("a", "b", "a", "c", "b")
    runner = runner_mod.FleetRunner(hosts, workers=4, retry=RetryController(2))
    report = runner.push(Tracking(trusted=set()))

    assert overlap == []
    assert [outcome.host.address for outcome in report] == ["a", "b", "c"]


def test_host_failure_is_isolated() -> None:
    class Exploding(VerifiedPush):
        def execute(self, host, executor):
            if host.address == "bad":
                raise RuntimeError("unexpected")
            return super().execute(host, executor)

    runner = runner_mod.FleetRunner(_hosts("bad", "good"))
    report = runner.push(Exploding(trusted={"good"}))

    assert report.failed == [Host("bad")]
    assert report.get(Host("good")).succeeded is True


def test_config_error_aborts_run() -> None:
    class Broken(VerifiedPush):
        def execute(self, host, executor):
            raise ConfigError("ssh-copy-id missing")

    runner = runner_mod.FleetRunner(_hosts("h1", "h2"))
    with pytest.raises(ConfigError):
        runner.push(Broken(trusted=set()))


def test_empty_host_list_is_fatal() -> None:
    with pytest.raises(InputError):
        runner_mod.FleetRunner([]).push(VerifiedPush(trusted=set()))


def test_cancel_leaves_unattempted_hosts_absent() -> None:
    hosts = _hosts("h1", "h2", "h3")
    holder: dict[str, runner_mod.FleetRunner] = {}

    def cancel_after_first(outcome) -> None:
        holder["runner"].cancel()

    runner = runner_mod.FleetRunner(hosts, result_callback=cancel_after_first)
    holder["runner"] = runner
    report = runner.push(VerifiedPush(trusted={"h1", "h2", "h3"}))

    assert [outcome.host.address for outcome in report] == ["h1"]
    assert Host("h2") not in report
    assert report.failed == []
    assert report.ok is False
    summary = runner_mod.summarize([report], all_clear="all good")
    assert "  h2" in summary and "  h3" in summary


def test_sync_skips_missing_source(tmp_path: Path) -> None:
    present = tmp_path / "present.conf"
    present.write_text("x")
    missing = tmp_path / "missing.conf"
    ok_op = SyncStub(FileSyncSpec(source=present))
    missing_op = SyncStub(FileSyncSpec(source=missing))
    log_path = tmp_path / "run.log"

    with RunLog(log_path) as run_log:
        runner = runner_mod.FleetRunner(_hosts("h1", "h2"), run_log=run_log)
        run = runner.sync([missing_op, ok_op])

    assert run.skipped == [missing]
    assert missing_op.calls == []
    assert ok_op.calls == ["h1", "h2"]
    assert len(run.reports) == 1
    assert run.ok is True
    assert f"skip {missing}: not found" in _log_lines(log_path)


def test_sync_loops_sources_outside_hosts(tmp_path: Path) -> None:
    first = tmp_path / "a"
    second = tmp_path / "b"
    first.write_text("a")
    second.write_text("b")
    order: list[tuple[str, str]] = []

    class Ordered(SyncStub):
        def execute(self, host, executor):
            order.append((self.spec.source.name, host.address))
            return super().execute(host, executor)

    ops = [Ordered(FileSyncSpec(source=first)), Ordered(FileSyncSpec(source=second), failing={"h2"})]
    run = runner_mod.FleetRunner(_hosts("h1", "h2"), retry=RetryController(2, retry_sync=False)).sync(ops)

    assert order == [("a", "h1"), ("a", "h2"), ("b", "h1"), ("b", "h2")]
    assert run.ok is False
    summary = runner_mod.summarize(run.reports, all_clear="all good")
    assert summary[1:] == [f"  h2 ({second})"]


def test_cancel_between_sources_marks_rest_not_attempted(tmp_path: Path) -> None:
    first = tmp_path / "a"
    second = tmp_path / "b"
    first.write_text("a")
    second.write_text("b")
    holder: dict[str, runner_mod.FleetRunner] = {}

    def cancel_after_last_host(outcome) -> None:
        if outcome.host.address == "h2":
            holder["runner"].cancel()

    first_op = SyncStub(FileSyncSpec(source=first))
    second_op = SyncStub(FileSyncSpec(source=second))
    runner = runner_mod.FleetRunner(_hosts("h1", "h2"), result_callback=cancel_after_last_host)
    holder["runner"] = runner
    run = runner.sync([first_op, second_op])

    assert len(run.reports) == 1
    assert run.reports[0].ok is True
    assert second_op.calls == []
    assert run.not_attempted == [second]
    assert run.ok is False
    summary = runner_mod.summarize(run.reports, all_clear="all good", not_attempted=run.not_attempted)
    assert "all good" not in summary
    assert summary == ["The following sources were not attempted (interrupted):", f"  {second}"]


def test_sync_requires_sources(tmp_path: Path) -> None:
    runner = runner_mod.FleetRunner(_hosts("h1"))
    with pytest.raises(InputError):
        runner.sync([])
    with pytest.raises(InputError):
        runner.sync([SyncStub(FileSyncSpec(source=tmp_path / "nope"))])


def test_runner_uses_executor_factory() -> None:
    built: list[Host] = []

    def factory(host, run_log):
        built.append(host)
        return Executor(host, run_log)

    runner_mod.FleetRunner(_hosts("h1", "h2"), executor_factory=factory).push(VerifiedPush(trusted={"h1", "h2"}))

    assert built == _hosts("h1", "h2")
