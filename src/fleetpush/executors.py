from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence, Union
import logging
import os
import subprocess
import threading

from .errors import ActionTimeoutError, ConfigError
from .types import Host


@dataclass
class CommandResult:
    command: list[str]
    stdout: str
    stderr: str
    returncode: int


RUN_LOGGER = "fleetpush.run"


class RunLog:
    """Append-only audit log of every external invocation in one run.

    Lines belonging to one invocation are written under a single lock so
    output from hosts processed in parallel never interleaves.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._handler = logging.FileHandler(self.path, encoding="utf-8")
        self._handler.setFormatter(logging.Formatter("%(asctime)s %(message)s"))

    @classmethod
    def for_run(cls, log_dir: Path, *, prefix: str = "fleetpush", now: Optional[datetime] = None) -> "RunLog":
        stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
        log_dir = Path(log_dir)
        path = log_dir / f"{prefix}-{stamp}.log"
        counter = 1
        while path.exists():
            path = log_dir / f"{prefix}-{stamp}-{counter}.log"
            counter += 1
        return cls(path)

    def write(self, host: Optional[Host], lines: Sequence[str]) -> None:
        prefix = f"[{host}] " if host is not None else ""
        with self._lock:
            for line in lines:
                self._handler.handle(
                    logging.makeLogRecord(
                        {"name": RUN_LOGGER, "levelno": logging.INFO, "levelname": "INFO", "msg": f"{prefix}{line}"}
                    )
                )

    def command(self, host: Optional[Host], result: CommandResult) -> None:
        lines = [f"$ {' '.join(result.command)}"]
        for stream in (result.stdout, result.stderr):
            lines.extend(text.rstrip("\r") for text in stream.splitlines() if text.strip())
        lines.append(f"rc={result.returncode}")
        self.write(host, lines)

    def close(self) -> None:
        with self._lock:
            self._handler.close()

    def __enter__(self) -> "RunLog":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class Executor:
    """Runs external processes on behalf of one host and logs their output."""

    def __init__(self, host: Host, run_log: Optional[RunLog] = None):
        self.host = host
        self.run_log = run_log

    def run(
        self,
        command: Sequence[str],
        *,
        check: bool = True,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[Union[str, Path]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        cmd_list = [str(part) for part in command]

        exec_env = None
        if env:
            exec_env = os.environ.copy()
            exec_env.update(env)

        try:
            proc = subprocess.run(
                cmd_list,
                capture_output=True,
                text=True,
                check=False,
                env=exec_env,
                cwd=str(cwd) if cwd is not None else None,
                timeout=timeout,
            )
        except FileNotFoundError:
            raise ConfigError(f"required command '{cmd_list[0]}' is not installed") from None
        except subprocess.TimeoutExpired as exc:
            self.record(CommandResult(cmd_list, _as_text(exc.stdout), _as_text(exc.stderr), -1))
            raise ActionTimeoutError(f"{cmd_list[0]} timed out after {timeout}s") from None

        result = CommandResult(cmd_list, proc.stdout, proc.stderr, proc.returncode)
        self.record(result)
        if check and proc.returncode != 0:
            raise subprocess.CalledProcessError(
                proc.returncode,
                cmd_list,
                proc.stdout,
                proc.stderr,
            )
        return result

    def record(self, result: CommandResult) -> None:
        if self.run_log is not None:
            self.run_log.command(self.host, result)

    def note(self, line: str) -> None:
        if self.run_log is not None:
            self.run_log.write(self.host, [line])


def _as_text(value: Union[str, bytes, None]) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode(errors="replace")
    return value
