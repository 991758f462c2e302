from __future__ import annotations

from typing import Optional

from .base import Operation
from ..errors import TransferError
from ..executors import CommandResult, Executor
from ..types import FileSyncSpec, Host


class FileSyncOperation(Operation):
    """Copy a local path to the same (or an explicit) location on a host."""

    name = "rsync"
    failure = TransferError

    def __init__(self, spec: FileSyncSpec, *, timeout: Optional[float] = None):
        super().__init__(spec)
        self.timeout = timeout

    def execute(self, host: Host, executor: Executor) -> CommandResult:
        result = executor.run(self.command(host), check=False, timeout=self.timeout)
        if result.returncode != 0:
            raise TransferError(self.error_detail(result))
        return result

    def command(self, host: Host) -> list[str]:
        spec: FileSyncSpec = self.spec
        cmd = ["rsync", "-azP"]
        if spec.dry_run:
            cmd.append("--dry-run")
        cmd.extend(f"--exclude={pattern}" for pattern in spec.excludes)
        port = host.port or spec.port
        cmd.extend(["-e", f"ssh -p {port}"])
        destination = spec.destination.rstrip("/") + "/"
        cmd.append(str(spec.source))
        cmd.append(f"{host.user or spec.user}@{host.address}:{destination}")
        return cmd

    def describe(self) -> Optional[str]:
        return str(self.spec.source)
