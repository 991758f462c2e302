from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

from ..errors import FleetError
from ..executors import CommandResult, Executor
from ..types import Host


class Operation(ABC):
    """Shared surface for per-host distribution actions."""

    name = "operation"
    failure: type[FleetError] = FleetError
    requires_verification = False

    def __init__(self, spec: Any):
        self.spec = spec

    @abstractmethod
    def execute(self, host: Host, executor: Executor) -> CommandResult:
        """Run the action once against ``host``; raise ``failure`` on a non-zero exit."""

    def verify(self, host: Host, executor: Executor) -> bool:
        return True

    def describe(self) -> Optional[str]:
        return None

    @staticmethod
    def error_detail(result: CommandResult) -> str:
        message = Operation._summarize_output(result)
        prefix = f"rc={result.returncode}"
        if message:
            return f"{prefix}: {message}"
        return prefix

    @staticmethod
    def _summarize_output(result: CommandResult) -> Optional[str]:
        for text in (result.stderr, result.stdout):
            if not text:
                continue
            stripped = text.strip()
            if not stripped:
                continue
            line = stripped.splitlines()[-1]
            return (line[:157] + "...") if len(line) > 160 else line
        return None
