from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterator, Optional, Sequence


@dataclass(frozen=True)
class Host:
    address: str
    port: Optional[int] = None
    user: Optional[str] = None

    @classmethod
    def parse(cls, token: str) -> "Host":
        """Build a host from ``[user@]address[:port]``."""

        text = token.strip()
        user: Optional[str] = None
        port: Optional[int] = None
        if "@" in text:
            user, text = text.split("@", 1)
            user = user or None
        if text.count(":") == 1:
            text, raw_port = text.split(":", 1)
            if not raw_port.isdigit():
                raise ValueError(f"invalid port in host '{token}'")
            port = int(raw_port)
        if not text:
            raise ValueError(f"empty address in host '{token}'")
        return cls(address=text, port=port, user=user)

    def __str__(self) -> str:
        return self.address


@dataclass(frozen=True)
class NodeGroup:
    name: str
    hosts: tuple[Host, ...] = ()

    def __iter__(self) -> Iterator[Host]:
        return iter(self.hosts)

    def __len__(self) -> int:
        return len(self.hosts)


@dataclass(frozen=True)
class KeyPushSpec:
    key_file: Path
    user: str = "root"
    port: int = 22
    key_type: str = "rsa"
    key_bits: int = 2048

    @property
    def public_key(self) -> Path:
        return self.key_file.with_name(self.key_file.name + ".pub")


@dataclass(frozen=True)
class FileSyncSpec:
    source: Path
    target: Optional[Path] = None
    excludes: tuple[str, ...] = ()
    dry_run: bool = False
    user: str = "root"
    port: int = 22

    @property
    def destination(self) -> str:
        if self.target is not None:
            return str(self.target)
        return str(self.source.absolute().parent)


class AttemptStatus(Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"


@dataclass
class AttemptResult:
    attempt: int
    status: AttemptStatus
    diagnostic: str = ""

    @property
    def ok(self) -> bool:
        return self.status is AttemptStatus.SUCCESS


@dataclass
class HostOutcome:
    host: Host
    action: str
    attempts: list[AttemptResult] = field(default_factory=list)
    error: Optional[Exception] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and any(a.ok for a in self.attempts)

    @property
    def diagnostics(self) -> list[str]:
        return [a.diagnostic for a in self.attempts if not a.ok and a.diagnostic]


class FleetReport:
    """Per-host outcomes kept in resolution order."""

    def __init__(self, hosts: Sequence[Host], *, label: Optional[str] = None):
        self.hosts: list[Host] = []
        for host in hosts:
            if host not in self.hosts:
                self.hosts.append(host)
        self.label = label
        self._outcomes: dict[Host, HostOutcome] = {}
        self._lock = threading.Lock()

    def record(self, outcome: HostOutcome) -> None:
        with self._lock:
            if outcome.host not in self.hosts:
                raise KeyError(f"host '{outcome.host}' is not part of this run")
            if outcome.host in self._outcomes:
                raise ValueError(f"host '{outcome.host}' already has an outcome")
            self._outcomes[outcome.host] = outcome

    def __iter__(self) -> Iterator[HostOutcome]:
        for host in self.hosts:
            outcome = self._outcomes.get(host)
            if outcome is not None:
                yield outcome

    def __len__(self) -> int:
        return len(self._outcomes)

    def __contains__(self, host: object) -> bool:
        return host in self._outcomes

    def get(self, host: Host) -> Optional[HostOutcome]:
        return self._outcomes.get(host)

    @property
    def failed(self) -> list[Host]:
        return [outcome.host for outcome in self if not outcome.succeeded]

    @property
    def complete(self) -> bool:
        return len(self._outcomes) == len(self.hosts)

    @property
    def ok(self) -> bool:
        return self.complete and not self.failed


@dataclass
class SyncRun:
    """Reports for every synced source, the sources that were skipped and
    those a cancellation left unattempted."""

    reports: list[FleetReport] = field(default_factory=list)
    skipped: list[Path] = field(default_factory=list)
    not_attempted: list[Path] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        if self.not_attempted or not self.reports:
            return False
        return all(report.ok for report in self.reports)
