from __future__ import annotations

from typing import Optional

from .base import Operation
from ..credentials import CredentialSupplier
from ..errors import AuthError
from ..executors import CommandResult, Executor
from ..types import Host, KeyPushSpec


class KeyPushOperation(Operation):
    """Install a public key into a host's authorized_keys via ssh-copy-id."""

    name = "authorized_key"
    failure = AuthError
    requires_verification = True

    def __init__(
        self,
        spec: KeyPushSpec,
        credentials: CredentialSupplier,
        *,
        timeout: Optional[float] = 20.0,
        connect_timeout: int = 8,
        marker: str = "success",
    ):
        super().__init__(spec)
        self.credentials = credentials
        self.timeout = timeout
        self.connect_timeout = connect_timeout
        self.marker = marker

    def execute(self, host: Host, executor: Executor) -> CommandResult:
        result = self.credentials.install(executor, self.install_command(host), timeout=self.timeout)
        if result.returncode != 0:
            raise AuthError(self.error_detail(result))
        return result

    def verify(self, host: Host, executor: Executor) -> bool:
        result = executor.run(
            self.probe_command(host),
            check=False,
            timeout=self.connect_timeout * 2,
        )
        return result.returncode == 0 and self.marker in result.stdout.split()

    def install_command(self, host: Host) -> list[str]:
        return [
            "ssh-copy-id",
            "-i",
            str(self.spec.public_key),
            "-p",
            str(self._port(host)),
            self._login(host),
        ]

    def probe_command(self, host: Host) -> list[str]:
        return [
            "ssh",
            "-o",
            "BatchMode=yes",
            "-o",
            f"ConnectTimeout={self.connect_timeout}",
            "-p",
            str(self._port(host)),
            self._login(host),
            f"echo {self.marker}",
        ]

    def describe(self) -> Optional[str]:
        return str(self.spec.public_key)

    def _login(self, host: Host) -> str:
        return f"{host.user or self.spec.user}@{host.address}"

    def _port(self, host: Host) -> int:
        return host.port or self.spec.port
