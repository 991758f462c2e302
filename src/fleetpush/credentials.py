from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional, Sequence
import io
import logging

import pexpect

from .errors import ActionTimeoutError, AuthError, ConfigError
from .executors import CommandResult, Executor

logger = logging.getLogger(__name__)

HOST_KEY_PROMPT = r"\(yes/no(/\[fingerprint\])?\)\??"
PASSWORD_PROMPT = r"[Pp]assword:"


class CredentialSupplier(ABC):
    """Drives a credential installation command to completion without a TTY user."""

    @abstractmethod
    def install(self, executor: Executor, command: Sequence[str], *, timeout: Optional[float]) -> CommandResult:
        """Run ``command`` and answer whatever it asks for."""


class PasswordCredentials(CredentialSupplier):
    """Answers host-key confirmation and password prompts with a shared password."""

    def __init__(self, password: str):
        self._password = password

    def __repr__(self) -> str:
        return "PasswordCredentials(password=***)"

    def install(self, executor: Executor, command: Sequence[str], *, timeout: Optional[float]) -> CommandResult:
        cmd_list = [str(part) for part in command]
        transcript = io.StringIO()
        try:
            child = pexpect.spawn(
                cmd_list[0],
                cmd_list[1:],
                timeout=timeout,
                encoding="utf-8",
                codec_errors="replace",
            )
        except pexpect.ExceptionPexpect as exc:
            raise ConfigError(f"cannot start '{cmd_list[0]}': {exc}") from None
        # Only what the remote side prints is captured; the password is sent
        # through logfile_send which stays unset.
        child.logfile_read = transcript

        result = CommandResult(cmd_list, "", "", -1)
        try:
            password_sent = False
            while True:
                index = child.expect([HOST_KEY_PROMPT, PASSWORD_PROMPT, pexpect.EOF, pexpect.TIMEOUT])
                if index == 0:
                    logger.debug("accepting host key for %s", executor.host)
                    child.sendline("yes")
                elif index == 1:
                    if password_sent:
                        raise AuthError("password rejected")
                    child.sendline(self._password)
                    password_sent = True
                elif index == 2:
                    break
                else:
                    raise ActionTimeoutError(f"{cmd_list[0]} gave no prompt within {timeout}s")
            child.close()
            result.returncode = _exit_code(child)
        finally:
            if child.isalive():
                child.close(force=True)
            result.stdout = transcript.getvalue()
            executor.record(result)
        return result


class KeyCredentials(CredentialSupplier):
    """Relies on a key the remote host already trusts; never prompts."""

    def install(self, executor: Executor, command: Sequence[str], *, timeout: Optional[float]) -> CommandResult:
        cmd_list = [str(part) for part in command]
        batch = [cmd_list[0], "-o", "BatchMode=yes", *cmd_list[1:]]
        return executor.run(batch, check=False, timeout=timeout)


def _exit_code(child: pexpect.spawn) -> int:
    if child.exitstatus is not None:
        return int(child.exitstatus)
    if child.signalstatus is not None:
        return -int(child.signalstatus)
    return -1
