from __future__ import annotations

from pathlib import Path
from typing import Iterable, Optional
import logging
import shutil

from .errors import ConfigError
from .executors import Executor
from .types import Host

logger = logging.getLogger(__name__)

PUSH_TOOLS = ("ssh", "ssh-copy-id")
SYNC_TOOLS = ("ssh", "rsync")


def require_tools(names: Iterable[str]) -> None:
    missing = [name for name in names if shutil.which(name) is None]
    if missing:
        raise ConfigError(f"required command(s) not found on PATH: {', '.join(missing)}")


def ensure_keypair(
    key_file: Path,
    *,
    key_type: str = "rsa",
    bits: Optional[int] = 2048,
    executor: Optional[Executor] = None,
) -> bool:
    """Generate an unencrypted key pair at ``key_file`` unless one exists."""

    key_file = Path(key_file).expanduser()
    if key_file.exists():
        return False
    key_file.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    executor = executor or Executor(Host("localhost"))
    cmd = ["ssh-keygen", "-t", key_type]
    # ed25519 keys have a fixed size and ssh-keygen ignores -b for them.
    if bits and key_type != "ed25519":
        cmd.extend(["-b", str(bits)])
    cmd.extend(["-P", "", "-f", str(key_file), "-q"])
    result = executor.run(cmd, check=False)
    if result.returncode != 0:
        raise ConfigError(f"ssh-keygen failed for {key_file}: rc={result.returncode} {result.stderr.strip()}")
    logger.info("generated %s key %s", key_type, key_file)
    return True
