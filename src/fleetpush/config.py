from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]

from .errors import ConfigError


DEFAULT_CONFIG = Path("/etc/fleetpush/main.conf")
DEFAULT_KEY = Path("~/.ssh/id_rsa")


@dataclass
class FleetConfig:
    # None: root for push, the local user for sync
    user: Optional[str] = None
    port: int = 22
    key_file: Path = DEFAULT_KEY
    key_type: str = "rsa"
    key_bits: int = 2048
    retries: int = 2
    retry_sync: bool = True
    push_timeout: float = 20.0
    connect_timeout: int = 8
    workers: int = 1
    log_dir: Path = Path("logs")
    groups_file: Optional[Path] = None


def load_config(path: Path) -> FleetConfig:
    if not path.exists():
        return FleetConfig()
    try:
        text = path.read_text()
    except OSError as exc:
        raise ConfigError(f"cannot read config file {path}: {exc}") from None
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"{path}: {exc}") from None
    defaults = data.get("defaults", {})
    if not isinstance(defaults, dict):
        raise ConfigError(f"{path}: [defaults] must be a table")
    try:
        return _build(defaults)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{path}: {exc}") from None


def _build(defaults: dict[str, Any]) -> FleetConfig:
    base = FleetConfig()
    groups_file = defaults.get("groups_file")
    cfg = FleetConfig(
        user=str(defaults["user"]) if defaults.get("user") else None,
        port=int(defaults.get("port", base.port)),
        key_file=Path(str(defaults.get("key_file", base.key_file))),
        key_type=str(defaults.get("key_type", base.key_type)),
        key_bits=int(defaults.get("key_bits", base.key_bits)),
        retries=int(defaults.get("retries", base.retries)),
        retry_sync=bool(defaults.get("retry_sync", base.retry_sync)),
        push_timeout=float(defaults.get("push_timeout", base.push_timeout)),
        connect_timeout=int(defaults.get("connect_timeout", base.connect_timeout)),
        workers=int(defaults.get("workers", base.workers)),
        log_dir=Path(str(defaults.get("log_dir", base.log_dir))),
        groups_file=Path(str(groups_file)) if groups_file else None,
    )
    if cfg.retries < 1:
        raise ValueError("retries must be at least 1")
    if cfg.workers < 1:
        raise ValueError("workers must be at least 1")
    return cfg
