from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Mapping, Optional
import re

try:
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib  # type: ignore[no-redef]

from .errors import ConfigError
from .types import Host, NodeGroup

MASTER = "master"
WORKER = "worker"

MASTER_ALIASES = frozenset({"m", "master", "masters", "master_node"})
WORKER_ALIASES = frozenset({"w", "worker", "workers", "node", "worker_node"})

DEFAULT_GROUPS: dict[str, tuple[str, ...]] = {
    MASTER: ("ubuntu-master02", "ubuntu-master03"),
    WORKER: ("ubuntu-node01", "ubuntu-node02", "ubuntu-node03"),
}

_SEPARATORS = re.compile(r"[,\n]")


def default_groups() -> dict[str, NodeGroup]:
    return {name: make_group(name, tokens) for name, tokens in DEFAULT_GROUPS.items()}


def make_group(name: str, tokens: Iterable[str]) -> NodeGroup:
    hosts: list[Host] = []
    for token in tokens:
        host = Host.parse(token)
        if host not in hosts:
            hosts.append(host)
    return NodeGroup(name=name, hosts=tuple(hosts))


def normalize_mode(mode: Optional[str]) -> str:
    token = (mode or "").strip().lower()
    if token in MASTER_ALIASES:
        return MASTER
    if token in WORKER_ALIASES:
        return WORKER
    return "all"


def is_mode_token(token: str) -> bool:
    text = token.strip().lower()
    return text == "all" or text in MASTER_ALIASES or text in WORKER_ALIASES


def resolve_hosts(mode: Optional[str], groups: Optional[Mapping[str, NodeGroup]] = None) -> list[Host]:
    """Return the ordered target hosts for ``mode``.

    ``master`` and ``worker`` (and their aliases) pick a single group; any
    other token picks master followed by worker without merging duplicates
    across the two groups.
    """

    groups = groups if groups is not None else default_groups()
    missing = [name for name in (MASTER, WORKER) if name not in groups]
    if missing:
        raise ConfigError(f"missing group(s): {', '.join(missing)}")
    selected = normalize_mode(mode)
    if selected == "all":
        return [*groups[MASTER].hosts, *groups[WORKER].hosts]
    return list(groups[selected].hosts)


class GroupLoader:
    """Loads master/worker group definitions from TOML files."""

    REQUIRED = (MASTER, WORKER)

    def load(self, path: Path) -> dict[str, NodeGroup]:
        path = Path(path)
        try:
            text = path.read_text()
        except OSError as exc:
            raise ConfigError(f"cannot read group file {path}: {exc}") from None
        try:
            data = tomllib.loads(text)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"{path}: {exc}") from None

        raw_groups = data.get("groups", data)
        if not isinstance(raw_groups, dict):
            raise ConfigError(f"{path}: [groups] must be a table")
        missing = [name for name in self.REQUIRED if name not in raw_groups]
        if missing:
            raise ConfigError(f"{path}: missing group(s): {', '.join(missing)}")

        groups: dict[str, NodeGroup] = {}
        for name in self.REQUIRED:
            try:
                groups[name] = make_group(name, self._split_tokens(raw_groups[name]))
            except ValueError as exc:
                raise ConfigError(f"{path}: group '{name}': {exc}") from None
        return groups

    @staticmethod
    def _split_tokens(value: Any) -> list[str]:
        if isinstance(value, str):
            items = _SEPARATORS.split(value)
        elif isinstance(value, list):
            items = [str(item) for item in value]
        else:
            raise ValueError("expected a list or a comma separated string")
        tokens: list[str] = []
        for item in items:
            stripped = item.split("#", 1)[0].strip()
            if stripped:
                tokens.append(stripped)
        return tokens


def load_host_file(path: Path) -> list[Host]:
    """Read one ``[user@]host[:port]`` token per line."""

    path = Path(path)
    try:
        lines = path.read_text().splitlines()
    except OSError as exc:
        raise ConfigError(f"cannot read host file {path}: {exc}") from None
    hosts: list[Host] = []
    for number, line in enumerate(lines, start=1):
        token = line.split("#", 1)[0].strip()
        if not token:
            continue
        try:
            hosts.append(Host.parse(token))
        except ValueError as exc:
            raise ConfigError(f"{path}:{number} {exc}") from None
    return hosts
