from __future__ import annotations

import argparse
import dataclasses
import getpass
import logging
import os
import sys
from pathlib import Path
from typing import Optional, Sequence

from .config import DEFAULT_CONFIG, FleetConfig, load_config
from .credentials import CredentialSupplier, KeyCredentials, PasswordCredentials
from .errors import ConfigError, InputError
from .executors import RunLog
from .inventory import GroupLoader, is_mode_token, load_host_file, resolve_hosts
from .keys import PUSH_TOOLS, SYNC_TOOLS, ensure_keypair, require_tools
from .operations import FileSyncOperation, KeyPushOperation, Operation
from .retry import RetryController
from .runner import FleetRunner, summarize
from .types import FileSyncSpec, Host, HostOutcome, KeyPushSpec

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_FATAL = 2


class Ansi:
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    RESET = "\033[0m"


def colorize(text: str, color: Optional[str]) -> str:
    if not color:
        return text
    if not sys.stdout.isatty() or os.environ.get("NO_COLOR"):
        return text
    return f"{color}{text}{Ansi.RESET}"


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help=f"Path to fleetpush config file (default: {DEFAULT_CONFIG})",
    )
    common.add_argument("--groups", type=Path, help="TOML file defining the master and worker groups")
    common.add_argument("-m", "--mode", default="all", help="Node group: master (m), worker (w) or all")
    common.add_argument("-u", "--user", help="Remote user name")
    common.add_argument("-p", "--port", type=int, help="SSH port")
    common.add_argument("--retries", type=int, help="Attempts per host")
    common.add_argument("--workers", type=int, help="Hosts processed in parallel (default: 1)")
    common.add_argument("--log-dir", type=Path, help="Directory for the per-run audit log")
    common.add_argument("--log-level", default="INFO", help="Python logging level (default: INFO)")

    parser = argparse.ArgumentParser(description="Passwordless SSH bootstrap and file distribution for node groups")
    sub = parser.add_subparsers(dest="command", required=True)

    push = sub.add_parser("push", parents=[common], help="Install a public key on every host")
    push.add_argument(
        "hosts",
        nargs="*",
        help="Node group (master, worker, all) or explicit hosts ([user@]host[:port]); hosts override --mode",
    )
    push.add_argument("-f", "--host-file", type=Path, help="File with one host per line; overrides --mode")
    push.add_argument("-k", "--key-file", type=Path, help="Private key path (default: ~/.ssh/id_rsa)")
    push.add_argument("-t", "--key-type", help="Key type used when generating a new key (default: rsa)")
    push.add_argument("-b", "--key-bits", type=int, help="Key size used when generating a new key (default: 2048)")
    push.add_argument(
        "--key-auth",
        action="store_true",
        help="Authenticate ssh-copy-id with an already trusted key instead of a password",
    )

    sync = sub.add_parser("sync", parents=[common], help="rsync local paths to every host")
    sync.add_argument("sources", nargs="+", type=Path, help="Local files or directories to distribute")
    sync.add_argument("--target", type=Path, help="Remote directory (default: each source's parent)")
    sync.add_argument("--exclude", action="append", default=[], help="rsync exclude pattern (repeatable)")
    sync.add_argument("-n", "--dry-run", action="store_true", help="Simulate the transfer without changes")
    sync.add_argument("--no-retry", action="store_true", help="Record sync failures without retrying")
    args = parser.parse_args(argv)
    if args.command == "push" and args.hosts and is_mode_token(args.hosts[0]):
        args.mode = args.hosts.pop(0)
    return args


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(levelname)s %(name)s - %(message)s",
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)

    try:
        cfg = apply_overrides(load_config(args.config), args)
        if args.command == "push":
            return run_push(args, cfg)
        return run_sync(args, cfg)
    except (ConfigError, InputError) as exc:
        print(colorize(f"Error: {exc}", Ansi.RED), file=sys.stderr)
        return EXIT_FATAL


def apply_overrides(cfg: FleetConfig, args: argparse.Namespace) -> FleetConfig:
    overrides = {
        "user": args.user,
        "port": args.port,
        "retries": args.retries,
        "workers": args.workers,
        "log_dir": args.log_dir,
        "groups_file": args.groups,
        "key_file": getattr(args, "key_file", None),
        "key_type": getattr(args, "key_type", None),
        "key_bits": getattr(args, "key_bits", None),
    }
    changes = {key: value for key, value in overrides.items() if value is not None}
    if getattr(args, "no_retry", False):
        changes["retry_sync"] = False
    if changes.get("retries", 1) < 1 or changes.get("workers", 1) < 1:
        raise ConfigError("--retries and --workers must be at least 1")
    return dataclasses.replace(cfg, **changes)


def resolve_targets(args: argparse.Namespace, cfg: FleetConfig) -> list[Host]:
    explicit: list[Host] = []
    host_file = getattr(args, "host_file", None)
    if host_file:
        explicit.extend(load_host_file(host_file))
    for token in getattr(args, "hosts", None) or []:
        try:
            explicit.append(Host.parse(token))
        except ValueError as exc:
            raise InputError(str(exc)) from None
    if explicit:
        return explicit
    groups = GroupLoader().load(cfg.groups_file) if cfg.groups_file else None
    return resolve_hosts(args.mode, groups)


def run_push(args: argparse.Namespace, cfg: FleetConfig) -> int:
    hosts = resolve_targets(args, cfg)
    if not hosts:
        raise InputError("no hosts specified")
    require_tools(PUSH_TOOLS)

    key_file = cfg.key_file.expanduser()
    if ensure_keypair(key_file, key_type=cfg.key_type, bits=cfg.key_bits):
        print(f"Generated {cfg.key_type} key {key_file}")

    credentials: CredentialSupplier
    if args.key_auth:
        credentials = KeyCredentials()
    else:
        credentials = PasswordCredentials(getpass.getpass("Shared password for all nodes: "))

    spec = KeyPushSpec(
        key_file=key_file,
        user=cfg.user or "root",
        port=cfg.port,
        key_type=cfg.key_type,
        key_bits=cfg.key_bits,
    )
    operation = KeyPushOperation(
        spec,
        credentials,
        timeout=cfg.push_timeout,
        connect_timeout=cfg.connect_timeout,
    )
    with RunLog.for_run(cfg.log_dir, prefix="fleetpush-push") as run_log:
        runner = _make_runner(hosts, cfg, run_log)
        report = runner.push(operation)
        print(f"Log written to {run_log.path}")

    for line in summarize([report], all_clear="All done! Passwordless login works on every host."):
        print(colorize(line, Ansi.GREEN if report.ok else Ansi.RED))
    return EXIT_OK if report.ok else EXIT_FAILED


def run_sync(args: argparse.Namespace, cfg: FleetConfig) -> int:
    hosts = resolve_targets(args, cfg)
    require_tools(SYNC_TOOLS)

    user = cfg.user or getpass.getuser()
    operations = [
        FileSyncOperation(
            FileSyncSpec(
                source=source,
                target=args.target,
                excludes=tuple(args.exclude),
                dry_run=args.dry_run,
                user=user,
                port=cfg.port,
            )
        )
        for source in args.sources
    ]
    with RunLog.for_run(cfg.log_dir, prefix="fleetpush-sync") as run_log:
        runner = _make_runner(hosts, cfg, run_log)
        run = runner.sync(operations)
        print(f"Log written to {run_log.path}")

    for source in run.skipped:
        print(colorize(f"[{source}] not found, skipped", Ansi.YELLOW))
    summary = summarize(
        run.reports,
        all_clear="All done! Every source is in sync on every host.",
        not_attempted=run.not_attempted,
    )
    for line in summary:
        print(colorize(line, Ansi.GREEN if run.ok else Ansi.RED))
    return EXIT_OK if run.ok else EXIT_FAILED


def _make_runner(hosts: Sequence[Host], cfg: FleetConfig, run_log: RunLog) -> FleetRunner:
    return FleetRunner(
        hosts,
        run_log=run_log,
        retry=RetryController(cfg.retries, retry_sync=cfg.retry_sync),
        workers=cfg.workers,
        progress_callback=print_progress,
        result_callback=print_outcome,
    )


def print_progress(host: Host, operation: Operation) -> None:
    resource = operation.describe()
    suffix = f" [{resource}]" if resource else ""
    print(colorize(f"===== {host}::{operation.name}{suffix} =====", Ansi.YELLOW), flush=True)


def format_outcome(outcome: HostOutcome) -> str:
    tries = len(outcome.attempts)
    if outcome.succeeded:
        return colorize(f"{outcome.host}::{outcome.action} ok (attempt {tries})", Ansi.GREEN)
    detail = str(outcome.error) if outcome.error else "failed"
    return colorize(f"{outcome.host}::{outcome.action} failed - {detail}", Ansi.RED)


def print_outcome(outcome: HostOutcome) -> None:
    print(format_outcome(outcome), flush=True)


if __name__ == "__main__":
    raise SystemExit(main())
