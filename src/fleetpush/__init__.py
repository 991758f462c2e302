"""Passwordless SSH bootstrap and file distribution for cluster node groups."""

from .inventory import GroupLoader, resolve_hosts
from .runner import FleetRunner

__all__ = ["FleetRunner", "GroupLoader", "resolve_hosts"]
