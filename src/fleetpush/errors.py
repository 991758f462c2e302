from __future__ import annotations


class FleetError(Exception):
    """Base class for every error raised by fleetpush."""


class ConfigError(FleetError):
    """Group definitions, configuration or required tools are unusable."""


class InputError(FleetError):
    """No hosts or sources to act on, or a source path is missing."""


class AuthError(FleetError):
    """A credential push failed or could not be verified."""


class TransferError(FleetError):
    """A file sync exited non-zero."""


class ActionTimeoutError(FleetError, TimeoutError):
    """An external invocation did not finish in its allotted window."""
