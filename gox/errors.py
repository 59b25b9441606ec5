"""Error kinds raised by the proxy supervisor and the server registry."""


class GoxError(Exception):
    """Base class for all gox errors."""


class ProvisionError(GoxError):
    """The engine binary could not be extracted to its local path."""


class ConfigWriteError(GoxError):
    """The engine configuration document could not be persisted."""


class LaunchFailed(GoxError):
    """The engine did not start, or exited within the liveness window."""


class KillFailed(GoxError):
    """The OS refused to terminate the engine process."""


class ServerNotFound(GoxError):
    """No server descriptor matches the requested identity."""


class DuplicateServerName(GoxError):
    """Another server descriptor already uses this display name."""


class InvalidServer(GoxError):
    """A server descriptor failed validation."""
