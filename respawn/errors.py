"""
Exception types raised by respawn.

Errors local to a single restart attempt (ConfigurationError, SpawnError)
are caught by the supervisor loop and logged. WatchError is fatal.
"""


class RespawnError(Exception):
    """Base class for respawn errors."""


class ConfigurationError(RespawnError):
    """The command could not be resolved from the configuration."""


class SpawnError(RespawnError):
    """The operating system refused to start the resolved command."""

    def __init__(self, command: list[str], reason: str):
        self.command = command
        self.reason = reason
        super().__init__(f"Failed to start `{' '.join(command)}`: {reason}")


class WatchError(RespawnError):
    """The directory watcher could not subscribe to (or lost) its root."""
