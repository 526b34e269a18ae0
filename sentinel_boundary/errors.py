"""
Sentinel Boundary: Errors

Authorization and configuration errors propagate to the caller.
Cooldown suppression and shadow mode are NOT errors; they are normal
journaled outcomes and never raise.
"""

from typing import Optional


class SentinelError(Exception):
    """Base class for all sentinel errors."""


class ConfigurationError(SentinelError, ValueError):
    """Invalid policy or gate configuration. Fatal at load time."""


class AuthorizationError(SentinelError):
    """
    Caller identity is not allowed to perform the requested operation.

    Never swallowed: the call is rejected with no state mutation.
    """

    def __init__(self, caller: Optional[str], expected: Optional[str] = None):
        self.caller = caller
        self.expected = expected
        super().__init__(f"{type(self).__name__}: caller={caller!r}")


class InvalidSender(AuthorizationError):
    """Decision submitted by someone other than the authorized submitter."""


class NotExecutor(AuthorizationError):
    """Privileged target mutation attempted by a non-executor identity."""


class NotOwner(AuthorizationError):
    """Owner-only operation (executor rotation) attempted by a non-owner."""


class JournalWriteError(SentinelError):
    """Durable journal write failed. The in-memory entry still exists."""

    def __init__(self, message: str, entry=None):
        super().__init__(message)
        self.entry = entry
