"""Custom exception hierarchy for Stampede."""

from __future__ import annotations


class StampedeError(Exception):
    """Base exception for all Stampede errors.

    Catching this class catches every error the engine raises on purpose.
    """


class ConfigError(StampedeError):
    """Raised when configuration is invalid or missing.

    Always fatal, and always raised before any virtual user starts.

    Examples:
        - No target URL given and none configured in the environment.
        - Fixed-mode and staged-mode options supplied together.
        - An environment variable has an invalid value.
    """


class NetworkError(StampedeError):
    """Raised when a request fails at the transport level.

    The executor converts it into a failed ``RequestOutcome``; it never
    escapes a virtual user.

    Attributes:
        error_type: Class name of the underlying transport exception.
    """

    def __init__(self, message: str, error_type: str = "NetworkError") -> None:
        super().__init__(message)
        self.error_type = error_type


class CheckFailure(StampedeError):
    """Raised by a check predicate to fail the check with a reason.

    Recorded as a ``fail`` result, never fatal.
    """


class ResourceExhaustion(StampedeError):
    """Raised when the scheduler cannot admit another virtual user."""


class EngineError(StampedeError):
    """Raised when the engine fails or an internal invariant is violated.

    Examples:
        - The shared iteration budget went below zero.
        - The session loop raised an unexpected exception.
    """
