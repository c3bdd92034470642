"""Typed failures raised by the resolver, decision point and approval engine.

Absence of a permission is never an error: ``can`` returns ``False``. These
types are reserved for malformed configuration, refused actions and state
conflicts, and each carries the HTTP status the API layer answers with.
"""

from __future__ import annotations


class AccessFlowError(Exception):
    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(AccessFlowError):
    """A workflow or permission reference cannot be resolved.

    Fatal for the affected approval instance until an operator fixes the
    configuration; never converted into an approval or a rejection.
    """

    status_code = 422


class UnknownPermissionError(ConfigurationError):
    def __init__(self, values: list[str]) -> None:
        super().__init__(f"Unknown permission(s): {', '.join(sorted(values))}")
        self.values = values


class AuthorizationError(AccessFlowError):
    status_code = 403


class ConflictError(AccessFlowError):
    status_code = 409


class NotFoundError(AccessFlowError):
    status_code = 404


class StaleCacheWarning(UserWarning):
    """A session's permission snapshot predates the current role configuration."""
