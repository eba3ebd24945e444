"""Error taxonomy shared by the catalog, the export pipeline and the web layer.

Every error carries the HTTP status it maps to so request handlers branch on
the class, never on the message text.
"""

from __future__ import annotations


class GymError(RuntimeError):
    status_code = 500
    message = "Internal server error"
    errors: tuple[str, ...] = ()

    def __init__(self, message: str | None = None, errors: list[str] | None = None) -> None:
        super().__init__(message or self.message)
        if errors is not None:
            self.errors = tuple(errors)


class ValidationError(GymError):
    """Raised when incoming data fails validation."""

    status_code = 400
    message = "Invalid request"


# ---------------------------------------------------------------------------
# Data store outcomes
# ---------------------------------------------------------------------------
class DataError(GymError):
    """A read or write against the store did not produce a usable result."""


class NotFound(DataError):
    status_code = 404
    message = "Not found"


class Denied(DataError):
    status_code = 403
    message = "Access forbidden"


class StoreFailure(DataError):
    status_code = 500
    message = "Database error"


# ---------------------------------------------------------------------------
# Principal & export failures
# ---------------------------------------------------------------------------
class AuthorizationError(Denied):
    """Raised when a user action is not permitted."""


class PrincipalMissing(GymError):
    status_code = 401
    message = "Not authenticated"
    errors = ("Please authenticate to access the requested resource.",)


class PrincipalForbidden(Denied):
    message = "Access forbidden"
    errors = ("Role does not have access to the requested resource.",)


class PrincipalNotFound(NotFound):
    message = "User not found"


class DataUnavailable(StoreFailure):
    message = "Failed to read from the database"


class EmitFailed(GymError):
    message = "Failed to generate the export"


__all__ = [
    "AuthorizationError",
    "DataError",
    "DataUnavailable",
    "Denied",
    "EmitFailed",
    "GymError",
    "NotFound",
    "PrincipalForbidden",
    "PrincipalMissing",
    "PrincipalNotFound",
    "StoreFailure",
    "ValidationError",
]
