"""Exception taxonomy for the migration service boundary.

Scan findings are data, never exceptions. Only structural failures raise.
Every error carries a stable ``code`` shared by the CLI and HTTP layers.
"""

from __future__ import annotations


class TrellisError(Exception):
    """Base class for errors surfaced to trellis callers."""

    code = "INTERNAL"


class ValidationError(TrellisError, ValueError):
    """Malformed or missing input. Raised before any job is created."""

    code = "VALIDATION_ERROR"


class AuthorizationError(TrellisError, PermissionError):
    """The actor is not a tenant admin."""

    code = "PERMISSION_DENIED"


class PreconditionError(TrellisError):
    """The target job is missing or not in a state that allows the operation."""

    code = "FAILED_PRECONDITION"


class ExecutionError(TrellisError):
    """A migration failed mid-job. The job is FAILED; applied moves stay applied."""

    code = "INTERNAL"

    def __init__(self, message: str, *, job_id: str | None = None) -> None:
        self.job_id = job_id
        super().__init__(message)
