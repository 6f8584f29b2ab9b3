"""Error kinds shared by every engine.

Each error carries a message that is safe to show to the operator as-is.
"""


class EnsembleError(Exception):
    """Base exception for Ensemble operations."""

    def __init__(self, message: str, details: list[dict] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or []


class NotFoundError(EnsembleError):
    """Referenced entity does not exist."""
    pass


class ConflictError(EnsembleError):
    """Uniqueness violation or operation blocked by current state."""
    pass


class PermissionDeniedError(EnsembleError):
    """Caller failed the RBAC gate."""
    pass


class ValidationError(EnsembleError):
    """Input rejected before any write."""
    pass


class ExternalSyncError(EnsembleError):
    """The ITSM source could not be reached or returned garbage."""
    pass
