"""Core application utilities."""

from .config import Settings, get_settings
from .database import (
    async_session_factory,
    close_db,
    dialect_insert,
    engine,
    get_session,
    init_db,
)
from .dependencies import CallerDep, SessionDep, get_current_caller
from .rbac import Caller, Policy, TeamPermission, TeamRole, authorize
from .exceptions import (
    ConflictError,
    EnsembleError,
    ExternalSyncError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from .security import create_access_token, decode_token

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Database
    "engine",
    "async_session_factory",
    "get_session",
    "dialect_insert",
    "init_db",
    "close_db",
    # Dependencies
    "get_current_caller",
    "CallerDep",
    "SessionDep",
    # Exceptions
    "EnsembleError",
    "NotFoundError",
    "ConflictError",
    "PermissionDeniedError",
    "ValidationError",
    "ExternalSyncError",
    # RBAC
    "Caller",
    "TeamPermission",
    "TeamRole",
    "Policy",
    "authorize",
    # Security
    "create_access_token",
    "decode_token",
]
