"""Base schemas and common types for the Ensemble API."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict


# =============================================================================
# BASE SCHEMAS
# =============================================================================


class EnsembleBaseModel(BaseModel):
    """Base model with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,  # Enable ORM mode
        populate_by_name=True,
        use_enum_values=True,
    )


class TimestampMixin(BaseModel):
    """Mixin for created/updated timestamps."""

    created_at: datetime
    updated_at: datetime | None = None


# =============================================================================
# PAGINATION
# =============================================================================


class PaginatedResponse(EnsembleBaseModel):
    """Wrapper for offset-paginated responses."""

    items: list[Any]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total


# =============================================================================
# ERROR RESPONSES
# =============================================================================


class ErrorResponse(EnsembleBaseModel):
    """Standard error response format."""

    error: str
    message: str
    details: list[dict[str, Any]] = []


# =============================================================================
# COMMON REFERENCE SCHEMAS
# =============================================================================


class TeamRef(EnsembleBaseModel):
    id: UUID
    team_name: str


class AuditEventResponse(EnsembleBaseModel):
    id: UUID
    team_id: UUID | None
    actor: str
    action: str
    resource_type: str
    resource_id: UUID
    details: dict[str, Any] | None = None
    created_at: datetime
