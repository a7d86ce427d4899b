"""
Response Models
---------------
Health-check bodies and the shared error body. Authentication request and
response bodies live in ``lawcase_auth.auth.models``.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ErrorDetail(BaseModel):
    """Every failed request carries one of these under ``detail``."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"error": "invalid_credentials", "message": "Invalid email or password"}
        }
    )

    error: str = Field(..., description="Machine-readable error kind")
    message: str = Field(..., description="Message safe to show the caller")


class ErrorResponse(BaseModel):
    detail: ErrorDetail


class Health(Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"

    def __str__(self):
        return self.value


class HealthStatus(BaseModel):
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "healthy",
                "timestamp": "2026-01-12T09:00:00Z",
                "version": "1.0.0",
            }
        }
    )

    status: str = Field(..., description="healthy or unhealthy")
    version: Optional[str] = Field(default=None, description="Deployed service version")
    timestamp: datetime = Field(default_factory=_now)

    @field_validator("status")
    @classmethod
    def validate_status(cls, value: str) -> str:
        return Health(value).value


class DependencyHealth(BaseModel):
    """
    Credential store reachability.

    ``postgresql`` stays None on the in-memory backend, which has nothing to
    ping.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "credential_store": "postgres",
                "postgresql": True,
                "status": "healthy",
                "timestamp": "2026-01-12T09:00:00Z",
            }
        }
    )

    credential_store: str = Field(..., description="memory or postgres")
    postgresql: Optional[bool] = Field(default=None, description="Result of SELECT 1")
    status: str = Field(..., description="healthy or unhealthy")
    timestamp: datetime = Field(default_factory=_now)

    @field_validator("status")
    @classmethod
    def validate_status(cls, value: str) -> str:
        return Health(value).value
