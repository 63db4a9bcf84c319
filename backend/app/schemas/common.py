"""Shared response schemas for operational endpoints."""

from typing import Dict, Optional

from pydantic import Field

from .base import StandardizedModel


class HealthResponse(StandardizedModel):
    """Health check response"""

    status: str = Field(description="Health status (ok/degraded)")
    service: str = Field(description="Service name")
    version: str = Field(description="API version")
    environment: str = Field(description="Environment name")
    timestamp: str = Field(description="UTC ISO8601 timestamp of the health response")
    checks: Dict[str, str] = Field(default_factory=dict, description="Per-dependency status")
    idempotency_backend: Optional[str] = None
