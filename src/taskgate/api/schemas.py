"""API request/response schemas."""

from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    status: str
    version: str
    instance_id: str


class QueueTaskResponse(BaseModel):
    """Queue task response."""

    task_id: UUID


class BatchOperationResponse(BaseModel):
    """Result of a cancel/suspend/unsuspend over a batch."""

    batch_id: str
    changed: int = Field(..., description="Tasks whose status changed")


class MaintenanceResponse(BaseModel):
    """Result of a maintenance run."""

    processed: int


class RetentionRequest(BaseModel):
    """Historical task retention update."""

    days: int = Field(..., ge=0, description="Days terminal tasks stay before archival")


class RetentionResponse(BaseModel):
    days: int


class MetricsResponse(BaseModel):
    counters: dict[str, float]
    gauges: dict[str, float]
    histograms: dict[str, dict[str, Any]]
