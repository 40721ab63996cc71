"""Pydantic request/response schemas for the FlowerScan API."""

from __future__ import annotations

import string
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from flowerscan.ml.errors import ErrorKind
from flowerscan.pipeline.state import Failed, OutcomeStatus, Running, Succeeded

if TYPE_CHECKING:
    from flowerscan.pipeline.state import ClassificationOutcome


class OutcomeResponse(BaseModel):
    """Renderable view of the current classification outcome."""

    status: OutcomeStatus
    submission: int | None = None
    label: str | None = Field(default=None, description="Species name as stored in the label catalog")
    display_label: str | None = Field(default=None, description="Species name formatted for display")
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    confidence_text: str | None = Field(default=None, description="Confidence as a percentage, e.g. '87.0%'")
    reason: ErrorKind | None = None
    message: str | None = None

    @classmethod
    def from_outcome(cls, outcome: ClassificationOutcome) -> OutcomeResponse:
        if isinstance(outcome, Succeeded):
            return cls(
                status=outcome.status,
                submission=outcome.submission,
                label=outcome.display_label,
                display_label=string.capwords(outcome.display_label),
                confidence=outcome.confidence,
                confidence_text=f"{outcome.confidence * 100:.1f}%",
            )
        if isinstance(outcome, Failed):
            return cls(
                status=outcome.status,
                submission=outcome.submission,
                reason=outcome.reason,
                message=outcome.message,
            )
        if isinstance(outcome, Running):
            return cls(status=outcome.status, submission=outcome.submission)
        return cls(status=outcome.status)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int
    state: OutcomeStatus


class ModelInfo(BaseModel):
    """Information about an available model."""

    name: str
    input_size: int
    status: str = Field(description="Model status: 'active' or 'available'")
    license: str


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
