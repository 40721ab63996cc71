"""API route definitions."""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING

from fastapi import APIRouter, HTTPException, Request, UploadFile, status
from fastapi.responses import StreamingResponse

from flowerscan.api.schemas import (
    ErrorResponse,
    HealthResponse,
    ModelInfo,
    ModelsResponse,
    OutcomeResponse,
)
from flowerscan.ml.model_manager import MODEL_REGISTRY

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from flowerscan.config import Settings
    from flowerscan.ml.inference import InferencePool
    from flowerscan.ml.model_manager import OnnxModelManager
    from flowerscan.pipeline.orchestrator import ClassificationOrchestrator
    from flowerscan.pipeline.state import ClassificationOutcome, ResultState

router = APIRouter(prefix="/api/v1")

KEEPALIVE_SECONDS: float = 15.0


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_model_manager(request: Request) -> OnnxModelManager:
    manager: OnnxModelManager = request.app.state.model_manager
    return manager


def _get_result_state(request: Request) -> ResultState:
    state: ResultState = request.app.state.result_state
    return state


def _get_orchestrator(request: Request) -> ClassificationOrchestrator:
    orchestrator: ClassificationOrchestrator = request.app.state.orchestrator
    return orchestrator


def _format_event(outcome: ClassificationOutcome) -> str:
    payload = OutcomeResponse.from_outcome(outcome).model_dump(mode="json")
    return f"event: outcome\ndata: {json.dumps(payload)}\n\n"


async def outcome_events(state: ResultState, request: Request) -> AsyncIterator[str]:
    """Yield the current outcome, then every change, as Server-Sent Events."""
    queue: asyncio.Queue[ClassificationOutcome] = asyncio.Queue()
    loop = asyncio.get_running_loop()
    unsubscribe = state.subscribe(lambda outcome: loop.call_soon_threadsafe(queue.put_nowait, outcome))
    try:
        yield _format_event(state.current)
        while not await request.is_disconnected():
            try:
                outcome = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
            except TimeoutError:
                yield ": keep-alive\n\n"
                continue
            yield _format_event(outcome)
    finally:
        unsubscribe()


@router.post(
    "/classify",
    response_model=OutcomeResponse,
    status_code=status.HTTP_202_ACCEPTED,
    responses={
        status.HTTP_413_CONTENT_TOO_LARGE: {"model": ErrorResponse},
    },
    summary="Submit an image for classification",
)
async def classify_image(request: Request, file: UploadFile) -> OutcomeResponse:
    """Start classifying an uploaded photo.

    Returns immediately with the Running outcome; poll
    ``/classification`` or stream ``/classification/events`` for the result.
    """
    settings = _get_settings(request)
    data = await file.read(settings.max_file_size + 1)
    if len(data) > settings.max_file_size:
        raise HTTPException(
            status_code=status.HTTP_413_CONTENT_TOO_LARGE,
            detail=f"Image exceeds the limit of {settings.max_file_size} bytes",
        )

    orchestrator = _get_orchestrator(request)
    orchestrator.submit(data)
    return OutcomeResponse.from_outcome(_get_result_state(request).current)


@router.get(
    "/classification",
    response_model=OutcomeResponse,
    summary="Current classification outcome",
)
async def get_classification(request: Request) -> OutcomeResponse:
    return OutcomeResponse.from_outcome(_get_result_state(request).current)


@router.delete(
    "/classification",
    response_model=OutcomeResponse,
    summary="Clear the classification outcome",
)
async def clear_classification(request: Request) -> OutcomeResponse:
    """Reset to Idle; results of in-flight submissions are discarded."""
    _get_orchestrator(request).clear()
    return OutcomeResponse.from_outcome(_get_result_state(request).current)


@router.get(
    "/classification/events",
    response_class=StreamingResponse,
    summary="Stream classification outcomes",
)
async def stream_classification(request: Request) -> StreamingResponse:
    return StreamingResponse(
        outcome_events(_get_result_state(request), request),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pool = _get_inference_pool(request)
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        models_loaded=_get_model_manager(request).get_loaded_models(),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
        state=_get_result_state(request).current.status,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return registered models, marking the configured one as active."""
    settings = _get_settings(request)
    return ModelsResponse(
        models=[
            ModelInfo(
                name=spec.name,
                input_size=spec.input_size,
                status="active" if spec.name == settings.model_name else "available",
                license=spec.license,
            )
            for spec in MODEL_REGISTRY.values()
        ]
    )
