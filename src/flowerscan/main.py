"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from flowerscan.config import Settings

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from flowerscan.api.routes import router
from flowerscan.config import get_settings
from flowerscan.ml.image_classifier import OnnxImageClassifier
from flowerscan.ml.inference import InferencePool
from flowerscan.ml.labels import LabelCatalog
from flowerscan.ml.model_manager import OnnxModelManager
from flowerscan.ml.preprocessing import ImagePreparer
from flowerscan.pipeline.orchestrator import ClassificationOrchestrator
from flowerscan.pipeline.state import ResultState

logger = logging.getLogger(__name__)

EVICTION_INTERVAL_SECONDS: float = 60.0


def init_app_state(app: FastAPI, settings: Settings) -> None:
    """Build the classification pipeline and attach it to ``app.state``."""
    app.state.settings = settings

    model_manager = OnnxModelManager(settings)
    classifier = OnnxImageClassifier(model_manager, settings.model_name, top_k=settings.top_k)
    preparer = ImagePreparer(input_size=classifier.input_size, max_image_pixels=settings.max_image_pixels)
    catalog = LabelCatalog.from_file(settings.labels_file) if settings.labels_file else LabelCatalog()
    inference_pool = InferencePool(settings.max_concurrent)
    result_state = ResultState()

    app.state.model_manager = model_manager
    app.state.inference_pool = inference_pool
    app.state.result_state = result_state
    app.state.orchestrator = ClassificationOrchestrator(
        preparer=preparer,
        classifier=classifier,
        catalog=catalog,
        state=result_state,
        pool=inference_pool,
    )


async def _evict_idle_models(manager: OnnxModelManager) -> None:
    while True:
        await asyncio.sleep(EVICTION_INTERVAL_SECONDS)
        manager.unload_idle_models()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting FlowerScan (device=%s, model=%s, max_concurrent=%s, allow_download=%s)",
        settings.device,
        settings.model_name,
        settings.max_concurrent,
        settings.allow_download,
    )

    init_app_state(app, settings)
    eviction = asyncio.create_task(_evict_idle_models(app.state.model_manager))

    logger.info("FlowerScan ready")
    yield

    logger.info("Shutting down FlowerScan")
    eviction.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await eviction
    await app.state.orchestrator.drain()
    app.state.inference_pool.shutdown()
    app.state.model_manager.shutdown()
    logger.info("FlowerScan shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="FlowerScan",
        description="Flower species identification from photos",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    settings = get_settings()
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())
