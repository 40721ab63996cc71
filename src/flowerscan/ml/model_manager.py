"""Model manager: resolve, load, cache, and evict ONNX classifier models.

Resolves model files from the local models directory (or the HuggingFace
cache, downloading only when explicitly allowed), creates and caches ONNX
InferenceSessions, and evicts sessions that have been idle past their TTL.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from huggingface_hub import hf_hub_download
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

if TYPE_CHECKING:
    from flowerscan.config import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol (kept for test mocking)
# ---------------------------------------------------------------------------


class ModelManager(Protocol):
    """Protocol for model lifecycle management."""

    def get_spec(self, model_name: str) -> ModelSpec:
        """Return the registry entry for a model."""
        ...

    def get_session(self, model_name: str) -> InferenceSession:
        """Return a cached or newly created InferenceSession."""
        ...

    def get_loaded_models(self) -> list[str]:
        """Return names of currently loaded models."""
        ...


# ---------------------------------------------------------------------------
# Model registry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModelSpec:
    """Static metadata for a single ONNX classifier.

    ``index_base`` is added to an output index to form its label code, so a
    model whose first score belongs to category "1" has ``index_base=1``.
    """

    name: str
    repo_id: str
    filename: str
    subfolder: str | None
    input_size: int
    index_base: int
    apply_softmax: bool
    license: str


MODEL_REGISTRY: dict[str, ModelSpec] = {
    "flowers102_mobilenetv3": ModelSpec(
        name="flowers102_mobilenetv3",
        repo_id="flowerscan/flowerscan-models",
        filename="flowers102_mobilenetv3_large.onnx",
        subfolder=None,
        input_size=224,
        index_base=1,
        apply_softmax=True,
        license="Apache-2.0",
    ),
    "flowers102_efficientnet_b0": ModelSpec(
        name="flowers102_efficientnet_b0",
        repo_id="flowerscan/flowerscan-models",
        filename="flowers102_efficientnet_b0.onnx",
        subfolder=None,
        input_size=224,
        index_base=1,
        apply_softmax=True,
        license="Apache-2.0",
    ),
    "flowers102_vit_b16": ModelSpec(
        name="flowers102_vit_b16",
        repo_id="flowerscan/flowerscan-models",
        filename="flowers102_vit_b16.onnx",
        subfolder="vit",
        input_size=224,
        index_base=1,
        apply_softmax=False,
        license="Apache-2.0",
    ),
}


def get_spec(model_name: str) -> ModelSpec:
    try:
        return MODEL_REGISTRY[model_name]
    except KeyError:
        raise KeyError(f"Unknown model: {model_name}") from None


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


@dataclass
class _CachedSession:
    session: InferenceSession
    last_used: float


class OnnxModelManager:
    """Resolves, loads, caches, and evicts ONNX inference sessions."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)

        self._lock = threading.Lock()
        self._sessions: dict[str, _CachedSession] = {}
        self._model_paths: dict[str, Path] = {}

        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

    # -- Public API ---------------------------------------------------------

    def get_spec(self, model_name: str) -> ModelSpec:
        return get_spec(model_name)

    def ensure_downloaded(self, model_name: str) -> Path:
        """Return a local path for the model file.

        Looks in the models directory first, then the HuggingFace cache. The
        network is only used when ``allow_download`` is enabled.
        """
        spec = get_spec(model_name)

        cached = self._model_paths.get(model_name)
        if cached is not None and cached.exists():
            return cached

        folder = self._models_dir / spec.subfolder if spec.subfolder else self._models_dir
        local = folder / spec.filename
        if local.is_file():
            self._model_paths[model_name] = local
            return local

        if self._settings.allow_download:
            self._models_dir.mkdir(parents=True, exist_ok=True)
        resolved = Path(
            hf_hub_download(
                repo_id=spec.repo_id,
                filename=spec.filename,
                subfolder=spec.subfolder,
                local_dir=str(self._models_dir),
                local_files_only=not self._settings.allow_download,
            )
        )
        self._model_paths[model_name] = resolved
        logger.info("Resolved %s to %s", model_name, resolved)
        return resolved

    def get_session(self, model_name: str) -> InferenceSession:
        """Return a cached InferenceSession, creating one if needed."""
        with self._lock:
            cached = self._sessions.get(model_name)
            if cached is not None:
                cached.last_used = time.monotonic()
                return cached.session

        model_path = self.ensure_downloaded(model_name)
        session = InferenceSession(
            str(model_path),
            sess_options=self._session_options,
            providers=self._providers,
        )

        with self._lock:
            # Double-check: another thread may have created it while we loaded.
            existing = self._sessions.get(model_name)
            if existing is not None:
                existing.last_used = time.monotonic()
                return existing.session
            self._sessions[model_name] = _CachedSession(
                session=session,
                last_used=time.monotonic(),
            )
            logger.info("Loaded session for %s", model_name)
            return session

    def get_loaded_models(self) -> list[str]:
        """Return names of models with active sessions."""
        with self._lock:
            return list(self._sessions.keys())

    def unload_idle_models(self) -> None:
        """Remove sessions that have exceeded the configured TTL."""
        ttl = self._settings.model_ttl
        if ttl == 0:
            return

        now = time.monotonic()
        with self._lock:
            expired = [name for name, cached in self._sessions.items() if (now - cached.last_used) > ttl]
            for name in expired:
                del self._sessions[name]
                logger.info("Evicted idle session for %s", name)

    def shutdown(self) -> None:
        """Clear all cached sessions."""
        with self._lock:
            self._sessions.clear()
            logger.info("All model sessions cleared")

    # -- Internal -----------------------------------------------------------

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                (
                    "CUDAExecutionProvider",
                    {
                        "device_id": 0,
                        "gpu_mem_limit": self._settings.gpu_mem_limit,
                        "arena_extend_strategy": "kSameAsRequested",
                    },
                ),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts
