"""Image classification over an ONNX flower classifier.

The model is treated as a black box: only its declared input (name and shape)
and its score-vector output are used.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np

from flowerscan.ml.errors import InferenceError, ModelLoadError
from flowerscan.ml.labels import code_sort_key

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

    from flowerscan.ml.model_manager import ModelManager, ModelSpec
    from flowerscan.ml.preprocessing import PreparedImage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClassificationCandidate:
    """A single classification prediction."""

    label_code: str
    confidence: float


class ImageClassifier(Protocol):
    """Protocol for image classification models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    def classify(self, image: PreparedImage) -> list[ClassificationCandidate]:
        """Classify a prepared image and return ranked candidates.

        Args:
            image: Output of ``ImagePreparer.prepare``.

        Returns:
            At least one candidate, sorted by confidence (descending) with ties
            broken by label code (ascending).

        Raises:
            ModelLoadError: If the model cannot be loaded.
            InferenceError: If the forward pass fails or yields no scores.
        """
        ...


def rank_scores(
    scores: NDArray[np.floating],
    *,
    index_base: int = 0,
    apply_softmax: bool = False,
    top_k: int | None = None,
) -> list[ClassificationCandidate]:
    """Turn a per-class score vector into ranked candidates.

    Raises:
        InferenceError: If the vector is empty or contains non-finite values.
    """
    values = np.asarray(scores, dtype=np.float64).reshape(-1)
    if values.size == 0:
        raise InferenceError("Classifier returned no scores")
    if not np.all(np.isfinite(values)):
        raise InferenceError("Classifier returned non-finite scores")

    if apply_softmax:
        exp = np.exp(values - values.max())
        values = exp / exp.sum()

    # Rank on raw scores; only the reported confidence is clipped to [0, 1].
    codes = [str(index + index_base) for index in range(values.size)]
    order = sorted(range(values.size), key=lambda i: (-values[i], code_sort_key(codes[i])))
    if top_k is not None:
        order = order[: max(top_k, 1)]
    confidences = np.clip(values, 0.0, 1.0)
    return [ClassificationCandidate(label_code=codes[i], confidence=float(confidences[i])) for i in order]


class OnnxImageClassifier:
    """Runs a registered ONNX classifier on prepared images.

    The session is fetched lazily from the model manager on first use and
    cached there; it is never mutated per call, so one instance can serve
    overlapping classifications.
    """

    def __init__(self, model_manager: ModelManager, model_name: str, top_k: int = 5) -> None:
        self._model_manager = model_manager
        self._spec: ModelSpec = model_manager.get_spec(model_name)
        self._top_k = top_k

    @property
    def model_name(self) -> str:
        return self._spec.name

    @property
    def input_size(self) -> int:
        return self._spec.input_size

    def classify(self, image: PreparedImage) -> list[ClassificationCandidate]:
        session = self._load_session()

        inputs = session.get_inputs()
        if not inputs:
            raise InferenceError(f"Model '{self.model_name}' declares no inputs")
        input_meta = inputs[0]
        _check_input_shape(input_meta.shape, image.shape)

        try:
            outputs = session.run(None, {input_meta.name: image.tensor})
        except Exception as exc:  # onnxruntime raises its own exception types
            raise InferenceError(f"Classification failed: {exc}") from exc

        if not outputs:
            raise InferenceError("Classifier returned no outputs")

        candidates = rank_scores(
            outputs[0],
            index_base=self._spec.index_base,
            apply_softmax=self._spec.apply_softmax,
            top_k=self._top_k,
        )
        logger.debug(
            "Top candidate %s (%.3f) from %s",
            candidates[0].label_code,
            candidates[0].confidence,
            self.model_name,
        )
        return candidates

    # -- Internal -----------------------------------------------------------

    def _load_session(self) -> InferenceSession:
        try:
            return self._model_manager.get_session(self.model_name)
        except Exception as exc:  # download, file, and onnxruntime load errors alike
            logger.error("Failed to load model %s: %s", self.model_name, exc)
            raise ModelLoadError(f"Classifier model '{self.model_name}' is unavailable: {exc}") from exc


def _check_input_shape(declared: Sequence[int | str | None], actual: tuple[int, ...]) -> None:
    """Compare an image shape with the model's declared input shape.

    Symbolic dimensions (strings or None) match any size.
    """
    if len(declared) != len(actual):
        raise InferenceError(f"Input shape {actual} does not match model input {tuple(declared)}")
    for expected, size in zip(declared, actual, strict=True):
        if isinstance(expected, int) and expected > 0 and expected != size:
            raise InferenceError(f"Input shape {actual} does not match model input {tuple(declared)}")
