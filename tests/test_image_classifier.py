"""Tests for the ONNX image classifier and score ranking."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import numpy as np
import pytest

from flowerscan.ml.errors import ErrorKind, InferenceError, ModelLoadError
from flowerscan.ml.image_classifier import ClassificationCandidate, OnnxImageClassifier, rank_scores
from flowerscan.ml.model_manager import ModelSpec
from flowerscan.ml.preprocessing import PreparedImage

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _spec(**overrides: object) -> ModelSpec:
    values: dict[str, object] = {
        "name": "test_model",
        "repo_id": "test/repo",
        "filename": "test.onnx",
        "subfolder": None,
        "input_size": 8,
        "index_base": 1,
        "apply_softmax": False,
        "license": "MIT",
    }
    values.update(overrides)
    return ModelSpec(**values)  # type: ignore[arg-type]


def _image(size: int = 8) -> PreparedImage:
    return PreparedImage(tensor=np.zeros((1, 3, size, size), dtype=np.float32), original_size=(size, size))


def _session(scores: list[float], shape: list[object] | None = None) -> MagicMock:
    session = MagicMock()
    session.get_inputs.return_value = [SimpleNamespace(name="pixel_values", shape=shape or ["batch", 3, 8, 8])]
    session.run.return_value = [np.array([scores], dtype=np.float32)]
    return session


def _classifier(session: MagicMock, top_k: int = 5, **spec_overrides: object) -> OnnxImageClassifier:
    manager = MagicMock()
    manager.get_spec.return_value = _spec(**spec_overrides)
    manager.get_session.return_value = session
    return OnnxImageClassifier(manager, "test_model", top_k=top_k)


# ---------------------------------------------------------------------------
# Ranking
# ---------------------------------------------------------------------------


class TestRankScores:
    def test_sorted_descending(self) -> None:
        candidates = rank_scores(np.array([0.1, 0.7, 0.2]), index_base=1)
        assert [c.label_code for c in candidates] == ["2", "3", "1"]
        assert [c.confidence for c in candidates] == pytest.approx([0.7, 0.2, 0.1])

    def test_ties_broken_by_code_ascending(self) -> None:
        scores = np.zeros(12)
        scores[1] = scores[9] = scores[10] = 0.3
        candidates = rank_scores(scores, index_base=1, top_k=3)
        assert [c.label_code for c in candidates] == ["2", "10", "11"]

    def test_softmax_applied_to_logits(self) -> None:
        candidates = rank_scores(np.array([2.0, 1.0, 0.0]), apply_softmax=True)
        assert sum(c.confidence for c in candidates) == pytest.approx(1.0)
        assert candidates[0].label_code == "0"

    def test_confidence_clipped(self) -> None:
        candidates = rank_scores(np.array([1.4, -0.2]))
        assert candidates[0].confidence == 1.0
        assert candidates[-1].confidence == 0.0

    def test_scores_above_one_keep_model_order(self) -> None:
        candidates = rank_scores(np.array([1.2, 3.5, 0.1]), index_base=1)
        assert [c.label_code for c in candidates] == ["2", "1", "3"]
        assert [c.confidence for c in candidates] == pytest.approx([1.0, 1.0, 0.1])

    def test_negative_scores_keep_model_order(self) -> None:
        candidates = rank_scores(np.array([-0.5, -0.1, -2.0]))
        assert [c.label_code for c in candidates] == ["1", "0", "2"]
        assert all(c.confidence == 0.0 for c in candidates)

    def test_top_k_never_below_one(self) -> None:
        assert len(rank_scores(np.array([0.5, 0.5]), top_k=0)) == 1

    def test_empty_scores(self) -> None:
        with pytest.raises(InferenceError, match="no scores"):
            rank_scores(np.array([]))

    def test_non_finite_scores(self) -> None:
        with pytest.raises(InferenceError, match="non-finite"):
            rank_scores(np.array([0.2, np.nan]))


# ---------------------------------------------------------------------------
# OnnxImageClassifier
# ---------------------------------------------------------------------------


class TestOnnxImageClassifier:
    def test_classify_returns_ranked_candidates(self) -> None:
        session = _session([0.05, 0.87, 0.08])
        classifier = _classifier(session)

        candidates = classifier.classify(_image())

        assert candidates[0] == ClassificationCandidate(label_code="2", confidence=pytest.approx(0.87))
        assert [c.confidence for c in candidates] == sorted((c.confidence for c in candidates), reverse=True)
        session.run.assert_called_once()
        _, feeds = session.run.call_args.args
        assert list(feeds) == ["pixel_values"]

    def test_top_k_limits_candidates(self) -> None:
        classifier = _classifier(_session([0.1] * 10), top_k=3)
        assert len(classifier.classify(_image())) == 3

    def test_model_properties(self) -> None:
        classifier = _classifier(_session([1.0]), input_size=8)
        assert classifier.model_name == "test_model"
        assert classifier.input_size == 8

    def test_model_load_failure(self) -> None:
        manager = MagicMock()
        manager.get_spec.return_value = _spec()
        manager.get_session.side_effect = FileNotFoundError("weights missing")
        classifier = OnnxImageClassifier(manager, "test_model")

        with pytest.raises(ModelLoadError, match="unavailable") as exc_info:
            classifier.classify(_image())
        assert exc_info.value.kind is ErrorKind.MODEL_LOAD_FAILURE

    def test_runtime_fault_is_inference_failure(self) -> None:
        session = _session([0.5])
        session.run.side_effect = RuntimeError("kernel exploded")
        classifier = _classifier(session)

        with pytest.raises(InferenceError, match="kernel exploded") as exc_info:
            classifier.classify(_image())
        assert exc_info.value.kind is ErrorKind.INFERENCE_FAILURE

    def test_incompatible_input_shape(self) -> None:
        classifier = _classifier(_session([0.5], shape=[1, 3, 224, 224]))
        with pytest.raises(InferenceError, match="does not match"):
            classifier.classify(_image(8))

    def test_incompatible_input_rank(self) -> None:
        classifier = _classifier(_session([0.5], shape=[1, 8, 8]))
        with pytest.raises(InferenceError, match="does not match"):
            classifier.classify(_image(8))

    def test_empty_output_is_inference_failure(self) -> None:
        session = _session([])
        classifier = _classifier(session)
        with pytest.raises(InferenceError):
            classifier.classify(_image())

    def test_unknown_model_fails_at_construction(self) -> None:
        manager = MagicMock()
        manager.get_spec.side_effect = KeyError("Unknown model: nope")
        with pytest.raises(KeyError):
            OnnxImageClassifier(manager, "nope")
