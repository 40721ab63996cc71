"""Typed failures for the classification pipeline.

Every failure that can end a single classification attempt carries an
``ErrorKind`` so observers can tell a bad photo apart from a missing model.
"""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    DECODE_FAILURE = "decode_failure"
    MODEL_LOAD_FAILURE = "model_load_failure"
    INFERENCE_FAILURE = "inference_failure"


class ClassificationError(Exception):
    """Base class for failures that terminate one classification attempt."""

    kind: ErrorKind = ErrorKind.INFERENCE_FAILURE


class DecodeError(ClassificationError):
    """The submitted bytes are not a decodable image."""

    kind = ErrorKind.DECODE_FAILURE


class ModelLoadError(ClassificationError):
    """The classifier model could not be resolved or loaded."""

    kind = ErrorKind.MODEL_LOAD_FAILURE


class InferenceError(ClassificationError):
    """The forward pass failed or produced no usable scores."""

    kind = ErrorKind.INFERENCE_FAILURE
