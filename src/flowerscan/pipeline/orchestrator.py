"""Classification orchestrator: submit image bytes, publish one outcome.

``submit`` runs on the event loop. It moves the result state to Running
immediately, then schedules decoding and inference on the inference pool.
When the work finishes, the outcome is published back on the event loop,
but only if no newer submission (or clear) has been made in the meantime.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from flowerscan.ml.errors import ClassificationError, ErrorKind, InferenceError
from flowerscan.pipeline.state import Failed, Running, Succeeded

if TYPE_CHECKING:
    from flowerscan.ml.image_classifier import ClassificationCandidate, ImageClassifier
    from flowerscan.ml.inference import InferencePool
    from flowerscan.ml.labels import LabelCatalog
    from flowerscan.ml.preprocessing import ImagePreparer
    from flowerscan.pipeline.state import ClassificationOutcome, ResultState

logger = logging.getLogger(__name__)


class ClassificationOrchestrator:
    """Coordinates preparation, inference, and label lookup for submissions."""

    def __init__(
        self,
        preparer: ImagePreparer,
        classifier: ImageClassifier,
        catalog: LabelCatalog,
        state: ResultState,
        pool: InferencePool,
    ) -> None:
        self._preparer = preparer
        self._classifier = classifier
        self._catalog = catalog
        self._state = state
        self._pool = pool
        self._latest = 0
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        """Number of submissions whose work has not finished yet."""
        return len(self._tasks)

    def submit(self, data: bytes) -> int:
        """Start classifying ``data`` and return its submission number.

        Must be called from the event loop. The state is Running when this
        returns; the outcome is published later through the result state.
        """
        loop = asyncio.get_running_loop()

        self._latest += 1
        submission = self._latest
        self._state.publish(Running(submission=submission))
        logger.info("Submission %d accepted (%d bytes)", submission, len(data))

        task = loop.create_task(self._classify(submission, data), name=f"classify-{submission}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return submission

    def clear(self) -> None:
        """Return the state to Idle and drop any in-flight result."""
        self._latest += 1
        self._state.reset()
        logger.info("Classification cleared")

    async def drain(self) -> None:
        """Wait until all in-flight submissions have finished."""
        while self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    # -- Internal -----------------------------------------------------------

    def _run_pipeline(self, data: bytes) -> ClassificationCandidate:
        prepared = self._preparer.prepare(data)
        candidates = self._classifier.classify(prepared)
        if not candidates:
            raise InferenceError("Classifier returned no candidates")
        return candidates[0]

    async def _classify(self, submission: int, data: bytes) -> None:
        outcome: ClassificationOutcome
        try:
            top = await self._pool.run(self._run_pipeline, data)
        except ClassificationError as exc:
            logger.warning("Submission %d failed (%s): %s", submission, exc.kind, exc)
            outcome = Failed(reason=exc.kind, message=str(exc), submission=submission)
        except Exception as exc:
            logger.exception("Submission %d failed unexpectedly", submission)
            outcome = Failed(
                reason=ErrorKind.INFERENCE_FAILURE,
                message=f"Classification failed: {exc}",
                submission=submission,
            )
        else:
            outcome = Succeeded(
                display_label=self._catalog.lookup(top.label_code),
                confidence=top.confidence,
                label_code=top.label_code,
                submission=submission,
            )

        if submission != self._latest:
            logger.debug("Discarding stale result of submission %d (latest is %d)", submission, self._latest)
            return

        self._state.publish(outcome)
        logger.info("Submission %d finished: %s", submission, outcome.status)
