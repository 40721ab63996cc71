"""Observable single-slot classification state.

The slot always holds exactly one outcome::

    Idle --submit--> Running --success--> Succeeded
                     Running --failure--> Failed
    Succeeded | Failed --submit--> Running
    any --clear--> Idle

Observers are notified synchronously, in subscription order, on every change.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from collections.abc import Callable

    from flowerscan.ml.errors import ErrorKind

logger = logging.getLogger(__name__)


class OutcomeStatus(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class Idle:
    """No image submitted, or the last result was cleared."""

    status: ClassVar[OutcomeStatus] = OutcomeStatus.IDLE


@dataclass(frozen=True)
class Running:
    """An image is being classified."""

    submission: int

    status: ClassVar[OutcomeStatus] = OutcomeStatus.RUNNING


@dataclass(frozen=True)
class Succeeded:
    """The latest submission was classified."""

    display_label: str
    confidence: float
    label_code: str = ""
    submission: int = 0

    status: ClassVar[OutcomeStatus] = OutcomeStatus.SUCCEEDED


@dataclass(frozen=True)
class Failed:
    """The latest submission ended with a typed failure."""

    reason: ErrorKind
    message: str
    submission: int = 0

    status: ClassVar[OutcomeStatus] = OutcomeStatus.FAILED


ClassificationOutcome = Idle | Running | Succeeded | Failed

IDLE = Idle()

_TRANSITIONS: dict[OutcomeStatus, frozenset[OutcomeStatus]] = {
    OutcomeStatus.IDLE: frozenset({OutcomeStatus.IDLE, OutcomeStatus.RUNNING}),
    OutcomeStatus.RUNNING: frozenset(OutcomeStatus),
    OutcomeStatus.SUCCEEDED: frozenset({OutcomeStatus.IDLE, OutcomeStatus.RUNNING}),
    OutcomeStatus.FAILED: frozenset({OutcomeStatus.IDLE, OutcomeStatus.RUNNING}),
}


class InvalidTransitionError(RuntimeError):
    """Raised when an outcome cannot follow the current one."""


class ResultState:
    """Holds the current classification outcome and notifies observers."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._current: ClassificationOutcome = IDLE
        self._observers: list[Callable[[ClassificationOutcome], None]] = []

    @property
    def current(self) -> ClassificationOutcome:
        with self._lock:
            return self._current

    def subscribe(self, observer: Callable[[ClassificationOutcome], None]) -> Callable[[], None]:
        """Register an observer and return a function that unregisters it.

        The observer is not called with the current value; read ``current``
        first if the initial state is needed.
        """
        with self._lock:
            self._observers.append(observer)

        def unsubscribe() -> None:
            with self._lock:
                if observer in self._observers:
                    self._observers.remove(observer)

        return unsubscribe

    def publish(self, outcome: ClassificationOutcome) -> bool:
        """Replace the current outcome and notify observers.

        Returns:
            False if ``outcome`` equals the current value (nothing is published).

        Raises:
            InvalidTransitionError: If ``outcome`` cannot follow the current state.
        """
        with self._lock:
            if outcome == self._current:
                return False
            if outcome.status not in _TRANSITIONS[self._current.status]:
                raise InvalidTransitionError(f"Cannot move from {self._current.status} to {outcome.status}")

            self._current = outcome
            # Notify under the lock so every observer sees changes in publish order.
            for observer in list(self._observers):
                try:
                    observer(outcome)
                except Exception:
                    logger.exception("State observer %r failed", observer)
            return True

    def reset(self) -> None:
        """Return to Idle."""
        self.publish(IDLE)
