"""
Access Predictor Module

First-order transition model over resource accesses. Each recorded access
increments the count of the transition from the previous key to the new one;
predictions are the successors whose share of those counts clears a threshold.
"""

import logging
import threading
from collections import OrderedDict, deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Prediction:
    """A probable next access."""
    key: str
    probability: float

    def to_dict(self) -> Dict[str, Any]:
        return {"key": self.key, "probability": self.probability}


class AccessPredictor:
    """
    Predicts the next accesses from observed access sequences.

    The transition table is bounded: at most ``max_tracked_keys`` source keys
    are kept (the least recently updated row is dropped first), and each row
    keeps at most ``max_successors`` successors (the rarest is dropped first).
    """

    def __init__(
        self,
        history_length: int = 5,
        threshold: float = 0.7,
        max_tracked_keys: int = 1000,
        max_successors: int = 50
    ):
        """
        Initialize the predictor.

        Args:
            history_length: Number of recent accesses kept
            threshold: Minimum probability for a prediction to be returned
            max_tracked_keys: Maximum number of source keys in the table
            max_successors: Maximum number of successors per source key
        """
        for name, value in (
            ("history_length", history_length),
            ("max_tracked_keys", max_tracked_keys),
            ("max_successors", max_successors),
        ):
            if value < 1:
                raise ValueError(f"{name} must be at least 1, got {value}")

        self._history: Deque[str] = deque(maxlen=history_length)
        self._transitions: "OrderedDict[str, Dict[str, int]]" = OrderedDict()
        self._threshold = threshold
        self._max_tracked_keys = max_tracked_keys
        self._max_successors = max_successors
        self._lock = threading.RLock()
        self._recorded = 0
        self._dropped_rows = 0
        self._dropped_successors = 0

    @property
    def threshold(self) -> float:
        return self._threshold

    @property
    def history(self) -> List[str]:
        with self._lock:
            return list(self._history)

    @property
    def last_key(self) -> Optional[str]:
        with self._lock:
            return self._history[-1] if self._history else None

    def record_access(self, key: str) -> None:
        """Record an access, linking it to the previous one."""
        with self._lock:
            if self._history:
                self.add_transition(self._history[-1], key)
            self._history.append(key)
            self._recorded += 1

    def add_transition(self, from_key: str, to_key: str, count: int = 1) -> None:
        """Increase the observed count of ``from_key -> to_key`` by ``count``."""
        with self._lock:
            row = self._transitions.get(from_key)
            if row is None:
                row = {}
                self._transitions[from_key] = row
                self._trim_rows()
            else:
                self._transitions.move_to_end(from_key)

            row[to_key] = row.get(to_key, 0) + count
            if len(row) > self._max_successors:
                self._trim_row(row, keep=to_key)

    def predict_next(self, key: str, threshold: Optional[float] = None) -> List[Prediction]:
        """
        Predict the accesses likely to follow ``key``.

        Args:
            key: The current key
            threshold: Override for the configured probability threshold

        Returns:
            Predictions at or above the threshold, most probable first; empty
            when nothing has been observed after ``key``
        """
        threshold = self._threshold if threshold is None else threshold

        with self._lock:
            row = self._transitions.get(key)
            if not row:
                return []
            total = sum(row.values())
            predictions = [
                Prediction(candidate, count / total)
                for candidate, count in row.items()
            ]

        predictions = [p for p in predictions if p.probability >= threshold]
        predictions.sort(key=lambda p: p.probability, reverse=True)
        return predictions

    def transition_count(self, from_key: str, to_key: str) -> int:
        with self._lock:
            return self._transitions.get(from_key, {}).get(to_key, 0)

    def clear(self) -> None:
        with self._lock:
            self._history.clear()
            self._transitions.clear()
            self._recorded = 0
            self._dropped_rows = 0
            self._dropped_successors = 0

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "recorded_accesses": self._recorded,
                "tracked_keys": len(self._transitions),
                "transitions": sum(len(row) for row in self._transitions.values()),
                "dropped_rows": self._dropped_rows,
                "dropped_successors": self._dropped_successors,
                "threshold": self._threshold,
            }

    def _trim_rows(self) -> None:
        while len(self._transitions) > self._max_tracked_keys:
            dropped, _ = self._transitions.popitem(last=False)
            self._dropped_rows += 1
            logger.debug(f"Dropped transition row for {dropped!r}")

    def _trim_row(self, row: Dict[str, int], keep: str) -> None:
        # The successor just observed survives even if it is the rarest.
        candidates = [k for k in row if k != keep]
        rarest = min(candidates, key=lambda k: row[k])
        del row[rarest]
        self._dropped_successors += 1
