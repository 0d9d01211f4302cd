"""Weighted replica selection."""

import random
import threading
from abc import ABC, abstractmethod
from typing import Sequence


class LoadBalancer(ABC):
    """Chooses one connection string among weighted candidates."""

    @abstractmethod
    def get(self, primary: str, candidates: Sequence[str], weights: Sequence[int]) -> str:
        """
        Select a connection string.

        Args:
            primary: Primary connection string, returned when there are no candidates
            candidates: Replica connection strings
            weights: Positive weights parallel to candidates

        Returns:
            The selected connection string

        Raises:
            ValueError: If weights do not match candidates or are not positive
        """
        ...

    @staticmethod
    def _check(candidates: Sequence[str], weights: Sequence[int]) -> None:
        if len(candidates) != len(weights):
            raise ValueError(
                f"Got {len(candidates)} candidates but {len(weights)} weights"
            )
        for weight in weights:
            if weight < 1:
                raise ValueError(f"Weights must be positive integers, got {weight}")


class RandomLoadBalancer(LoadBalancer):
    """Weighted random selection. Holds no shared state."""

    def __init__(self, rng: random.Random | None = None):
        self._rng = rng

    def get(self, primary: str, candidates: Sequence[str], weights: Sequence[int]) -> str:
        candidates = list(candidates)
        weights = list(weights)
        if not candidates:
            return primary
        self._check(candidates, weights)

        choices = self._rng.choices if self._rng is not None else random.choices
        return choices(candidates, weights=weights, k=1)[0]


class RoundRobinLoadBalancer(LoadBalancer):
    """
    Smooth weighted round-robin selection.

    Each call adds every candidate's weight to its running score, picks the
    highest score and subtracts the total weight from it. Over one cycle each
    candidate is chosen exactly ``weight`` times, interleaved rather than in
    bursts. State is kept per candidate set and guarded by a lock.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._scores: dict[tuple[str, ...], list[int]] = {}

    def get(self, primary: str, candidates: Sequence[str], weights: Sequence[int]) -> str:
        candidates = tuple(candidates)
        weights = list(weights)
        if not candidates:
            return primary
        self._check(candidates, weights)

        total = sum(weights)
        with self._lock:
            scores = self._scores.get(candidates)
            if scores is None or len(scores) != len(candidates):
                scores = [0] * len(candidates)
                self._scores[candidates] = scores

            best = 0
            for index, weight in enumerate(weights):
                scores[index] += weight
                if scores[index] > scores[best]:
                    best = index
            scores[best] -= total

        return candidates[best]
