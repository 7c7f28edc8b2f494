"""Metrics samplers — produce the {rps, gps} figures for each report.

rps: command requests handled per second since the previous sample.
gps: output lines gathered per second since the previous sample.
"""

from __future__ import annotations

import random
import time
from abc import ABC, abstractmethod

from hostagent.types import Metrics


class MetricsSampler(ABC):
    """Counters are fed by the reporting loop; ``sample`` reads and resets."""

    def record_request(self) -> None:
        pass

    def record_lines(self, count: int) -> None:
        pass

    @abstractmethod
    def sample(self) -> Metrics:
        ...


class CounterMetricsSampler(MetricsSampler):
    def __init__(self, clock=time.monotonic) -> None:
        self._clock = clock
        self._last_sample = clock()
        self._requests = 0
        self._lines = 0

    def record_request(self) -> None:
        self._requests += 1

    def record_lines(self, count: int) -> None:
        self._lines += count

    def sample(self) -> Metrics:
        now = self._clock()
        elapsed = now - self._last_sample
        if elapsed <= 0:
            metrics = Metrics(rps=0.0, gps=0.0)
        else:
            metrics = Metrics(
                rps=round(self._requests / elapsed, 3),
                gps=round(self._lines / elapsed, 3),
            )
        self._last_sample = now
        self._requests = 0
        self._lines = 0
        return metrics


class RandomMetricsSampler(MetricsSampler):
    """Synthetic load figures for exercising a controller without traffic."""

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    def sample(self) -> Metrics:
        return Metrics(rps=self._rng.randrange(100), gps=self._rng.randrange(50))


_SAMPLERS = {
    "counter": CounterMetricsSampler,
    "random": RandomMetricsSampler,
}


def create_sampler(kind: str) -> MetricsSampler:
    try:
        return _SAMPLERS[kind]()
    except KeyError:
        raise ValueError(
            f"Unknown metrics sampler {kind!r} (expected one of {', '.join(_SAMPLERS)})"
        ) from None
