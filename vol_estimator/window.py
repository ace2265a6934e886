"""Time-bounded, timestamp-ordered buffer of price samples.

Eviction is relative to the newest sample held, not to wall-clock time,
so a replay or a source with a skewed clock is handled the same way as
live data:

    keep  ⇔  sample.timestamp >= newest.timestamp - horizon
"""
from __future__ import annotations

import bisect
import math
import threading
from typing import Optional

from .errors import RejectedSample
from .models import PriceSample, is_valid_price

DEFAULT_HORIZON_S = 6 * 3600.0


def _ts(sample: PriceSample) -> float:
    return sample.timestamp


class PriceWindow:
    """Rolling window shared by the ingestion and compute tasks.

    Every public call holds one lock for its whole duration, so readers
    never see a half-inserted or half-evicted buffer.

    Usage:
        window = PriceWindow(horizon_s=6 * 3600)
        window.push(sample)          # raises RejectedSample on bad price or timestamp
        samples = window.snapshot()  # immutable tuple, oldest first
    """

    def __init__(self, horizon_s: float = DEFAULT_HORIZON_S) -> None:
        if horizon_s <= 0:
            raise ValueError("horizon_must_be_positive")
        self._horizon_s = float(horizon_s)
        self._samples: list[PriceSample] = []
        self._lock = threading.Lock()

    @property
    def horizon_s(self) -> float:
        return self._horizon_s

    def push(self, sample: PriceSample) -> None:
        """Insert in timestamp order, then evict everything past the horizon."""
        if not is_valid_price(sample.price):
            raise RejectedSample(sample)
        if not math.isfinite(sample.timestamp):
            raise RejectedSample(sample, "invalid_timestamp")
        with self._lock:
            # insort_right keeps arrival order among equal timestamps
            bisect.insort_right(self._samples, sample, key=_ts)
            newest = self._samples[-1].timestamp
            self._evict_before(newest - self._horizon_s)

    def evict(self, now: float) -> int:
        """Drop samples older than ``now - horizon``. Returns count dropped."""
        with self._lock:
            return self._evict_before(now - self._horizon_s)

    def snapshot(self) -> tuple[PriceSample, ...]:
        with self._lock:
            return tuple(self._samples)

    def __len__(self) -> int:
        with self._lock:
            return len(self._samples)

    @property
    def newest(self) -> Optional[float]:
        with self._lock:
            return self._samples[-1].timestamp if self._samples else None

    @property
    def oldest(self) -> Optional[float]:
        with self._lock:
            return self._samples[0].timestamp if self._samples else None

    # caller holds the lock
    def _evict_before(self, cutoff: float) -> int:
        idx = bisect.bisect_left(self._samples, cutoff, key=_ts)
        if idx:
            del self._samples[:idx]
        return idx
