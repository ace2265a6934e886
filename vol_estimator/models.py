"""Data models for the volatility estimator."""
from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


# ──────────────────────────────────────────────────────────────
# Source taxonomy
# ──────────────────────────────────────────────────────────────

class SourceTag(str, Enum):
    """Where a price sample came from.

      STREAMING  — Binance trade stream (push).
      ORACLE     — Uniswap v3 pool slot0 read (poll).
      AGGREGATED — cross-source synthesis, never pushed into the window.
    """
    STREAMING = "streaming"
    ORACLE = "oracle"
    AGGREGATED = "aggregated"


class FeedState(str, Enum):
    """Connection state of a source adapter."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


# ──────────────────────────────────────────────────────────────
# Price sample
# ──────────────────────────────────────────────────────────────

def is_valid_price(price: float) -> bool:
    """True for finite, strictly positive prices."""
    try:
        return math.isfinite(price) and price > 0
    except TypeError:
        return False


@dataclass(frozen=True, slots=True)
class PriceSample:
    """One price observation (quote per base unit)."""
    timestamp: float         # unix epoch seconds, sub-ms resolution
    price: float
    source: SourceTag


# ──────────────────────────────────────────────────────────────
# Source health
# ──────────────────────────────────────────────────────────────

@dataclass(slots=True)
class SourceHealth:
    """Self-reported status of one source adapter."""
    name: str
    state: FeedState = FeedState.DISCONNECTED
    samples: int = 0
    malformed: int = 0
    failures: int = 0
    consecutive_failures: int = 0
    reconnects: int = 0
    last_sample_ts: float = 0.0
    last_error: Optional[str] = None

    def record_sample(self, ts: float) -> None:
        self.samples += 1
        self.consecutive_failures = 0
        self.last_sample_ts = ts

    def record_failure(self, err: BaseException) -> None:
        self.failures += 1
        self.consecutive_failures += 1
        self.last_error = f"{type(err).__name__}: {err}"

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"event": "SOURCE_STATUS"}
        for k in self.__slots__:
            v = getattr(self, k)
            if isinstance(v, Enum):
                v = v.value
            if v is not None:
                d[k] = v
        return d


# ──────────────────────────────────────────────────────────────
# Volatility estimate
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class VolatilityEstimate:
    """Sample stdev of log returns over the window.

    ``value`` is None when there are not enough samples (fewer than two
    returns); that is the "undefined" estimate, not an error.
    """
    value: Optional[float]
    computed_at: float
    sample_count: int
    annualized: Optional[float] = None

    @property
    def defined(self) -> bool:
        return self.value is not None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"event": "VOLATILITY_ESTIMATE"}
        for k in self.__slots__:
            d[k] = getattr(self, k)
        return d
