from __future__ import annotations

from typing import Optional

from .models import PriceSample


class RejectedSample(ValueError):
    """Sample failed the price validity check; it was not inserted."""

    def __init__(self, sample: PriceSample, reason: str = "invalid_price") -> None:
        super().__init__(f"rejected_sample reason={reason} source={sample.source.value} "
                         f"price={sample.price!r} ts={sample.timestamp}")
        self.sample = sample
        self.reason = reason


class TransportError(ConnectionError):
    """Streaming connection dropped or failed to establish."""


class OracleError(RuntimeError):
    """A single oracle read failed (RPC error, revert, bad payload)."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.cause = cause
