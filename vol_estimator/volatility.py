"""Realised volatility from a window of price samples.

Computes the sample standard deviation of consecutive log-returns:

    r_i = ln(p_i / p_{i-1})
    σ   = √( Σ(r_i − μ)² / (m − 1) ),   m = number of returns

and, for reporting, an annualised figure scaled by the mean spacing
between samples:

    σ_annual = σ × √(SECONDS_PER_YEAR / mean_dt)
"""
from __future__ import annotations

import math
import time
from collections.abc import Sequence
from typing import Optional

from .models import PriceSample, VolatilityEstimate, is_valid_price

SECONDS_PER_YEAR = 365.0 * 24 * 3600


def log_returns(samples: Sequence[PriceSample]) -> list[float]:
    """Log-returns between consecutive samples with valid prices."""
    prices = [s.price for s in samples if is_valid_price(s.price)]
    return [math.log(p1 / p0) for p0, p1 in zip(prices, prices[1:])]


def annualize(sigma: float, samples: Sequence[PriceSample]) -> Optional[float]:
    """Scale a per-sample σ to a yearly figure using the mean sample spacing."""
    if len(samples) < 2:
        return None
    span = samples[-1].timestamp - samples[0].timestamp
    if span <= 0:
        return None
    mean_dt = span / (len(samples) - 1)
    return sigma * math.sqrt(SECONDS_PER_YEAR / mean_dt)


class VolatilityEstimator:
    """Stateless estimator: identical input gives identical output
    (apart from ``computed_at``)."""

    def compute(self, samples: Sequence[PriceSample],
                now: Optional[float] = None) -> VolatilityEstimate:
        now = time.time() if now is None else now

        if len(samples) < 2:
            return VolatilityEstimate(value=None, computed_at=now,
                                      sample_count=len(samples))

        # Bad prices are filtered at ingestion; drop any that slipped through.
        valid = [s for s in samples if is_valid_price(s.price)]
        n = len(valid)
        returns = log_returns(valid)
        m = len(returns)
        if m < 2:
            return VolatilityEstimate(value=None, computed_at=now, sample_count=n)

        mean_r = math.fsum(returns) / m
        var_r = math.fsum((r - mean_r) ** 2 for r in returns) / (m - 1)
        sigma = math.sqrt(var_r)

        return VolatilityEstimate(
            value=sigma,
            computed_at=now,
            sample_count=n,
            annualized=annualize(sigma, valid),
        )
