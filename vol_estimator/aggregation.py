"""Cross-source combined price.

Reporting only: the window is fed with per-source samples and never
with the combined value. Rule is a plain arithmetic mean of the latest
sample from each distinct source, emitted only when all of them fall
within ``max_skew_s`` of each other.
"""
from __future__ import annotations

import math
from collections.abc import Iterable
from typing import Optional

from .models import PriceSample, SourceTag, is_valid_price


def latest_by_source(samples: Iterable[PriceSample]) -> dict[SourceTag, PriceSample]:
    latest: dict[SourceTag, PriceSample] = {}
    for s in samples:
        if s.source is SourceTag.AGGREGATED or not is_valid_price(s.price):
            continue
        cur = latest.get(s.source)
        if cur is None or s.timestamp >= cur.timestamp:
            latest[s.source] = s
    return latest


def combine_latest(samples: Iterable[PriceSample],
                   max_skew_s: float = 10.0) -> Optional[PriceSample]:
    """Mean of the newest sample per source, or None.

    None when fewer than two sources are present or their newest samples
    are more than ``max_skew_s`` apart.
    """
    latest = latest_by_source(samples)
    if len(latest) < 2:
        return None
    stamps = [s.timestamp for s in latest.values()]
    if max(stamps) - min(stamps) > max_skew_s:
        return None
    price = math.fsum(s.price for s in latest.values()) / len(latest)
    return PriceSample(timestamp=max(stamps), price=price, source=SourceTag.AGGREGATED)
