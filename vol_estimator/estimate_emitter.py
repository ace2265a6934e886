"""Estimate emitter — writes JSON events to stdout.

Each event is one JSON line (JSONL format):
  VOLATILITY_ESTIMATE — one per compute tick
  SOURCE_STATUS       — per-source health, one per source per tick
"""
from __future__ import annotations

import json
import logging
import sys
from typing import Any, Dict, TextIO

from .models import SourceHealth, VolatilityEstimate

log = logging.getLogger(__name__)


class EstimateEmitter:
    """Writes estimates and source status as JSON lines to a stream.

    Default stream is stdout.
    """

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream or sys.stdout
        self._count = 0

    @property
    def estimate_count(self) -> int:
        return self._count

    def emit(self, estimate: VolatilityEstimate) -> None:
        if self._write(estimate.to_dict()):
            self._count += 1

    def emit_status(self, health: SourceHealth) -> None:
        self._write(health.to_dict())

    def _write(self, payload: Dict[str, Any]) -> bool:
        try:
            line = json.dumps(payload, separators=(",", ":"))
            self._stream.write(line + "\n")
            self._stream.flush()
            return True
        except Exception:
            log.exception("estimate emit error")
            return False
