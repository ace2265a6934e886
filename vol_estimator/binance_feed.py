"""Binance trade WebSocket feed — streaming price source.

Connection state machine:

    DISCONNECTED ──run()──→ CONNECTING ──ws open──→ CONNECTED
         ↑                      │                       │
         └──── backoff sleep ───┴── transport error ────┘

Retries are unlimited; the delay between attempts comes from
``backoff_delay`` and the attempt counter resets after every successful
connect. Malformed messages are skipped without leaving CONNECTED.
"""
from __future__ import annotations

import asyncio
import json
import logging
import math
import time
from collections.abc import AsyncIterable, Callable
from typing import Any, Optional

import aiohttp

from .config import Config
from .errors import TransportError
from .models import FeedState, PriceSample, SourceHealth, SourceTag

log = logging.getLogger(__name__)

SampleCallback = Callable[[PriceSample], None]


def backoff_delay(attempt: int, base_s: float = 1.0, max_s: float = 60.0) -> float:
    """Seconds to wait before reconnect ``attempt`` (1-based).

    Capped exponential: 1, 2, 4, 8 … max_s for base_s=1.
    """
    if attempt <= 0 or base_s <= 0:
        return 0.0
    # cap the exponent so huge attempt counts do not overflow
    return min(max_s, base_s * (2.0 ** min(attempt - 1, 62)))


class BinanceTradeFeed:
    """Single-symbol Binance trade stream listener.

    Usage:
        feed = BinanceTradeFeed(cfg)
        feed.on_sample(callback)    # cb(PriceSample)
        await feed.run()            # blocks forever, auto-reconnects
    """

    name = "binance"

    def __init__(self, cfg: Config) -> None:
        self._cfg = cfg
        self._callbacks: list[SampleCallback] = []
        self._health = SourceHealth(name=self.name)
        self._attempt = 0
        self._running = False

    # ── Public API ──

    def on_sample(self, cb: SampleCallback) -> None:
        """Register a callback fired on every parsed trade."""
        self._callbacks.append(cb)

    @property
    def state(self) -> FeedState:
        return self._health.state

    def health(self) -> SourceHealth:
        return self._health

    async def run(self) -> None:
        """Connect and stream until stopped or cancelled."""
        self._running = True
        while self._running:
            self._health.state = FeedState.CONNECTING
            try:
                await self._stream()
            except asyncio.CancelledError:
                log.info("binance feed cancelled")
                self._health.state = FeedState.DISCONNECTED
                raise
            except TransportError as exc:
                log.warning("binance disconnected: %s", exc)
                self._health.record_failure(exc)
            except Exception as exc:
                log.exception("binance feed error")
                self._health.record_failure(exc)

            self._health.state = FeedState.DISCONNECTED
            if not self._running:
                break

            self._attempt += 1
            self._health.reconnects += 1
            delay = backoff_delay(self._attempt, self._cfg.reconnect_base_s,
                                  self._cfg.reconnect_max_s)
            log.info("binance reconnecting in %.1fs (attempt %d)", delay, self._attempt)
            await asyncio.sleep(delay)

    async def stop(self) -> None:
        self._running = False

    # ── Internals ──

    def _subscription_msg(self) -> str:
        return json.dumps({
            "method": "SUBSCRIBE",
            "params": [f"{self._cfg.symbol}@trade"],
            "id": 1,
        })

    async def _stream(self) -> None:
        url = self._cfg.feed_url
        log.info("binance connecting: %s", url)
        try:
            async with aiohttp.ClientSession() as session:
                async with session.ws_connect(
                    url, heartbeat=self._cfg.ws_heartbeat_s
                ) as ws:
                    self._on_connected()
                    await ws.send_str(self._subscription_msg())
                    await self._consume(ws)
        except TransportError:
            raise
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as exc:
            raise TransportError(f"{type(exc).__name__}: {exc}") from exc
        raise TransportError("stream closed by peer")

    def _on_connected(self) -> None:
        self._health.state = FeedState.CONNECTED
        self._attempt = 0
        log.info("binance connected, subscribing %s@trade", self._cfg.symbol)

    async def _consume(self, ws: AsyncIterable[Any]) -> None:
        """Read frames until the socket ends; returns on clean close."""
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                self._handle(msg.data)
            elif msg.type in (aiohttp.WSMsgType.CLOSED,
                              aiohttp.WSMsgType.ERROR):
                raise TransportError(f"ws {msg.type.name.lower()}")
            else:
                log.debug("binance non-text frame: %s", msg.type)

    def _handle(self, raw: str) -> Optional[PriceSample]:
        """Parse one trade message and forward the sample.

        trade payload:
        {
          "e": "trade",
          "E": 1672515782136,   // Event time (ms)
          "s": "ETHUSDC",       // Symbol
          "t": 12345,           // Trade id
          "p": "3123.45",       // Price
          "q": "0.100",         // Quantity
          "T": 1672515782135,   // Trade time (ms)
          "m": false            // Is buyer maker
        }
        """
        recv_ts = time.time()
        try:
            d = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            return self._malformed(raw, "bad_json")
        if not isinstance(d, dict):
            return self._malformed(raw, "not_an_object")

        # subscription ack: {"result": null, "id": 1}
        if "id" in d and "result" in d:
            log.debug("binance subscription ack: %s", d)
            return None

        try:
            price = float(d["p"])
        except (KeyError, TypeError, ValueError):
            return self._malformed(raw, "bad_price")

        trade_time_ms = d.get("T")
        if trade_time_ms is None:
            ts = recv_ts
        elif (isinstance(trade_time_ms, (int, float))
              and not isinstance(trade_time_ms, bool)
              and math.isfinite(trade_time_ms) and trade_time_ms > 0):
            ts = trade_time_ms / 1000.0
        else:
            # json.loads accepts Infinity and NaN
            return self._malformed(raw, "bad_trade_time")

        sample = PriceSample(timestamp=ts, price=price, source=SourceTag.STREAMING)
        self._health.record_sample(ts)

        for cb in self._callbacks:
            try:
                cb(sample)
            except Exception:
                log.exception("binance sample callback error")
        return sample

    def _malformed(self, raw: Any, reason: str) -> None:
        self._health.malformed += 1
        log.warning("binance malformed message skipped (%s): %.200s", reason, raw)
        return None
