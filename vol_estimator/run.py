"""Entry point — wires sources, window and estimator, and runs them.

Architecture:
    ┌──────────────┐
    │ Binance WS    │──trade──→ PriceWindow.push()
    │ (push)        │                 │
    └──────────────┘                 │
    ┌──────────────┐                 │
    │ Uniswap pool  │──poll───→ PriceWindow.push()
    │ (optional)    │                 │
    └──────────────┘                 ↓
                        compute timer → snapshot() → VolatilityEstimator
                                                           ↓
                                              EstimateEmitter → stdout (JSONL)

Ingestion and compute run as separate tasks and only meet at the
window, so the compute cadence is independent of the trade rate.

Usage:
    python -m vol_estimator.run
    python -m vol_estimator.run --window-hours 6 --compute-interval 60
    ORACLE_RPC_URL=https://... python -m vol_estimator.run
"""
from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import Optional, Sequence, Union

from .aggregation import combine_latest
from .binance_feed import BinanceTradeFeed
from .config import Config, parse_args
from .errors import OracleError, RejectedSample
from .estimate_emitter import EstimateEmitter
from .models import PriceSample, SourceTag, VolatilityEstimate
from .uniswap_oracle import UniswapPoolOracle
from .volatility import VolatilityEstimator
from .window import PriceWindow

log = logging.getLogger(__name__)

# The closed set of source adapters.
Source = Union[BinanceTradeFeed, UniswapPoolOracle]


class VolatilityRunner:
    """Owns the window and drives ingestion + periodic computation."""

    def __init__(self, cfg: Config, emitter: Optional[EstimateEmitter] = None) -> None:
        self.cfg = cfg

        self.window = PriceWindow(horizon_s=cfg.horizon_s)
        self.estimator = VolatilityEstimator()
        self.emitter = emitter or EstimateEmitter()

        # Sources
        self.feed = BinanceTradeFeed(cfg)
        self.oracle: Optional[UniswapPoolOracle] = (
            UniswapPoolOracle(cfg) if cfg.oracle_enabled else None
        )

        self.rejected_count = 0
        self._latest: dict[SourceTag, PriceSample] = {}

        self.feed.on_sample(self.ingest)

    @property
    def sources(self) -> list[Source]:
        out: list[Source] = [self.feed]
        if self.oracle is not None:
            out.append(self.oracle)
        return out

    # ── Ingestion ──

    def ingest(self, sample: PriceSample) -> bool:
        """Push one sample into the window; False if it was rejected."""
        try:
            self.window.push(sample)
        except RejectedSample as exc:
            self.rejected_count += 1
            log.warning("%s", exc)
            return False
        cur = self._latest.get(sample.source)
        if cur is None or sample.timestamp >= cur.timestamp:
            self._latest[sample.source] = sample
        return True

    async def poll_oracle_once(self) -> Optional[PriceSample]:
        """One oracle read. Failures are logged and yield None."""
        if self.oracle is None:
            return None
        try:
            sample = await self.oracle.read_price()
        except OracleError as exc:
            log.warning("oracle poll failed (%d in a row): %s",
                        self.oracle.health().consecutive_failures, exc)
            return None
        log.debug("oracle price %.4f", sample.price)
        self.ingest(sample)
        return sample

    # ── Compute ──

    def compute_once(self, now: Optional[float] = None) -> VolatilityEstimate:
        samples = self.window.snapshot()
        est = self.estimator.compute(samples, now=now)
        self.emitter.emit(est)

        if est.value is None:
            log.info("not enough data points for volatility yet (%d samples)",
                     est.sample_count)
        elif est.annualized is not None:
            log.info("volatility σ=%.6f annualized=%.2f%% (%d samples)",
                     est.value, est.annualized * 100.0, est.sample_count)
        else:
            log.info("volatility σ=%.6f (%d samples)", est.value, est.sample_count)

        for src in self.sources:
            self.emitter.emit_status(src.health())

        combined = combine_latest(self._latest.values(), self.cfg.combine_max_skew_s)
        if combined is not None:
            log.info("combined price %.4f across %d sources",
                     combined.price, len(self._latest))
        return est

    # ── Tasks ──

    async def _oracle_loop(self) -> None:
        while True:
            try:
                await self.poll_oracle_once()
            except Exception:
                log.exception("oracle poll error")
            await asyncio.sleep(self.cfg.oracle_poll_interval_s)

    async def _compute_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cfg.compute_interval_s)
            try:
                self.compute_once()
            except Exception:
                log.exception("volatility compute error")

    async def run(self) -> None:
        """Start all tasks concurrently."""
        log.info("starting volatility estimator for %s", self.cfg.symbol)
        log.info("window: %.1fh, compute every %.1fs",
                 self.cfg.window_hours, self.cfg.compute_interval_s)
        log.info("oracle: %s", "enabled" if self.oracle is not None else "disabled")

        tasks = [
            asyncio.create_task(self.feed.run(), name="binance"),
            asyncio.create_task(self._compute_loop(), name="compute"),
        ]
        if self.oracle is not None:
            tasks.append(asyncio.create_task(self._oracle_loop(), name="oracle"))

        try:
            # Wait for any task to complete (they should all run forever)
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            for t in done:
                if not t.cancelled() and t.exception():
                    log.error("task %s failed: %s", t.get_name(), t.exception())
        except asyncio.CancelledError:
            log.info("runner cancelled")
        finally:
            await self.feed.stop()
            for t in tasks:
                t.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            if self.oracle is not None:
                await self.oracle.close()
            log.info("all tasks stopped. estimates emitted: %d",
                     self.emitter.estimate_count)


def main(argv: Sequence[str] | None = None) -> None:
    cfg = parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, cfg.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s  %(message)s",
        stream=sys.stderr,
    )

    runner = VolatilityRunner(cfg)

    loop = asyncio.new_event_loop()
    main_task = loop.create_task(runner.run())

    # Graceful shutdown on SIGINT/SIGTERM
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, main_task.cancel)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    try:
        loop.run_until_complete(main_task)
    except KeyboardInterrupt:
        log.info("interrupted")
        main_task.cancel()
        loop.run_until_complete(asyncio.gather(main_task, return_exceptions=True))
    finally:
        loop.close()


if __name__ == "__main__":
    main()
