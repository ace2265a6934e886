"""Uniswap v3 pool price oracle — poll-based on-chain price source.

Reads ``slot0()`` from the pool over JSON-RPC ``eth_call``. The first
return word is ``sqrtPriceX96``, the square root of the pool price as a
Q64.96 fixed-point number:

    sqrtPriceX96 = √(token1 / token0) × 2^96      (base units)

Conversion to a human price:

    raw   = sqrtPriceX96² / 2^192                  token1 per token0
    price = raw × 10^(decimals0 − decimals1)       whole-token units
    price = 1 / price                              if invert

For the USDC/WETH pool token0 is USDC and token1 is WETH, so the pool
quotes WETH per USDC and ``invert`` gives USDC per ETH.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
import re
import time
from fractions import Fraction
from typing import Any, Optional

import aiohttp

from .config import Config
from .errors import OracleError
from .models import FeedState, PriceSample, SourceHealth, SourceTag, is_valid_price

log = logging.getLogger(__name__)

SLOT0_SELECTOR = "0x3850c7bd"
_Q192 = 1 << 192
_UINT160_MAX = (1 << 160) - 1
_HEX_WORD_RE = re.compile(r"[0-9a-fA-F]{64}")


def sqrt_price_x96_to_price(sqrt_price_x96: int, decimals0: int = 0,
                            decimals1: int = 0, invert: bool = False) -> float:
    """Linear price from a Q64.96 square-root price.

    Exact rational arithmetic until the final float conversion, so
    large sqrtPriceX96 values keep full precision.
    """
    if sqrt_price_x96 <= 0:
        raise ValueError("sqrt_price_must_be_positive")
    price = Fraction(sqrt_price_x96 * sqrt_price_x96, _Q192)
    price *= Fraction(10) ** (decimals0 - decimals1)
    if invert:
        price = 1 / price
    return float(price)


def decode_slot0_sqrt_price(result: Any) -> int:
    """Extract sqrtPriceX96 (first ABI word) from an eth_call result."""
    if not isinstance(result, str) or not result.startswith("0x"):
        raise OracleError(f"slot0_result_not_hex: {str(result)[:80]!r}")
    body = result[2:]
    if len(body) < 64:
        raise OracleError(f"slot0_result_too_short: {len(body)} hex chars")
    word = body[:64]
    # int(..., 16) also accepts underscores and surrounding whitespace
    if not _HEX_WORD_RE.fullmatch(word):
        raise OracleError(f"slot0_result_not_hex: {word!r}")
    value = int(word, 16)
    if value > _UINT160_MAX:
        raise OracleError("slot0_sqrt_price_exceeds_uint160")
    return value


class UniswapPoolOracle:
    """Single-shot reader for a Uniswap v3 pool price.

    Polling cadence belongs to the caller; each ``read_price`` is one
    RPC round trip and either returns a sample or raises OracleError.

    Usage:
        oracle = UniswapPoolOracle(cfg)
        sample = await oracle.read_price()
        await oracle.close()
    """

    name = "uniswap"

    def __init__(self, cfg: Config) -> None:
        self._cfg = cfg
        self._health = SourceHealth(name=self.name)
        self._session: Optional[aiohttp.ClientSession] = None
        self._ids = itertools.count(1)

    def health(self) -> SourceHealth:
        return self._health

    async def read_price(self) -> PriceSample:
        try:
            result = await self._eth_call(self._cfg.oracle_pool_address, SLOT0_SELECTOR)
            sqrt_price = decode_slot0_sqrt_price(result)
            try:
                price = sqrt_price_x96_to_price(
                    sqrt_price,
                    self._cfg.oracle_decimals0,
                    self._cfg.oracle_decimals1,
                    self._cfg.oracle_invert,
                )
            except (ValueError, ZeroDivisionError, OverflowError) as exc:
                raise OracleError(f"price_conversion_failed: {exc}", exc) from exc
            if not is_valid_price(price):
                raise OracleError(f"invalid_oracle_price: {price!r}")
        except OracleError as exc:
            self._health.state = FeedState.DISCONNECTED
            self._health.record_failure(exc)
            raise

        ts = time.time()
        self._health.state = FeedState.CONNECTED
        self._health.record_sample(ts)
        return PriceSample(timestamp=ts, price=price, source=SourceTag.ORACLE)

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    # ── Internals ──

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._cfg.oracle_timeout_s),
            )
        return self._session

    async def _eth_call(self, to: str, data: str) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": "eth_call",
            "params": [{"to": to, "data": data}, "latest"],
        }
        return await self._rpc(payload)

    async def _rpc(self, payload: dict[str, Any]) -> Any:
        """POST one JSON-RPC request, return its ``result``."""
        session = self._get_session()
        try:
            async with session.post(self._cfg.oracle_rpc_url, json=payload) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    raise OracleError(f"rpc_http_error status={resp.status} body={text[:200]}")
                body = await resp.json(content_type=None)
        except OracleError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise OracleError(f"rpc_request_failed: {type(exc).__name__}: {exc}", exc) from exc

        if not isinstance(body, dict):
            raise OracleError("rpc_response_not_object")
        if body.get("error") is not None:
            err = body["error"]
            msg = err.get("message") if isinstance(err, dict) else err
            raise OracleError(f"rpc_error: {msg}")
        if "result" not in body:
            raise OracleError("rpc_response_missing_result")
        return body["result"]
