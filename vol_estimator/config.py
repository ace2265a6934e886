"""Configuration for the ETH/USDC volatility estimator."""
from __future__ import annotations

import argparse
import os
import re
from dataclasses import dataclass
from typing import Sequence

from .env import DEFAULT_ENV_FILE, env_float, load_env_file


# ──────────────────────────────────────────────────────────────
# Endpoints
# ──────────────────────────────────────────────────────────────

BINANCE_WS = "wss://stream.binance.com:9443/ws"
DEFAULT_SYMBOL = "ethusdc"

# Uniswap v3 USDC/WETH 0.05% pool on Ethereum mainnet.
# token0 = USDC (6 decimals), token1 = WETH (18 decimals).
UNISWAP_ETH_USDC_POOL = "0x88e6A0c2dDD26FEEb64F039a2c41296FcB3f5640"

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


# ──────────────────────────────────────────────────────────────
# Config dataclass
# ──────────────────────────────────────────────────────────────

@dataclass(slots=True)
class Config:
    """Runtime configuration — populated from CLI + env."""

    # ── Streaming feed ──
    feed_url: str = BINANCE_WS
    symbol: str = DEFAULT_SYMBOL
    ws_heartbeat_s: float = 20.0
    # Reconnect backoff: base * 2^(attempt-1), capped
    reconnect_base_s: float = 1.0
    reconnect_max_s: float = 60.0

    # ── Window / compute ──
    window_hours: float = 6.0
    compute_interval_s: float = 5.0

    # ── On-chain oracle ──
    oracle_enabled: bool = False
    oracle_rpc_url: str = ""
    oracle_pool_address: str = UNISWAP_ETH_USDC_POOL
    oracle_decimals0: int = 6
    oracle_decimals1: int = 18
    # Pool quotes token1/token0 (WETH per USDC); invert for USDC per ETH
    oracle_invert: bool = True
    oracle_poll_interval_s: float = 5.0
    oracle_timeout_s: float = 10.0

    # ── Cross-source combined price (reporting only) ──
    combine_max_skew_s: float = 10.0

    # ── Logging ──
    log_level: str = "INFO"

    @property
    def horizon_s(self) -> float:
        return self.window_hours * 3600.0


def validate(cfg: Config) -> Config:
    """Raise SystemExit on settings the process cannot start with."""
    if not cfg.feed_url.strip():
        raise SystemExit("missing streaming feed url: set BINANCE_WS_URL or --feed-url")
    if not cfg.symbol.strip():
        raise SystemExit("missing trade symbol: set --symbol")
    if cfg.window_hours <= 0:
        raise SystemExit(f"window hours must be positive, got {cfg.window_hours}")
    if cfg.compute_interval_s <= 0:
        raise SystemExit(f"compute interval must be positive, got {cfg.compute_interval_s}")
    if cfg.reconnect_max_s <= 0 or cfg.reconnect_max_s < cfg.reconnect_base_s:
        raise SystemExit(f"reconnect max must be positive and >= base, got "
                         f"base={cfg.reconnect_base_s} max={cfg.reconnect_max_s}")
    if cfg.oracle_enabled:
        if not cfg.oracle_rpc_url.strip():
            raise SystemExit("oracle enabled but no rpc url: set ORACLE_RPC_URL or --oracle-rpc-url")
        if not _ADDRESS_RE.match(cfg.oracle_pool_address):
            raise SystemExit(f"invalid oracle pool address: {cfg.oracle_pool_address!r}")
        if cfg.oracle_poll_interval_s <= 0:
            raise SystemExit(f"oracle poll interval must be positive, got {cfg.oracle_poll_interval_s}")
    return cfg


def parse_args(argv: Sequence[str] | None = None) -> Config:
    """Build Config from CLI args, environment variables and an env file.

    Priority: CLI > environment > defaults.
    """
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--env-file", default=os.environ.get("ENV_FILE", DEFAULT_ENV_FILE))
    pre_args, _ = pre.parse_known_args(argv)
    env_file = str(pre_args.env_file).strip() or DEFAULT_ENV_FILE
    load_env_file(env_file)

    defaults = Config()

    p = argparse.ArgumentParser(description="ETH/USDC rolling volatility estimator")
    p.add_argument("--env-file", default=env_file)
    p.add_argument("--feed-url", default=os.environ.get("BINANCE_WS_URL", defaults.feed_url))
    p.add_argument("--symbol", default=defaults.symbol,
                   help="Binance trade symbol (default: ethusdc)")
    p.add_argument("--window-hours", type=float,
                   default=env_float("VOLATILITY_WINDOW_HOURS", defaults.window_hours))
    p.add_argument("--compute-interval", type=float,
                   default=env_float("UPDATE_INTERVAL_SECONDS", defaults.compute_interval_s),
                   help="Seconds between volatility computations")
    p.add_argument("--reconnect-base", type=float, default=defaults.reconnect_base_s)
    p.add_argument("--reconnect-max", type=float, default=defaults.reconnect_max_s)
    p.add_argument("--oracle", action=argparse.BooleanOptionalAction, default=None,
                   help="Poll the Uniswap pool (default: on when an RPC url is set)")
    p.add_argument("--oracle-rpc-url", default=os.environ.get("ORACLE_RPC_URL", ""))
    p.add_argument("--oracle-pool-address",
                   default=os.environ.get("ORACLE_POOL_ADDRESS", defaults.oracle_pool_address))
    p.add_argument("--oracle-poll-interval", type=float,
                   default=env_float("ORACLE_POLL_SECONDS", defaults.oracle_poll_interval_s))
    p.add_argument("--combine-max-skew", type=float, default=defaults.combine_max_skew_s)
    p.add_argument("--log-level", default=os.environ.get("VOL_LOG_LEVEL", defaults.log_level))
    args = p.parse_args(argv)

    rpc_url = str(args.oracle_rpc_url).strip()
    oracle_enabled = bool(rpc_url) if args.oracle is None else bool(args.oracle)

    cfg = Config(
        feed_url=str(args.feed_url).strip(),
        symbol=str(args.symbol).strip().lower(),
        reconnect_base_s=max(0.0, float(args.reconnect_base)),
        reconnect_max_s=max(0.0, float(args.reconnect_max)),
        window_hours=float(args.window_hours),
        compute_interval_s=float(args.compute_interval),
        oracle_enabled=oracle_enabled,
        oracle_rpc_url=rpc_url,
        oracle_pool_address=str(args.oracle_pool_address).strip(),
        oracle_poll_interval_s=float(args.oracle_poll_interval),
        combine_max_skew_s=max(0.0, float(args.combine_max_skew)),
        log_level=str(args.log_level).upper(),
    )
    return validate(cfg)
