"""QuantDash — application configuration.

Loads .env variables into a typed config object.
Validates required variables on startup.
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from quantdash.analysis.models import Timeframe


_REQUIRED_VARS = [
    "TUSHARE_TOKEN",
]

# Price-series cache lifetime per timeframe, in seconds.  Daily bars carry
# the merged realtime bar, so they expire quickly too.
CACHE_TTL_SECONDS: dict[Timeframe, float] = {
    Timeframe.DAILY: 2 * 60,
    Timeframe.MIN60: 3 * 60,
    Timeframe.MIN30: 2 * 60,
    Timeframe.MIN15: 2 * 60,
    Timeframe.MIN5: 1 * 60,
    Timeframe.MIN1: 30,
}
DEFAULT_CACHE_TTL_SECONDS = 5 * 60


def cache_ttl_for(timeframe: Timeframe) -> float:
    """Cache lifetime for a price series of *timeframe*."""
    return CACHE_TTL_SECONDS.get(timeframe, DEFAULT_CACHE_TTL_SECONDS)


@dataclass(frozen=True)
class Config:
    """Typed configuration loaded from environment variables."""

    tushare_token: str
    tushare_api_url: str = "https://api.tushare.pro"
    request_timeout_s: float = 30.0
    risk_fraction: float = 0.02
    kline_cache_max_entries: int = 100
    market_cache_max_entries: int = 10
    market_cache_ttl_s: float = 30 * 60
    realtime_interval_s: float = 1.0
    log_level: str = "INFO"
    api_port: int = 8080


def load_config(env_path: str | None = None) -> Config:
    """Load configuration from environment variables.

    Raises ``ValueError`` with a message naming the missing variable when a
    required variable is absent.
    """
    load_dotenv(dotenv_path=env_path)

    missing = [v for v in _REQUIRED_VARS if not os.environ.get(v)]
    if missing:
        raise ValueError(
            f"Missing required environment variable(s): {', '.join(missing)}"
        )

    return Config(
        tushare_token=os.environ["TUSHARE_TOKEN"],
        tushare_api_url=os.environ.get("TUSHARE_API_URL", "https://api.tushare.pro"),
        request_timeout_s=float(os.environ.get("REQUEST_TIMEOUT_S", "30")),
        risk_fraction=float(os.environ.get("RISK_FRACTION", "0.02")),
        kline_cache_max_entries=int(os.environ.get("KLINE_CACHE_MAX_ENTRIES", "100")),
        market_cache_max_entries=int(os.environ.get("MARKET_CACHE_MAX_ENTRIES", "10")),
        market_cache_ttl_s=float(os.environ.get("MARKET_CACHE_TTL_S", "1800")),
        realtime_interval_s=float(os.environ.get("REALTIME_INTERVAL_S", "1.0")),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        api_port=int(os.environ.get("API_PORT", "8080")),
    )
