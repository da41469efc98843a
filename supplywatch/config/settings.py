# supplywatch/config/settings.py

"""Central configuration for the supplywatch engine."""

import os
from decimal import Decimal
from pathlib import Path

from curl_cffi.requests import BrowserTypeLiteral
from dotenv import load_dotenv

load_dotenv()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw else default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if not raw:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """Central configuration for the supplywatch engine.

    Every value may be overridden through a ``SUPPLYWATCH_*``
    environment variable (or a ``.env`` file).
    """

    # --- Paths ---
    BASE_DIR: Path = Path(__file__).resolve().parent.parent.parent
    DB_PATH: Path = Path(
        os.getenv("SUPPLYWATCH_DB_PATH", str(BASE_DIR / "data" / "products.db"))
    )
    LOGS_DIR: Path = Path(
        os.getenv("SUPPLYWATCH_LOGS_DIR", str(BASE_DIR / "logs"))
    )

    # --- Logging ---
    LOG_CONSOLE_LEVEL: str = os.getenv("SUPPLYWATCH_LOG_CONSOLE_LEVEL", "WARNING")
    LOG_RETENTION: int = _env_int("SUPPLYWATCH_LOG_RETENTION", 30)   # Run files kept

    # --- Scheduling ---
    WORKER_COUNT: int = _env_int("SUPPLYWATCH_WORKER_COUNT", 4)
    OBSERVATION_INTERVAL: float = _env_float(
        "SUPPLYWATCH_OBSERVATION_INTERVAL", 3600.0
    )                                   # Seconds between observation cycles
    RESCORE_INTERVAL: float = _env_float(
        "SUPPLYWATCH_RESCORE_INTERVAL", 86400.0
    )                                   # Daily risk time-decay pass
    SHUTDOWN_GRACE: float = _env_float("SUPPLYWATCH_SHUTDOWN_GRACE", 30.0)
    PERSISTENCE_RETRY_LIMIT: int = _env_int(
        "SUPPLYWATCH_PERSISTENCE_RETRY_LIMIT", 3
    )
    PERSISTENCE_RETRY_DELAY: float = 5.0

    # --- Supplier state machine ---
    UNREACHABLE_THRESHOLD: int = _env_int("SUPPLYWATCH_UNREACHABLE_THRESHOLD", 2)
    PRICE_TOLERANCE: Decimal = Decimal(
        os.getenv("SUPPLYWATCH_PRICE_TOLERANCE", "0.01")
    )
    PRICE_ALERT_VARIANCE_PCT: float = _env_float(
        "SUPPLYWATCH_PRICE_ALERT_VARIANCE_PCT", 10.0
    )

    # --- Risk scoring ---
    TRANSITION_WEIGHT: float = _env_float("SUPPLYWATCH_TRANSITION_WEIGHT", 0.75)
    VOLATILITY_WEIGHT: float = _env_float("SUPPLYWATCH_VOLATILITY_WEIGHT", 0.15)
    RATING_WEIGHT: float = _env_float("SUPPLYWATCH_RATING_WEIGHT", 0.10)
    RISK_WINDOW_DAYS: int = _env_int("SUPPLYWATCH_RISK_WINDOW_DAYS", 30)
    DECAY_HALF_LIFE_DAYS: float = _env_float(
        "SUPPLYWATCH_DECAY_HALF_LIFE_DAYS", 7.0
    )
    HIGH_RISK_THRESHOLD: float = _env_float("SUPPLYWATCH_HIGH_RISK_THRESHOLD", 80.0)
    BASELINE_RISK_SCORE: float = 50.0

    # --- Automation policy ---
    HEAL_RISK_THRESHOLD: float = _env_float("SUPPLYWATCH_HEAL_RISK_THRESHOLD", 70.0)
    POLICY_TIMEOUT: float = _env_float("SUPPLYWATCH_POLICY_TIMEOUT", 30.0)
    HEAL_LEASE: float = _env_float("SUPPLYWATCH_HEAL_LEASE", 120.0)
    AUTO_HEAL_ENABLED: bool = _env_bool("SUPPLYWATCH_AUTO_HEAL_ENABLED", True)

    # --- Replacement matching ---
    MATCH_THRESHOLD: float = _env_float("SUPPLYWATCH_MATCH_THRESHOLD", 0.6)
    MATCH_TEXT_WEIGHT: float = 0.4
    MATCH_IMAGE_WEIGHT: float = 0.6
    MIN_CANDIDATE_RATING: float = _env_float(
        "SUPPLYWATCH_MIN_CANDIDATE_RATING", 4.5
    )
    MAX_CANDIDATE_PRICE_VARIANCE_PCT: float = _env_float(
        "SUPPLYWATCH_MAX_CANDIDATE_PRICE_VARIANCE_PCT", 10.0
    )
    IMAGE_HASH_SIZE: int = 8
    IMAGE_HASH_CACHE_TTL: float = 3600.0

    # --- HTTP collaborators ---
    CANDIDATE_SEARCH_URL: str = os.getenv("SUPPLYWATCH_CANDIDATE_SEARCH_URL", "")
    CANDIDATE_LIMIT: int = _env_int("SUPPLYWATCH_CANDIDATE_LIMIT", 20)
    OPERATOR_WEBHOOK_URL: str = os.getenv("SUPPLYWATCH_OPERATOR_WEBHOOK_URL", "")
    REQUEST_TIMEOUT: int = 15           # Seconds before a request times out
    MAX_RETRIES: int = 3                # Retry count on transient failures
    IMPERSONATE_BROWSER: BrowserTypeLiteral = "chrome131"
    DEFAULT_HEADERS: dict[str, str] = {
        "Accept": "application/json,text/plain;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.9",
    }
