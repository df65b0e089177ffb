import logging
import os
from typing import List, Optional

logger = logging.getLogger("court_app.config")


def _env_bool(name: str, default: bool = False) -> bool:
    v = str(os.getenv(name, str(default))).strip().lower()
    return v in ("1", "true", "t", "yes", "y", "on")


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r, using default %s", name, raw, default)
        return default


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


# ========= CONFIG =========
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./court_queries.db")
DB_ECHO = _env_bool("DB_ECHO", False)

# "mock" simulates the court portal, "dataset" serves rows from local CSV files
CASE_SOURCE = os.getenv("CASE_SOURCE", "mock").strip().lower()
DATASET_DIRS: List[str] = _env_list("DATASET_DIRS", ["dataset"])
MOCK_LATENCY_SECONDS = _env_float("MOCK_LATENCY_SECONDS", 0.0) or 0.0

CAPTCHA_PROBABILITY = _env_float("CAPTCHA_PROBABILITY", 0.3)
CAPTCHA_SENSITIVE_TYPES: List[str] = _env_list(
    "CAPTCHA_SENSITIVE_TYPES", ["Civil Appeal", "Criminal Appeal"]
)
CAPTCHA_IMAGE_BASE = os.getenv(
    "CAPTCHA_IMAGE_BASE",
    "https://dummyimage.com/200x80/cccccc/000000.png&text=",
)
# unset means pending challenges never expire
CAPTCHA_TTL_SECONDS = _env_float("CAPTCHA_TTL_SECONDS", None)
# per-client orchestrators kept before the least recently used is dropped
MAX_CLIENT_SESSIONS = int(_env_float("MAX_CLIENT_SESSIONS", 1000) or 1000)

HISTORY_DEFAULT_LIMIT = 10
HISTORY_MAX_LIMIT = 100
# =========================
