"""Configuration constants, paths, and thresholds."""

import os
from pathlib import Path

# ---------------------------------------------------------------------------
# Load .env if present
# ---------------------------------------------------------------------------
BASE_DIR = Path(__file__).parent.parent
_env_path = BASE_DIR / ".env"
if _env_path.exists():
    for _line in _env_path.read_text().splitlines():
        _line = _line.strip()
        if _line and not _line.startswith("#") and "=" in _line:
            _k, _, _v = _line.partition("=")
            os.environ.setdefault(_k.strip(), _v.strip().strip("\"'"))


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: str) -> tuple[str, ...]:
    raw = os.environ.get(name, default)
    return tuple(p.strip().lower() for p in raw.split(",") if p.strip())


# ---------------------------------------------------------------------------
# Coda API
# ---------------------------------------------------------------------------
CODA_API_BASE = os.environ.get("CODA_API_BASE", "https://coda.io/apis/v1").rstrip("/")
TOKEN_PATH = BASE_DIR / "coda_token.txt"

REQUEST_TIMEOUT_SECONDS = float(os.environ.get("REQUEST_TIMEOUT_SECONDS", "30"))
FETCH_RETRIES = int(os.environ.get("FETCH_RETRIES", "2"))
RETRY_BACKOFF_SECONDS = float(os.environ.get("RETRY_BACKOFF_SECONDS", "0.5"))
ROW_PAGE_LIMIT = int(os.environ.get("ROW_PAGE_LIMIT", "50"))

# ---------------------------------------------------------------------------
# Detection thresholds
# ---------------------------------------------------------------------------
# Fractional days. Use something tiny (0.001 is ~1.5 minutes) to get alerts
# immediately while trying the tool against a fresh workspace.
UNUSED_DAYS_THRESHOLD = float(os.environ.get("UNUSED_DAYS_THRESHOLD", "30"))
UNUSED_DOCUMENT_SEVERITY = int(os.environ.get("UNUSED_DOCUMENT_SEVERITY", "5"))
PUBLIC_DOCUMENT_SEVERITY = 9
EXTERNAL_SHARE_SEVERITY = 8
SENSITIVE_CONTENT_SEVERITY = 8
FETCH_FAILED_SEVERITY = 3

ALLOWED_DOMAINS = _env_list("ALLOWED_DOMAINS", "yourcompany.com")

# ---------------------------------------------------------------------------
# Scanning
# ---------------------------------------------------------------------------
SCAN_CONCURRENCY = max(1, int(os.environ.get("SCAN_CONCURRENCY", "4")))
EMIT_FETCH_FAILED_ALERTS = _env_bool("EMIT_FETCH_FAILED_ALERTS", True)
SCAN_ON_STARTUP = _env_bool("SCAN_ON_STARTUP", True)

# ---------------------------------------------------------------------------
# Logging / HTTP
# ---------------------------------------------------------------------------
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [o.strip() for o in os.environ.get("CORS_ORIGINS", "http://localhost:5173").split(",") if o.strip()]
