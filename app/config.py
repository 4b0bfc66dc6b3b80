"""
Application configuration from environment variables.

Load with python-dotenv in main so env vars are available before imports.
Validates critical secrets at module load; missing values raise RuntimeError.
"""
import os

# --- Required (raise if missing) ---
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")

for name, val in [
    ("GOOGLE_CLIENT_ID", GOOGLE_CLIENT_ID),
    ("GOOGLE_CLIENT_SECRET", GOOGLE_CLIENT_SECRET),
]:
    if not val or not str(val).strip():
        raise RuntimeError(f"Required env var {name} is missing or empty")

GOOGLE_REDIRECT_URI = os.getenv(
    "GOOGLE_REDIRECT_URI", "http://localhost:5000/auth/google/callback"
)
GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_DRIVE_SCOPE = "https://www.googleapis.com/auth/drive"
DRIVE_API_URL = "https://www.googleapis.com/drive/v3/files"

# Environment: development | production (affects token storage and logging)
ENV = (os.getenv("ENV") or os.getenv("NODE_ENV") or "development").lower()
IS_PRODUCTION = ENV == "production"

# The single Drive folder tree this backend exposes; None until configured
GOOGLE_DRIVE_FOLDER_ID = (os.getenv("GOOGLE_DRIVE_FOLDER_ID") or "").strip() or None

# --- Credential persistence ---
# "database": encrypted row via SQLAlchemy (development).
# "env": GOOGLE_TOKENS read at startup, refreshed tokens emitted to the log.
TOKEN_STORAGE = os.getenv("TOKEN_STORAGE", "env" if IS_PRODUCTION else "database").lower()
if TOKEN_STORAGE not in ("database", "env"):
    raise RuntimeError(f"TOKEN_STORAGE must be 'database' or 'env', got {TOKEN_STORAGE!r}")
GOOGLE_TOKENS = os.getenv("GOOGLE_TOKENS")

# POST /api/google-drive/clear is unauthenticated; off by default in production
CREDENTIAL_CLEAR_ENABLED = os.getenv(
    "CREDENTIAL_CLEAR_ENABLED", "false" if IS_PRODUCTION else "true"
).lower() in ("1", "true", "yes")

# Database URL (SQLite default; any SQLAlchemy URL works)
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./tokens.db")

# --- CORS ---
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/")
CORS_ORIGINS = [o for o in (FRONTEND_URL, os.getenv("CORS_ORIGIN")) if o]

# OAuth CSRF: cookie name for state parameter, short-lived
OAUTH_STATE_COOKIE_NAME = os.getenv("OAUTH_STATE_COOKIE_NAME", "oauth_state")
OAUTH_STATE_MAX_AGE = 600  # 10 minutes

# Secure cookie flag (set True in production over HTTPS)
SECURE_COOKIES = os.getenv("SECURE_COOKIES", "true" if IS_PRODUCTION else "false").lower() in (
    "1",
    "true",
    "yes",
)


def _int_env(key: str, default: int) -> int:
    try:
        return max(1, int(os.getenv(key, str(default))))
    except ValueError:
        return default


def _timeout_env(key: str, default: tuple[float, float]) -> tuple[float, float]:
    """Parse "connect,read" seconds; fall back to default on bad input."""
    raw = os.getenv(key)
    if not raw:
        return default
    try:
        connect, read = (float(p) for p in raw.split(","))
    except ValueError:
        return default
    return (connect, read)


# --- Streaming ---
# Open-ended ranges ("bytes=N-") are served in windows of this size
STREAM_CHUNK_FALLBACK_BYTES = _int_env("STREAM_CHUNK_FALLBACK_BYTES", 10 * 1024 * 1024)
# Bytes read from Drive per iteration before handing to the client
STREAM_BUFFER_BYTES = _int_env("STREAM_BUFFER_BYTES", 256 * 1024)

# --- Archives ---
ARCHIVE_LIST_WORKERS = _int_env("ARCHIVE_LIST_WORKERS", 4)
MAX_ARCHIVE_FOLDERS = _int_env("MAX_ARCHIVE_FOLDERS", 5000)
MAX_ARCHIVE_FILES = _int_env("MAX_ARCHIVE_FILES", 50000)
# Multi-file archive: max file ids per request
MAX_DOWNLOAD_FILES = _int_env("MAX_DOWNLOAD_FILES", 200)

# Request timeouts (connect, read) in seconds
DRIVE_REQUEST_TIMEOUT = _timeout_env("DRIVE_REQUEST_TIMEOUT", (5, 60))
DRIVE_DOWNLOAD_TIMEOUT = _timeout_env("DRIVE_DOWNLOAD_TIMEOUT", (5, 120))
OAUTH_TIMEOUT = _timeout_env("OAUTH_TIMEOUT", (5, 30))

# Production keeps the log to warnings and errors
LOG_LEVEL = os.getenv("LOG_LEVEL", "WARNING" if IS_PRODUCTION else "INFO").upper()
