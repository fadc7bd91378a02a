import os
import logging
from urllib.parse import urlparse

from utils.env import get_env_str, get_env_bool, get_env_int

logger = logging.getLogger(__name__)

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

# -----------------------------------------------------------------------------
# Dotenv loading (LOCAL ONLY)
# -----------------------------------------------------------------------------
# Rules:
# - Hosted environments are configured via real environment variables.
# - Tests must be deterministic and must NOT ingest a developer's repo-root .env.
_RUNNING_HOSTED = bool(os.getenv("RAILWAY_ENVIRONMENT") or os.getenv("RAILWAY_PROJECT_ID"))
_STAGE_EARLY = (os.getenv("APP_STAGE") or os.getenv("FLASK_ENV") or "").strip().lower()

if (not _RUNNING_HOSTED) and (_STAGE_EARLY not in {"test", "testing"}):
    from dotenv import load_dotenv
    load_dotenv(dotenv_path=os.path.join(BASE_DIR, ".env"), override=False)

# -----------------------------------------------------------------------------
# Environment / Stage
# -----------------------------------------------------------------------------
def _normalize_stage(raw: str) -> str:
    raw = (raw or "").strip().lower()
    if raw in {"prod", "production"}:
        return "production"
    if raw in {"stage", "staging"}:
        return "staging"
    if raw in {"test", "testing"}:
        return "test"
    return "dev"


FLASK_ENV = (os.getenv("FLASK_ENV", "development") or "development").strip().lower()
APP_STAGE = _normalize_stage(os.getenv("APP_STAGE", "dev"))

IS_TEST = APP_STAGE == "test" or FLASK_ENV in {"test", "testing"}
IS_STAGING = APP_STAGE == "staging"
IS_PRODUCTION = APP_STAGE == "production"

# -----------------------------------------------------------------------------
# URLs
# -----------------------------------------------------------------------------
BASE_URL = get_env_str("BASE_URL", default="http://localhost:8080").rstrip("/")

# Download grants embed a relative path; the storefront resolves it.
DOWNLOAD_PATH_PREFIX = get_env_str("DOWNLOAD_PATH_PREFIX", default="/api/orders").rstrip("/")

# -----------------------------------------------------------------------------
# Database (Postgres-only)
# -----------------------------------------------------------------------------
DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL environment variable is required.")

if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)
    os.environ["DATABASE_URL"] = DATABASE_URL

if not DATABASE_URL.startswith("postgresql://"):
    # Never include credentials in errors/logs.
    try:
        p = urlparse(DATABASE_URL)
        got = f"{p.scheme}://{p.hostname}" if p.scheme else "INVALID_URL"
    except ValueError:
        got = "INVALID_URL"
    raise ValueError(
        f"CRITICAL: DATABASE_URL must be a PostgreSQL URL (postgresql://...). Got: {got}."
    )

# -----------------------------------------------------------------------------
# Portrait asset storage (print masters)
# -----------------------------------------------------------------------------
STORAGE_BACKEND = get_env_str("STORAGE_BACKEND", default="local").strip().lower()

if IS_PRODUCTION and STORAGE_BACKEND != "s3":
    raise RuntimeError("CRITICAL: STORAGE_BACKEND must be 's3' in production.")

S3_BUCKET = get_env_str("S3_BUCKET", default="")
S3_PREFIX = get_env_str("S3_PREFIX", default="")

_region = get_env_str("AWS_REGION", default="us-east-1")
if " " in _region or not _region.replace("-", "").isalnum():
    logger.warning(f"[Config] WARNING: Invalid AWS_REGION detected: '{_region}'. Defaulting to 'us-east-1'.")
    _region = "us-east-1"
AWS_REGION = _region

if STORAGE_BACKEND == "s3" and not S3_BUCKET:
    raise RuntimeError("CRITICAL: S3_BUCKET must be set when STORAGE_BACKEND=s3.")

LOCAL_STORAGE_DIR = get_env_str("LOCAL_STORAGE_DIR", default=os.path.join(BASE_DIR, "instance", "storage"))

# Print provider fetches the master asynchronously; S3 caps presigned URLs at 7 days.
PRINT_FILE_URL_TTL_SECONDS = min(get_env_int("PRINT_FILE_URL_TTL_SECONDS", 7 * 24 * 3600), 7 * 24 * 3600)

# -----------------------------------------------------------------------------
# Print provider (Gelato)
# -----------------------------------------------------------------------------
GELATO_API_KEY = get_env_str("GELATO_API_KEY", default="")
GELATO_ORDER_API_URL = get_env_str("GELATO_ORDER_API_URL", default="https://order.gelatoapis.com").rstrip("/")
GELATO_TIMEOUT_SECONDS = get_env_int("GELATO_TIMEOUT_SECONDS", 30)

if (IS_STAGING or IS_PRODUCTION) and not GELATO_API_KEY:
    raise ValueError(f"GELATO_API_KEY must be set in {APP_STAGE} environment.")

# -----------------------------------------------------------------------------
# Operator endpoints
# -----------------------------------------------------------------------------
FULFILLMENT_OPS_TOKEN = get_env_str("FULFILLMENT_OPS_TOKEN")
if not FULFILLMENT_OPS_TOKEN:
    if IS_STAGING or IS_PRODUCTION:
        raise ValueError(f"FULFILLMENT_OPS_TOKEN must be set in {APP_STAGE} environment.")
    FULFILLMENT_OPS_TOKEN = "dev-fulfillment-token"
    logger.warning("[Config] WARNING: Using default FULFILLMENT_OPS_TOKEN for development.")

RATELIMIT_STORAGE_URI = get_env_str("RATELIMIT_STORAGE_URI", default="memory://")

# -----------------------------------------------------------------------------
# Mail (download-ready notifications; off until the template ships)
# -----------------------------------------------------------------------------
DIGITAL_DELIVERY_EMAIL_ENABLED = get_env_bool("DIGITAL_DELIVERY_EMAIL_ENABLED", default=False)
NOTIFY_EMAIL_FROM = get_env_str("NOTIFY_EMAIL_FROM", default="orders@pawtraits.example")
