from pathlib import Path
import os
import sys

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
PROJECT_ROOT = BASE_DIR


def _ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


_default_storage_root = PROJECT_ROOT / "storage_bundle"

_configured_storage = os.environ.get("CHARTSCAN_STORAGE_DIR")
if _configured_storage:
    DATA_ROOT = Path(_configured_storage).expanduser().resolve()
else:
    DATA_ROOT = _default_storage_root.resolve()

DATA_ROOT = _ensure_dir(DATA_ROOT)

load_dotenv(os.fspath(PROJECT_ROOT / ".env"))

DEFAULT_SECRET_KEY = "django-insecure-change-me"
SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", DEFAULT_SECRET_KEY)

DEBUG_DEFAULT = "1" if "test" in sys.argv or "pytest" in sys.modules else "0"
DEBUG = os.environ.get("DJANGO_DEBUG", DEBUG_DEFAULT) not in {"0", "false", "False"}

if not DEBUG and SECRET_KEY == DEFAULT_SECRET_KEY and os.environ.get("DJANGO_ALLOW_INSECURE_KEY") not in {"1", "true", "True"}:
    raise RuntimeError("DJANGO_SECRET_KEY must be set when DEBUG=0")


def _split_env_list(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


ALLOWED_HOSTS: list[str] = _split_env_list(os.environ.get("DJANGO_ALLOWED_HOSTS")) or [
    "127.0.0.1",
    "localhost",
    "testserver",
]

INSTALLED_APPS = [
    "chartscan",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "chart_site.urls"

WSGI_APPLICATION = "chart_site.wsgi.application"

# The analyzer keeps no relational state.
DATABASES: dict = {}

TIME_ZONE = "UTC"

USE_TZ = True

LOG_LEVEL = os.environ.get("CHARTSCAN_LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "plain": {
            "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "plain",
        },
    },
    "loggers": {
        "chartscan": {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
    },
}

CHARTSCAN_MAX_BYTES = int(os.environ.get("CHARTSCAN_MAX_BYTES", 900_000))
CHARTSCAN_MAX_REQUEST_BYTES = int(os.environ.get("CHARTSCAN_MAX_REQUEST_BYTES", 1_500_000))
CHARTSCAN_MAX_WIDTH = int(os.environ.get("CHARTSCAN_MAX_WIDTH", 1280))
CHARTSCAN_MAX_HEIGHT = int(os.environ.get("CHARTSCAN_MAX_HEIGHT", 720))
CHARTSCAN_CHANGE_HISTORY_MAX = int(os.environ.get("CHARTSCAN_CHANGE_HISTORY_MAX", 10))
CHARTSCAN_SESSION_TTL = int(os.environ.get("CHARTSCAN_SESSION_TTL", 900))
CHARTSCAN_SESSION_MAX = int(os.environ.get("CHARTSCAN_SESSION_MAX", 200))

STORAGE_ROOT = DATA_ROOT
DATA_CACHE_DIR = _ensure_dir(DATA_ROOT / "data_cache")
METRICS_MAX_BYTES = int(os.environ.get("METRICS_MAX_BYTES", 5 * 1024 * 1024))

SECURE_CONTENT_TYPE_NOSNIFF = True
SECURE_REFERRER_POLICY = os.environ.get("DJANGO_REFERRER_POLICY", "strict-origin-when-cross-origin")
SECURE_CROSS_ORIGIN_OPENER_POLICY = os.environ.get("DJANGO_COOP", "same-origin")

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"
