"""
Settings for the deferred-billing service.

One settings module serves every environment; values come from the
environment through django-environ (a .env file is read for local runs).
Tests load config.settings_test, which seeds safe defaults and replaces
Redis and PostgreSQL with in-process backends.

Sections:
    - Platform: Django, database, cache, DRF, JWT, Celery, Channels
    - Gateways: Stripe and the case-management API
    - Billing and job feed behaviour
    - Logging and production hardening
"""

import os
from datetime import timedelta
from pathlib import Path

import environ

BASE_DIR = Path(__file__).resolve().parent.parent

env = environ.Env(
    DEBUG=(bool, False),
    ALLOWED_HOSTS=(list, []),
    CORS_ALLOWED_ORIGINS=(list, []),
    LOG_LEVEL=(str, "INFO"),
)

env_file = os.environ.get("ENV_FILE", BASE_DIR.parent / ".env")
if Path(env_file).exists():
    environ.Env.read_env(env_file)

REDIS_URL = env("REDIS_URL", default="redis://redis:6379/0")

# =============================================================================
# Django
# =============================================================================
SECRET_KEY = env("SECRET_KEY")
DEBUG = env("DEBUG")
ALLOWED_HOSTS = env("ALLOWED_HOSTS")

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    # Channels must precede apps that define consumers
    "channels",
    "rest_framework",
    "rest_framework_simplejwt",
    "corsheaders",
    "django_celery_beat",
    "drf_spectacular",
    "core",
    "casemanager",
    "billing",
    "jobfeed",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "whitenoise.middleware.WhiteNoiseMiddleware",
    "corsheaders.middleware.CorsMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "config.urls"
WSGI_APPLICATION = "config.wsgi.application"
ASGI_APPLICATION = "config.asgi.application"

# Admin only; the API renders JSON
TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = False
USE_TZ = True

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

STATIC_URL = env("STATIC_URL", default="/static/")
STATIC_ROOT = BASE_DIR / "staticfiles"
STORAGES = {
    "default": {"BACKEND": "django.core.files.storage.FileSystemStorage"},
    "staticfiles": {"BACKEND": "whitenoise.storage.CompressedManifestStaticFilesStorage"},
}

# =============================================================================
# Database & Cache
# =============================================================================
# PostgreSQL: the charge claim is a conditional UPDATE and the
# one-success-per-job rule is a partial unique index
DATABASES = {
    "default": env.db(
        "DATABASE_URL",
        default="postgres://postgres:postgres@db:5432/billing",
    ),
}
DATABASES["default"]["OPTIONS"] = {"connect_timeout": 10}
DATABASES["default"]["ATOMIC_REQUESTS"] = False

# The default cache's Redis client also backs billing.locks.DistributedLock
CACHES = {
    "default": {
        "BACKEND": "django_redis.cache.RedisCache",
        "LOCATION": REDIS_URL,
        "OPTIONS": {"CLIENT_CLASS": "django_redis.client.DefaultClient"},
    }
}

# =============================================================================
# API: DRF, OpenAPI, JWT, CORS
# =============================================================================
REST_FRAMEWORK = {
    # Tokens are issued by the portal; this service only validates them
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework_simplejwt.authentication.JWTAuthentication",
        "rest_framework.authentication.SessionAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": ["rest_framework.permissions.IsAuthenticated"],
    "DEFAULT_RENDERER_CLASSES": ["rest_framework.renderers.JSONRenderer"],
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",
    "DEFAULT_PAGINATION_CLASS": "rest_framework.pagination.PageNumberPagination",
    "PAGE_SIZE": 50,
    "DEFAULT_THROTTLE_CLASSES": ["rest_framework.throttling.UserRateThrottle"],
    "DEFAULT_THROTTLE_RATES": {"user": "600/hour"},
}

SPECTACULAR_SETTINGS = {
    "TITLE": "Deferred Billing API",
    "DESCRIPTION": "Card setup, affidavit-triggered charging and job change feed",
    "VERSION": "1.0.0",
    "SERVE_INCLUDE_SCHEMA": False,
    "SCHEMA_PATH_PREFIX": r"/api/v[0-9]+",
    "SECURITY": [{"Bearer": []}],
    "APPEND_COMPONENTS": {
        "securitySchemes": {
            "Bearer": {"type": "http", "scheme": "bearer", "bearerFormat": "JWT"}
        }
    },
    "COMPONENT_SPLIT_REQUEST": True,
}

SIMPLE_JWT = {
    "ACCESS_TOKEN_LIFETIME": timedelta(minutes=env.int("JWT_ACCESS_MINUTES", default=60)),
    "ALGORITHM": "HS256",
    "SIGNING_KEY": env("JWT_SIGNING_KEY", default=SECRET_KEY),
    "AUTH_HEADER_TYPES": ("Bearer",),
    "USER_ID_FIELD": "id",
    "USER_ID_CLAIM": "user_id",
}

CORS_ALLOWED_ORIGINS = env("CORS_ALLOWED_ORIGINS")
CORS_ALLOW_CREDENTIALS = True

# =============================================================================
# Celery & Channels
# =============================================================================
CELERY_BROKER_URL = env("CELERY_BROKER_URL", default="redis://redis:6379/1")
CELERY_RESULT_BACKEND = env("CELERY_RESULT_BACKEND", default="redis://redis:6379/1")
CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TASK_SERIALIZER = "json"
CELERY_RESULT_SERIALIZER = "json"
CELERY_TIMEZONE = "UTC"
CELERY_TASK_TIME_LIMIT = 5 * 60
# Schedules are rows seeded by billing/jobfeed data migrations
CELERY_BEAT_SCHEDULER = "django_celery_beat.schedulers:DatabaseScheduler"

CHANNEL_LAYERS = {
    "default": {
        "BACKEND": "channels_redis.core.RedisChannelLayer",
        "CONFIG": {"hosts": [REDIS_URL], "capacity": 1500, "expiry": 10},
    },
}

# =============================================================================
# Stripe
# =============================================================================
STRIPE_SECRET_KEY = env("STRIPE_SECRET_KEY", default="")
STRIPE_PUBLISHABLE_KEY = env("STRIPE_PUBLISHABLE_KEY", default="")
STRIPE_WEBHOOK_SECRET = env("STRIPE_WEBHOOK_SECRET", default="")

# A timeout on charge submission leaves the job CHARGE_IN_FLIGHT until
# reconcile_stale_charges settles it
STRIPE_API_TIMEOUT_SECONDS = env.int("STRIPE_API_TIMEOUT_SECONDS", default=10)
STRIPE_MAX_RETRIES = env.int("STRIPE_MAX_RETRIES", default=3)

# =============================================================================
# Case Management
# =============================================================================
CASE_MANAGEMENT_BASE_URL = env(
    "CASE_MANAGEMENT_BASE_URL",
    default="https://www.servemanager.com/api/v2",
)
CASE_MANAGEMENT_API_KEY = env("CASE_MANAGEMENT_API_KEY", default="")
CASE_MANAGEMENT_ENABLED = env.bool("CASE_MANAGEMENT_ENABLED", default=True)
CASE_MANAGEMENT_CONNECT_TIMEOUT = env.float("CASE_MANAGEMENT_CONNECT_TIMEOUT", default=5.0)
CASE_MANAGEMENT_READ_TIMEOUT = env.float("CASE_MANAGEMENT_READ_TIMEOUT", default=15.0)

# =============================================================================
# Billing
# =============================================================================
BILLING_CURRENCY = env("BILLING_CURRENCY", default="usd")

# Automatic charge attempts per job before an operator has to step in
BILLING_MAX_AUTOMATIC_ATTEMPTS = env.int("BILLING_MAX_AUTOMATIC_ATTEMPTS", default=3)

# In-flight attempts older than this are re-submitted with their original key
BILLING_STALE_CHARGE_MINUTES = env.int("BILLING_STALE_CHARGE_MINUTES", default=15)

WEBHOOK_MAX_RETRIES = env.int("WEBHOOK_MAX_RETRIES", default=5)
WEBHOOK_STUCK_PROCESSING_MINUTES = env.int("WEBHOOK_STUCK_PROCESSING_MINUTES", default=30)

# =============================================================================
# Job Feed
# =============================================================================
# "poll": celery-beat re-diffs watched jobs; "push": upstream calls the
# refresh endpoint
JOBFEED_TRANSPORT = env("JOBFEED_TRANSPORT", default="poll")
JOBFEED_POLL_INTERVAL_SECONDS = env.int("JOBFEED_POLL_INTERVAL_SECONDS", default=10)
JOBFEED_POLL_BATCH_SIZE = env.int("JOBFEED_POLL_BATCH_SIZE", default=5)
JOBFEED_WATCH_TTL_MINUTES = env.int("JOBFEED_WATCH_TTL_MINUTES", default=60)
JOBFEED_LIVENESS_TIMEOUT_SECONDS = env.int("JOBFEED_LIVENESS_TIMEOUT_SECONDS", default=60)

# =============================================================================
# Logging
# =============================================================================
LOG_LEVEL = env("LOG_LEVEL")
# One file per process type (web, celery-worker, celery-beat)
LOG_FILE_NAME = env("LOG_FILE_NAME", default="billing.log")
LOG_DIR = BASE_DIR / "logs"
LOG_DIR.mkdir(parents=True, exist_ok=True)

_APP_LOGGER = {"handlers": ["console", "file"], "level": LOG_LEVEL, "propagate": False}

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{levelname} {asctime} {name} {process:d} {message}",
            "style": "{",
        },
        "simple": {
            "format": "{levelname} {message}",
            "style": "{",
        },
        "file": {
            "format": "[{asctime}] {levelname} {name} {module}:{lineno} - {message}",
            "style": "{",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
        "file": {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": LOG_DIR / LOG_FILE_NAME,
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 5,
            "formatter": "file",
            "encoding": "utf-8",
        },
    },
    "root": {"handlers": ["console", "file"], "level": LOG_LEVEL},
    "loggers": {
        "django.request": {**_APP_LOGGER, "level": "ERROR"},
        "celery": _APP_LOGGER,
        "billing": _APP_LOGGER,
        "casemanager": _APP_LOGGER,
        "jobfeed": _APP_LOGGER,
    },
}

# =============================================================================
# Production Hardening
# =============================================================================
if not DEBUG:
    SECURE_SSL_REDIRECT = env.bool("SECURE_SSL_REDIRECT", default=True)
    SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")
    SESSION_COOKIE_SECURE = True
    CSRF_COOKIE_SECURE = True
    SECURE_HSTS_SECONDS = env.int("SECURE_HSTS_SECONDS", default=31536000)
    SECURE_HSTS_INCLUDE_SUBDOMAINS = True
    SECURE_CONTENT_TYPE_NOSNIFF = True
    X_FRAME_OPTIONS = "DENY"
