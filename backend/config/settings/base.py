"""Base settings for the service-center billing project."""
from pathlib import Path

import environ

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent.parent

# Environment
# Values starting with "$" are proxies to other variables; "\$" escapes a literal sign
env = environ.Env(
    escape_proxy=True,
    DEBUG=(bool, False),
)

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = env("DJANGO_SECRET_KEY", default="insecure-local-development-key")

# API token lifetimes
JWT_ACCESS_TOKEN_HOURS = env.int("JWT_ACCESS_TOKEN_HOURS", default=24)
JWT_REFRESH_TOKEN_DAYS = env.int("JWT_REFRESH_TOKEN_DAYS", default=7)

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = env.bool("DJANGO_DEBUG", default=False)

ALLOWED_HOSTS = env.list("DJANGO_ALLOWED_HOSTS", default=[])

# Application definition
DJANGO_APPS = [
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.staticfiles",
]

THIRD_PARTY_APPS = [
    "strawberry_django",
    "corsheaders",
    "auditlog",
]

LOCAL_APPS = [
    "apps.core",
    "apps.organizations",
    "apps.projects",
    "apps.billing",
]

INSTALLED_APPS = DJANGO_APPS + THIRD_PARTY_APPS + LOCAL_APPS

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "corsheaders.middleware.CorsMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
    "auditlog.middleware.AuditlogMiddleware",
]

ROOT_URLCONF = "config.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
            ],
        },
    },
]

WSGI_APPLICATION = "config.wsgi.application"

# Database
DATABASES = {
    "default": env.db("DATABASE_URL", default=f"sqlite:///{BASE_DIR / 'db.sqlite3'}"),
}

# Password validation
AUTH_PASSWORD_VALIDATORS = [
    {"NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator"},
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator"},
    {"NAME": "django.contrib.auth.password_validation.CommonPasswordValidator"},
    {"NAME": "django.contrib.auth.password_validation.NumericPasswordValidator"},
]

# Internationalization
LANGUAGE_CODE = "en-us"
TIME_ZONE = env("DJANGO_TIME_ZONE", default="America/Chicago")
USE_I18N = True
USE_TZ = True

# Static files (CSS, JavaScript, Images)
STATIC_URL = "/static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

# Media files (rendered invoice PDFs)
MEDIA_URL = "/media/"
MEDIA_ROOT = BASE_DIR / "media"

# S3-compatible Object Storage
# Uses native django-storages setting names
AWS_S3_ENDPOINT_URL = env("AWS_S3_ENDPOINT_URL", default="")
AWS_ACCESS_KEY_ID = env("AWS_ACCESS_KEY_ID", default="")
AWS_SECRET_ACCESS_KEY = env("AWS_SECRET_ACCESS_KEY", default="")
AWS_STORAGE_BUCKET_NAME = env("AWS_STORAGE_BUCKET_NAME", default="")
AWS_S3_REGION_NAME = env("AWS_S3_REGION_NAME", default="us-east-1")

# Storage backend - use S3 if configured, otherwise local filesystem
if AWS_S3_ENDPOINT_URL:
    AWS_S3_ADDRESSING_STYLE = "path"
    AWS_S3_FILE_OVERWRITE = False
    AWS_DEFAULT_ACL = None  # Use bucket default ACL
    AWS_QUERYSTRING_AUTH = True  # Generate signed URLs

    STORAGES = {
        "default": {
            "BACKEND": "storages.backends.s3boto3.S3Boto3Storage",
        },
        "staticfiles": {
            "BACKEND": "django.contrib.staticfiles.storage.StaticFilesStorage",
        },
    }
else:
    STORAGES = {
        "default": {
            "BACKEND": "django.core.files.storage.FileSystemStorage",
        },
        "staticfiles": {
            "BACKEND": "django.contrib.staticfiles.storage.StaticFilesStorage",
        },
    }

# Default primary key field type
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# Auditlog - models are registered explicitly in apps.billing
AUDITLOG_INCLUDE_ALL_MODELS = False

# Cache
CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.redis.RedisCache",
        "LOCATION": env("REDIS_URL", default="redis://localhost:6379/0"),
    }
}

# Logging
LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{asctime} {levelname} {name} {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "WARNING",
    },
    "loggers": {
        "apps": {
            "handlers": ["console"],
            "level": env("DJANGO_LOG_LEVEL", default="INFO"),
            "propagate": False,
        },
    },
}

# Billing engine configuration (see apps.billing.conf for defaults)
BILLING = {
    "CURRENCY_SYMBOL": env("BILLING_CURRENCY_SYMBOL", default=r"\$"),
    "PAYMENT_TERMS_DAYS": env.int("BILLING_PAYMENT_TERMS_DAYS", default=15),
    "DEFAULT_HOURLY_RATE": env("BILLING_DEFAULT_HOURLY_RATE", default="30.00"),
    "DEFAULT_FREE_HOURS": env("BILLING_DEFAULT_FREE_HOURS", default="2.0"),
    "HOURS_ROUNDING_INCREMENT": env("BILLING_HOURS_ROUNDING_INCREMENT", default="0.25"),
    "ALLOW_ZERO_AMOUNT_INVOICES": env.bool("BILLING_ALLOW_ZERO_AMOUNT_INVOICES", default=False),
    "LATE_FEE_TYPE": env("BILLING_LATE_FEE_TYPE", default="fixed"),
    "LATE_FEE_AMOUNT": env("BILLING_LATE_FEE_AMOUNT", default="25.00"),
    "LATE_FEE_PERCENT": env("BILLING_LATE_FEE_PERCENT", default="5.00"),
    "LATE_FEE_GRACE_DAYS": env.int("BILLING_LATE_FEE_GRACE_DAYS", default=0),
    "INVOICE_DUE_SOON_DAYS": env.int("BILLING_INVOICE_DUE_SOON_DAYS", default=2),
    "TASK_DUE_SOON_DAYS": env.int("BILLING_TASK_DUE_SOON_DAYS", default=3),
    "ALERT_CACHE_TTL": env.int("BILLING_ALERT_CACHE_TTL", default=300),
    "RENDER_PDF_ON_FINALIZE": env.bool("BILLING_RENDER_PDF_ON_FINALIZE", default=True),
}

# Strawberry GraphQL
STRAWBERRY_DJANGO = {
    "FIELD_DESCRIPTION_FROM_HELP_TEXT": True,
    "TYPE_DESCRIPTION_FROM_MODEL_DOCSTRING": True,
}

# Celery configuration
CELERY_BROKER_URL = env("REDIS_URL", default="redis://localhost:6379/0")
CELERY_RESULT_BACKEND = env("REDIS_URL", default="redis://localhost:6379/0")
CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TASK_SERIALIZER = "json"
CELERY_RESULT_SERIALIZER = "json"
CELERY_TIMEZONE = TIME_ZONE
CELERY_TASK_ACKS_LATE = True  # Ensure tasks aren't lost on worker crash
CELERY_TASK_REJECT_ON_WORKER_LOST = True
