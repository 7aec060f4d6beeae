"""Local development settings."""
from .base import *  # noqa: F401, F403

DEBUG = True

# CORS - allow the portal frontend in development
CORS_ALLOW_ALL_ORIGINS = True

CSRF_TRUSTED_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:8000",
]

# Additional apps for development
INSTALLED_APPS += [  # noqa: F405
    "django_extensions",
]

# Verbose billing logs while developing
LOGGING["loggers"]["apps"]["level"] = "DEBUG"  # noqa: F405
