"""
Django settings for the ride dispatch backend.

Values come from the environment (optionally a .env file one level above
the backend directory). Production overrides live in prod.py.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent.parent
load_dotenv(os.path.join(BASE_DIR, '..', '.env'))

SECRET_KEY = os.getenv("SECRET_KEY", "dev-insecure-change-me")
DEBUG = os.getenv("DEBUG", "true").lower() == "true"
ALLOWED_HOSTS = os.getenv("ALLOWED_HOSTS", "*").split(',')

INSTALLED_APPS = [
    'daphne',
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'rest_framework',
    'channels',
    'drivers',
    'rides',
    'realtime',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'app_backend.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

ASGI_APPLICATION = 'app_backend.asgi.application'

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': os.getenv("SQLITE_PATH", str(BASE_DIR / 'db.sqlite3')),
    }
}

AUTH_PASSWORD_VALIDATORS = []

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': [
        'rest_framework.authentication.SessionAuthentication',
    ],
    'DEFAULT_PERMISSION_CLASSES': [
        'rest_framework.permissions.IsAuthenticated',
    ],
}

# Channels (in-memory for development/tests, Redis in prod.py)
CHANNEL_LAYERS = {
    "default": {
        "BACKEND": "channels.layers.InMemoryChannelLayer",
    }
}

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

# Celery
CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", REDIS_URL)
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", REDIS_URL)
CELERY_TASK_ALWAYS_EAGER = os.getenv("CELERY_TASK_ALWAYS_EAGER", "false").lower() == "true"
CELERY_BEAT_SCHEDULE = {
    "prune-stale-presence": {
        "task": "rides.tasks.prune_stale_presence_task",
        "schedule": 30.0,
    },
    "reconcile-abandoned-offers": {
        "task": "rides.tasks.reconcile_abandoned_offers_task",
        "schedule": 60.0,
    },
}

# Dispatch engine
DISPATCH = {
    "STORE": os.getenv("DISPATCH_STORE", "rides.store.DjangoDispatchStore"),
    "SEARCH_RADIUS_KM": float(os.getenv("SEARCH_RADIUS_KM", "5")),
    "DRIVER_RESPONSE_TIMEOUT": float(os.getenv("DRIVER_RESPONSE_TIMEOUT", "15")),
    "PRESENCE_LIVENESS_SECONDS": float(os.getenv("PRESENCE_LIVENESS_SECONDS", "60")),
    "ABANDONED_OFFER_GRACE_SECONDS": float(os.getenv("ABANDONED_OFFER_GRACE_SECONDS", "30")),
    "PICKUP_SPEED_KMH": float(os.getenv("PICKUP_SPEED_KMH", "30")),
    "DEFAULT_TIER": os.getenv("DEFAULT_TIER", "economy"),
    "FARE_TIERS": {
        "economy": {
            "base": float(os.getenv("BASE_FARE_ECONOMY", "20")),
            "per_km": float(os.getenv("PER_KM_RATE_ECONOMY", "5")),
            "avg_speed_kmh": 25.0,
        },
        "classic": {
            "base": float(os.getenv("BASE_FARE_CLASSIC", "30")),
            "per_km": float(os.getenv("PER_KM_RATE_CLASSIC", "8")),
            "avg_speed_kmh": 35.0,
        },
    },
}

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "simple": {
            "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "simple",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": "WARNING",
    },
    "loggers": {
        "services": {"level": os.getenv("LOG_LEVEL", "INFO")},
        "realtime": {"level": os.getenv("LOG_LEVEL", "INFO")},
        "rides": {"level": os.getenv("LOG_LEVEL", "INFO")},
        "drivers": {"level": os.getenv("LOG_LEVEL", "INFO")},
    },
}
