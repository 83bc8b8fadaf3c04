"""
Django settings for CITYDROP project.
Same-city courier dispatch platform

Configuration for:
- PostgreSQL (row-level locking for claims) / SQLite for local dev
- Redis/Celery (expiry sweeper, ledger reconciliation)
- Django Channels (order event fan-out)
- JWT Authentication (API)
"""

from pathlib import Path
from decouple import config, Csv
from datetime import timedelta

# ===========================================
# BASE CONFIGURATION
# ===========================================
BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = config('SECRET_KEY', default='dev-secret-key-change-in-production')
DEBUG = config('DEBUG', default=True, cast=bool)
ALLOWED_HOSTS = config('ALLOWED_HOSTS', default='localhost,127.0.0.1,0.0.0.0', cast=Csv())

# ===========================================
# APPLICATION DEFINITION
# ===========================================
INSTALLED_APPS = [
    # Django Core
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',

    # Third Party
    'channels',
    'rest_framework',
    'rest_framework_simplejwt',

    # CITYDROP Apps
    'core.apps.CoreConfig',
    'logistics.apps.LogisticsConfig',
    'finance.apps.FinanceConfig',
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

ROOT_URLCONF = 'citydrop_core.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [],
        'APP_DIRS': True,
        'OPTIONS': {
            'context_processors': [
                'django.template.context_processors.debug',
                'django.template.context_processors.request',
                'django.contrib.auth.context_processors.auth',
                'django.contrib.messages.context_processors.messages',
            ],
        },
    },
]

WSGI_APPLICATION = 'citydrop_core.wsgi.application'
ASGI_APPLICATION = 'citydrop_core.asgi.application'

# ===========================================
# DATABASE
# ===========================================
# Production runs on PostgreSQL: claims rely on SELECT ... FOR UPDATE SKIP LOCKED.
DB_ENGINE = config('DB_ENGINE', default='django.db.backends.sqlite3')

if DB_ENGINE == 'django.db.backends.sqlite3':
    DATABASES = {
        'default': {
            'ENGINE': DB_ENGINE,
            'NAME': config('DB_NAME', default=str(BASE_DIR / 'db.sqlite3')),
        }
    }
else:
    DATABASES = {
        'default': {
            'ENGINE': DB_ENGINE,
            'NAME': config('DB_NAME', default='citydrop_db'),
            'USER': config('DB_USER', default='citydrop_user'),
            'PASSWORD': config('DB_PASSWORD', default='citydrop_secret'),
            'HOST': config('DB_HOST', default='db'),
            'PORT': config('DB_PORT', default='5432'),
        }
    }

# ===========================================
# PASSWORD VALIDATION
# ===========================================
AUTH_PASSWORD_VALIDATORS = [
    {'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator'},
    {'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator'},
    {'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator'},
    {'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator'},
]

# ===========================================
# INTERNATIONALIZATION
# ===========================================
LANGUAGE_CODE = 'en-us'
TIME_ZONE = config('TIME_ZONE', default='Asia/Jerusalem')
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# ===========================================
# DJANGO CHANNELS (order event fan-out)
# ===========================================
REDIS_URL = config('REDIS_URL', default='')

if REDIS_URL:
    CHANNEL_LAYERS = {
        'default': {
            'BACKEND': 'channels_redis.core.RedisChannelLayer',
            'CONFIG': {
                'hosts': [REDIS_URL],
                'capacity': 1500,
                'expiry': 10,
            },
        },
    }
else:
    CHANNEL_LAYERS = {
        'default': {
            'BACKEND': 'channels.layers.InMemoryChannelLayer',
        },
    }

# ===========================================
# DJANGO REST FRAMEWORK
# ===========================================
REST_FRAMEWORK = {
    'DEFAULT_AUTHENTICATION_CLASSES': [
        'rest_framework_simplejwt.authentication.JWTAuthentication',
        'rest_framework.authentication.SessionAuthentication',
    ],
    'DEFAULT_PERMISSION_CLASSES': [
        'rest_framework.permissions.IsAuthenticated',
    ],
    'DEFAULT_PAGINATION_CLASS': 'rest_framework.pagination.PageNumberPagination',
    'PAGE_SIZE': 20,
    'EXCEPTION_HANDLER': 'core.exceptions.dispatch_exception_handler',
}

# ===========================================
# JWT CONFIGURATION
# ===========================================
SIMPLE_JWT = {
    'ACCESS_TOKEN_LIFETIME': timedelta(minutes=15),
    'REFRESH_TOKEN_LIFETIME': timedelta(days=7),
    'AUTH_HEADER_TYPES': ('Bearer',),
}

# ===========================================
# CELERY CONFIGURATION
# ===========================================
CELERY_BROKER_URL = config('CELERY_BROKER_URL', default='redis://redis:6379/0')
CELERY_RESULT_BACKEND = config('CELERY_RESULT_BACKEND', default='redis://redis:6379/0')
CELERY_ACCEPT_CONTENT = ['json']
CELERY_TASK_SERIALIZER = 'json'
CELERY_RESULT_SERIALIZER = 'json'
CELERY_TIMEZONE = TIME_ZONE

# Celery Beat Schedule (Periodic Tasks)
from celery.schedules import crontab

CELERY_BEAT_SCHEDULE = {
    # Auto-cancel orders nobody claimed in time
    'expire-stale-orders': {
        'task': 'logistics.tasks.expire_stale_orders',
        'schedule': crontab(minute='*'),
    },
    # Compare every courier balance with its ledger, nightly at 03:30
    'reconcile-courier-balances': {
        'task': 'finance.tasks.reconcile_courier_balances',
        'schedule': crontab(hour=3, minute=30),
    },
}

# ===========================================
# EXTERNAL SERVICES
# ===========================================
GOOGLE_MAPS_API_KEY = config('GOOGLE_MAPS_API_KEY', default='')
GOOGLE_DISTANCE_MATRIX_URL = config(
    'GOOGLE_DISTANCE_MATRIX_URL',
    default='https://maps.googleapis.com/maps/api/distancematrix/json'
)
DISTANCE_REQUEST_TIMEOUT = config('DISTANCE_REQUEST_TIMEOUT', default=5, cast=int)  # seconds

# ===========================================
# BUSINESS RULES - PRICING ENGINE
# ===========================================
PRICING_TARIFFS = {
    'motorcycle': {
        'base': config('MOTORCYCLE_BASE_PRICE', default='70'),
        'per_km': config('MOTORCYCLE_PRICE_PER_KM', default='2.5'),
    },
    'car': {
        'base': config('CAR_BASE_PRICE', default='75'),
        'per_km': config('CAR_PRICE_PER_KM', default='2.5'),
    },
    'van': {
        'base': config('VAN_BASE_PRICE', default='120'),
        'per_km': config('VAN_PRICE_PER_KM', default='3.0'),
    },
    'truck': {
        'base': config('TRUCK_BASE_PRICE', default='200'),
        'per_km': config('TRUCK_PRICE_PER_KM', default='4.0'),
    },
}
PRICING_FREE_KM = config('FREE_KM', default='1')
PRICING_VAT_RATE = config('VAT_RATE', default='0.18')
PRICING_COMMISSION_RATE = config('COMMISSION_RATE', default='0.25')
PRICING_NIGHT_MULTIPLIER = config('NIGHT_MULTIPLIER', default='1.5')
PRICING_NIGHT_START_HOUR = config('NIGHT_START_HOUR', default=22, cast=int)
PRICING_NIGHT_END_HOUR = config('NIGHT_END_HOUR', default=6, cast=int)

# ===========================================
# BUSINESS RULES - DISPATCH & LEDGER
# ===========================================
ORDER_NUMBER_PREFIX = config('ORDER_NUMBER_PREFIX', default='CD')
ORDER_EXPIRY_MINUTES = config('ORDER_EXPIRY_MINUTES', default=30, cast=int)
CLAIM_NEXT_MAX_ATTEMPTS = config('CLAIM_NEXT_MAX_ATTEMPTS', default=5, cast=int)
MIN_PAYOUT_AMOUNT = config('MIN_PAYOUT_AMOUNT', default='50')

# ===========================================
# LOGGING CONFIGURATION
# ===========================================
LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{levelname} {asctime} {module} {process:d} {thread:d} {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'root': {
        'handlers': ['console'],
        'level': 'INFO',
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': config('DJANGO_LOG_LEVEL', default='INFO'),
            'propagate': False,
        },
        'celery': {
            'handlers': ['console'],
            'level': 'INFO',
            'propagate': False,
        },
    },
}
