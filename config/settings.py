"""
Django settings for the food-ordering backend.

Every deployment-specific value is read from the environment. Fee policy,
response window length and payment gateway wiring are policy, not protocol,
so they live here rather than in the order code.
"""
import os
import sys
from datetime import timedelta
from decimal import Decimal
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def env_bool(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


TESTING = 'test' in sys.argv[1:2] or 'pytest' in sys.modules

SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'dev-insecure-secret-key-change-me')
DEBUG = env_bool('DJANGO_DEBUG', False)
ALLOWED_HOSTS = os.environ.get('DJANGO_ALLOWED_HOSTS', '*').split(',')

INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'rest_framework',
    'restaurants',
    'orders',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
]

ROOT_URLCONF = 'config.urls'
WSGI_APPLICATION = 'config.wsgi.application'

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

if os.environ.get('DB_ENGINE', 'sqlite') == 'postgres':
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.postgresql',
            'NAME': os.environ.get('DB_NAME', 'food_ordering'),
            'USER': os.environ.get('DB_USER', 'postgres'),
            'PASSWORD': os.environ.get('DB_PASSWORD', ''),
            'HOST': os.environ.get('DB_HOST', 'localhost'),
            'PORT': os.environ.get('DB_PORT', '5432'),
            'CONN_MAX_AGE': 60,
        }
    }
else:
    DATABASES = {
        'default': {
            'ENGINE': 'django.db.backends.sqlite3',
            'NAME': BASE_DIR / 'db.sqlite3',
        }
    }

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'Asia/Kolkata'
USE_I18N = True
USE_TZ = True

STATIC_URL = 'static/'

REST_FRAMEWORK = {
    'EXCEPTION_HANDLER': 'core.exceptions.envelope_exception_handler',
    'DEFAULT_AUTHENTICATION_CLASSES': [],
    'DEFAULT_PERMISSION_CLASSES': ['rest_framework.permissions.AllowAny'],
    'UNAUTHENTICATED_USER': None,
}

# =============================================================================
# Redis: real-time channels and rate limiting
# =============================================================================

REDIS_URL = os.environ.get('REDIS_URL', 'redis://localhost:6379/0')
REALTIME_ENABLED = env_bool('REALTIME_ENABLED', not TESTING)
RATE_LIMIT_ENABLED = env_bool('RATE_LIMIT_ENABLED', not TESTING)

# =============================================================================
# Celery
# =============================================================================

CELERY_BROKER_URL = os.environ.get('CELERY_BROKER_URL', REDIS_URL)
CELERY_RESULT_BACKEND = os.environ.get('CELERY_RESULT_BACKEND', REDIS_URL)
CELERY_TASK_ALWAYS_EAGER = env_bool('CELERY_TASK_ALWAYS_EAGER', TESTING)
CELERY_TASK_SERIALIZER = 'json'
CELERY_ACCEPT_CONTENT = ['json']
CELERY_TIMEZONE = TIME_ZONE
CELERY_BEAT_SCHEDULE = {
    'expire-response-windows': {
        'task': 'orders.tasks.expire_response_windows',
        'schedule': timedelta(seconds=int(os.environ.get('RESPONSE_WINDOW_SWEEP_SECONDS', '30'))),
    },
}

# =============================================================================
# Order policy
# =============================================================================

ORDER_RESPONSE_WINDOW_SECONDS = int(os.environ.get('ORDER_RESPONSE_WINDOW_SECONDS', '90'))

ORDER_FEE_POLICY = {
    'delivery_fee': Decimal(os.environ.get('ORDER_DELIVERY_FEE', '20')),
    'free_delivery_threshold': Decimal(os.environ.get('ORDER_FREE_DELIVERY_THRESHOLD', '500')),
    'packing_fee': Decimal(os.environ.get('ORDER_PACKING_FEE', '5')),
    'gst_rate': Decimal(os.environ.get('ORDER_GST_RATE', '0.05')),
    'platform_fee': Decimal(os.environ.get('ORDER_PLATFORM_FEE', '2')),
    'free_platform_fee_threshold': Decimal(os.environ.get('ORDER_FREE_PLATFORM_FEE_THRESHOLD', '300')),
}

ORDER_SUBTOTAL_TOLERANCE = Decimal('0.01')
ORDER_TOTAL_TOLERANCE = Decimal('0.02')
PAYMENT_AMOUNT_TOLERANCE = Decimal('0.02')

# =============================================================================
# Payment gateway (Cashfree PG API)
# =============================================================================

PAYMENT_GATEWAY_BASE_URL = os.environ.get('PAYMENT_GATEWAY_BASE_URL', 'https://sandbox.cashfree.com/pg')
PAYMENT_GATEWAY_API_VERSION = os.environ.get('PAYMENT_GATEWAY_API_VERSION', '2023-08-01')
PAYMENT_GATEWAY_CLIENT_ID = os.environ.get('PAYMENT_GATEWAY_CLIENT_ID', '')
PAYMENT_GATEWAY_CLIENT_SECRET = os.environ.get('PAYMENT_GATEWAY_CLIENT_SECRET', '')
PAYMENT_GATEWAY_TIMEOUT = float(os.environ.get('PAYMENT_GATEWAY_TIMEOUT', '10'))
PAYMENT_GATEWAY_CURRENCY = 'INR'
PAYMENT_RETURN_URL = os.environ.get('PAYMENT_RETURN_URL', 'http://localhost:8000/payment-success?order_id={order_id}')
PAYMENT_NOTIFY_URL = os.environ.get('PAYMENT_NOTIFY_URL', 'http://localhost:8000/api/payments/webhook/')
PAYMENT_ORDER_REFERENCE_PREFIX = 'order_'
PAYMENT_WEBHOOK_SECRET = os.environ.get('PAYMENT_WEBHOOK_SECRET', '')

# Ordered key paths tried per field; the first path present in the payload wins.
PAYMENT_WEBHOOK_FIELD_PATHS = {
    'order_id': [
        ['data', 'order', 'order_id'],
        ['order', 'order_id'],
        ['order_id'],
    ],
    'status': [
        ['data', 'payment', 'payment_status'],
        ['payment', 'payment_status'],
        ['payment_status'],
        ['data', 'order', 'order_status'],
    ],
    'amount': [
        ['data', 'payment', 'payment_amount'],
        ['payment', 'payment_amount'],
        ['payment_amount'],
        ['data', 'order', 'order_amount'],
    ],
}

# =============================================================================
# Push notifications (FCM legacy HTTP API)
# =============================================================================

PUSH_API_URL = os.environ.get('PUSH_API_URL', 'https://fcm.googleapis.com/fcm/send')
PUSH_SERVER_KEY = os.environ.get('PUSH_SERVER_KEY', '')
PUSH_TIMEOUT = float(os.environ.get('PUSH_TIMEOUT', '5'))

# =============================================================================
# Logging
# =============================================================================

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '{asctime} {levelname} {name} {message}',
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
        'level': os.environ.get('LOG_LEVEL', 'WARNING' if TESTING else 'INFO'),
    },
    'loggers': {
        'django': {
            'handlers': ['console'],
            'level': 'WARNING',
            'propagate': False,
        },
    },
}
