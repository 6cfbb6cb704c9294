"""
Django settings for srpwire project.

For more information, see:
https://docs.djangoproject.com/en/5.1/topics/settings/
"""

from pathlib import Path
from decouple import config, Csv

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent

# SECURITY
SECRET_KEY = config('SECRET_KEY', default='django-insecure-change-this-in-production')
DEBUG = config('DEBUG', default=True, cast=bool)
ALLOWED_HOSTS = config('ALLOWED_HOSTS', default='localhost,127.0.0.1', cast=lambda v: [s.strip() for s in v.split(',')])

# Application definition
INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'django_q',
    'core',
    'core.srp',
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

ROOT_URLCONF = 'srpwire.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [BASE_DIR / 'templates'],
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

WSGI_APPLICATION = 'srpwire.wsgi.application'

# Database
# https://docs.djangoproject.com/en/5.1/ref/settings/#databases
DATABASES = {
    'default': {
        'ENGINE': config('DB_ENGINE', default='django.db.backends.sqlite3'),
        'NAME': config('DB_NAME', default=BASE_DIR / 'db.sqlite3'),
        'USER': config('DB_USER', default=''),
        'PASSWORD': config('DB_PASSWORD', default=''),
        'HOST': config('DB_HOST', default=''),
        'PORT': config('DB_PORT', default=''),
    }
}
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# Health gate status and access tokens live here; use a shared backend
# (database or redis) when the pipeline runs from more than one process.
CACHES = {
    'default': {
        'BACKEND': config('CACHE_BACKEND', default='django.core.cache.backends.locmem.LocMemCache'),
        'LOCATION': config('CACHE_LOCATION', default='srpwire'),
    }
}

# Internationalization
LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = True
USE_TZ = True

# Static files
STATIC_URL = 'static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'

# EVE SSO Configuration
EVE_CLIENT_ID = config('EVE_CLIENT_ID', default='')
EVE_CLIENT_SECRET = config('EVE_CLIENT_SECRET', default='')
EVE_SSO_TOKEN_URL = config('EVE_SSO_TOKEN_URL', default='https://login.eveonline.com/v2/oauth/token')

# ESI Configuration
ESI_BASE_URL = config('ESI_BASE_URL', default='https://esi.evetech.net/latest')
ESI_STATUS_URL = config('ESI_STATUS_URL', default='https://esi.evetech.net/meta/status')
ESI_DATASOURCE = 'tranquility'
ESI_COMPATIBILITY_DATE = config('ESI_COMPATIBILITY_DATE', default='2025-08-26')
ESI_TIMEOUT = config('ESI_TIMEOUT', default=15, cast=int)
ESI_MAX_RETRIES = config('ESI_MAX_RETRIES', default=2, cast=int)
ESI_USER_AGENT = config('ESI_USER_AGENT', default='srpwire SRP pipeline')

# zKillboard
ZKILLBOARD_BASE_URL = config('ZKILLBOARD_BASE_URL', default='https://zkillboard.com/api')
ZKILLBOARD_TIMEOUT = config('ZKILLBOARD_TIMEOUT', default=10, cast=int)

# SRP pipeline
EVE_MAILER_CHARACTER_ID = config('EVE_MAILER_CHARACTER_ID', default=0, cast=int)
EVE_CORPORATION_ID = config('EVE_CORPORATION_ID', default=0, cast=int)
SRP_WALLET_DIVISIONS = config('SRP_WALLET_DIVISIONS', default='1,2,3,4,5,6,7', cast=Csv(int))
SRP_MAIL_WINDOW_DAYS = config('SRP_MAIL_WINDOW_DAYS', default=30, cast=int)
SRP_MAX_LOSS_AGE_DAYS = config('SRP_MAX_LOSS_AGE_DAYS', default=30, cast=int)
SRP_REQUIRE_VICTIM_MATCH = config('SRP_REQUIRE_VICTIM_MATCH', default=True, cast=bool)
SRP_FLEET_WINDOW_BEFORE_MINUTES = config('SRP_FLEET_WINDOW_BEFORE_MINUTES', default=30, cast=int)
SRP_FLEET_WINDOW_AFTER_MINUTES = config('SRP_FLEET_WINDOW_AFTER_MINUTES', default=60, cast=int)
SRP_NOTIFY_AUTO_DENIALS = config('SRP_NOTIFY_AUTO_DENIALS', default=False, cast=bool)
SRP_MAIL_BATCH_SIZE = config('SRP_MAIL_BATCH_SIZE', default=15, cast=int)
SRP_MAIL_SEND_INTERVAL = config('SRP_MAIL_SEND_INTERVAL', default=15.0, cast=float)
SRP_MAIL_BACKOFF_SCHEDULE = config('SRP_MAIL_BACKOFF_SCHEDULE', default='60,300,900,1800,3600', cast=Csv(int))
SRP_HEALTH_CACHE_SECONDS = config('SRP_HEALTH_CACHE_SECONDS', default=60, cast=int)
SRP_PIPELINE_LEASE_SECONDS = config('SRP_PIPELINE_LEASE_SECONDS', default=600, cast=int)
SRP_SCHEDULE_MINUTES = config('SRP_SCHEDULE_MINUTES', default=5, cast=int)
SRP_REPORT_WEBHOOK_URL = config('SRP_REPORT_WEBHOOK_URL', default='')
SRP_REPORT_TIMEOUT = config('SRP_REPORT_TIMEOUT', default=10, cast=int)
CRON_SECRET = config('CRON_SECRET', default='')

# django-q2 Configuration
Q_CLUSTER = {
    'name': 'srpwire',
    'workers': config('Q_WORKERS', default=1, cast=int),
    'timeout': config('Q_TIMEOUT', default=540, cast=int),
    'retry': config('Q_RETRY', default=600, cast=int),
    'queue_limit': config('Q_QUEUE_LIMIT', default=50, cast=int),
    'bulk': config('Q_BULK', default=1, cast=int),
    'save_limit': config('Q_SAVE_LIMIT', default=250, cast=int),
    'max_attempts': 1,
    'label': 'Django Q2',
    'orm': 'default',
}

# Logging
LOG_DIR = BASE_DIR / 'logs'
LOG_HANDLERS = ['console']
if not DEBUG:
    LOG_DIR.mkdir(exist_ok=True)
    LOG_HANDLERS = ['console', 'file']

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
        'handlers': LOG_HANDLERS,
        'level': 'INFO',
    },
    'loggers': {
        'django': {'handlers': ['console'], 'level': config('DJANGO_LOG_LEVEL', default='INFO'), 'propagate': False},
        'srpwire': {'handlers': LOG_HANDLERS, 'level': 'DEBUG', 'propagate': False},
    },
}

if not DEBUG:
    LOGGING['handlers']['file'] = {
        'class': 'logging.handlers.RotatingFileHandler',
        'filename': LOG_DIR / 'srpwire.log',
        'maxBytes': 10 * 1024 * 1024,  # 10MB
        'backupCount': 5,
        'formatter': 'verbose',
    }

# Security headers (production)
if not DEBUG:
    SECURE_CONTENT_TYPE_NOSNIFF = True
    X_FRAME_OPTIONS = 'DENY'
    SECURE_HSTS_SECONDS = 31536000
    SECURE_HSTS_INCLUDE_SUBDOMAINS = True
    SESSION_COOKIE_SECURE = True
    CSRF_COOKIE_SECURE = True
    SECURE_SSL_REDIRECT = config('HTTPS_ONLY', default=False, cast=bool)

SESSION_COOKIE_HTTPONLY = True
CSRF_COOKIE_HTTPONLY = True
