"""
Base settings for the inventory engine.
Shared between local, cloud and test deployments.
"""

from pathlib import Path
import os

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent.parent


# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.getenv('SECRET_KEY', 'django-insecure-inventory-engine-local-only-key')

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = os.getenv('DEBUG', 'True').lower() == 'true'

ALLOWED_HOSTS = os.getenv('ALLOWED_HOSTS', '*').split(',')


# Application definition
INSTALLED_APPS = [
    'django.contrib.contenttypes',
    'inventory',
]

MIDDLEWARE = []


# Internationalization
LANGUAGE_CODE = 'en-us'
TIME_ZONE = os.getenv('TIME_ZONE', 'UTC')
USE_I18N = True
USE_TZ = True


# Default primary key field type
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'


# =============================================================================
# INVENTORY ENGINE
# =============================================================================
INVENTORY_ENGINE = {
    # Default lifetime of a reservation when the caller gives no deadline
    'RESERVATION_TTL_HOURS': int(os.getenv('RESERVATION_TTL_HOURS', '24')),
    # Lines per transaction in bulk delta imports
    'BATCH_CHUNK_SIZE': int(os.getenv('BATCH_CHUNK_SIZE', '50')),
    # Expiry sweeper
    'EXPIRY_SWEEP_INTERVAL_MINUTES': int(os.getenv('EXPIRY_SWEEP_INTERVAL_MINUTES', '15')),
    'EXPIRY_SWEEP_BATCH_SIZE': int(os.getenv('EXPIRY_SWEEP_BATCH_SIZE', '50')),
    'HISTORY_PAGE_SIZE': 50,
    'AUDIT_ENABLED': os.getenv('AUDIT_ENABLED', 'True').lower() == 'true',
}


LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'formatters': {
        'verbose': {
            'format': '[{asctime}] {levelname} {name}: {message}',
            'style': '{',
        },
    },
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'verbose',
        },
    },
    'loggers': {
        'inventory': {
            'handlers': ['console'],
            'level': os.getenv('INVENTORY_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
        'django': {
            'handlers': ['console'],
            'level': 'INFO',
        },
    },
}
