"""
Cloud settings for the shared deployment.
Database connection comes from the environment; PostgreSQL is expected so
that row locks taken by the engine are real.

Usage:
    DJANGO_SETTINGS_MODULE=inventory_engine.settings.cloud python manage.py run_reservation_sweeper

Environment variables:
    DB_ENGINE, DB_NAME, DB_USER, DB_PASSWORD, DB_HOST, DB_PORT
"""

from .base import *

# =============================================================================
# DEPLOYMENT MODE
# =============================================================================
DEPLOYMENT_MODE = 'cloud'


# =============================================================================
# SECURITY - Production settings
# =============================================================================
DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'


# =============================================================================
# DATABASE
# =============================================================================
DATABASES = {
    'default': {
        'ENGINE': os.getenv('DB_ENGINE', 'django.db.backends.postgresql'),
        'NAME': os.getenv('DB_NAME', 'inventory'),
        'USER': os.getenv('DB_USER', 'inventory'),
        'PASSWORD': os.getenv('DB_PASSWORD', ''),
        'HOST': os.getenv('DB_HOST', '127.0.0.1'),
        'PORT': os.getenv('DB_PORT', '5432'),
        'ATOMIC_REQUESTS': False,
        'CONN_MAX_AGE': int(os.getenv('DB_CONN_MAX_AGE', '60')),
    }
}


# =============================================================================
# LOGGING
# =============================================================================
LOGGING['loggers']['inventory']['level'] = os.getenv('INVENTORY_LOG_LEVEL', 'INFO')
