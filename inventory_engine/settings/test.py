"""
Test settings. File-backed SQLite so threaded tests share one database,
deterministic engine knobs.
"""

from .base import *

DEPLOYMENT_MODE = 'test'

DEBUG = False

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': BASE_DIR / 'test_db.sqlite3',
        'OPTIONS': {
            'timeout': 20,
            'transaction_mode': 'IMMEDIATE',
        },
        'TEST': {
            'NAME': BASE_DIR / 'test_db.sqlite3',
        },
    }
}

INVENTORY_ENGINE = {
    **INVENTORY_ENGINE,
    'RESERVATION_TTL_HOURS': 24,
    'BATCH_CHUNK_SIZE': 50,
    'EXPIRY_SWEEP_BATCH_SIZE': 50,
    'AUDIT_ENABLED': True,
}

LOGGING['loggers']['inventory']['level'] = 'DEBUG'
# let caplog see engine records
LOGGING['loggers']['inventory']['propagate'] = True
