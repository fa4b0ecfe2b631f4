"""
Settings for the pytest suite.
File-backed SQLite, no file logging, sweeper never autostarts.
"""

from .base import *

DEPLOYMENT_MODE = 'test'

DEBUG = False

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': BASE_DIR / 'test_inventory.sqlite3',
        # File-backed so threaded tests share one database
        'TEST': {'NAME': BASE_DIR / 'test_inventory.sqlite3'},
        'OPTIONS': {'timeout': 30},
    }
}

PASSWORD_HASHERS = ['django.contrib.auth.hashers.MD5PasswordHasher']

INVENTORY_SWEEPER_AUTOSTART = False
INVENTORY_AUDIT_SINK = 'inventory.services.audit_service.DatabaseAuditSink'
INVENTORY_EVENT_WEBHOOK_URL = ''

LOGGING = {
    'version': 1,
    'disable_existing_loggers': False,
    'handlers': {
        'console': {
            'class': 'logging.StreamHandler',
        },
    },
    'loggers': {
        'inventory': {
            'handlers': ['console'],
            'level': 'WARNING',
        },
    },
}
