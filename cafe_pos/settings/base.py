"""
Base settings for cafe_pos project.
Shared between local (POS terminal) and cloud deployments.
"""

from pathlib import Path
import os

from django.urls import reverse_lazy

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent.parent


# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.getenv('SECRET_KEY', 'django-insecure-cafe-pos-inventory-engine-dev-key')

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = os.getenv('DEBUG', 'True').lower() == 'true'

ALLOWED_HOSTS = os.getenv('ALLOWED_HOSTS', '*').split(',')


# Application definition
INSTALLED_APPS = [
    "unfold",
    "unfold.contrib.filters",
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'inventory',
    'corsheaders',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.contrib.sessions.middleware.SessionMiddleware',
    'corsheaders.middleware.CorsMiddleware',
    'django.middleware.common.CommonMiddleware',
    'django.middleware.csrf.CsrfViewMiddleware',
    'django.contrib.auth.middleware.AuthenticationMiddleware',
    'django.contrib.messages.middleware.MessageMiddleware',
    'django.middleware.clickjacking.XFrameOptionsMiddleware',
]

ROOT_URLCONF = 'cafe_pos.urls'

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

WSGI_APPLICATION = 'cafe_pos.wsgi.application'


# Password validation
AUTH_PASSWORD_VALIDATORS = [
    {'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator'},
    {'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator'},
    {'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator'},
    {'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator'},
]


# Internationalization
LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'Asia/Manila'
USE_I18N = True
USE_TZ = True


# Static files
STATIC_URL = 'static/'
STATIC_ROOT = BASE_DIR / 'staticfiles'


# CORS
CORS_ALLOW_ALL_ORIGINS = True


# Default primary key field type
DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'


# =============================================================================
# INVENTORY ENGINE
# =============================================================================
# Every expiration date is anchored to midnight at this fixed UTC offset.
# Changing it shifts every expiry and days-left calculation.
INVENTORY_BUSINESS_UTC_OFFSET_HOURS = int(os.getenv('INVENTORY_BUSINESS_UTC_OFFSET_HOURS', '8'))

# Expiry sweeper (reservation TTL + batch expiration alerts)
INVENTORY_SWEEPER_INTERVAL_SECONDS = int(os.getenv('INVENTORY_SWEEPER_INTERVAL_SECONDS', '60'))
INVENTORY_SWEEPER_AUTOSTART = os.getenv('INVENTORY_SWEEPER_AUTOSTART', 'False').lower() == 'true'

# Audit + event collaborators
INVENTORY_AUDIT_SINK = os.getenv('INVENTORY_AUDIT_SINK', 'inventory.services.audit_service.DatabaseAuditSink')
INVENTORY_EVENT_WEBHOOK_URL = os.getenv('INVENTORY_EVENT_WEBHOOK_URL', '')
INVENTORY_EVENT_WEBHOOK_TIMEOUT = int(os.getenv('INVENTORY_EVENT_WEBHOOK_TIMEOUT', '5'))


# Unfold Admin Configuration
UNFOLD = {
    "SITE_TITLE": "Cafe POS Inventory",
    "SITE_HEADER": "Cafe POS",
    "SITE_URL": "/",
    "SITE_SYMBOL": "local_cafe",

    "SIDEBAR": {
        "show_search": True,
        "show_all_applications": True,
        "navigation": [
            {
                "title": "Inventory",
                "separator": True,
                "items": [
                    {
                        "title": "Items",
                        "icon": "inventory_2",
                        "link": reverse_lazy("admin:inventory_inventoryitem_changelist"),
                    },
                    {
                        "title": "Batches",
                        "icon": "event",
                        "link": reverse_lazy("admin:inventory_batch_changelist"),
                    },
                    {
                        "title": "Reservations",
                        "icon": "schedule",
                        "link": reverse_lazy("admin:inventory_reservation_changelist"),
                    },
                    {
                        "title": "Daily Counts",
                        "icon": "fact_check",
                        "link": reverse_lazy("admin:inventory_dailycountentry_changelist"),
                    },
                    {
                        "title": "Audit Log",
                        "icon": "receipt_long",
                        "link": reverse_lazy("admin:inventory_auditentry_changelist"),
                    },
                ],
            },
        ],
    },
}
