"""
Django settings for the aidflow project.

Scope:
- Facilities, staff roles and beneficiaries
- Attendance ledger and COLA computation
- Aid request approval workflow
- Fund allocation ledger and cash disbursement
- Liquidation of disbursed cash
- Subscription payment reconciliation
"""
import os
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent.parent


DEBUG = os.getenv('DJANGO_DEBUG', 'False').lower() in {'1', 'true', 'yes'}
SECRET_KEY = os.getenv(
    'DJANGO_SECRET_KEY',
    'change-this-secret-key-in-production-7d1c2b9e4a5f4e0c8a31b6f2d9e07c54',
)
ALLOWED_HOSTS = [
    host.strip()
    for host in os.getenv('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1').split(',')
    if host.strip()
]


INSTALLED_APPS = [
    'django.contrib.admin',
    'django.contrib.auth',
    'django.contrib.contenttypes',
    'django.contrib.sessions',
    'django.contrib.messages',
    'django.contrib.staticfiles',
    'apps.core.facilities.apps.FacilitiesConfig',
    'apps.core.users.apps.UsersConfig',
    'apps.core.enrollment.apps.EnrollmentConfig',
    'apps.core.attendance.apps.AttendanceConfig',
    'apps.core.notifications.apps.NotificationsConfig',
    'apps.finance.funds.apps.FundsConfig',
    'apps.finance.aid_requests.apps.AidRequestsConfig',
    'apps.finance.disbursements.apps.DisbursementsConfig',
    'apps.finance.liquidations.apps.LiquidationsConfig',
    'apps.finance.subscriptions.apps.SubscriptionsConfig',
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


ROOT_URLCONF = 'aidflow.urls'

TEMPLATES = [
    {
        'BACKEND': 'django.template.backends.django.DjangoTemplates',
        'DIRS': [BASE_DIR / 'templates'],
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

WSGI_APPLICATION = 'aidflow.wsgi.application'


DATABASES = {
    'default': {
        'ENGINE': os.getenv('DJANGO_DB_ENGINE', 'django.db.backends.sqlite3'),
        'NAME': os.getenv('DJANGO_DB_NAME', str(BASE_DIR / 'db.sqlite3')),
        'USER': os.getenv('DJANGO_DB_USER', ''),
        'PASSWORD': os.getenv('DJANGO_DB_PASSWORD', ''),
        'HOST': os.getenv('DJANGO_DB_HOST', ''),
        'PORT': os.getenv('DJANGO_DB_PORT', ''),
    }
}

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'


AUTH_PASSWORD_VALIDATORS = [
    {
        'NAME': 'django.contrib.auth.password_validation.UserAttributeSimilarityValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.MinimumLengthValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.CommonPasswordValidator',
    },
    {
        'NAME': 'django.contrib.auth.password_validation.NumericPasswordValidator',
    },
]


LANGUAGE_CODE = 'en-us'
TIME_ZONE = os.getenv('DJANGO_TIME_ZONE', 'Asia/Manila')
USE_I18N = True
USE_TZ = True


STATIC_URL = 'static/'
MEDIA_URL = '/media/'
MEDIA_ROOT = BASE_DIR / 'media'
AUTH_USER_MODEL = 'users.User'


CSRF_COOKIE_SECURE = not DEBUG
SESSION_COOKIE_SECURE = not DEBUG
SECURE_SSL_REDIRECT = os.getenv('DJANGO_SECURE_SSL_REDIRECT', 'False').lower() in {'1', 'true', 'yes'}
SECURE_PROXY_SSL_HEADER = ('HTTP_X_FORWARDED_PROTO', 'https')


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
        'level': 'WARNING',
    },
    'loggers': {
        'apps': {
            'handlers': ['console'],
            'level': os.getenv('DJANGO_LOG_LEVEL', 'INFO'),
            'propagate': False,
        },
    },
}


TEST_RUNNER = 'apps.core.test_runner.ProjectAppsDiscoverRunner'
TEST_APP_PREFIXES = ('apps.core.', 'apps.finance.')

COLA_SCHOLAR_BASE_AMOUNT = os.getenv('COLA_SCHOLAR_BASE_AMOUNT', '2000.00')
COLA_NON_SCHOLAR_BASE_AMOUNT = os.getenv('COLA_NON_SCHOLAR_BASE_AMOUNT', '1500.00')
COLA_SUNDAY_ABSENCE_DEDUCTION = os.getenv('COLA_SUNDAY_ABSENCE_DEDUCTION', '300.00')
COLA_WINDOW_MONTHS = int(os.getenv('COLA_WINDOW_MONTHS', '5'))
LIQUIDATION_EPSILON = os.getenv('LIQUIDATION_EPSILON', '0.01')
GENERAL_FUND_TYPE = 'general'
