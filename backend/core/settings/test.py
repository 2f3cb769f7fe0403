"""
Settings used by the test suite.
"""
from .base import *  # noqa: F401,F403

DEBUG = False

SECRET_KEY = "test-secret-key"

DATABASES = {
    'default': {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
    }
}

PASSWORD_HASHERS = [
    'django.contrib.auth.hashers.MD5PasswordHasher',
]

STORAGES = {
    "default": {
        "BACKEND": "django.core.files.storage.InMemoryStorage",
    },
    "staticfiles": {
        "BACKEND": "django.contrib.staticfiles.storage.StaticFilesStorage",
    },
}

ORDER_POLICY_PROVIDER = 'apps.orders.services.policy.RolePolicyProvider'

ORDER_WORKFLOW = {
    'CAS_MAX_RETRIES': 3,
    'ADMIN_ALLOWLIST': [],
    'REJECTION_REASON_MIN_LENGTH': 10,
}

REST_FRAMEWORK = {
    **REST_FRAMEWORK,  # noqa: F405
    'DEFAULT_THROTTLE_CLASSES': [],
}
