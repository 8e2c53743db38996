from django.apps import AppConfig


class AidRequestsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.finance.aid_requests'
    label = 'aid_requests'

    def ready(self):
        from . import signals  # noqa: F401
