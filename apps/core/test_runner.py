from django.apps import apps
from django.conf import settings
from django.test.runner import DiscoverRunner


class ProjectAppsDiscoverRunner(DiscoverRunner):
    """Discover tests only in the project's own apps when no labels are given."""

    def build_suite(self, test_labels=None, **kwargs):
        if not test_labels:
            prefixes = tuple(getattr(settings, 'TEST_APP_PREFIXES', ('apps.',)))
            test_labels = [
                app_config.name
                for app_config in apps.get_app_configs()
                if app_config.name.startswith(prefixes)
            ]
        return super().build_suite(test_labels=test_labels, **kwargs)
