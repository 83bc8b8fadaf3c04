from django.apps import AppConfig


class LogisticsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'logistics'
    verbose_name = 'Orders'

    def ready(self):
        # Register the real-time notifier on order events
        import logistics.notifier  # noqa: F401
