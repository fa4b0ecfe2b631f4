from django.apps import AppConfig
import os


class InventoryConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'inventory'

    def ready(self):
        from inventory.services.event_service import LocalEventBus, get_webhook_subscriber

        webhook = get_webhook_subscriber()
        if webhook is not None:
            LocalEventBus.subscribe(webhook)

        if not os.environ.get('RUN_MAIN'):
            return

        from inventory.services.sweeper_service import start_sweeper_on_ready
        start_sweeper_on_ready()
