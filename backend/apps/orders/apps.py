"""
Orders app configuration.
Handles order lifecycle, QC rounds and escrow bookkeeping.
"""
from django.apps import AppConfig


class OrdersConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'apps.orders'
    verbose_name = 'Orders'

    def ready(self):
        """Connect notification receivers."""
        from apps.orders.services import notifications  # noqa: F401
