"""
Order-taking sample application showcasing workunit capabilities.
"""

from .demo import (
    bootstrap_manager,
    cancel_order,
    place_order,
    read_outbox,
    register_customer,
    run_demo,
    stale_update_demo,
)
from .models import Customer, Order, OrderItem

__all__ = [
    "Customer",
    "Order",
    "OrderItem",
    "bootstrap_manager",
    "register_customer",
    "place_order",
    "cancel_order",
    "stale_update_demo",
    "read_outbox",
    "run_demo",
]
