"""
Entities used by the order example application.
"""

from __future__ import annotations

from workunit.core import Entity, FloatField, IntegerField, StringField

ORDER_STATUSES = ("placed", "cancelled", "shipped")


class Customer(Entity):
    name = StringField(nullable=False, max_length=120)
    email = StringField(nullable=False, unique=True)


class Order(Entity):
    number = StringField(nullable=False, unique=True, max_length=32)
    customer_id = IntegerField(nullable=False)
    status = StringField(nullable=False, default="placed", choices=ORDER_STATUSES)
    total = FloatField(default=0.0)

    class Meta:
        table = "orders"


class OrderItem(Entity):
    """
    One line of an order.

    Ids are only assigned when the scope commits, so an item created in the
    same scope as its order cannot hold the order's id. Items reference the
    caller-generated order ``number`` instead, which keeps the order and its
    lines in a single atomic commit. Code that needs the numeric id reads
    ``order.id`` once the scope has committed (see ``place_order``).
    """

    order_number = StringField(nullable=False, max_length=32)
    sku = StringField(nullable=False)
    quantity = IntegerField(nullable=False)
    unit_price = FloatField(nullable=False)
