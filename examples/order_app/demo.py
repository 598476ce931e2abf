"""
Utility helpers for running the workunit order example end-to-end.
"""

from __future__ import annotations

import tempfile
import uuid
from pathlib import Path
from typing import Any, Dict, List, Sequence, Tuple

from workunit.adapters import ConnectionConfig, SQLiteAdapter
from workunit.errors import ConflictError
from workunit.events import SQLiteOutboxSink
from workunit.persistence import UnitOfWorkManager
from workunit.utils import get_logger

from .models import Customer, Order, OrderItem

LineItem = Tuple[str, int, float]

logger = get_logger("examples.order_app")


def bootstrap_manager(url: str) -> UnitOfWorkManager:
    """
    Create the order schema at ``url`` and return a manager whose scopes write
    their domain events into the same database's outbox table.
    """

    config = ConnectionConfig.from_url(url)
    manager = UnitOfWorkManager(
        SQLiteAdapter,
        config,
        event_sink_factory=lambda adapter: SQLiteOutboxSink(adapter),
    )
    adapter = manager.open_adapter()
    try:
        for entity in (Customer, Order, OrderItem):
            adapter.create_table(entity)
        SQLiteOutboxSink(adapter).ensure_table()
    finally:
        adapter.close()
    return manager


def register_customer(manager: UnitOfWorkManager, name: str, email: str) -> int:
    customer = Customer(name=name, email=email)
    with manager.scope() as uow:
        uow.repository(Customer).add(customer)
    return customer.id


def place_order(manager: UnitOfWorkManager, customer_id: int, items: Sequence[LineItem]) -> int:
    """
    Write an order and its line items atomically and return the new order id.

    The id does not exist until the scope commits, which is why line items are
    linked through the order number. ``order.id`` is filled in on exit from
    ``manager.scope()``.
    """

    if not items:
        raise ValueError("An order needs at least one line item.")
    number = uuid.uuid4().hex[:12].upper()
    order = Order(
        number=number,
        customer_id=customer_id,
        total=round(sum(quantity * price for _, quantity, price in items), 2),
    )
    with manager.scope() as uow:
        if uow.load(Customer, customer_id) is None:
            raise LookupError(f"Unknown customer {customer_id}")
        uow.repository(Order).add(order)
        lines = uow.repository(OrderItem)
        for sku, quantity, price in items:
            lines.add(OrderItem(order_number=number, sku=sku, quantity=quantity, unit_price=price))
    logger.info("Placed order %s for customer %s", number, customer_id)
    return order.id


def cancel_order(manager: UnitOfWorkManager, order_id: int) -> Order:
    with manager.scope() as uow:
        orders = uow.repository(Order)
        order = orders.get(order_id)
        if order is None:
            raise LookupError(f"Unknown order {order_id}")
        order.status = "cancelled"
        orders.update(order)
    return order


def stale_update_demo(manager: UnitOfWorkManager, order_id: int) -> Dict[str, Any]:
    """
    Two overlapping scopes edit the same order; the later commit loses.
    """

    try:
        with manager.scope() as slow:
            slow_copy = slow.load(Order, order_id)
            with manager.scope() as fast:
                fast_copy = fast.load(Order, order_id)
                fast_copy.total = fast_copy.total + 5
                fast.register_dirty(fast_copy)
            slow_copy.total = 0.0
            slow.register_dirty(slow_copy)
    except ConflictError as exc:
        return {"conflict": True, "expected": exc.expected, "actual": exc.actual}
    return {"conflict": False}


def read_outbox(manager: UnitOfWorkManager) -> List[Dict[str, Any]]:
    adapter = manager.open_adapter()
    try:
        return SQLiteOutboxSink(adapter).read_all()
    finally:
        adapter.close()


def run_demo() -> Dict[str, Any]:
    """
    Run the example against a throwaway database file and summarize what happened.
    """

    with tempfile.TemporaryDirectory() as workdir:
        manager = bootstrap_manager(f"sqlite:///{Path(workdir) / 'orders.db'}")
        customer_id = register_customer(manager, "Ada Lovelace", "ada@example.com")
        order_id = place_order(manager, customer_id, [("BOOK-1", 2, 12.5), ("PEN-7", 3, 1.25)])
        conflict = stale_update_demo(manager, order_id)
        cancelled = cancel_order(manager, order_id)
        events = read_outbox(manager)
    return {
        "customer_id": customer_id,
        "order_id": order_id,
        "status": cancelled.status,
        "conflict": conflict,
        "events": [(event["entity_type"], event["kind"]) for event in events],
    }
