import pytest

from examples.order_app import (
    bootstrap_manager,
    cancel_order,
    place_order,
    read_outbox,
    register_customer,
    run_demo,
    stale_update_demo,
)
from examples.order_app.models import Order


@pytest.fixture
def manager(tmp_path):
    return bootstrap_manager(f"sqlite:///{tmp_path / 'order_example.db'}")


def test_place_order_writes_order_and_items_with_events(manager):
    customer_id = register_customer(manager, "Grace Hopper", "grace@example.com")
    order_id = place_order(manager, customer_id, [("CPU-1", 1, 99.0), ("RAM-2", 2, 20.0)])
    assert order_id is not None

    events = read_outbox(manager)
    kinds = [(event["entity_type"], event["kind"]) for event in events]
    assert kinds == [
        ("Customer", "created"),
        ("Order", "created"),
        ("OrderItem", "created"),
        ("OrderItem", "created"),
    ]
    assert events[1]["payload"]["total"] == 139.0


def test_unknown_customer_leaves_no_trace(manager):
    with pytest.raises(LookupError):
        place_order(manager, 404, [("CPU-1", 1, 99.0)])
    assert read_outbox(manager) == []


def test_cancel_and_stale_update(manager):
    customer_id = register_customer(manager, "Linus", "linus@example.com")
    order_id = place_order(manager, customer_id, [("SSD-1", 1, 50.0)])

    outcome = stale_update_demo(manager, order_id)
    assert outcome == {"conflict": True, "expected": 1, "actual": 2}

    cancelled = cancel_order(manager, order_id)
    assert cancelled.status == "cancelled"
    assert cancelled.version == 3

    updates = [event for event in read_outbox(manager) if event["kind"] == "updated"]
    assert [event["payload"] for event in updates] == [
        {"total": {"old": 50.0, "new": 55.0}},
        {"status": {"old": "placed", "new": "cancelled"}},
    ]


def test_run_demo_summarizes_flow():
    summary = run_demo()
    assert summary["status"] == "cancelled"
    assert summary["conflict"]["conflict"] is True
    assert ("Order", "deleted") not in summary["events"]
    assert summary["events"][0] == ("Customer", "created")


def test_items_link_to_order_number_and_id_is_known_after_commit(manager):
    customer_id = register_customer(manager, "Edsger", "edsger@example.com")
    order_id = place_order(manager, customer_id, [("KBD-1", 1, 30.0)])

    with manager.scope() as uow:
        order = uow.load(Order, order_id)
        assert order.customer_id == customer_id

    items = [event for event in read_outbox(manager) if event["entity_type"] == "OrderItem"]
    assert [item["payload"]["order_number"] for item in items] == [order.number]
