import time

import pytest

from workunit.adapters import AdapterExecutionError, ConnectionConfig, InMemoryAdapter, InMemoryDatabase
from workunit.core import Entity, IntegerField, StringField
from workunit.errors import ConflictError, IdentityConflict, PersistenceError, RegistrationError, ScopeError
from workunit.events import EventKind, InMemoryEventSink
from workunit.persistence import ScopeState, TransactionCoordinator


class Customer(Entity):
    name = StringField(nullable=False)
    tier = StringField(default="basic")


class Order(Entity):
    customer_id = IntegerField()
    total = IntegerField(default=0)


def make_adapter(database: InMemoryDatabase | None = None) -> InMemoryAdapter:
    adapter = InMemoryAdapter(database)
    adapter.connect(ConnectionConfig(url="memory://"))
    return adapter


def seed(database: InMemoryDatabase, *entities: Entity) -> None:
    adapter = make_adapter(database)
    with TransactionCoordinator(adapter) as coordinator:
        for entity in entities:
            coordinator.register_new(entity)


@pytest.fixture
def database():
    return InMemoryDatabase()


@pytest.fixture
def sink():
    return InMemoryEventSink()


def test_commit_assigns_id_and_version(database):
    coordinator = TransactionCoordinator(make_adapter(database))
    coordinator.begin()
    customer = Customer(name="Ada")
    coordinator.register_new(customer)
    coordinator.commit()

    assert customer.id == 1
    assert customer.version == 1
    assert coordinator.registry.get_or_track(Customer, customer.id) is customer
    assert coordinator.tracker.is_empty
    assert coordinator.state is ScopeState.COMMITTED
    assert database.rows("customer") == [{"id": 1, "version": 1, "name": "Ada", "tier": "basic"}]


def test_load_returns_identical_instance(database):
    seed(database, Customer(name="Ada"))
    coordinator = TransactionCoordinator(make_adapter(database))
    coordinator.begin()

    first = coordinator.load(Customer, 1)
    second = coordinator.repository(Customer).get(1)
    assert first is second
    assert coordinator.adapter.call_counts()["load"] == 1
    assert coordinator.load(Customer, 42) is None


def test_update_increments_version_and_writes_changed_fields(database, sink):
    seed(database, Customer(name="Ada"))
    coordinator = TransactionCoordinator(make_adapter(database), event_sink=sink)
    coordinator.begin()
    customer = coordinator.load(Customer, 1)
    customer.tier = "gold"
    coordinator.register_dirty(customer)
    coordinator.commit()

    assert customer.version == 2
    assert database.rows("customer")[0]["tier"] == "gold"
    assert database.rows("customer")[0]["version"] == 2
    [event] = sink.events
    assert event.kind is EventKind.UPDATED
    assert event.payload == {"tier": {"old": "basic", "new": "gold"}}


def test_noop_diff_issues_no_update(database, sink):
    seed(database, Customer(name="Ada"))
    adapter = make_adapter(database)
    coordinator = TransactionCoordinator(adapter, event_sink=sink)
    coordinator.begin()
    customer = coordinator.load(Customer, 1)
    customer.tier = "gold"
    customer.tier = "basic"
    coordinator.register_dirty(customer)
    coordinator.commit()

    assert adapter.call_counts()["update"] == 0
    assert customer.version == 1
    assert sink.events == []


def test_apply_order_is_insert_update_delete(database):
    seed(database, Customer(name="Ada"), Customer(name="Bob"))
    adapter = make_adapter(database)
    coordinator = TransactionCoordinator(adapter)
    coordinator.begin()
    doomed = coordinator.load(Customer, 2)
    coordinator.register_removed(doomed)
    ada = coordinator.load(Customer, 1)
    ada.name = "Ada L."
    coordinator.register_dirty(ada)
    coordinator.register_new(Order(customer_id=1, total=30))
    coordinator.commit()

    writes = [call[0] for call in adapter.calls if call[0] in {"insert", "update", "delete"}]
    assert writes == ["insert", "update", "delete"]
    assert coordinator.registry.get_or_track(Customer, 2) is None


def test_events_follow_registration_order(database, sink):
    seed(database, Customer(name="Y"), Customer(name="Z"))
    coordinator = TransactionCoordinator(make_adapter(database), event_sink=sink)
    coordinator.begin()
    x = Customer(name="X")
    coordinator.register_new(x)
    y = coordinator.load(Customer, 1)
    y.tier = "gold"
    coordinator.register_dirty(y)
    z = coordinator.load(Customer, 2)
    coordinator.register_removed(z)
    coordinator.commit()

    events = sink.events
    assert [event.kind for event in events] == [EventKind.CREATED, EventKind.UPDATED, EventKind.DELETED]
    assert [event.sequence_number for event in events] == [1, 2, 3]
    assert [event.entity_id for event in events] == [x.id, 1, 2]
    assert events[0].payload == {"name": "X", "tier": "basic"}
    assert events[2].payload == {"name": "Z", "tier": "basic"}
    assert sink.batch_count == 1


def test_stale_update_raises_conflict_and_changes_nothing(database):
    seed(database, Customer(name="Shared"))
    uow_a = TransactionCoordinator(make_adapter(database))
    uow_b = TransactionCoordinator(make_adapter(database))
    uow_a.begin()
    uow_b.begin()
    copy_a = uow_a.load(Customer, 1)
    copy_b = uow_b.load(Customer, 1)

    copy_a.tier = "gold"
    uow_a.register_dirty(copy_a)
    uow_a.commit()
    assert copy_a.version == 2

    copy_b.name = "Stale"
    uow_b.register_dirty(copy_b)
    with pytest.raises(ConflictError) as excinfo:
        uow_b.commit()

    assert excinfo.value.expected == 1
    assert excinfo.value.actual == 2
    assert copy_b.version == 1
    assert uow_b.state is ScopeState.ROLLED_BACK
    assert database.rows("customer") == [{"id": 1, "version": 2, "name": "Shared", "tier": "gold"}]


def test_adapter_update_rejection_surfaces_as_conflict(database, monkeypatch):
    seed(database, Customer(name="Ada"))
    adapter = make_adapter(database)
    coordinator = TransactionCoordinator(adapter)
    coordinator.begin()
    customer = coordinator.load(Customer, 1)
    customer.name = "Changed"
    coordinator.register_dirty(customer)
    monkeypatch.setattr(adapter, "update", lambda entity, expected_version, fields=None: False)

    with pytest.raises(ConflictError):
        coordinator.commit()


def test_failure_midway_rolls_back_everything(database):
    seed(database, Customer(name="Ada"))
    adapter = make_adapter(database)
    coordinator = TransactionCoordinator(adapter)
    coordinator.begin()
    fresh = Customer(name="Fresh")
    coordinator.register_new(fresh)
    ada = coordinator.load(Customer, 1)
    coordinator.register_removed(ada)

    def broken_delete(entity_type, entity_id):
        raise AdapterExecutionError("disk full")

    adapter.delete = broken_delete
    with pytest.raises(PersistenceError, match="disk full"):
        coordinator.commit()

    assert fresh.id is None
    assert fresh.version is None
    assert database.rows("customer") == [{"id": 1, "version": 1, "name": "Ada", "tier": "basic"}]
    assert ("rollback",) in adapter.calls
    assert coordinator.tracker.is_empty
    assert len(coordinator.registry) == 0


def test_unexpected_errors_are_wrapped(database):
    adapter = make_adapter(database)
    coordinator = TransactionCoordinator(adapter)
    coordinator.begin()
    coordinator.register_new(Customer(name="Ada"))

    def boom(entity):
        raise KeyError("column")

    adapter.insert = boom
    with pytest.raises(PersistenceError) as excinfo:
        coordinator.commit()
    assert isinstance(excinfo.value.__cause__, KeyError)


def test_sink_failure_rolls_back_data(database):
    class RejectingSink:
        def append(self, events):
            raise RuntimeError("broker offline")

    coordinator = TransactionCoordinator(make_adapter(database), event_sink=RejectingSink())
    coordinator.begin()
    customer = Customer(name="Ada")
    coordinator.register_new(customer)

    with pytest.raises(PersistenceError):
        coordinator.commit()
    assert database.rows("customer") == []
    assert customer.id is None


def test_registration_errors_are_raised_immediately(database):
    seed(database, Customer(name="Ada"))
    coordinator = TransactionCoordinator(make_adapter(database))
    coordinator.begin()
    with pytest.raises(RegistrationError):
        coordinator.register_dirty(Customer(name="no id"))

    loaded = coordinator.load(Customer, 1)
    with pytest.raises(IdentityConflict):
        coordinator.register_dirty(Customer(name="copy", id=1, version=1))

    coordinator.register_removed(loaded)
    with pytest.raises(RegistrationError):
        coordinator.register_dirty(loaded)
    assert coordinator.load(Customer, 1) is None


def test_rollback_is_idempotent_and_never_writes(database):
    seed(database, Customer(name="Ada"))
    adapter = make_adapter(database)
    coordinator = TransactionCoordinator(adapter)
    coordinator.begin()
    coordinator.register_new(Customer(name="Pending"))
    coordinator.rollback()
    calls_after_first = list(adapter.calls)
    coordinator.rollback()

    assert adapter.calls == calls_after_first
    assert len(database.rows("customer")) == 1
    assert coordinator.tracker.is_empty


def test_scope_misuse_raises_scope_error(database):
    coordinator = TransactionCoordinator(make_adapter(database))
    with pytest.raises(ScopeError):
        coordinator.commit()
    with pytest.raises(ScopeError):
        coordinator.rollback()
    with pytest.raises(ScopeError):
        coordinator.register_new(Customer(name="Ada"))

    coordinator.begin()
    with pytest.raises(ScopeError):
        coordinator.begin()
    coordinator.commit()
    with pytest.raises(ScopeError):
        coordinator.commit()
    with pytest.raises(ScopeError):
        coordinator.rollback()


def test_begin_after_commit_starts_fresh_scope(database):
    coordinator = TransactionCoordinator(make_adapter(database))
    coordinator.begin()
    customer = Customer(name="Ada")
    coordinator.register_new(customer)
    coordinator.commit()

    coordinator.begin()
    assert len(coordinator.registry) == 0
    reloaded = coordinator.load(Customer, customer.id)
    assert reloaded is not customer
    assert reloaded.name == "Ada"
    coordinator.rollback()


def test_detect_changes_collects_unregistered_mutations(database):
    seed(database, Customer(name="Ada"), Customer(name="Bob"))
    adapter = make_adapter(database)
    coordinator = TransactionCoordinator(adapter, detect_changes=True)
    coordinator.begin()
    ada = coordinator.load(Customer, 1)
    coordinator.load(Customer, 2)
    ada.tier = "gold"
    coordinator.commit()

    assert adapter.call_counts()["update"] == 1
    assert database.rows("customer")[0]["tier"] == "gold"


def test_context_manager_commits_or_rolls_back(database):
    adapter = make_adapter(database)
    with TransactionCoordinator(adapter) as coordinator:
        coordinator.register_new(Customer(name="Kept"))

    with pytest.raises(ValueError):
        with TransactionCoordinator(adapter) as coordinator:
            coordinator.register_new(Customer(name="Dropped"))
            raise ValueError("abort")

    assert [row["name"] for row in database.rows("customer")] == ["Kept"]


def test_commit_logs_summary(database, caplog):
    coordinator = TransactionCoordinator(make_adapter(database))
    caplog.set_level("INFO", logger=coordinator.logger.name)
    coordinator.begin()
    coordinator.register_new(Customer(name="Ada"))
    coordinator.commit()

    assert any("Committed 1 new, 0 dirty, 0 removed" in record.message for record in caplog.records)


def test_removing_new_entity_with_assigned_id_writes_nothing(database, sink):
    seed(database, Customer(name="Existing"))
    coordinator = TransactionCoordinator(make_adapter(database), event_sink=sink)
    coordinator.begin()
    draft = Customer(name="Draft")
    coordinator.register_new(draft)
    draft.id = 1
    coordinator.register_removed(draft)
    coordinator.commit()

    assert coordinator.adapter.call_counts()["delete"] == 0
    assert sink.events == []
    assert [row["name"] for row in database.rows("customer")] == ["Existing"]
    assert coordinator.registry.get_or_track(Customer, 1) is None


def test_bulk_commit_of_new_entities_stays_fast(database):
    coordinator = TransactionCoordinator(make_adapter(database))
    coordinator.begin()
    customers = [Customer(name=f"c{i}") for i in range(5000)]

    started = time.monotonic()
    for customer in customers:
        coordinator.register_new(customer)
    coordinator.commit()
    elapsed = time.monotonic() - started

    assert len(database.rows("customer")) == 5000
    assert customers[-1].id == 5000
    assert elapsed < 5.0


def test_load_after_commit_raises_but_registry_keeps_entities(database):
    coordinator = TransactionCoordinator(make_adapter(database))
    coordinator.begin()
    customer = Customer(name="Ada")
    coordinator.register_new(customer)
    coordinator.commit()

    with pytest.raises(ScopeError):
        coordinator.load(Customer, customer.id)
    assert coordinator.registry.get_or_track(Customer, customer.id) is customer
