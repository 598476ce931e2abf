import threading

import pytest

from workunit.core import Entity, IntegerField, StringField
from workunit.errors import IdentityConflict, RegistrationError
from workunit.persistence import EntityRegistry


class Account(Entity):
    owner = StringField()
    balance = IntegerField(default=0)


def test_get_or_track_returns_identical_instance():
    registry = EntityRegistry()
    account = Account(owner="ana", id=1, version=1)
    registry.track(account)

    assert registry.get_or_track(Account, 1) is account
    assert registry.get_or_track(Account, 1) is registry.get_or_track(Account, 1)
    assert registry.get_or_track(Account, 2) is None


def test_tracking_same_instance_twice_is_allowed():
    registry = EntityRegistry()
    account = Account(owner="ana", id=1, version=1)
    registry.track(account)
    registry.track(account)
    assert len(registry) == 1


def test_distinct_instance_with_same_key_conflicts():
    registry = EntityRegistry()
    registry.track(Account(owner="ana", id=1, version=1))

    with pytest.raises(IdentityConflict) as excinfo:
        registry.track(Account(owner="impostor", id=1, version=1))
    assert excinfo.value.entity_type == "Account"
    assert excinfo.value.entity_id == 1


def test_tracking_without_id_is_rejected():
    with pytest.raises(RegistrationError):
        EntityRegistry().track(Account(owner="ana"))


def test_snapshot_is_kept_per_instance():
    registry = EntityRegistry()
    account = Account(owner="ana", balance=5, id=1, version=1)
    registry.track(account, committed_state=account.field_values())
    account.balance = 50

    assert registry.snapshot(account) == {"owner": "ana", "balance": 5}
    registry.refresh(account)
    assert registry.snapshot(account) == {"owner": "ana", "balance": 50}
    assert registry.snapshot(Account(owner="other", id=1, version=1)) is None


def test_evict_removes_instance_and_snapshot():
    registry = EntityRegistry()
    account = Account(owner="ana", id=4, version=1)
    registry.track(account, committed_state=account.field_values())
    registry.evict(Account, 4)

    assert account not in registry
    assert registry.get_or_track(Account, 4) is None
    assert registry.snapshot(account) is None


def test_registry_thread_safety():
    registry = EntityRegistry()
    errors: list[Exception] = []
    barrier = threading.Barrier(5)

    def worker(offset: int) -> None:
        try:
            barrier.wait()
            for idx in range(200):
                account = Account(owner="t", id=offset * 1000 + idx, version=1)
                registry.track(account, committed_state=account.field_values())
                registry.get_or_track(Account, account.id)
                registry.evict(Account, account.id)
        except Exception as exc:  # pragma: no cover - failure path
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert len(registry) == 0
