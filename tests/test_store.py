"""
Tests for the license stores and the storage operation policy.
"""

from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from errors import DuplicateKeyError, StorageUnavailable
from licensing import get_licensing
from models import Activation, License, ValidationLog
from store import LOCK_STRIPES, MemoryLicenseStore, SqlLicenseStore, StoragePolicy
from utils import utcnow


def new_license(key, days=30, **kwargs):
    now = utcnow()
    return License(
        license_key=key,
        customer_name=kwargs.pop("customer_name", "Store Test"),
        creation_date=now,
        expiration_date=now + timedelta(days=days),
        **kwargs,
    )


def transient_error():
    return OperationalError("SELECT 1", {}, Exception("could not connect to server"))


class TestSqlLicenseStore:
    def test_store_mode(self, store):
        assert isinstance(store, SqlLicenseStore)
        assert store.mode == "database"
        assert store.persists_activations

    def test_insert_and_find(self, store):
        store.insert_license(new_license("PCOPT-240101-AAAA-BBBB-CCCC-DDDD"))

        found = store.find_by_key("PCOPT-240101-AAAA-BBBB-CCCC-DDDD")

        assert found is not None
        assert found.customer_name == "Store Test"
        assert found.max_activations == 1
        assert found.is_active is True
        assert store.find_by_key("PCOPT-240101-ZZZZ-ZZZZ-ZZZZ-ZZZZ") is None

    def test_duplicate_key_is_rejected(self, store):
        store.insert_license(new_license("PCOPT-240101-AAAA-BBBB-CCCC-DDDD"))

        with pytest.raises(DuplicateKeyError):
            store.insert_license(new_license("PCOPT-240101-AAAA-BBBB-CCCC-DDDD", customer_name="Other"))

        assert License.query.count() == 1
        assert store.find_by_key("PCOPT-240101-AAAA-BBBB-CCCC-DDDD").customer_name == "Store Test"

    def test_activations_ordered_by_first_activated(self, store, make_license):
        lic = make_license(max_activations=3)
        now = utcnow()

        def work():
            store.add_activation(Activation(license_id=lic.id, hardware_fingerprint="late",
                                            first_activated=now, last_seen=now))
            store.add_activation(Activation(license_id=lic.id, hardware_fingerprint="early",
                                            first_activated=now - timedelta(days=1), last_seen=now))

        store.atomic(lic.id, work)

        assert [a.hardware_fingerprint for a in store.list_activations(lic.id)] == ["early", "late"]

    def test_atomic_rolls_back_on_error(self, store, make_license):
        lic = make_license()
        now = utcnow()

        def work():
            store.add_activation(Activation(license_id=lic.id, hardware_fingerprint="HW-A",
                                            first_activated=now, last_seen=now))
            raise ValueError("boom")

        with pytest.raises(ValueError):
            store.atomic(lic.id, work)

        assert store.list_activations(lic.id) == []

    def test_set_active(self, store, make_license):
        lic = make_license()

        store.set_active(lic.license_key, False)
        assert store.find_by_key(lic.license_key).is_active is False

        assert store.set_active("PCOPT-000000-AAAA-AAAA-AAAA-AAAA", True) is None

    def test_stats(self, store, make_license):
        make_license()
        make_license(is_active=False)
        make_license(days=-1)

        assert store.stats(utcnow()) == (3, 1)

    def test_append_log(self, store):
        store.append_log(ValidationLog(license_key="K", hardware_fingerprint="HW",
                                       validation_date=utcnow(), is_successful=False))

        assert ValidationLog.query.count() == 1

    def test_ping(self, store):
        assert store.ping() is True

    def test_binding_locks_are_striped(self, store):
        assert store._lock_for(7) is store._lock_for(7 + LOCK_STRIPES)
        assert store._lock_for(7) is not store._lock_for(8)

        for license_id in range(1, 10 * LOCK_STRIPES):
            store._lock_for(license_id)
        assert len(store._locks) == LOCK_STRIPES


class TestStoragePolicy:
    def test_defaults(self):
        policy = StoragePolicy()
        assert (policy.timeout, policy.retries, policy.backoff) == (10.0, 3, 0.2)

    def test_exponential_backoff(self):
        policy = StoragePolicy(backoff=0.5)
        assert [policy.delay(n) for n in range(3)] == [0.5, 1.0, 2.0]

    def test_from_config(self, app):
        policy = StoragePolicy.from_config(app.config)
        assert policy.retries == app.config["STORAGE_RETRIES"]

    def test_transient_errors_are_retried(self, store, monkeypatch):
        sleeps = []
        monkeypatch.setattr("store.time.sleep", sleeps.append)
        store.policy = StoragePolicy(timeout=1, retries=2, backoff=0.1)
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise transient_error()
            return "ok"

        assert store._run(flaky, "test") == "ok"
        assert len(calls) == 3
        assert sleeps == [0.1, 0.2]

    def test_retries_exhausted_fail_closed(self, store, monkeypatch):
        monkeypatch.setattr("store.time.sleep", lambda s: None)
        store.policy = StoragePolicy(timeout=1, retries=2, backoff=0)
        calls = []

        def down():
            calls.append(1)
            raise transient_error()

        with pytest.raises(StorageUnavailable):
            store._run(down, "test")
        assert len(calls) == 3

    def test_non_transient_errors_propagate(self, store):
        def broken():
            raise IntegrityError("INSERT", {}, Exception("constraint"))

        with pytest.raises(IntegrityError):
            store._run(broken, "test")

    def test_validation_log_is_written_once(self, store, monkeypatch):
        sleeps = []
        monkeypatch.setattr("store.time.sleep", sleeps.append)
        store.policy = StoragePolicy(timeout=1, retries=3, backoff=0.1)
        commits = []

        def down():
            commits.append(1)
            raise transient_error()

        monkeypatch.setattr(store, "_commit", down)

        with pytest.raises(StorageUnavailable):
            store.append_log(ValidationLog(license_key="K", hardware_fingerprint="HW",
                                           validation_date=utcnow(), is_successful=False))
        assert len(commits) == 1
        assert sleeps == []


class TestMemoryLicenseStore:
    CATALOG = [
        {"key": "PCOPT-STD01-DEMO1-TEST1-12345", "customer_name": "Demo User 1", "days": 365},
        {"key": "PCOPT-STD02-DEMO2-TEST2-67890", "customer_name": "Demo User 2", "days": 365,
         "max_activations": 2},
    ]

    def test_lookup_only(self):
        store = MemoryLicenseStore(self.CATALOG)

        lic = store.find_by_key("PCOPT-STD01-DEMO1-TEST1-12345")
        assert lic.customer_name == "Demo User 1"
        assert lic.id == 1
        assert store.find_by_key("PCOPT-NOPE") is None

    def test_activations_are_not_persisted(self):
        store = MemoryLicenseStore(self.CATALOG)
        now = utcnow()

        store.atomic(1, lambda: store.add_activation(
            Activation(license_id=1, hardware_fingerprint="HW-A", first_activated=now, last_seen=now)))

        assert store.list_activations(1) == []
        assert not store.persists_activations

    def test_writes_are_unavailable(self):
        store = MemoryLicenseStore(self.CATALOG)

        with pytest.raises(StorageUnavailable):
            store.insert_license(new_license("PCOPT-240101-AAAA-BBBB-CCCC-DDDD"))
        with pytest.raises(StorageUnavailable):
            store.set_active("PCOPT-STD01-DEMO1-TEST1-12345", False)

    def test_stats(self):
        store = MemoryLicenseStore(self.CATALOG)
        assert store.stats(utcnow()) == (2, 2)
        assert store.stats(utcnow() + timedelta(days=400)) == (2, 0)

    def test_fallback_app_uses_memory_store(self, fallback_app):
        store = get_licensing().store
        assert store.mode == "fallback"
        assert store.find_by_key("PCOPT-STD02-DEMO2-TEST2-67890") is not None

    def test_fallback_remaining_activations_is_fixed_max(self, fallback_app):
        validator = get_licensing().validator

        for fingerprint in ("HW-A", "HW-B", "HW-C"):
            verdict = validator.validate("PCOPT-STD01-DEMO1-TEST1-12345", fingerprint)
            assert verdict.is_valid
            assert verdict.remaining_activations == 1


def test_demo_catalog_seeded_into_empty_database():
    from app import create_app
    from models import db

    app = create_app("testing", {"SEED_DEMO_LICENSES": True})
    with app.app_context():
        keys = {l.license_key for l in License.query.all()}
        assert keys == {"PCOPT-STD01-DEMO1-TEST1-12345", "PCOPT-STD02-DEMO2-TEST2-67890"}
        db.session.remove()
        db.drop_all()
