"""Tests for database models, sessions and the record store."""

import pytest
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

from sqlalchemy.exc import IntegrityError, OperationalError

from covetalks_billing.database import (
    RecordStore,
    SubscriptionRecord,
    ACCOUNTS,
    SUBSCRIPTION_RECORDS,
    PAYMENT_RECORDS,
    get_database_url,
    get_async_session_factory,
)
from covetalks_billing.errors import DuplicateRecordError, PersistenceError


def _subscription_data(account_id, reference="sub_001", **overrides):
    data = {
        "account_id": account_id,
        "external_subscription_reference": reference,
        "plan_tier": "Standard",
        "billing_period": "Monthly",
        "status": "Active",
        "amount": Decimal("19.99"),
        "created_at": datetime(2025, 1, 1),
    }
    data.update(overrides)
    return data


class TestDatabaseUrl:
    """Tests for DATABASE_URL handling."""

    @pytest.mark.parametrize("url,expected", [
        ("postgresql://u:p@db/covetalks", "postgresql+asyncpg://u:p@db/covetalks"),
        ("postgres://u:p@db/covetalks", "postgresql+asyncpg://u:p@db/covetalks"),
        ("sqlite+aiosqlite:///./test.db", "sqlite+aiosqlite:///./test.db"),
    ])
    def test_rewrites_postgres_urls(self, url, expected):
        with patch.dict("os.environ", {"DATABASE_URL": url}):
            assert get_database_url() == expected

    def test_default_is_local_sqlite(self):
        with patch.dict("os.environ", {}, clear=True):
            assert get_database_url().startswith("sqlite+aiosqlite:///")


class TestRecordStore:
    """Tests for RecordStore against SQLite."""

    async def test_insert_and_get(self, store, account):
        record = await store.insert(SUBSCRIPTION_RECORDS, _subscription_data(account.id))

        assert record.id
        loaded = await store.get(SUBSCRIPTION_RECORDS, record.id)
        assert loaded.external_subscription_reference == "sub_001"
        assert loaded.amount == Decimal("19.99")

    async def test_find_one_with_ordering(self, store, account):
        await store.insert(SUBSCRIPTION_RECORDS, _subscription_data(account.id, "sub_old"))
        await store.insert(
            SUBSCRIPTION_RECORDS,
            _subscription_data(account.id, "sub_new", created_at=datetime(2025, 6, 1)),
        )

        newest = await store.find_one(
            SUBSCRIPTION_RECORDS, order_by="created_at", descending=True, account_id=account.id
        )
        oldest = await store.find_one(SUBSCRIPTION_RECORDS, order_by="created_at", account_id=account.id)

        assert newest.external_subscription_reference == "sub_new"
        assert oldest.external_subscription_reference == "sub_old"

    async def test_find_one_missing_returns_none(self, store):
        assert await store.find_one(PAYMENT_RECORDS, external_payment_reference="pi_nope") is None

    async def test_find_all_limit(self, store, account):
        for i in range(3):
            await store.insert(PAYMENT_RECORDS, {
                "account_id": account.id,
                "external_payment_reference": f"pi_{i}",
                "amount": Decimal("5.00"),
                "description": "Subscription payment",
                "created_at": datetime(2025, 1, i + 1),
            })

        payments = await store.find_all(
            PAYMENT_RECORDS, order_by="created_at", descending=True, limit=2, account_id=account.id
        )

        assert [p.external_payment_reference for p in payments] == ["pi_2", "pi_1"]

    async def test_update(self, store, account):
        await store.update(ACCOUNTS, account.id, {"subscription_status": "Active", "current_plan": "Plus"})

        loaded = await store.get(ACCOUNTS, account.id)
        assert loaded.subscription_status == "Active"
        assert loaded.current_plan == "Plus"

    async def test_update_missing_record(self, store):
        with pytest.raises(PersistenceError):
            await store.update(SUBSCRIPTION_RECORDS, "missing", {"status": "Active"})

    async def test_unknown_table(self, store):
        with pytest.raises(ValueError, match="Unknown table"):
            await store.find_one("invoices", id="x")

    async def test_unknown_column(self, store, account):
        with pytest.raises(ValueError, match="Unknown column"):
            await store.find_one(ACCOUNTS, nickname="x")
        with pytest.raises(ValueError, match="Unknown column"):
            await store.update(ACCOUNTS, account.id, {"nickname": "x"})

    async def test_subscription_relationship(self, db_session, store, account):
        record = await store.insert(SUBSCRIPTION_RECORDS, _subscription_data(account.id))
        await store.insert(PAYMENT_RECORDS, {
            "subscription_id": record.id,
            "account_id": account.id,
            "external_payment_reference": "pi_rel",
            "amount": Decimal("19.99"),
            "description": "Subscription payment",
        })

        loaded = await db_session.get(SubscriptionRecord, record.id)
        await db_session.refresh(loaded, ["payments"])
        assert [p.external_payment_reference for p in loaded.payments] == ["pi_rel"]
        assert loaded.to_dict()["amount"] == 19.99


class TestRecordStoreFailures:
    """Tests for database error mapping."""

    @pytest.fixture
    def failing_session(self):
        @asynccontextmanager
        async def savepoint():
            yield

        session = MagicMock()
        session.begin_nested = MagicMock(side_effect=lambda: savepoint())
        return session

    async def test_integrity_error_is_duplicate(self, failing_session):
        failing_session.flush = AsyncMock(
            side_effect=IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))
        )
        store = RecordStore(failing_session)

        with pytest.raises(DuplicateRecordError):
            await store.insert(PAYMENT_RECORDS, {
                "account_id": "acc_1",
                "external_payment_reference": "pi_dup",
                "amount": Decimal("1.00"),
            })

    async def test_other_errors_are_persistence(self, failing_session):
        failing_session.flush = AsyncMock(
            side_effect=OperationalError("INSERT", {}, Exception("database is locked"))
        )
        store = RecordStore(failing_session)

        with pytest.raises(PersistenceError) as exc_info:
            await store.insert(PAYMENT_RECORDS, {
                "account_id": "acc_1",
                "external_payment_reference": "pi_locked",
                "amount": Decimal("1.00"),
            })
        assert not isinstance(exc_info.value, DuplicateRecordError)

    async def test_read_errors_are_persistence(self, failing_session):
        failing_session.execute = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("no such table")))
        store = RecordStore(failing_session)

        with pytest.raises(PersistenceError):
            await store.find_all(ACCOUNTS)


class TestSessionFactory:
    """Tests for session factory selection."""

    async def test_engine_bound_factory(self, db_engine):
        factory = get_async_session_factory(db_engine)
        assert factory.kw["bind"] is db_engine

    def test_uninitialized_global_factory(self):
        with patch("covetalks_billing.database.session._session_factory", None):
            with pytest.raises(RuntimeError, match="not initialized"):
                get_async_session_factory()
