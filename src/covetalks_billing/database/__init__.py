"""Database module for billing record persistence."""

from .models import (
    Base,
    Account,
    SubscriptionRecord,
    PaymentRecord,
    AccountKind,
    AccountSubscriptionStatus,
    PaymentStatus,
    utcnow,
)
from .session import (
    get_db,
    get_database_url,
    init_db,
    close_db,
    create_async_engine,
    get_async_session_factory,
    get_db_context,
)
from .repository import (
    RecordStore,
    TABLES,
    ACCOUNTS,
    SUBSCRIPTION_RECORDS,
    PAYMENT_RECORDS,
)

__all__ = [
    # Models
    "Base",
    "Account",
    "SubscriptionRecord",
    "PaymentRecord",
    "AccountKind",
    "AccountSubscriptionStatus",
    "PaymentStatus",
    "utcnow",
    # Session management
    "get_db",
    "get_database_url",
    "init_db",
    "close_db",
    "create_async_engine",
    "get_async_session_factory",
    "get_db_context",
    # Repositories
    "RecordStore",
    "TABLES",
    "ACCOUNTS",
    "SUBSCRIPTION_RECORDS",
    "PAYMENT_RECORDS",
]
