# covetalks_billing package
__version__ = "0.1.0"

from .database import (
    Account,
    SubscriptionRecord,
    PaymentRecord,
    AccountKind,
    RecordStore,
    init_db,
    close_db,
    get_db,
)
from .errors import (
    BillingSyncError,
    ValidationError,
    NotFoundError,
    ProviderError,
    PersistenceError,
    DuplicateRecordError,
)
from .plans import PlanTier, BillingPeriod, SubscriptionStatus
from .config import Settings, load_settings, get_settings

# Reconciliation exports
from .reconciliation import (
    Reconciler,
    ReconciliationService,
    SyncReport,
    SyncResults,
    BillingProviderBase,
    StripeBillingProvider,
    get_billing_provider,
)
