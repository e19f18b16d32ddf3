"""SQLAlchemy models for Subledger.

All models are imported here so that ``Base.metadata`` knows every table
(``init_db`` and the test fixtures call ``create_all``). If you add a new
model, import it in this file.
"""

from subledger.models.billing_customer import BillingCustomer
from subledger.models.subscription import ACTIVE_STATUSES, SubscriptionRecord, SubscriptionStatus
from subledger.models.user import Profile

__all__ = [
    "ACTIVE_STATUSES",
    "BillingCustomer",
    "Profile",
    "SubscriptionRecord",
    "SubscriptionStatus",
]
