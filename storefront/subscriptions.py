# storefront/subscriptions.py
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.db.functions import get_user_subscription
from storefront.db.schemas import SubscriptionStatus
from storefront.errors import AuthError
from storefront.listings import get_listing_by_price_id
from storefront.session import Session

logger = logging.getLogger(__name__)

STATUS_NOT_STARTED = "not_started"
ACTIVE_STATUSES = ("active", "trialing")
UNKNOWN_PLAN = "Unknown Plan"

STATUS_MESSAGES = {
    STATUS_NOT_STARTED: "No active subscription",
    "past_due": "Your subscription payment is past due. Please update your payment method.",
    "canceled": "Your subscription has been canceled. You can reactivate it at any time.",
}


def _from_timestamp(value: Optional[int]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


class SubscriptionReader:
    """Subscription of the signed-in user as the gateway webhook recorded it.

    A missing row and a ``not_started`` row both read as "no active
    subscription". The plan name is resolved through the gateway listings by
    price id.
    """

    def __init__(self, db: AsyncSession, session: Optional[Session]):
        self.db = db
        self.session = session

    async def current(self) -> SubscriptionStatus:
        if self.session is None:
            raise AuthError("Please sign in to view your subscription")

        row = await get_user_subscription(self.db, self.session.user_id)
        if row is None or row.subscription_status == STATUS_NOT_STARTED:
            return SubscriptionStatus(status=STATUS_NOT_STARTED, message=STATUS_MESSAGES[STATUS_NOT_STARTED])

        listing = get_listing_by_price_id(row.price_id) if row.price_id else None
        if row.price_id and listing is None:
            logger.warning("Subscription of user_id=%s has unknown price %s", self.session.user_id, row.price_id)

        return SubscriptionStatus(
            status=row.subscription_status,
            active=row.subscription_status in ACTIVE_STATUSES,
            plan=listing.name if listing else UNKNOWN_PLAN,
            price_id=row.price_id,
            current_period_start=_from_timestamp(row.current_period_start),
            current_period_end=_from_timestamp(row.current_period_end),
            cancel_at_period_end=bool(row.cancel_at_period_end),
            payment_method_brand=row.payment_method_brand,
            payment_method_last4=row.payment_method_last4,
            message=STATUS_MESSAGES.get(row.subscription_status),
        )
