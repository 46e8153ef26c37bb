"""
Billing service: plan upgrades through Stripe.

An org without a subscription is sent to a Stripe Checkout session; an org
that already pays has its subscription switched to the new price and its
plan updated locally.
"""

import asyncio
from typing import Optional

import stripe

from .models import UpgradeResponse
from .sqlite_service import SQLiteService
from .errors import BillingProviderError, NotFoundError, PriceNotFoundError
from . import config

import logging
logger = logging.getLogger(__name__)


def lookup_key_for(plan: str, period: str) -> str:
    return f"{plan}_{period}"


class BillingService:
    def __init__(self, db_service: SQLiteService, api_key: Optional[str] = None):
        self.db = db_service
        stripe.api_key = api_key or config.STRIPE_SECRET_KEY

    async def _stripe(self, func, *args, **kwargs):
        # The Stripe SDK is blocking; keep it off the event loop
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except stripe.StripeError as e:
            logger.error(f"Stripe call {getattr(func, '__qualname__', func)} failed: {e}")
            raise BillingProviderError(f"Billing provider error: {e.user_message or str(e)}") from e

    async def find_price_id(self, plan: str, period: str) -> str:
        prices = await self._stripe(stripe.Price.list, lookup_keys=[lookup_key_for(plan, period)])
        if not prices["data"]:
            raise PriceNotFoundError("No price found for this plan and period")
        return prices["data"][0]["id"]

    async def upgrade(self, org_id: str, plan: str, period: str, origin: str) -> UpgradeResponse:
        price_id = await self.find_price_id(plan, period)

        org = await self.db.get_org(org_id)
        if not org:
            raise NotFoundError("Org not found")

        if not org.stripe_subscription:
            checkout_params = dict(
                mode="subscription",
                payment_method_types=["card"],
                client_reference_id=org_id,
                metadata={"plan": plan, "period": period},
                line_items=[{"price": price_id, "quantity": 1}],
                success_url=f"{origin}/billing/thank-you",
                cancel_url=f"{origin}/billing",
            )
            if org.stripe_customer:
                checkout_params["customer"] = org.stripe_customer

            session = await self._stripe(stripe.checkout.Session.create, **checkout_params)
            logger.info(f"Created checkout session for org {org_id} ({plan}/{period})")
            return UpgradeResponse(ok=True, url=session["url"])

        subscription = await self._stripe(stripe.Subscription.retrieve, org.stripe_subscription)
        sub_item_id = subscription["items"]["data"][0]["id"]

        await self._stripe(
            stripe.Subscription.modify,
            org.stripe_subscription,
            cancel_at_period_end=False,
            metadata={"plan": plan, "period": period},
            items=[{"id": sub_item_id, "price": price_id}],
        )
        await self.db.set_org_plan(org_id, plan)
        logger.info(f"Switched subscription {org.stripe_subscription} of org {org_id} to {plan}/{period}")
        return UpgradeResponse(ok=True)


_billing_service: Optional[BillingService] = None


def get_billing_service(db_service: SQLiteService) -> BillingService:
    global _billing_service
    if _billing_service is None:
        _billing_service = BillingService(db_service)
    return _billing_service
