"""
Recurring expense calculations.

Normalizes subscriptions to a monthly figure.
"""

from typing import Iterable

from token_ledger.storage.models import BillingCycle, Subscription


def monthly_cost(subscription: Subscription) -> float:
    """Monthly equivalent of one subscription; yearly plans are spread over 12 months."""
    if subscription.billing_cycle is BillingCycle.YEARLY:
        return subscription.amount / 12
    return subscription.amount


def total_monthly_cost(subscriptions: Iterable[Subscription]) -> float:
    """Sum the monthly equivalent of every subscription."""
    return sum((monthly_cost(sub) for sub in subscriptions), 0.0)
