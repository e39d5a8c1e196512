"""
Data models for storage layer.

Defines the records shared between the store and the aggregation engine.
"""

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Optional


@dataclass(frozen=True)
class UsageEvent:
    """Usage drawn against one source on one calendar day.

    The store intends one row per (source_id, day) but concurrent merges
    can leave several; consumers must sum them.
    """
    source_id: str
    day: date
    amount: float


@dataclass(frozen=True)
class Source:
    """A named credential that usage is recorded against."""
    source_id: str
    display_name: str
    group_tag: str
    model: str = ""
    key_fragment: str = ""
    created_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.source_id:
            raise ValueError("source_id cannot be empty")
        if not self.display_name:
            raise ValueError("display_name cannot be empty")


class BillingCycle(Enum):
    """How often a subscription is charged."""
    MONTHLY = "monthly"
    YEARLY = "yearly"


@dataclass(frozen=True)
class Subscription:
    """A recurring expense."""
    subscription_id: str
    name: str
    amount: float
    billing_cycle: BillingCycle
    start_date: date
    category: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        """Validate subscription values."""
        if not self.name:
            raise ValueError("name cannot be empty")
        if self.amount < 0:
            raise ValueError("amount cannot be negative")
