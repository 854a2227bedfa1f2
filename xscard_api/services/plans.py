"""Subscription plan catalog.

Amounts are in rand (ZAR). `planCode` is the Paystack plan reference the
billing side charges against.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .. import config

INTERVAL_DAYS = {
    "monthly": 30,
    "annually": 365,
}


@dataclass(frozen=True)
class Plan:
    id: str
    name: str
    amount: float
    interval: str
    plan_code: str = ""
    currency: str = "ZAR"
    description: str = ""
    features: List[str] = field(default_factory=list)

    @property
    def interval_days(self) -> int:
        return INTERVAL_DAYS[self.interval]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "amount": self.amount,
            "currency": self.currency,
            "interval": self.interval,
            "description": self.description,
            "features": list(self.features),
        }


SUBSCRIPTION_PLANS: Dict[str, Plan] = {
    "MONTHLY_PLAN": Plan(
        id="MONTHLY_PLAN",
        name="Premium Monthly",
        amount=159.99,
        interval="monthly",
        plan_code=config.PAYSTACK_MONTHLY_PLAN_CODE,
        description="Premium features billed every month",
        features=["Unlimited cards", "Event hosting", "Bulk registrations", "Analytics"],
    ),
    "ANNUAL_PLAN": Plan(
        id="ANNUAL_PLAN",
        name="Premium Annual",
        amount=1800.00,
        interval="annually",
        plan_code=config.PAYSTACK_ANNUAL_PLAN_CODE,
        description="Premium features billed once a year",
        features=["Unlimited cards", "Event hosting", "Bulk registrations", "Analytics", "Priority support"],
    ),
}


def get_plan(plan_id: Optional[str]) -> Optional[Plan]:
    if not plan_id or not isinstance(plan_id, str):
        return None
    return SUBSCRIPTION_PLANS.get(plan_id.strip().upper())


def change_type(current: Plan, new: Plan) -> str:
    """upgrade / downgrade by list price, lateral for equal prices."""
    if new.amount > current.amount:
        return "upgrade"
    if new.amount < current.amount:
        return "downgrade"
    return "lateral"
