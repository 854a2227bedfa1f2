"""Proration for mid-cycle plan changes.

net = remaining_days * new_daily_rate - remaining_days * current_daily_rate

A plan's daily rate is its price over its own interval (30 days monthly,
365 annually). Arithmetic is done in Decimal; only the reported amounts are
rounded, to cents or whole rand depending on PRORATION_PRECISION.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

from .. import config
from .plans import Plan

SECONDS_PER_DAY = 86400

_QUANTUM = {
    "cents": Decimal("0.01"),
    "units": Decimal("1"),
}


def coerce_datetime(value: Any) -> Optional[datetime]:
    """Timezone-aware datetime from Firestore timestamps, ISO strings or epoch values."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if hasattr(value, "timestamp"):
        return datetime.fromtimestamp(value.timestamp(), tz=timezone.utc)
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 10_000_000_000 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, dict):
        seconds = value.get("seconds", value.get("_seconds"))
        if seconds is None:
            return None
        return datetime.fromtimestamp(float(seconds), tz=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def _quantum(precision: Optional[str]) -> Decimal:
    return _QUANTUM.get((precision or config.PRORATION_PRECISION), _QUANTUM["cents"])


def round_amount(amount: Decimal, precision: Optional[str] = None) -> Decimal:
    return amount.quantize(_quantum(precision), rounding=ROUND_HALF_UP)


def format_rand(amount: float, precision: Optional[str] = None) -> str:
    rounded = round_amount(Decimal(str(abs(amount))), precision)
    return f"R{rounded}"


def _whole_days(seconds: float) -> int:
    return max(0, math.ceil(seconds / SECONDS_PER_DAY))


def _no_proration(reason: str) -> Dict[str, Any]:
    return {
        "prorationType": "no_proration",
        "netAmount": 0.0,
        "netAmountCents": 0,
        "calculation": None,
        "period": None,
        "reason": reason,
    }


def calculate_proration(
    current_plan: Plan,
    new_plan: Plan,
    period_start: Any,
    period_end: Any,
    now: Optional[datetime] = None,
    precision: Optional[str] = None,
) -> Dict[str, Any]:
    """Charge or credit owed for switching plans part-way through a period.

    A missing or empty billing period yields `no_proration` with
    `period=None`; callers schedule the change for the next cycle instead.
    """
    start = coerce_datetime(period_start)
    end = coerce_datetime(period_end)
    if start is None or end is None or end <= start:
        return _no_proration("missing_billing_period")

    now = coerce_datetime(now) or datetime.now(timezone.utc)

    total_days = _whole_days((end - start).total_seconds())
    remaining_days = min(total_days, _whole_days((end - now).total_seconds()))
    elapsed_days = total_days - remaining_days

    current_daily = Decimal(str(current_plan.amount)) / current_plan.interval_days
    new_daily = Decimal(str(new_plan.amount)) / new_plan.interval_days

    unused_credit = current_daily * remaining_days
    new_charge = new_daily * remaining_days
    net = round_amount(new_charge - unused_credit, precision)

    if remaining_days == 0 or net == 0:
        proration_type = "no_proration"
    elif net > 0:
        proration_type = "upgrade_charge"
    else:
        proration_type = "downgrade_credit"

    return {
        "prorationType": proration_type,
        "netAmount": float(net),
        "netAmountCents": int((net * 100).to_integral_value(rounding=ROUND_HALF_UP)),
        "calculation": {
            "currentPlanDailyRate": float(round(current_daily, 4)),
            "newPlanDailyRate": float(round(new_daily, 4)),
            "unusedCredit": float(round_amount(unused_credit, precision)),
            "newPlanCharge": float(round_amount(new_charge, precision)),
            "precision": precision or config.PRORATION_PRECISION,
        },
        "period": {
            "start": start.isoformat(),
            "end": end.isoformat(),
            "totalDays": total_days,
            "elapsedDays": elapsed_days,
            "remainingDays": remaining_days,
        },
        "reason": None,
    }


def describe_proration(result: Dict[str, Any], precision: Optional[str] = None) -> str:
    proration_type = result.get("prorationType")
    if result.get("period") is None:
        return "Proration could not be calculated. The plan change will take effect at the next billing cycle."

    amount = format_rand(result.get("netAmount") or 0.0, precision)
    remaining = result["period"]["remainingDays"]
    if proration_type == "upgrade_charge":
        return (
            f"You will be charged an additional {amount} for the upgrade, prorated for the "
            f"remaining {remaining} days of your current billing period."
        )
    if proration_type == "downgrade_credit":
        return (
            f"You will receive a credit of {amount} for the downgrade, prorated for the "
            f"remaining {remaining} days of your current billing period."
        )
    return "No additional charge or credit will be applied."
