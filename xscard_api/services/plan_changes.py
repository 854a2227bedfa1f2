"""Mid-cycle plan changes with proration."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from ..errors import NotFoundError, SystemError, ValidationError
from ..store import SERVER_TIMESTAMP, DocumentStore
from .plans import SUBSCRIPTION_PLANS, Plan, change_type, get_plan
from .proration import calculate_proration, describe_proration

logger = logging.getLogger("api.plan_changes")

SUBSCRIPTIONS = "subscriptions"
USERS = "users"
SUBSCRIPTION_LOGS = "subscriptionLogs"


def billing_period(subscription: Dict[str, Any]) -> Tuple[Any, Any]:
    start = (
        subscription.get("currentPeriodStart")
        or subscription.get("trialStartDate")
        or subscription.get("createdAt")
    )
    end = (
        subscription.get("currentPeriodEnd")
        or subscription.get("trialEndDate")
        or subscription.get("subscriptionEnd")
    )
    if start and end:
        return start, end
    return None, None


def validate_plan_change(
    store: DocumentStore,
    user_id: str,
    current_plan_id: Optional[str],
    new_plan_id: Optional[str],
) -> Tuple[Plan, Plan, Dict[str, Any]]:
    """Returns (current plan, new plan, subscription record) or raises."""
    if not current_plan_id or not new_plan_id:
        raise ValidationError(
            "Both currentPlanId and newPlanId are required",
            code="MISSING_PARAMETERS",
        )

    current = get_plan(current_plan_id)
    new = get_plan(new_plan_id)
    unknown = [pid for pid, plan in ((current_plan_id, current), (new_plan_id, new)) if plan is None]
    if unknown:
        raise ValidationError("Unknown plan", code="INVALID_PLAN", details={"planIds": unknown})
    if current.id == new.id:
        raise ValidationError("You are already on this plan", code="SAME_PLAN")

    subscription = store.get(SUBSCRIPTIONS, user_id)
    if subscription is None:
        raise NotFoundError("No subscription found", code="NO_SUBSCRIPTION")

    recorded = subscription.get("planId")
    if recorded and str(recorded).upper() != current.id:
        raise ValidationError(
            "currentPlanId does not match your subscription",
            code="PLAN_MISMATCH",
            details={"subscriptionPlanId": recorded},
        )
    return current, new, subscription


def _proration_block(result: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "type": result["prorationType"],
        "netAmount": result["netAmount"],
        "netAmountCents": result["netAmountCents"],
        "description": describe_proration(result),
        "calculation": result["calculation"],
        "period": result["period"],
    }


def _plan_change_block(current: Plan, new: Plan) -> Dict[str, Any]:
    return {
        "fromPlan": current.to_dict(),
        "toPlan": new.to_dict(),
        "changeType": change_type(current, new),
    }


def preview_plan_change(
    store: DocumentStore,
    user_id: str,
    current_plan_id: Optional[str],
    new_plan_id: Optional[str],
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    current, new, subscription = validate_plan_change(store, user_id, current_plan_id, new_plan_id)
    start, end = billing_period(subscription)
    result = calculate_proration(current, new, start, end, now=now)
    now = now or datetime.now(timezone.utc)

    store.add(
        SUBSCRIPTION_LOGS,
        {
            "userId": user_id,
            "eventType": "plan_change_preview",
            "timestamp": SERVER_TIMESTAMP,
            "eventData": {
                "currentPlan": current.id,
                "newPlan": new.id,
                "prorationType": result["prorationType"],
                "netAmount": result["netAmount"],
            },
        },
    )

    return {
        "validation": {"isValid": True, "changeType": change_type(current, new)},
        "planChange": _plan_change_block(current, new),
        "proration": _proration_block(result),
        "effectiveDate": now.isoformat() if result["period"] else None,
        "appliesAt": "immediately" if result["period"] else "next_billing_cycle",
    }


def change_plan(
    store: DocumentStore,
    user_id: str,
    current_plan_id: Optional[str],
    new_plan_id: Optional[str],
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Switch plans. Applies now when the billing period is known, else next cycle.

    Subscription, user and audit writes commit in one batch.
    """
    current, new, subscription = validate_plan_change(store, user_id, current_plan_id, new_plan_id)
    start, end = billing_period(subscription)
    result = calculate_proration(current, new, start, end, now=now)
    now = now or datetime.now(timezone.utc)
    immediate = result["period"] is not None

    if immediate:
        subscription_update = {
            "planId": new.id,
            "planCode": new.plan_code,
            "amount": new.amount,
            "previousPlanId": current.id,
            "pendingPlanId": None,
            "pendingProration": {
                "type": result["prorationType"],
                "netAmount": result["netAmount"],
                "netAmountCents": result["netAmountCents"],
                "fromPlanId": current.id,
                "toPlanId": new.id,
                "calculatedAt": now,
            },
            "lastPlanChange": SERVER_TIMESTAMP,
            "lastUpdated": SERVER_TIMESTAMP,
        }
        user_update = {"subscriptionPlan": new.id, "updatedAt": SERVER_TIMESTAMP}
    else:
        subscription_update = {
            "pendingPlanId": new.id,
            "pendingPlanEffective": "next_billing_cycle",
            "lastUpdated": SERVER_TIMESTAMP,
        }
        user_update = {"pendingSubscriptionPlan": new.id, "updatedAt": SERVER_TIMESTAMP}

    log_id = store.new_id(SUBSCRIPTION_LOGS)
    batch = store.batch()
    batch.set(SUBSCRIPTIONS, user_id, subscription_update, merge=True)
    batch.set(USERS, user_id, user_update, merge=True)
    batch.set(
        SUBSCRIPTION_LOGS,
        log_id,
        {
            "userId": user_id,
            "eventType": "plan_change",
            "timestamp": SERVER_TIMESTAMP,
            "eventData": {
                "currentPlan": current.id,
                "newPlan": new.id,
                "changeType": change_type(current, new),
                "prorationType": result["prorationType"],
                "netAmount": result["netAmount"],
                "appliesAt": "immediately" if immediate else "next_billing_cycle",
            },
        },
    )
    try:
        batch.commit()
    except Exception as exc:
        logger.error("Plan change write failed user=%s %s -> %s: %s", user_id, current.id, new.id, exc)
        raise SystemError(
            "Failed to change plan",
            details={"userId": user_id, "eventType": "plan_change", "error": str(exc)},
        ) from exc

    logger.info(
        "Plan change user=%s %s -> %s proration=%s net=%s immediate=%s",
        user_id,
        current.id,
        new.id,
        result["prorationType"],
        result["netAmount"],
        immediate,
    )

    if immediate:
        message = f"Plan changed to {new.name}"
    else:
        message = f"Plan change to {new.name} scheduled for your next billing cycle"
    return {
        "message": message,
        "planChange": _plan_change_block(current, new),
        "proration": _proration_block(result),
        "effectiveDate": now.isoformat() if immediate else None,
        "appliesAt": "immediately" if immediate else "next_billing_cycle",
        "transactionId": log_id,
    }


def available_plans(store: DocumentStore, user_id: str) -> Dict[str, Any]:
    subscription = store.get(SUBSCRIPTIONS, user_id) or {}
    current_id = subscription.get("planId")
    if current_id:
        current_id = str(current_id).upper()
    plans = [{**plan.to_dict(), "isCurrent": plan.id == current_id} for plan in SUBSCRIPTION_PLANS.values()]
    return {
        "currentPlan": current_id,
        "availablePlans": plans,
        "planCount": len(plans),
    }
