"""Subscription state transitions driven by RevenueCat.

Every transition re-reads the entitlement from RevenueCat before writing, and
writes the user flag, the subscription document and the audit entry in one
batch.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .. import config
from ..errors import ConflictError, SubscriptionUpdateError
from ..store import SERVER_TIMESTAMP, DocumentStore
from .proration import coerce_datetime
from .revenuecat import RevenueCatClient, WebhookEvent

logger = logging.getLogger("api.subscriptions")

USERS = "users"
SUBSCRIPTIONS = "subscriptions"
SUBSCRIPTION_LOGS = "subscriptionLogs"

# webhook type -> (log event type, status written)
ACTIVATING_EVENTS = {
    "INITIAL_PURCHASE": ("initial_purchase", "active"),
    "RENEWAL": ("renewal", "active"),
    "PRODUCT_CHANGE": ("product_change", "active"),
}
DEGRADING_EVENTS = {
    "CANCELLATION": ("cancellation", "cancelled"),
    "EXPIRATION": ("expiration", "expired"),
    "BILLING_ISSUE": ("billing_issue", "billing_issue"),
}


def plan_id_for_product(product_id: Optional[str]) -> Optional[str]:
    if not product_id:
        return None
    for platform_ids in config.REVENUECAT_PRODUCT_IDS.values():
        if product_id == platform_ids.get("annual"):
            return "ANNUAL_PLAN"
        if product_id == platform_ids.get("monthly"):
            return "MONTHLY_PLAN"
    lowered = product_id.lower()
    if "annual" in lowered or "year" in lowered:
        return "ANNUAL_PLAN"
    if "month" in lowered:
        return "MONTHLY_PLAN"
    logger.warning("No plan mapping for RevenueCat product %s", product_id)
    return None


def apply_subscription_state(
    store: DocumentStore,
    user_id: str,
    state: Dict[str, Any],
    event_type: str,
) -> None:
    """Write a verified entitlement state as one all-or-nothing batch.

    `state` is the verifier's result plus `status` (and optionally
    `purchaseDate`, `environment`, `billingIssueDetectedAt`).

    Raises:
        SubscriptionUpdateError if the batch does not commit
    """
    is_active = bool(state.get("isActive"))
    status = state.get("status") or ("active" if is_active else "inactive")
    start = coerce_datetime(state.get("purchaseDate"))
    end = coerce_datetime(state.get("expiresDate"))
    product_id = state.get("productIdentifier")

    revenue_cat = {
        "customerId": state.get("appUserId") or user_id,
        "entitlementId": state.get("entitlementId"),
        "productId": product_id,
        "originalTransactionId": state.get("originalTransactionId"),
        "isActive": is_active,
        "willRenew": bool(state.get("willRenew")),
        "periodType": state.get("periodType") or "normal",
        "store": state.get("store") or "unknown",
        "environment": state.get("environment") or "production",
    }
    if state.get("billingIssueDetectedAt"):
        revenue_cat["billingIssueDetectedAt"] = state["billingIssueDetectedAt"]
    if state.get("unsubscribeDetectedAt"):
        revenue_cat["unsubscribeDetectedAt"] = state["unsubscribeDetectedAt"]

    user_update = {
        "plan": "premium" if is_active else "free",
        "subscriptionStatus": status,
        "subscriptionPlatform": "revenuecat",
        "subscriptionStart": start or SERVER_TIMESTAMP,
        "subscriptionEnd": end,
        "revenueCat": revenue_cat,
        "updatedAt": SERVER_TIMESTAMP,
        "lastRevenueCatSync": SERVER_TIMESTAMP,
    }
    plan_id = plan_id_for_product(product_id)
    if plan_id:
        user_update["subscriptionPlan"] = plan_id

    subscription_doc = {
        "userId": user_id,
        "platform": "revenuecat",
        "status": status,
        "isActive": is_active,
        "productId": product_id,
        "entitlementId": state.get("entitlementId"),
        "startDate": start or SERVER_TIMESTAMP,
        "endDate": end,
        "currentPeriodStart": start,
        "currentPeriodEnd": end,
        "willRenew": bool(state.get("willRenew")),
        "store": revenue_cat["store"],
        "environment": revenue_cat["environment"],
        "revenueCatData": dict(state),
        "lastUpdated": SERVER_TIMESTAMP,
        "lastEventType": event_type,
    }
    if plan_id:
        subscription_doc["planId"] = plan_id

    log_entry = {
        "userId": user_id,
        "eventType": event_type,
        "platform": "revenuecat",
        "timestamp": SERVER_TIMESTAMP,
        "eventData": {
            "productId": product_id,
            "entitlementId": state.get("entitlementId"),
            "isActive": is_active,
            "status": status,
            "store": state.get("store"),
            "environment": state.get("environment"),
        },
        "verificationStatus": "verified",
        "verificationTimestamp": SERVER_TIMESTAMP,
    }

    try:
        batch = store.batch()
        batch.set(USERS, user_id, user_update, merge=True)
        batch.set(SUBSCRIPTIONS, user_id, subscription_doc, merge=True)
        batch.set(SUBSCRIPTION_LOGS, store.new_id(SUBSCRIPTION_LOGS), log_entry)
        batch.commit()
    except Exception as exc:
        logger.error(
            "Atomic subscription update failed user=%s event=%s: %s",
            user_id,
            event_type,
            exc,
        )
        raise SubscriptionUpdateError(user_id=user_id, event_type=event_type, message=str(exc)) from exc

    logger.info(
        "Subscription updated user=%s event=%s status=%s plan=%s",
        user_id,
        event_type,
        status,
        user_update["plan"],
    )


def process_webhook_event(
    store: DocumentStore,
    verifier: RevenueCatClient,
    event: WebhookEvent,
) -> Optional[str]:
    """Apply a parsed webhook event. Returns the status written, or None if ignored.

    Raises:
        ConflictError if an activating event's entitlement is not active
        SubscriptionUpdateError if the write fails
    """
    user_id = event.user_id
    if event.type in ACTIVATING_EVENTS:
        event_type, status = ACTIVATING_EVENTS[event.type]
    elif event.type in DEGRADING_EVENTS:
        event_type, status = DEGRADING_EVENTS[event.type]
    else:
        logger.info("Ignoring unhandled RevenueCat event type=%s user=%s", event.type, user_id)
        return None

    logger.info("Processing RevenueCat %s for user=%s", event.type, user_id)
    verification = verifier.verify_active_entitlement(user_id, event.entitlement_id)

    if event.type in ACTIVATING_EVENTS and not verification.get("isActive"):
        raise ConflictError(
            f"Entitlement verification failed: {verification.get('reason')}",
            code="ENTITLEMENT_INACTIVE",
            details={"userId": user_id, "eventType": event_type},
        )

    state = dict(verification)
    state["appUserId"] = user_id
    state["status"] = status
    state["environment"] = event.environment or verification.get("environment")

    if event.type in ACTIVATING_EVENTS and event.purchased_at:
        state["purchaseDate"] = event.purchased_at.isoformat()
    if event.type == "EXPIRATION":
        state["isActive"] = False
        state["willRenew"] = False
        state["productIdentifier"] = state.get("productIdentifier") or event.product_id
        state["entitlementId"] = state.get("entitlementId") or event.entitlement_id
        if not state.get("expiresDate") and event.expires_at:
            state["expiresDate"] = event.expires_at.isoformat()
    if event.type == "BILLING_ISSUE":
        state["billingIssueDetectedAt"] = (
            state.get("billingIssueDetectedAt") or datetime.now(timezone.utc).isoformat()
        )

    apply_subscription_state(store, user_id, state, event_type)
    return status


def sync_subscription(store: DocumentStore, verifier: RevenueCatClient, user_id: str) -> Dict[str, Any]:
    """Re-read the entitlement and persist it. Returns the verification result."""
    verification = verifier.verify_active_entitlement(user_id)
    state = dict(verification)
    state["appUserId"] = user_id
    if verification.get("isActive"):
        state["status"] = "active"
    elif verification.get("reason") == "EXPIRED":
        state["status"] = "expired"
    else:
        state["status"] = "inactive"
    apply_subscription_state(store, user_id, state, "manual_sync")
    return verification
