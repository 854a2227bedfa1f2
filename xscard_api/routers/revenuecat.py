"""RevenueCat router - webhook intake and server-verified subscription status.

Endpoints:
    POST /api/revenuecat/webhook            - signed webhook, processed after ack
    GET  /api/revenuecat/status             - caller's verified status
    GET  /api/revenuecat/status/{user_id}   - any user's status (admin)
    POST /api/revenuecat/sync               - re-verify and persist caller's status
    GET  /api/revenuecat/products           - store product ids for the caller's platform
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Path, Query, Request
from starlette.concurrency import run_in_threadpool

from .. import config
from ..background import TaskQueue
from ..dependencies import (
    get_entitlement_verifier,
    get_store,
    get_task_queue,
    require_admin,
    verify_firebase_token,
)
from ..errors import AuthenticationError, ValidationError
from ..middleware.rate_limit import rate_limit_read, rate_limit_webhook, rate_limit_write
from ..models import ApiResponse, ErrorResponse
from ..services import subscriptions
from ..services.revenuecat import RevenueCatClient, parse_webhook_event, verify_webhook_signature
from ..store import DocumentStore
from ..utils.client_ip import get_client_ip
from ..utils.security_logger import security_logger

router = APIRouter(prefix="/revenuecat", tags=["revenuecat"])
logger = logging.getLogger("api.revenuecat")

ANDROID_AGENT_MARKERS = ("android", "okhttp", "expo", "reactnative")


@router.post(
    "/webhook",
    response_model=ApiResponse,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}},
)
@rate_limit_webhook
async def revenuecat_webhook(
    request: Request,
    store: DocumentStore = Depends(get_store),
    verifier: RevenueCatClient = Depends(get_entitlement_verifier),
    queue: TaskQueue = Depends(get_task_queue),
) -> Dict[str, Any]:
    """Verify, parse and acknowledge; the state transition runs after the response."""
    raw_body = await request.body()
    ok, reason = verify_webhook_signature(
        request.headers.get("authorization"),
        request.headers.get("x-revenuecat-signature"),
        raw_body,
    )
    if not ok:
        security_logger.webhook_rejected(ip=get_client_ip(request), path=request.url.path, reason=reason)
        raise AuthenticationError("Invalid webhook signature", code="INVALID_SIGNATURE")

    try:
        payload = json.loads(raw_body or b"{}")
    except ValueError as exc:
        raise ValidationError("Webhook body is not valid JSON", code="WEBHOOK_PARSE_ERROR") from exc

    event = parse_webhook_event(payload)
    if not event.user_id:
        raise ValidationError("Webhook event has no app user id", code="MISSING_APP_USER_ID")

    logger.info("RevenueCat webhook accepted type=%s user=%s id=%s", event.type, event.user_id, event.event_id)
    queue.submit(
        subscriptions.process_webhook_event,
        store,
        verifier,
        event,
        task_name="revenuecat_webhook",
        context={"userId": event.user_id, "eventType": event.type, "eventId": event.event_id},
    )
    return {
        "success": True,
        "message": "Webhook received",
        "data": {"received": True, "eventType": event.type},
    }


async def _status_for(
    user_id: str,
    store: DocumentStore,
    verifier: RevenueCatClient,
) -> Dict[str, Any]:
    verification = await run_in_threadpool(verifier.verify_active_entitlement, user_id)
    user = store.get(subscriptions.USERS, user_id) or {}
    is_active = bool(verification.get("isActive"))
    return {
        "userId": user_id,
        "isActive": is_active,
        "plan": "premium" if is_active else "free",
        "subscriptionStatus": "active" if is_active else (verification.get("reason") or "inactive").lower(),
        "productId": verification.get("productIdentifier"),
        "expiresDate": verification.get("expiresDate"),
        "willRenew": bool(verification.get("willRenew")),
        "store": verification.get("store"),
        "verifiedAt": datetime.now(timezone.utc).isoformat(),
        "localData": {
            "plan": user.get("plan"),
            "subscriptionStatus": user.get("subscriptionStatus"),
            "subscriptionPlatform": user.get("subscriptionPlatform"),
        },
    }


@router.get("/status", response_model=ApiResponse, responses={401: {"model": ErrorResponse}})
@rate_limit_read
async def subscription_status(
    request: Request,
    decoded_token: dict = Depends(verify_firebase_token),
    store: DocumentStore = Depends(get_store),
    verifier: RevenueCatClient = Depends(get_entitlement_verifier),
) -> Dict[str, Any]:
    """Status verified against RevenueCat on every call."""
    return {"success": True, "data": await _status_for(decoded_token["uid"], store, verifier)}


@router.get(
    "/status/{user_id}",
    response_model=ApiResponse,
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
@rate_limit_read
async def subscription_status_for_user(
    request: Request,
    user_id: str = Path(..., min_length=1, max_length=128),
    decoded_token: dict = Depends(require_admin),
    store: DocumentStore = Depends(get_store),
    verifier: RevenueCatClient = Depends(get_entitlement_verifier),
) -> Dict[str, Any]:
    return {"success": True, "data": await _status_for(user_id, store, verifier)}


@router.post("/sync", response_model=ApiResponse, responses={401: {"model": ErrorResponse}})
@rate_limit_write
async def sync_subscription(
    request: Request,
    decoded_token: dict = Depends(verify_firebase_token),
    store: DocumentStore = Depends(get_store),
    verifier: RevenueCatClient = Depends(get_entitlement_verifier),
) -> Dict[str, Any]:
    """Re-read the caller's entitlement from RevenueCat and persist it."""
    uid = decoded_token["uid"]
    verification = await run_in_threadpool(subscriptions.sync_subscription, store, verifier, uid)
    is_active = bool(verification.get("isActive"))
    return {
        "success": True,
        "message": "Subscription synced",
        "data": {
            "isActive": is_active,
            "plan": "premium" if is_active else "free",
            "productId": verification.get("productIdentifier"),
            "expiresDate": verification.get("expiresDate"),
        },
    }


def _detect_platform(user_agent: Optional[str]) -> str:
    agent = (user_agent or "").lower()
    return "android" if any(marker in agent for marker in ANDROID_AGENT_MARKERS) else "ios"


@router.get("/products", response_model=ApiResponse, responses={401: {"model": ErrorResponse}})
@rate_limit_read
async def subscription_products(
    request: Request,
    platform: Optional[str] = Query(default=None, pattern=r"^(ios|android)$"),
    decoded_token: dict = Depends(verify_firebase_token),
) -> Dict[str, Any]:
    platform = platform or _detect_platform(request.headers.get("user-agent"))
    return {
        "success": True,
        "data": {
            "platform": platform,
            "products": dict(config.REVENUECAT_PRODUCT_IDS[platform]),
            "entitlementId": config.REVENUECAT_ENTITLEMENT_ID,
        },
    }
