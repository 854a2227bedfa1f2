"""RevenueCat server-side verification and webhook parsing.

Webhook payloads are never trusted for entitlement state: every transition
re-reads the subscriber from the RevenueCat REST API.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple
from urllib import error as url_error
from urllib import parse as url_parse
from urllib import request as url_request

from .. import config
from ..errors import ExternalServiceError, ValidationError
from .proration import coerce_datetime

logger = logging.getLogger("api.revenuecat")


# =============================================================================
# WEBHOOK
# =============================================================================

@dataclass
class WebhookEvent:
    type: str
    app_user_id: Optional[str]
    original_app_user_id: Optional[str] = None
    product_id: Optional[str] = None
    entitlement_id: Optional[str] = None
    period_type: Optional[str] = None
    purchased_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    store: Optional[str] = None
    environment: Optional[str] = None
    is_trial_conversion: bool = False
    event_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def user_id(self) -> Optional[str]:
        return self.app_user_id or self.original_app_user_id


def verify_webhook_signature(
    authorization: Optional[str],
    signature: Optional[str],
    raw_body: bytes,
) -> Tuple[bool, str]:
    """Check the webhook Authorization header (and body HMAC when configured).

    Returns (ok, reason). Comparisons are constant-time.
    """
    auth_token = config.REVENUECAT_WEBHOOK_AUTH_TOKEN
    secret = config.REVENUECAT_WEBHOOK_SECRET

    if not auth_token and not secret:
        if config.REVENUECAT_WEBHOOK_ALLOW_UNSIGNED:
            logger.warning("RevenueCat webhook accepted without verification (REVENUECAT_WEBHOOK_ALLOW_UNSIGNED)")
            return True, "unsigned_allowed"
        return False, "webhook_auth_not_configured"

    if auth_token:
        if not authorization:
            return False, "missing_authorization"
        presented = authorization.strip()
        expected_values = (auth_token, f"Bearer {auth_token}")
        if not any(hmac.compare_digest(presented, expected) for expected in expected_values):
            return False, "invalid_authorization"

    if secret:
        if not signature:
            return False, "missing_signature"
        expected_sig = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
        if not hmac.compare_digest(signature.strip().lower(), expected_sig):
            return False, "invalid_signature"

    return True, "verified"


def _ms_to_datetime(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
    except (TypeError, ValueError):
        return None


def parse_webhook_event(payload: Any) -> WebhookEvent:
    """Extract the fields the dispatcher needs from a webhook body.

    Raises:
        ValidationError if the payload has no event or event type
    """
    event = payload.get("event") if isinstance(payload, dict) else None
    if not isinstance(event, dict) or not event.get("type"):
        raise ValidationError("Invalid webhook payload", code="WEBHOOK_PARSE_ERROR")

    entitlement_ids = event.get("entitlement_ids") or []
    return WebhookEvent(
        type=str(event["type"]),
        app_user_id=event.get("app_user_id"),
        original_app_user_id=event.get("original_app_user_id"),
        product_id=event.get("product_id"),
        entitlement_id=event.get("entitlement_id") or (entitlement_ids[0] if entitlement_ids else None),
        period_type=event.get("period_type"),
        purchased_at=_ms_to_datetime(event.get("purchased_at_ms")),
        expires_at=_ms_to_datetime(event.get("expiration_at_ms")),
        store=event.get("store"),
        environment=event.get("environment"),
        is_trial_conversion=bool(event.get("is_trial_conversion")),
        event_id=event.get("id"),
        raw=event,
    )


# =============================================================================
# REST CLIENT
# =============================================================================

class RevenueCatClient:
    def __init__(
        self,
        secret_key: Optional[str] = None,
        base_url: str = config.REVENUECAT_API_BASE,
        timeout: float = config.REVENUECAT_API_TIMEOUT_SEC,
        default_entitlement: str = config.REVENUECAT_ENTITLEMENT_ID,
    ) -> None:
        self.secret_key = secret_key if secret_key is not None else config.REVENUECAT_SECRET_KEY
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.default_entitlement = default_entitlement

    def get_subscriber(self, app_user_id: str) -> Dict[str, Any]:
        if not self.secret_key:
            raise ExternalServiceError("RevenueCat is not configured", code="VERIFICATION_NOT_CONFIGURED")

        url = f"{self.base_url}/subscribers/{url_parse.quote(app_user_id, safe='')}"
        req = url_request.Request(
            url,
            headers={
                "Authorization": f"Bearer {self.secret_key}",
                "Accept": "application/json",
                "X-Platform": "server",
            },
        )
        try:
            with url_request.urlopen(req, timeout=self.timeout) as resp:
                body = resp.read().decode("utf-8")
        except url_error.HTTPError as http_exc:
            raise ExternalServiceError(
                "Failed to verify subscription with RevenueCat",
                code="VERIFICATION_FAILED",
                details={"httpStatus": http_exc.code},
            ) from http_exc
        except (url_error.URLError, TimeoutError) as exc:
            raise ExternalServiceError(
                "RevenueCat unreachable",
                code="VERIFICATION_FAILED",
                details={"reason": str(exc)},
            ) from exc

        try:
            parsed = json.loads(body) if body else {}
        except ValueError as exc:
            raise ExternalServiceError("Invalid response from RevenueCat", code="VERIFICATION_FAILED") from exc
        return parsed if isinstance(parsed, dict) else {}

    def verify_active_entitlement(
        self,
        app_user_id: str,
        entitlement_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Current entitlement state from RevenueCat (the source of truth).

        Always returns a dict with `isActive`; inactive results carry `reason`
        (NO_ENTITLEMENT or EXPIRED).
        """
        target = entitlement_id or self.default_entitlement
        subscriber = (self.get_subscriber(app_user_id).get("subscriber") or {})
        entitlement = (subscriber.get("entitlements") or {}).get(target)

        if not entitlement:
            logger.info("No entitlement %s for user=%s", target, app_user_id)
            return {
                "isActive": False,
                "entitlementId": target,
                "reason": "NO_ENTITLEMENT",
            }

        product_id = entitlement.get("product_identifier")
        subscription = (subscriber.get("subscriptions") or {}).get(product_id) or {}

        now = datetime.now(timezone.utc)
        expires = coerce_datetime(entitlement.get("expires_date"))
        grace_expires = coerce_datetime(entitlement.get("grace_period_expires_date"))
        expired = expires is not None and expires < now and (grace_expires is None or grace_expires < now)

        unsubscribed_at = subscription.get("unsubscribe_detected_at")
        billing_issue_at = subscription.get("billing_issues_detected_at")

        result = {
            "isActive": not expired,
            "entitlementId": target,
            "productIdentifier": product_id,
            "purchaseDate": entitlement.get("purchase_date"),
            "expiresDate": expires.isoformat() if expires else None,
            "willRenew": not expired and not unsubscribed_at and not billing_issue_at,
            "periodType": subscription.get("period_type") or "normal",
            "store": subscription.get("store") or "unknown",
            "environment": "sandbox" if subscription.get("is_sandbox") else "production",
            "originalTransactionId": subscription.get("original_transaction_id"),
            "billingIssueDetectedAt": billing_issue_at,
            "unsubscribeDetectedAt": unsubscribed_at,
            "gracePeriodExpiresDate": grace_expires.isoformat() if grace_expires else None,
            "reason": "EXPIRED" if expired else None,
        }
        logger.info(
            "Entitlement verified user=%s entitlement=%s active=%s product=%s",
            app_user_id,
            target,
            result["isActive"],
            product_id,
        )
        return result
