"""Environment-driven configuration for the XS Card API.

Values are read once at import time. Secrets are never defaulted.
"""

from __future__ import annotations

import os
from pathlib import Path


def _bool_env(name: str, default: bool = False) -> bool:
    raw = str(os.environ.get(name, "")).strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def _csv_env(name: str, default: str = "") -> tuple:
    return tuple(
        item.strip()
        for item in str(os.environ.get(name, default)).split(",")
        if item.strip()
    )


# =============================================================================
# APPLICATION
# =============================================================================

DEBUG_MODE = _bool_env("DEBUG", False)
API_VERSION = "1.0.0"
BASE_URL = str(os.environ.get("BASE_URL", "https://xscard.co.za")).strip().rstrip("/")

ALLOWED_ORIGINS = list(
    _csv_env(
        "ALLOWED_ORIGINS",
        "http://localhost:8081,http://localhost:3000,https://xscard.co.za",
    )
)

PACKAGE_DIR = Path(__file__).parent
PROJECT_DIR = PACKAGE_DIR.parent

SERVICE_ACCOUNT_PATH = os.environ.get(
    "GOOGLE_APPLICATION_CREDENTIALS",
    str(PROJECT_DIR / "firebase-adminsdk.json"),
)

# Admin access for version registration and cross-user subscription reads
ADMIN_UIDS = frozenset(_csv_env("ADMIN_UIDS"))

RATE_LIMIT_ENABLED = _bool_env("RATE_LIMIT_ENABLED", True)
SECURITY_LOG_DIR = Path(os.environ.get("SECURITY_LOG_DIR", str(PROJECT_DIR / "logs")))

# =============================================================================
# BULK REGISTRATION / PAYSTACK
# =============================================================================

BULK_MIN_QUANTITY = 2
BULK_MAX_QUANTITY = 50

PAYSTACK_SECRET_KEY = str(os.environ.get("PAYSTACK_SECRET_KEY", "")).strip()
PAYSTACK_API_BASE = "https://api.paystack.co"
PAYSTACK_API_TIMEOUT_SEC = float(os.environ.get("PAYSTACK_API_TIMEOUT_SEC", "10"))
PAYMENT_CALLBACK_URL = str(
    os.environ.get("PAYMENT_CALLBACK_URL", f"{BASE_URL}/events/registration/payment/callback")
).strip()
# Amounts are stored in rand; Paystack expects the minor unit
CURRENCY_MINOR_UNITS = 100
# Flat platform fee (minor units) when paying out through an organiser subaccount
PLATFORM_TRANSACTION_CHARGE = int(os.environ.get("PLATFORM_TRANSACTION_CHARGE", "1000"))
# Organiser subaccount split; off in debug mode
PAYSTACK_USE_SUBACCOUNTS = _bool_env("PAYSTACK_USE_SUBACCOUNTS", not DEBUG_MODE)
# Paystack plan references for the subscription catalog
PAYSTACK_MONTHLY_PLAN_CODE = str(os.environ.get("PAYSTACK_MONTHLY_PLAN_CODE", "")).strip()
PAYSTACK_ANNUAL_PLAN_CODE = str(os.environ.get("PAYSTACK_ANNUAL_PLAN_CODE", "")).strip()

QR_TOKEN_TTL_HOURS = 24

# =============================================================================
# EMAIL (Mailjet)
# =============================================================================

MAILJET_API_KEY = str(os.environ.get("MAILJET_API_KEY") or "").strip()
MAILJET_SECRET_KEY = str(os.environ.get("MAILJET_SECRET_KEY") or "").strip()
MAILJET_FROM = str(os.environ.get("MAILJET_FROM") or "XS Card <no-reply@xscard.co.za>").strip()
MAILJET_TIMEOUT_SEC = float(os.environ.get("MAILJET_TIMEOUT_SEC", "10"))

# =============================================================================
# iOS VERSION GATING
# =============================================================================

IOS_APP_STORE_URL = str(
    os.environ.get("IOS_APP_STORE_URL", "https://apps.apple.com/app/id6742452317")
).strip()
IOS_DEFAULT_UPDATE_MESSAGE = "A new version of XS Card is available. Please update to continue."

# =============================================================================
# SUBSCRIPTIONS / REVENUECAT
# =============================================================================

REVENUECAT_SECRET_KEY = str(os.environ.get("REVENUECAT_SECRET_KEY", "")).strip()
REVENUECAT_API_BASE = "https://api.revenuecat.com/v1"
REVENUECAT_API_TIMEOUT_SEC = float(os.environ.get("REVENUECAT_API_TIMEOUT_SEC", "30"))
REVENUECAT_ENTITLEMENT_ID = str(os.environ.get("REVENUECAT_ENTITLEMENT_ID", "premium")).strip()
REVENUECAT_WEBHOOK_AUTH_TOKEN = str(os.environ.get("REVENUECAT_WEBHOOK_AUTH_TOKEN", "")).strip()
REVENUECAT_WEBHOOK_SECRET = str(os.environ.get("REVENUECAT_WEBHOOK_SECRET", "")).strip()
REVENUECAT_WEBHOOK_ALLOW_UNSIGNED = _bool_env("REVENUECAT_WEBHOOK_ALLOW_UNSIGNED", False)

REVENUECAT_PRODUCT_IDS = {
    "ios": {
        "monthly": str(os.environ.get("REVENUECAT_IOS_MONTHLY_PRODUCT_ID", "")).strip(),
        "annual": str(os.environ.get("REVENUECAT_IOS_ANNUAL_PRODUCT_ID", "")).strip(),
    },
    "android": {
        "monthly": str(os.environ.get("REVENUECAT_ANDROID_MONTHLY_PRODUCT_ID", "")).strip(),
        "annual": str(os.environ.get("REVENUECAT_ANDROID_ANNUAL_PRODUCT_ID", "")).strip(),
    },
}

# "cents" rounds proration to 2 dp, "units" to whole rand
PRORATION_PRECISION = str(os.environ.get("PRORATION_PRECISION", "cents")).strip().lower()
