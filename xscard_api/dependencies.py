"""FastAPI dependencies for authentication, the document store, and collaborators.

All endpoints use these dependencies for:
- Firebase token verification
- Document store access (Firestore in production)
- External clients (Paystack, RevenueCat, ticket rendering, email)
- The request-scoped background task queue

Tests replace any of these through `app.dependency_overrides`.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import firebase_admin
from fastapi import BackgroundTasks, Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from firebase_admin import auth, credentials, firestore

from . import config
from .background import TaskQueue
from .errors import AuthenticationError, AuthorizationError
from .services.mailer import Mailer
from .services.paystack import PaystackClient
from .services.revenuecat import RevenueCatClient
from .services.ticket_documents import TicketRenderer
from .store import DocumentStore, FirestoreStore
from .utils.client_ip import get_client_ip
from .utils.security_logger import security_logger

logger = logging.getLogger("api.dependencies")

bearer_scheme = HTTPBearer(auto_error=False)


# =============================================================================
# FIREBASE INITIALIZATION
# =============================================================================

_firebase_app: Optional[firebase_admin.App] = None
_firestore_client = None


def get_firebase_app() -> firebase_admin.App:
    """Get or initialize Firebase Admin app."""
    global _firebase_app

    if _firebase_app is not None:
        return _firebase_app

    try:
        _firebase_app = firebase_admin.get_app()
        return _firebase_app
    except ValueError:
        pass

    if not Path(config.SERVICE_ACCOUNT_PATH).exists():
        raise RuntimeError(f"Service account not found: {config.SERVICE_ACCOUNT_PATH}")

    cred = credentials.Certificate(config.SERVICE_ACCOUNT_PATH)
    _firebase_app = firebase_admin.initialize_app(cred)
    logger.info("Firebase Admin initialized")
    return _firebase_app


def get_firestore():
    """Get Firestore client (singleton)."""
    global _firestore_client

    if _firestore_client is None:
        get_firebase_app()
        _firestore_client = firestore.client()
        logger.info("Firestore client initialized")

    return _firestore_client


def get_store() -> DocumentStore:
    return FirestoreStore(get_firestore())


# =============================================================================
# COLLABORATORS
# =============================================================================

@lru_cache(maxsize=1)
def get_payment_client() -> PaystackClient:
    return PaystackClient()


@lru_cache(maxsize=1)
def get_entitlement_verifier() -> RevenueCatClient:
    return RevenueCatClient()


@lru_cache(maxsize=1)
def get_ticket_renderer() -> TicketRenderer:
    return TicketRenderer()


@lru_cache(maxsize=1)
def get_mailer() -> Mailer:
    return Mailer()


def get_task_queue(background_tasks: BackgroundTasks) -> TaskQueue:
    return TaskQueue(background_tasks)


# =============================================================================
# AUTHENTICATION
# =============================================================================

async def verify_firebase_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Dict[str, Any]:
    """Verify Firebase ID token from Authorization header.

    Returns:
        Decoded token claims including 'uid'

    Raises:
        AuthenticationError on any auth failure
    """
    if credentials is None:
        _log_auth_failure(request, "missing_auth_header")
        raise AuthenticationError("Missing Authorization header")

    token = credentials.credentials

    try:
        get_firebase_app()
        return auth.verify_id_token(token, check_revoked=True)
    except auth.RevokedIdTokenError:
        _log_auth_failure(request, "revoked_token")
        raise AuthenticationError("Token has been revoked", code="TOKEN_REVOKED")
    except auth.ExpiredIdTokenError:
        _log_auth_failure(request, "expired_token")
        raise AuthenticationError("Token has expired", code="TOKEN_EXPIRED")
    except auth.InvalidIdTokenError as e:
        _log_auth_failure(request, "invalid_token", error=str(e))
        raise AuthenticationError("Invalid token", code="TOKEN_INVALID")
    except Exception as e:
        _log_auth_failure(request, "auth_error", error=str(e))
        raise AuthenticationError("Authentication failed")


def is_admin(decoded_token: Dict[str, Any]) -> bool:
    return bool(decoded_token.get("admin")) or decoded_token.get("uid") in config.ADMIN_UIDS


async def require_admin(
    request: Request,
    decoded_token: Dict[str, Any] = Depends(verify_firebase_token),
) -> Dict[str, Any]:
    """Allow only admin users (custom claim or ADMIN_UIDS)."""
    if not is_admin(decoded_token):
        security_logger.unauthorized_access(
            ip=get_client_ip(request),
            uid=decoded_token.get("uid", "unknown"),
            resource="admin",
            path=request.url.path,
        )
        raise AuthorizationError("Admin access required")
    return decoded_token


def _log_auth_failure(request: Request, reason: str, **extra):
    """Log authentication failure for security monitoring."""
    security_logger.auth_failure(
        ip=get_client_ip(request),
        reason=reason,
        path=request.url.path,
        user_agent=request.headers.get("user-agent"),
        **extra,
    )
