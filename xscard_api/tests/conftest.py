"""Shared fixtures: in-memory store, fake external clients and a TestClient."""

from __future__ import annotations

import os
import tempfile

# Must be set before xscard_api.config is imported
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ.setdefault("SECURITY_LOG_DIR", tempfile.mkdtemp(prefix="xscard-security-"))

from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from xscard_api import config
from xscard_api.dependencies import (
    get_entitlement_verifier,
    get_mailer,
    get_payment_client,
    get_store,
    get_ticket_renderer,
    verify_firebase_token,
)
from xscard_api.errors import ExternalServiceError
from xscard_api.main import app

from .memory_store import MemoryStore


class FakePaystack:
    def __init__(self) -> None:
        self.initialized: List[Dict[str, Any]] = []
        self.transactions: Dict[str, Dict[str, Any]] = {}
        self.fail_initialize = False

    def initialize_transaction(self, **kwargs):
        if self.fail_initialize:
            raise ExternalServiceError("Payment provider unreachable", code="PAYMENT_PROVIDER_UNREACHABLE")
        self.initialized.append(kwargs)
        return {
            "reference": kwargs["reference"],
            "authorization_url": f"https://checkout.paystack.com/{kwargs['reference']}",
        }

    def verify_transaction(self, reference):
        return self.transactions.get(reference, {"status": "abandoned", "amount": 0})


class FakeVerifier:
    """Entitlement verifier returning canned results per user."""

    def __init__(self) -> None:
        self.calls: List[tuple] = []
        self.results: Dict[str, Dict[str, Any]] = {}

    def verify_active_entitlement(self, app_user_id, entitlement_id=None):
        self.calls.append((app_user_id, entitlement_id))
        return dict(self.results.get(app_user_id, {"isActive": False, "reason": "NO_ENTITLEMENT"}))


class FakeRenderer:
    def __init__(self) -> None:
        self.fail_for: set = set()
        self.rendered: List[str] = []

    def generate_ticket_qr(self, event_id, user_id, ticket_id):
        if ticket_id in self.fail_for:
            raise RuntimeError(f"QR generation failed for {ticket_id}")
        return {
            "qrCode": f"data:image/png;base64,{ticket_id}",
            "qrPng": b"png",
            "qrDataString": "{}",
            "verificationToken": f"token-{ticket_id}",
            "expiresAt": None,
        }

    def render_ticket_pdf(self, ticket, event, qr_png=None):
        self.rendered.append(ticket["id"])
        return b"%PDF-1.4 fake"


class FakeMailer:
    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []

    def send_ticket_email(self, **kwargs):
        self.sent.append(kwargs)
        return True


def active_entitlement(**overrides) -> Dict[str, Any]:
    result = {
        "isActive": True,
        "entitlementId": "premium",
        "productIdentifier": "xscard_premium_monthly",
        "purchaseDate": "2026-10-01T00:00:00+00:00",
        "expiresDate": "2026-10-31T00:00:00+00:00",
        "willRenew": True,
        "periodType": "normal",
        "store": "app_store",
        "environment": "production",
        "reason": None,
    }
    result.update(overrides)
    return result


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def payments() -> FakePaystack:
    return FakePaystack()


@pytest.fixture
def verifier() -> FakeVerifier:
    return FakeVerifier()


@pytest.fixture
def renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture
def mailer() -> FakeMailer:
    return FakeMailer()


@pytest.fixture
def current_user() -> Dict[str, Any]:
    """Decoded token returned for authenticated requests; tests may mutate it."""
    return {"uid": "user-1", "email": "owner@example.com"}


@pytest.fixture
def client(store, payments, verifier, renderer, mailer, current_user):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_payment_client] = lambda: payments
    app.dependency_overrides[get_entitlement_verifier] = lambda: verifier
    app.dependency_overrides[get_ticket_renderer] = lambda: renderer
    app.dependency_overrides[get_mailer] = lambda: mailer
    app.dependency_overrides[verify_firebase_token] = lambda: current_user
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def anonymous_client(store):
    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def webhook_token(monkeypatch) -> str:
    token = "rc-webhook-token"
    monkeypatch.setattr(config, "REVENUECAT_WEBHOOK_AUTH_TOKEN", token)
    monkeypatch.setattr(config, "REVENUECAT_WEBHOOK_SECRET", "")
    monkeypatch.setattr(config, "REVENUECAT_WEBHOOK_ALLOW_UNSIGNED", False)
    return token


def seed_event(store: MemoryStore, event_id: str = "event-1", **overrides) -> Dict[str, Any]:
    event = {
        "title": "Launch Night",
        "eventDate": "2026-11-20T18:00:00+00:00",
        "time": "18:00",
        "location": {"venue": "The Loft", "city": "Cape Town"},
        "ticketPrice": 0,
        "maxAttendees": 0,
        "currentAttendees": 0,
        "allowBulkRegistrations": True,
        "organizerId": "org-1",
    }
    event.update(overrides)
    store.seed("events", event_id, event)
    return event


def attendees(n: int, prefix: str = "guest") -> List[Dict[str, Optional[str]]]:
    return [
        {"name": f"Guest {i}", "email": f"{prefix}{i}@example.com", "phone": f"08200000{i:02d}"}
        for i in range(1, n + 1)
    ]
