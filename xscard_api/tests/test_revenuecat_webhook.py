"""Tests for the RevenueCat webhook, status endpoints and verification client."""

import hashlib
import hmac
import json

import pytest

from xscard_api import config
from xscard_api.errors import ValidationError
from xscard_api.services.revenuecat import (
    RevenueCatClient,
    parse_webhook_event,
    verify_webhook_signature,
)

from .conftest import active_entitlement


def _payload(event_type="INITIAL_PURCHASE", user_id="user-1", **event):
    body = {
        "type": event_type,
        "id": "evt-1",
        "app_user_id": user_id,
        "product_id": "xscard_premium_monthly",
        "entitlement_ids": ["premium"],
        "purchased_at_ms": 1790000000000,
        "expiration_at_ms": 1792600000000,
        "environment": "PRODUCTION",
    }
    body.update(event)
    return {"api_version": "1.0", "event": body}


def _post(client, payload, token="rc-webhook-token"):
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    return client.post("/api/revenuecat/webhook", json=payload, headers=headers)


class TestWebhookAuth:

    def test_invalid_token_rejected(self, client, store, verifier, webhook_token):
        response = _post(client, _payload(), token="wrong")
        assert response.status_code == 401
        assert response.json()["code"] == "INVALID_SIGNATURE"
        assert verifier.calls == []
        assert store.all("users") == {}

    def test_missing_token_rejected(self, client, verifier, webhook_token):
        response = _post(client, _payload(), token=None)
        assert response.status_code == 401
        assert verifier.calls == []

    def test_unconfigured_webhook_fails_closed(self, client, verifier, monkeypatch):
        monkeypatch.setattr(config, "REVENUECAT_WEBHOOK_AUTH_TOKEN", "")
        monkeypatch.setattr(config, "REVENUECAT_WEBHOOK_SECRET", "")
        monkeypatch.setattr(config, "REVENUECAT_WEBHOOK_ALLOW_UNSIGNED", False)

        response = _post(client, _payload(), token="anything")
        assert response.status_code == 401
        assert verifier.calls == []


class TestWebhookProcessing:

    def test_initial_purchase_grants_premium(self, client, store, verifier, webhook_token):
        verifier.results["user-1"] = active_entitlement()

        response = _post(client, _payload())

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"] == {"received": True, "eventType": "INITIAL_PURCHASE"}
        assert verifier.calls == [("user-1", "premium")]
        user = store.get("users", "user-1")
        assert user["plan"] == "premium"
        assert user["subscriptionStatus"] == "active"
        assert store.get("subscriptions", "user-1")["environment"] == "PRODUCTION"

    def test_inactive_entitlement_acknowledged_without_changes(self, client, store, verifier, webhook_token):
        response = _post(client, _payload("RENEWAL"))

        assert response.status_code == 200
        assert verifier.calls == [("user-1", "premium")]
        assert store.all("users") == {}
        assert store.all("subscriptionLogs") == {}

    def test_write_failure_does_not_change_response(self, client, store, verifier, webhook_token):
        verifier.results["user-1"] = active_entitlement()
        store.fail_commit_at = 2

        response = _post(client, _payload())

        assert response.status_code == 200
        assert store.all("users") == {}

    def test_unknown_event_type_ignored(self, client, store, verifier, webhook_token):
        response = _post(client, _payload("SUBSCRIBER_ALIAS"))
        assert response.status_code == 200
        assert response.json()["data"]["eventType"] == "SUBSCRIBER_ALIAS"
        assert verifier.calls == []
        assert store.all("users") == {}

    def test_malformed_json(self, client, webhook_token):
        response = client.post(
            "/api/revenuecat/webhook",
            content=b"{not json",
            headers={"Authorization": webhook_token, "Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["code"] == "WEBHOOK_PARSE_ERROR"

    def test_missing_event(self, client, webhook_token):
        response = _post(client, {"api_version": "1.0"})
        assert response.status_code == 400
        assert response.json()["code"] == "WEBHOOK_PARSE_ERROR"

    def test_missing_app_user_id(self, client, verifier, webhook_token):
        response = _post(client, _payload(user_id=None))
        assert response.status_code == 400
        assert response.json()["code"] == "MISSING_APP_USER_ID"
        assert verifier.calls == []


class TestStatusEndpoints:

    def test_status_for_caller(self, client, store, verifier):
        verifier.results["user-1"] = active_entitlement()
        store.seed("users", "user-1", {"plan": "premium", "subscriptionStatus": "active"})

        response = client.get("/api/revenuecat/status")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["userId"] == "user-1"
        assert data["isActive"] is True
        assert data["plan"] == "premium"
        assert data["localData"]["subscriptionStatus"] == "active"

    def test_status_without_entitlement(self, client):
        data = client.get("/api/revenuecat/status").json()["data"]
        assert data["isActive"] is False
        assert data["plan"] == "free"
        assert data["subscriptionStatus"] == "no_entitlement"

    def test_status_requires_auth(self, anonymous_client):
        response = anonymous_client.get("/api/revenuecat/status")
        assert response.status_code == 401
        assert response.json()["code"] == "AUTHENTICATION_REQUIRED"

    def test_other_user_status_requires_admin(self, client):
        response = client.get("/api/revenuecat/status/user-2")
        assert response.status_code == 403

    def test_other_user_status_for_admin(self, client, verifier, current_user):
        current_user["admin"] = True
        verifier.results["user-2"] = active_entitlement()

        response = client.get("/api/revenuecat/status/user-2")

        assert response.status_code == 200
        assert response.json()["data"]["userId"] == "user-2"

    def test_sync_persists_state(self, client, store, verifier):
        verifier.results["user-1"] = active_entitlement()

        response = client.post("/api/revenuecat/sync")

        assert response.status_code == 200
        assert response.json()["data"]["plan"] == "premium"
        assert store.get("subscriptions", "user-1")["lastEventType"] == "manual_sync"

    @pytest.mark.parametrize(
        "user_agent, platform",
        [("okhttp/4.9.2", "android"), ("XSCard/3 CFNetwork/1410 Darwin/22.6.0", "ios")],
    )
    def test_products_detect_platform(self, client, user_agent, platform):
        response = client.get("/api/revenuecat/products", headers={"User-Agent": user_agent})
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["platform"] == platform
        assert set(data["products"]) == {"monthly", "annual"}

    def test_products_explicit_platform(self, client):
        response = client.get("/api/revenuecat/products", params={"platform": "android"})
        assert response.json()["data"]["platform"] == "android"


class TestSignatureVerification:

    def test_bearer_and_bare_token(self, webhook_token):
        assert verify_webhook_signature(f"Bearer {webhook_token}", None, b"{}")[0] is True
        assert verify_webhook_signature(webhook_token, None, b"{}")[0] is True
        assert verify_webhook_signature("Bearer other", None, b"{}") == (False, "invalid_authorization")

    def test_hmac_signature(self, monkeypatch):
        monkeypatch.setattr(config, "REVENUECAT_WEBHOOK_AUTH_TOKEN", "")
        monkeypatch.setattr(config, "REVENUECAT_WEBHOOK_SECRET", "shh")
        body = json.dumps(_payload()).encode()
        good = hmac.new(b"shh", body, hashlib.sha256).hexdigest()

        assert verify_webhook_signature(None, good, body) == (True, "verified")
        assert verify_webhook_signature(None, good, body + b" ") == (False, "invalid_signature")
        assert verify_webhook_signature(None, None, body) == (False, "missing_signature")

    def test_unsigned_allowed_when_opted_in(self, monkeypatch):
        monkeypatch.setattr(config, "REVENUECAT_WEBHOOK_AUTH_TOKEN", "")
        monkeypatch.setattr(config, "REVENUECAT_WEBHOOK_SECRET", "")
        monkeypatch.setattr(config, "REVENUECAT_WEBHOOK_ALLOW_UNSIGNED", True)
        assert verify_webhook_signature(None, None, b"{}") == (True, "unsigned_allowed")


class TestParseWebhookEvent:

    def test_extracts_fields(self):
        event = parse_webhook_event(_payload("PRODUCT_CHANGE"))
        assert event.type == "PRODUCT_CHANGE"
        assert event.user_id == "user-1"
        assert event.entitlement_id == "premium"
        assert event.purchased_at.year == 2026
        assert event.event_id == "evt-1"

    @pytest.mark.parametrize("payload", [None, [], {}, {"event": {}}, {"event": "INITIAL_PURCHASE"}])
    def test_rejects_invalid_payloads(self, payload):
        with pytest.raises(ValidationError):
            parse_webhook_event(payload)


class TestRevenueCatClient:

    def _client(self, monkeypatch, subscriber):
        rc = RevenueCatClient(secret_key="sk_test")
        monkeypatch.setattr(rc, "get_subscriber", lambda app_user_id: {"subscriber": subscriber})
        return rc

    def test_active_entitlement(self, monkeypatch):
        rc = self._client(
            monkeypatch,
            {
                "entitlements": {
                    "premium": {
                        "product_identifier": "xscard_premium_monthly",
                        "purchase_date": "2026-10-01T00:00:00Z",
                        "expires_date": "2099-01-01T00:00:00Z",
                    }
                },
                "subscriptions": {
                    "xscard_premium_monthly": {"store": "app_store", "is_sandbox": True, "period_type": "normal"}
                },
            },
        )

        result = rc.verify_active_entitlement("user-1")

        assert result["isActive"] is True
        assert result["willRenew"] is True
        assert result["environment"] == "sandbox"
        assert result["store"] == "app_store"
        assert result["reason"] is None

    def test_expired_entitlement(self, monkeypatch):
        rc = self._client(
            monkeypatch,
            {"entitlements": {"premium": {"product_identifier": "p", "expires_date": "2020-01-01T00:00:00Z"}}},
        )
        result = rc.verify_active_entitlement("user-1")
        assert result["isActive"] is False
        assert result["reason"] == "EXPIRED"

    def test_unsubscribed_will_not_renew(self, monkeypatch):
        rc = self._client(
            monkeypatch,
            {
                "entitlements": {"premium": {"product_identifier": "p", "expires_date": "2099-01-01T00:00:00Z"}},
                "subscriptions": {"p": {"unsubscribe_detected_at": "2026-10-10T00:00:00Z"}},
            },
        )
        result = rc.verify_active_entitlement("user-1")
        assert result["isActive"] is True
        assert result["willRenew"] is False

    def test_missing_entitlement(self, monkeypatch):
        rc = self._client(monkeypatch, {"entitlements": {}})
        assert rc.verify_active_entitlement("user-1", "pro") == {
            "isActive": False,
            "entitlementId": "pro",
            "reason": "NO_ENTITLEMENT",
        }
