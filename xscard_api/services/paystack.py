"""Paystack transaction client (initialize + verify)."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional
from urllib import error as url_error
from urllib import parse as url_parse
from urllib import request as url_request

from .. import config
from ..errors import ExternalServiceError

logger = logging.getLogger("api.paystack")


class PaystackClient:
    def __init__(
        self,
        secret_key: Optional[str] = None,
        base_url: str = config.PAYSTACK_API_BASE,
        timeout: float = config.PAYSTACK_API_TIMEOUT_SEC,
    ) -> None:
        self.secret_key = secret_key if secret_key is not None else config.PAYSTACK_SECRET_KEY
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _request(self, method: str, path: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self.secret_key:
            raise ExternalServiceError(
                "Payment provider is not configured",
                code="PAYMENT_NOT_CONFIGURED",
            )

        data = json.dumps(body).encode("utf-8") if body is not None else None
        req = url_request.Request(
            f"{self.base_url}{path}",
            data=data,
            method=method,
            headers={
                "Authorization": f"Bearer {self.secret_key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )
        try:
            with url_request.urlopen(req, timeout=self.timeout) as resp:
                raw = resp.read().decode("utf-8")
        except url_error.HTTPError as http_exc:
            message = "Payment provider request failed"
            try:
                parsed = json.loads(http_exc.read().decode("utf-8") or "{}")
                message = parsed.get("message") or message
            except (ValueError, OSError):
                pass
            raise ExternalServiceError(
                message,
                code="PAYMENT_PROVIDER_ERROR",
                details={"httpStatus": http_exc.code, "path": path},
            ) from http_exc
        except (url_error.URLError, TimeoutError) as exc:
            raise ExternalServiceError(
                "Payment provider unreachable",
                code="PAYMENT_PROVIDER_UNREACHABLE",
                details={"reason": str(exc)},
            ) from exc

        try:
            parsed = json.loads(raw) if raw else {}
        except ValueError as exc:
            raise ExternalServiceError("Invalid response from payment provider", code="PAYMENT_INVALID_RESPONSE") from exc

        if not parsed.get("status"):
            raise ExternalServiceError(
                parsed.get("message") or "Payment provider rejected the request",
                code="PAYMENT_PROVIDER_ERROR",
            )
        return parsed.get("data") or {}

    def initialize_transaction(
        self,
        *,
        email: str,
        amount_minor: int,
        reference: str,
        callback_url: str,
        metadata: Dict[str, Any],
        subaccount: Optional[str] = None,
        transaction_charge: Optional[int] = None,
    ) -> Dict[str, str]:
        """Start a checkout. Returns {"reference", "authorization_url"}."""
        payload: Dict[str, Any] = {
            "amount": amount_minor,
            "email": email,
            "reference": reference,
            "callback_url": callback_url,
            "metadata": metadata,
        }
        if subaccount:
            payload["subaccount"] = subaccount
            if transaction_charge is not None:
                payload["transaction_charge"] = transaction_charge

        data = self._request("POST", "/transaction/initialize", payload)
        logger.info("Paystack transaction initialized reference=%s", data.get("reference"))
        return {
            "reference": data.get("reference") or reference,
            "authorization_url": data.get("authorization_url") or "",
        }

    def verify_transaction(self, reference: str) -> Dict[str, Any]:
        """Transaction record for `reference` ({"status", "amount", ...})."""
        return self._request("GET", f"/transaction/verify/{url_parse.quote(reference, safe='')}")
