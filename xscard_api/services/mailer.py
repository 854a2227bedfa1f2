"""Mailjet transactional email."""

from __future__ import annotations

import base64
import html
import json
import logging
from typing import Any, Dict, List, Optional
from urllib import request as urllib_request

from .. import config

logger = logging.getLogger("api.mailer")

MAILJET_SEND_URL = "https://api.mailjet.com/v3.1/send"


def _parse_mailjet_from(value: str) -> Dict[str, str]:
    from_email = value
    from_name = "XS Card"
    if "<" in value and ">" in value:
        before, after = value.split("<", 1)
        from_name = before.strip() or from_name
        from_email = after.split(">", 1)[0].strip() or from_email
    return {"email": from_email, "name": from_name}


class Mailer:
    def __init__(
        self,
        api_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        sender: Optional[str] = None,
        timeout: float = config.MAILJET_TIMEOUT_SEC,
    ) -> None:
        self.api_key = api_key if api_key is not None else config.MAILJET_API_KEY
        self.secret_key = secret_key if secret_key is not None else config.MAILJET_SECRET_KEY
        self.sender = _parse_mailjet_from(sender or config.MAILJET_FROM)
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.secret_key)

    def send(
        self,
        to_email: str,
        subject: str,
        html_part: str,
        attachments: Optional[List[Dict[str, Any]]] = None,
    ) -> bool:
        if not to_email or not self.configured:
            return False

        message: Dict[str, Any] = {
            "From": {"Email": self.sender["email"], "Name": self.sender["name"]},
            "To": [{"Email": to_email}],
            "Subject": subject,
            "HTMLPart": html_part,
        }
        if attachments:
            message["Attachments"] = attachments

        creds = f"{self.api_key}:{self.secret_key}".encode("utf-8")
        auth_header = "Basic " + base64.b64encode(creds).decode("utf-8")
        req = urllib_request.Request(
            MAILJET_SEND_URL,
            data=json.dumps({"Messages": [message]}).encode("utf-8"),
            headers={
                "Authorization": auth_header,
                "Content-Type": "application/json",
            },
            method="POST",
        )
        try:
            with urllib_request.urlopen(req, timeout=self.timeout) as resp:
                return 200 <= int(resp.status) < 300
        except Exception as exc:
            logger.warning("Mailjet send to %s failed: %s", to_email, exc)
            return False

    def send_ticket_email(
        self,
        *,
        to_email: str,
        attendee_name: str,
        event_title: str,
        ticket_id: str,
        pdf_bytes: bytes,
    ) -> bool:
        safe_name = html.escape(attendee_name or "there")
        safe_title = html.escape(event_title or "your event")
        body = (
            f"<p>Hi {safe_name},</p>"
            f"<p>Your ticket for <strong>{safe_title}</strong> is attached.</p>"
            "<p>Show the QR code on the ticket at the entrance to check in.</p>"
            f"<p style=\"color:#888;font-size:12px\">Ticket ID: {html.escape(ticket_id)}</p>"
        )
        attachment = {
            "ContentType": "application/pdf",
            "Filename": f"ticket-{ticket_id}.pdf",
            "Base64Content": base64.b64encode(pdf_bytes).decode("ascii"),
        }
        return self.send(to_email, f"Your ticket for {event_title}", body, [attachment])
