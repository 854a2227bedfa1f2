"""Check-in QR codes and printable ticket PDFs."""

from __future__ import annotations

import base64
import hashlib
import io
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import qrcode
from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from .. import config
from .proration import coerce_datetime

logger = logging.getLogger("api.tickets")

QR_PAYLOAD_VERSION = "1.0"


def verification_token(event_id: str, user_id: str, ticket_id: str, timestamp_ms: int) -> str:
    raw = f"{event_id}_{user_id}_{ticket_id}_{timestamp_ms}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def _png_bytes(data: str) -> bytes:
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=2,
    )
    qr.add_data(data)
    qr.make(fit=True)
    buf = io.BytesIO()
    qr.make_image(fill_color="black", back_color="white").save(buf, format="PNG")
    return buf.getvalue()


def _format_event_date(event: Dict[str, Any]) -> str:
    raw = event.get("eventDate") or event.get("date")
    parsed = coerce_datetime(raw)
    if parsed is None:
        return str(raw or "TBA")
    return parsed.strftime("%A, %d %B %Y")


def _format_location(event: Dict[str, Any]) -> str:
    location = event.get("location")
    if isinstance(location, dict):
        parts = [location.get("venue"), location.get("city")]
        return ", ".join(p for p in parts if p) or "TBA"
    return str(location or "TBA")


class TicketRenderer:
    def __init__(self, token_ttl_hours: int = config.QR_TOKEN_TTL_HOURS) -> None:
        self.token_ttl_hours = token_ttl_hours

    def generate_ticket_qr(self, event_id: str, user_id: str, ticket_id: str) -> Dict[str, Any]:
        """Build the check-in QR for a ticket.

        Returns {qrCode (PNG data URL), qrPng, qrDataString,
        verificationToken, expiresAt}. Persisting the token is the caller's job.
        """
        now = datetime.now(timezone.utc)
        timestamp_ms = int(now.timestamp() * 1000)
        token = verification_token(event_id, user_id, ticket_id, timestamp_ms)

        payload = {
            "eventId": event_id,
            "userId": user_id,
            "ticketId": ticket_id,
            "verificationToken": token,
            "timestamp": timestamp_ms,
            "type": "event_checkin",
            "version": QR_PAYLOAD_VERSION,
        }
        data_string = json.dumps(payload, separators=(",", ":"))
        png = _png_bytes(data_string)

        return {
            "qrCode": "data:image/png;base64," + base64.b64encode(png).decode("ascii"),
            "qrPng": png,
            "qrDataString": data_string,
            "verificationToken": token,
            "expiresAt": now + timedelta(hours=self.token_ttl_hours),
        }

    def render_ticket_pdf(
        self,
        ticket: Dict[str, Any],
        event: Dict[str, Any],
        qr_png: Optional[bytes] = None,
    ) -> bytes:
        buf = io.BytesIO()
        c = canvas.Canvas(buf, pagesize=A4)
        width, height = A4

        c.setFont("Helvetica-Bold", 20)
        c.drawString(72, height - 80, str(event.get("title") or "Event Ticket"))

        c.setFont("Helvetica", 11)
        y = height - 115
        rows = [
            ("Date", _format_event_date(event)),
            ("Time", str(event.get("time") or "TBA")),
            ("Location", _format_location(event)),
            ("Attendee", str(ticket.get("attendeeName") or "")),
            ("Email", str(ticket.get("attendeeEmail") or "")),
            ("Ticket", str(ticket.get("id") or "")),
        ]
        index = ticket.get("attendeeIndex")
        if index:
            rows.append(("Attendee #", str(index)))
        for label, value in rows:
            c.setFont("Helvetica-Bold", 11)
            c.drawString(72, y, f"{label}:")
            c.setFont("Helvetica", 11)
            c.drawString(160, y, value)
            y -= 18

        if qr_png:
            size = 200
            c.drawImage(ImageReader(io.BytesIO(qr_png)), 72, y - size - 20, width=size, height=size)
            c.setFont("Helvetica", 9)
            c.drawString(72, y - size - 34, "Present this QR code at the entrance for check-in.")

        c.setFont("Helvetica", 8)
        c.drawString(72, 40, f"Issued {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M UTC')}")
        c.showPage()
        c.save()
        return buf.getvalue()
