"""Tests for QR codes, ticket PDFs, email and per-ticket delivery isolation."""

import asyncio
import base64
import json

from xscard_api.services import mailer as mailer_module
from xscard_api.services.bulk_registrations import deliver_tickets
from xscard_api.services.mailer import Mailer
from xscard_api.services.ticket_documents import TicketRenderer, verification_token

from .conftest import FakeMailer, FakeRenderer, seed_event
from .memory_store import MemoryStore


class TestTicketRenderer:

    def test_qr_code(self):
        qr = TicketRenderer().generate_ticket_qr("event-1", "user-1", "ticket-1")

        assert qr["qrCode"].startswith("data:image/png;base64,")
        assert qr["qrPng"].startswith(b"\x89PNG")
        assert len(qr["verificationToken"]) == 64

        payload = json.loads(qr["qrDataString"])
        assert payload["ticketId"] == "ticket-1"
        assert payload["type"] == "event_checkin"
        assert payload["verificationToken"] == qr["verificationToken"]
        assert payload["verificationToken"] == verification_token(
            "event-1", "user-1", "ticket-1", payload["timestamp"]
        )

    def test_token_expiry_follows_ttl(self):
        qr = TicketRenderer(token_ttl_hours=2).generate_ticket_qr("event-1", "user-1", "ticket-1")
        issued_ms = json.loads(qr["qrDataString"])["timestamp"]
        assert abs(qr["expiresAt"].timestamp() * 1000 - issued_ms - 2 * 3600 * 1000) < 1000

    def test_pdf_with_qr(self):
        renderer = TicketRenderer()
        qr = renderer.generate_ticket_qr("event-1", "user-1", "ticket-1")
        ticket = {"id": "ticket-1", "attendeeName": "Guest 1", "attendeeEmail": "g@example.com", "attendeeIndex": 1}
        event = {"title": "Launch Night", "eventDate": "2026-11-20T18:00:00+00:00", "location": "The Loft"}

        pdf = renderer.render_ticket_pdf(ticket, event, qr["qrPng"])

        assert pdf.startswith(b"%PDF")

    def test_pdf_without_qr_or_event_details(self):
        pdf = TicketRenderer().render_ticket_pdf({"id": "ticket-1"}, {})
        assert pdf.startswith(b"%PDF")


class _Response:
    status = 200

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class TestMailer:

    def test_unconfigured_mailer_does_not_send(self, monkeypatch):
        def fail(*args, **kwargs):
            raise AssertionError("should not call Mailjet")

        monkeypatch.setattr(mailer_module.urllib_request, "urlopen", fail)
        assert Mailer(api_key="", secret_key="").send("a@example.com", "Hi", "<p>Hi</p>") is False

    def test_ticket_email_attaches_pdf(self, monkeypatch):
        captured = {}

        def fake_urlopen(req, timeout=None):
            captured["body"] = json.loads(req.data.decode("utf-8"))
            captured["auth"] = req.get_header("Authorization")
            return _Response()

        monkeypatch.setattr(mailer_module.urllib_request, "urlopen", fake_urlopen)
        sent = Mailer(api_key="key", secret_key="secret", sender="Events <events@example.com>").send_ticket_email(
            to_email="guest@example.com",
            attendee_name="<Guest>",
            event_title="Launch Night",
            ticket_id="ticket-1",
            pdf_bytes=b"%PDF-1.4",
        )

        assert sent is True
        message = captured["body"]["Messages"][0]
        assert message["From"] == {"Email": "events@example.com", "Name": "Events"}
        assert message["To"] == [{"Email": "guest@example.com"}]
        assert "&lt;Guest&gt;" in message["HTMLPart"]
        attachment = message["Attachments"][0]
        assert attachment["Filename"] == "ticket-ticket-1.pdf"
        assert base64.b64decode(attachment["Base64Content"]) == b"%PDF-1.4"
        assert captured["auth"] == "Basic " + base64.b64encode(b"key:secret").decode()

    def test_transport_failure_returns_false(self, monkeypatch):
        def broken(req, timeout=None):
            raise OSError("connection refused")

        monkeypatch.setattr(mailer_module.urllib_request, "urlopen", broken)
        assert Mailer(api_key="key", secret_key="secret").send("a@example.com", "Hi", "<p>Hi</p>") is False


class TestDeliverTickets:

    def _tickets(self, store, count):
        tickets = []
        for i in range(1, count + 1):
            ticket = {
                "id": f"ticket-{i}",
                "eventId": "event-1",
                "userId": "user-1",
                "bulkRegistrationId": "bulk-1",
                "attendeeIndex": i,
                "attendeeName": f"Guest {i}",
                "attendeeEmail": f"guest{i}@example.com",
            }
            store.seed("tickets", ticket["id"], ticket)
            tickets.append(ticket)
        return tickets

    def test_one_failure_does_not_block_others(self):
        store = MemoryStore()
        event = seed_event(store)
        tickets = self._tickets(store, 3)
        renderer, mailer = FakeRenderer(), FakeMailer()
        renderer.fail_for.add("ticket-2")

        summary = asyncio.run(deliver_tickets(store, renderer, mailer, event, tickets))

        assert summary == {"delivered": 2, "failed": 1}
        assert sorted(m["ticket_id"] for m in mailer.sent) == ["ticket-1", "ticket-3"]
        assert "qrCode" not in store.get("tickets", "ticket-2")
        assert store.get("tickets", "ticket-1")["qrCode"].startswith("data:image/png")

        tokens = store.all("qr_tokens")
        assert set(tokens) == {"token-ticket-1", "token-ticket-3"}
        assert tokens["token-ticket-1"]["used"] is False

    def test_no_tickets(self):
        summary = asyncio.run(deliver_tickets(MemoryStore(), FakeRenderer(), FakeMailer(), {}, []))
        assert summary == {"delivered": 0, "failed": 0}
