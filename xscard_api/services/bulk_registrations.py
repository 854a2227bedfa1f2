"""Bulk ticket registration: creation, payment confirmation and ticket issuance.

Issuance is one transaction (tickets + registration + attendee count) that
only succeeds while the registration is still pending.
QR codes, PDFs and emails are produced afterwards, per ticket, and a failure
there never touches the committed tickets.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Tuple

from .. import config
from ..errors import AuthorizationError, ConflictError, ExternalServiceError, NotFoundError, ValidationError
from ..store import SERVER_TIMESTAMP, DocumentStore, Increment, Transaction
from ..utils.security_logger import security_logger
from .mailer import Mailer
from .paystack import PaystackClient
from .ticket_documents import TicketRenderer

logger = logging.getLogger("api.bulk_registrations")

BULK_REGISTRATIONS = "bulk_registrations"
TICKETS = "tickets"
EVENTS = "events"
EVENT_ORGANISERS = "event_organisers"
QR_TOKENS = "qr_tokens"


def validate_attendee_count(quantity: Any, attendees: Any) -> None:
    if (
        not isinstance(quantity, int)
        or isinstance(quantity, bool)
        or quantity < config.BULK_MIN_QUANTITY
        or quantity > config.BULK_MAX_QUANTITY
    ):
        raise ValidationError(
            f"Invalid quantity. Must be between {config.BULK_MIN_QUANTITY} and "
            f"{config.BULK_MAX_QUANTITY} tickets.",
            code="INVALID_QUANTITY",
        )
    if not isinstance(attendees, list) or len(attendees) != quantity:
        raise ValidationError(
            "Attendee details must match the quantity specified.",
            code="ATTENDEE_COUNT_MISMATCH",
        )


def minor_units(amount: float) -> int:
    return int(round(float(amount) * config.CURRENCY_MINOR_UNITS))


def _load_owned_registration(store: DocumentStore, registration_id: str, user_id: str) -> Dict[str, Any]:
    registration = store.get(BULK_REGISTRATIONS, registration_id)
    if registration is None:
        raise NotFoundError("Bulk registration not found")
    if registration.get("userId") != user_id:
        security_logger.unauthorized_access(uid=user_id, resource=f"{BULK_REGISTRATIONS}/{registration_id}")
        raise AuthorizationError("Access denied")
    return registration


def _organiser_subaccount(store: DocumentStore, organiser_id: Optional[str]) -> Optional[str]:
    if not config.PAYSTACK_USE_SUBACCOUNTS or not organiser_id:
        return None
    try:
        organiser = store.get(EVENT_ORGANISERS, organiser_id)
    except Exception as exc:
        logger.warning("Organiser lookup failed organiser=%s: %s", organiser_id, exc)
        return None
    if organiser and organiser.get("status") == "active":
        return organiser.get("paystackSubaccountCode") or None
    return None


# =============================================================================
# ISSUANCE
# =============================================================================

def issue_bulk_tickets(
    store: DocumentStore,
    registration_id: str,
    event_id: str,
    attendees: List[Dict[str, Any]],
    user_id: str,
    registration_updates: Optional[Dict[str, Any]] = None,
) -> List[Dict[str, Any]]:
    """Create one ticket per attendee and complete the registration atomically.

    The registration is re-read inside the transaction, so only one caller
    can move it from pending to completed.

    Returns the created tickets (with `id`).

    Raises:
        NotFoundError if the registration is gone
        ConflictError (REGISTRATION_NOT_PENDING) if it is no longer pending
        whatever the commit raises; on failure nothing is written
    """

    def _issue(transaction: Transaction) -> List[Dict[str, Any]]:
        registration = transaction.get(BULK_REGISTRATIONS, registration_id)
        if registration is None:
            raise NotFoundError("Bulk registration not found")
        if registration.get("status") != "pending":
            raise ConflictError(
                "Registration is not awaiting payment",
                code="REGISTRATION_NOT_PENDING",
                details={"status": registration.get("status")},
            )

        issued: List[Dict[str, Any]] = []
        for index, attendee in enumerate(attendees, start=1):
            ticket_id = store.new_id(TICKETS)
            ticket = {
                "eventId": event_id,
                "userId": user_id,
                "attendeeName": attendee.get("name"),
                "attendeeEmail": attendee.get("email"),
                "attendeePhone": attendee.get("phone"),
                "ticketType": "attendee",
                "status": "active",
                "bulkRegistrationId": registration_id,
                "attendeeIndex": index,
                "createdAt": SERVER_TIMESTAMP,
                "qrCode": None,
            }
            transaction.set(TICKETS, ticket_id, ticket)
            issued.append({"id": ticket_id, **ticket})

        completion = {
            "status": "completed",
            "completedAt": SERVER_TIMESTAMP,
            "updatedAt": SERVER_TIMESTAMP,
            "ticketIds": [t["id"] for t in issued],
        }
        completion.update(registration_updates or {})
        transaction.update(BULK_REGISTRATIONS, registration_id, completion)
        transaction.update(EVENTS, event_id, {"currentAttendees": Increment(len(issued))})
        return issued

    tickets = store.run_transaction(_issue)

    logger.info(
        "Issued %d tickets for bulk registration=%s event=%s",
        len(tickets),
        registration_id,
        event_id,
    )
    return tickets


def deliver_ticket(
    store: DocumentStore,
    renderer: TicketRenderer,
    mailer: Mailer,
    event: Dict[str, Any],
    ticket: Dict[str, Any],
) -> bool:
    """QR code, check-in token, PDF and email for one ticket. Returns whether the email went out."""
    qr = renderer.generate_ticket_qr(ticket["eventId"], ticket["userId"], ticket["id"])
    store.set(
        QR_TOKENS,
        qr["verificationToken"],
        {
            "eventId": ticket["eventId"],
            "userId": ticket["userId"],
            "ticketId": ticket["id"],
            "createdAt": SERVER_TIMESTAMP,
            "expiresAt": qr["expiresAt"],
            "used": False,
            "checkedInAt": None,
            "checkedInBy": None,
        },
    )
    store.update(TICKETS, ticket["id"], {"qrCode": qr["qrCode"]})

    pdf = renderer.render_ticket_pdf(ticket, event, qr["qrPng"])
    sent = mailer.send_ticket_email(
        to_email=ticket.get("attendeeEmail") or "",
        attendee_name=ticket.get("attendeeName") or "",
        event_title=event.get("title") or "",
        ticket_id=ticket["id"],
        pdf_bytes=pdf,
    )
    if not sent:
        logger.warning("Ticket email not sent ticket=%s", ticket["id"])
    return sent


async def deliver_tickets(
    store: DocumentStore,
    renderer: TicketRenderer,
    mailer: Mailer,
    event: Dict[str, Any],
    tickets: List[Dict[str, Any]],
) -> Dict[str, int]:
    """Run `deliver_ticket` for every ticket concurrently; failures are isolated per ticket."""

    async def _one(ticket: Dict[str, Any]) -> bool:
        try:
            await asyncio.to_thread(deliver_ticket, store, renderer, mailer, event, ticket)
            return True
        except Exception:
            logger.exception(
                "Ticket delivery failed ticket=%s registration=%s",
                ticket.get("id"),
                ticket.get("bulkRegistrationId"),
            )
            return False

    results = await asyncio.gather(*(_one(t) for t in tickets))
    summary = {"delivered": sum(1 for ok in results if ok), "failed": sum(1 for ok in results if not ok)}
    logger.info("Ticket delivery finished %s", summary)
    return summary


# =============================================================================
# REGISTRATION LIFECYCLE
# =============================================================================

def create_bulk_registration(
    store: DocumentStore,
    payments: PaystackClient,
    *,
    event_id: str,
    user_id: str,
    user_email: Optional[str],
    quantity: int,
    attendees: List[Dict[str, Any]],
    payment_method: Optional[str] = None,
) -> Tuple[Dict[str, Any], Optional[Dict[str, Any]], List[Dict[str, Any]]]:
    """Create a pending registration; free events are issued immediately.

    Returns (response data, event, issued tickets). The ticket list is empty
    for paid events, which wait for payment confirmation.
    """
    validate_attendee_count(quantity, attendees)

    event = store.get(EVENTS, event_id)
    if event is None:
        raise NotFoundError("Event not found")
    event = {"id": event_id, **event}

    if not event.get("allowBulkRegistrations"):
        raise ValidationError("This event does not allow bulk registrations", code="BULK_NOT_ALLOWED")

    max_attendees = int(event.get("maxAttendees") or 0)
    current = int(event.get("currentAttendees") or 0)
    if max_attendees > 0 and current + quantity > max_attendees:
        raise ConflictError(
            "Event capacity exceeded",
            code="CAPACITY_EXCEEDED",
            details={"maxAttendees": max_attendees, "currentAttendees": current, "requested": quantity},
        )

    ticket_price = float(event.get("ticketPrice") or 0)
    total_amount = round(ticket_price * quantity, 2)
    if total_amount > 0 and not user_email:
        raise ValidationError("An email address is required for paid registrations", code="EMAIL_REQUIRED")

    registration_id = store.add(
        BULK_REGISTRATIONS,
        {
            "eventId": event_id,
            "userId": user_id,
            "quantity": quantity,
            "totalAmount": total_amount,
            "status": "pending",
            "paymentMethod": payment_method,
            "attendeeDetails": attendees,
            "ticketIds": [],
            "createdAt": SERVER_TIMESTAMP,
            "updatedAt": SERVER_TIMESTAMP,
        },
    )
    logger.info(
        "Bulk registration created id=%s event=%s user=%s quantity=%d total=%.2f",
        registration_id,
        event_id,
        user_id,
        quantity,
        total_amount,
    )

    if total_amount <= 0:
        tickets = issue_bulk_tickets(store, registration_id, event_id, attendees, user_id)
        data = {
            "bulkRegistrationId": registration_id,
            "totalAmount": 0,
            "quantity": quantity,
            "ticketIds": [t["id"] for t in tickets],
        }
        return data, event, tickets

    subaccount = _organiser_subaccount(store, event.get("organizerId"))
    reference = f"BULK_{registration_id}_{int(time.time() * 1000)}"
    try:
        payment = payments.initialize_transaction(
            email=user_email,
            amount_minor=minor_units(total_amount),
            reference=reference,
            callback_url=config.PAYMENT_CALLBACK_URL,
            metadata={
                "bulkRegistrationId": registration_id,
                "eventId": event_id,
                "userId": user_id,
                "quantity": quantity,
                "type": "bulk_registration",
            },
            subaccount=subaccount,
            transaction_charge=config.PLATFORM_TRANSACTION_CHARGE if subaccount else None,
        )
    except ExternalServiceError as exc:
        logger.error("Payment initialization failed registration=%s: %s", registration_id, exc.message)
        raise ExternalServiceError(
            "Payment initialization failed. Please try again.",
            code="PAYMENT_INIT_FAILED",
            details={"bulkRegistrationId": registration_id},
        ) from exc

    store.update(
        BULK_REGISTRATIONS,
        registration_id,
        {
            "paymentReference": payment["reference"],
            "paymentUrl": payment["authorization_url"],
            "paymentStatus": "pending",
            "updatedAt": SERVER_TIMESTAMP,
        },
    )
    data = {
        "bulkRegistrationId": registration_id,
        "paymentUrl": payment["authorization_url"],
        "reference": payment["reference"],
        "totalAmount": total_amount,
        "quantity": quantity,
    }
    return data, event, []


def _completed_view(registration_id: str, registration: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "bulkRegistrationId": registration_id,
        "status": "completed",
        "ticketIds": registration.get("ticketIds") or [],
    }


def confirm_payment(
    store: DocumentStore,
    payments: PaystackClient,
    registration_id: str,
    user_id: str,
) -> Tuple[Dict[str, Any], Optional[Dict[str, Any]], List[Dict[str, Any]]]:
    """Verify the Paystack transaction and issue tickets.

    Returns (response data, event, newly issued tickets). A registration
    that is already completed returns its ticketIds and issues nothing.
    """
    registration = _load_owned_registration(store, registration_id, user_id)

    if registration.get("status") == "completed":
        return _completed_view(registration_id, registration), None, []
    if registration.get("status") != "pending":
        raise ConflictError("Registration is not awaiting payment", code="REGISTRATION_NOT_PENDING")

    reference = registration.get("paymentReference")
    if not reference:
        raise ConflictError("No payment was started for this registration", code="PAYMENT_NOT_INITIALIZED")

    transaction = payments.verify_transaction(reference)
    if transaction.get("status") != "success":
        raise ConflictError(
            "Payment has not been completed",
            code="PAYMENT_NOT_COMPLETED",
            details={"paymentStatus": transaction.get("status")},
        )

    expected = minor_units(registration.get("totalAmount") or 0)
    paid = int(transaction.get("amount") or 0)
    if paid != expected:
        logger.warning(
            "Payment amount mismatch registration=%s expected=%d paid=%d",
            registration_id,
            expected,
            paid,
        )
        raise ConflictError(
            "Payment amount does not match the registration total",
            code="PAYMENT_AMOUNT_MISMATCH",
            details={"expected": expected, "paid": paid},
        )

    event_id = registration["eventId"]
    event = store.get(EVENTS, event_id)
    if event is None:
        raise NotFoundError("Event not found")
    event = {"id": event_id, **event}

    try:
        tickets = issue_bulk_tickets(
            store,
            registration_id,
            event_id,
            registration.get("attendeeDetails") or [],
            user_id,
            registration_updates={"paymentStatus": "success", "paidAt": SERVER_TIMESTAMP},
        )
    except ConflictError as exc:
        # Another confirmation completed the registration after our first read
        current = store.get(BULK_REGISTRATIONS, registration_id) or {}
        if exc.code != "REGISTRATION_NOT_PENDING" or current.get("status") != "completed":
            raise
        logger.info("Bulk registration %s already confirmed concurrently", registration_id)
        return _completed_view(registration_id, current), None, []

    data = {
        "bulkRegistrationId": registration_id,
        "status": "completed",
        "ticketIds": [t["id"] for t in tickets],
    }
    return data, event, tickets


def get_bulk_registration(store: DocumentStore, registration_id: str, user_id: str) -> Dict[str, Any]:
    registration = _load_owned_registration(store, registration_id, user_id)
    tickets = store.query(
        TICKETS,
        where=[("bulkRegistrationId", "==", registration_id)],
        order_by="attendeeIndex",
    )
    event = store.get(EVENTS, registration.get("eventId") or "")
    return {
        "id": registration_id,
        **registration,
        "tickets": [t.to_dict() for t in tickets],
        "event": event,
    }


def list_user_bulk_registrations(store: DocumentStore, user_id: str) -> List[Dict[str, Any]]:
    docs = store.query(
        BULK_REGISTRATIONS,
        where=[("userId", "==", user_id)],
        order_by="createdAt",
        descending=True,
    )
    events: Dict[str, Optional[Dict[str, Any]]] = {}
    results = []
    for doc in docs:
        event_id = doc.data.get("eventId") or ""
        if event_id not in events:
            events[event_id] = store.get(EVENTS, event_id) if event_id else None
        results.append({**doc.to_dict(), "event": events[event_id]})
    return results


def cancel_bulk_registration(store: DocumentStore, registration_id: str, user_id: str) -> None:
    registration = _load_owned_registration(store, registration_id, user_id)
    if registration.get("status") != "pending":
        raise ConflictError(
            "Cannot cancel completed or cancelled registration",
            code="REGISTRATION_NOT_PENDING",
        )
    store.delete(BULK_REGISTRATIONS, registration_id)
    logger.info("Bulk registration cancelled id=%s user=%s", registration_id, user_id)
