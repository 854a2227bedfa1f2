"""Bulk registration router - create, inspect, cancel and pay for multi-attendee registrations.

Endpoints:
    POST   /api/events/{event_id}/bulk-register
    GET    /api/bulk-registrations/{registration_id}
    GET    /api/user/bulk-registrations
    DELETE /api/bulk-registrations/{registration_id}
    POST   /api/bulk-registrations/{registration_id}/verify-payment
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Path, Request

from ..background import TaskQueue
from ..dependencies import (
    get_mailer,
    get_payment_client,
    get_store,
    get_task_queue,
    get_ticket_renderer,
    verify_firebase_token,
)
from ..middleware.rate_limit import rate_limit_read, rate_limit_write
from ..models import ApiResponse, BulkRegistrationCreate, ErrorResponse
from ..services import bulk_registrations as bulk
from ..services.mailer import Mailer
from ..services.paystack import PaystackClient
from ..services.ticket_documents import TicketRenderer
from ..store import DocumentStore

router = APIRouter(tags=["bulk-registrations"])

DOC_ID_PATTERN = r"^[A-Za-z0-9_\-]{1,128}$"

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
}


def _queue_delivery(
    queue: TaskQueue,
    store: DocumentStore,
    renderer: TicketRenderer,
    mailer: Mailer,
    event: Dict[str, Any],
    tickets: list,
    registration_id: str,
) -> None:
    if not tickets:
        return
    queue.submit(
        bulk.deliver_tickets,
        store,
        renderer,
        mailer,
        event,
        tickets,
        task_name="deliver_bulk_tickets",
        context={"bulkRegistrationId": registration_id, "ticketCount": len(tickets)},
    )


@router.post("/events/{event_id}/bulk-register", response_model=ApiResponse, responses=ERROR_RESPONSES)
@rate_limit_write
async def create_bulk_registration(
    request: Request,
    payload: BulkRegistrationCreate,
    event_id: str = Path(..., pattern=DOC_ID_PATTERN),
    decoded_token: dict = Depends(verify_firebase_token),
    store: DocumentStore = Depends(get_store),
    payments: PaystackClient = Depends(get_payment_client),
    renderer: TicketRenderer = Depends(get_ticket_renderer),
    mailer: Mailer = Depends(get_mailer),
    queue: TaskQueue = Depends(get_task_queue),
) -> Dict[str, Any]:
    """Register 2-50 attendees. Paid events return a Paystack checkout URL."""
    data, event, tickets = bulk.create_bulk_registration(
        store,
        payments,
        event_id=event_id,
        user_id=decoded_token["uid"],
        user_email=decoded_token.get("email"),
        quantity=payload.quantity,
        attendees=[a.model_dump() for a in payload.attendeeDetails],
        payment_method=payload.paymentMethod,
    )

    if data.get("paymentUrl"):
        message = "Bulk registration created successfully. Payment required."
    else:
        _queue_delivery(queue, store, renderer, mailer, event, tickets, data["bulkRegistrationId"])
        message = "Bulk registration completed successfully for free event."

    return {"success": True, "message": message, "data": data}


@router.get("/bulk-registrations/{registration_id}", response_model=ApiResponse, responses=ERROR_RESPONSES)
@rate_limit_read
async def get_bulk_registration(
    request: Request,
    registration_id: str = Path(..., pattern=DOC_ID_PATTERN),
    decoded_token: dict = Depends(verify_firebase_token),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    data = bulk.get_bulk_registration(store, registration_id, decoded_token["uid"])
    return {"success": True, "data": data}


@router.get("/user/bulk-registrations", response_model=ApiResponse, responses=ERROR_RESPONSES)
@rate_limit_read
async def list_user_bulk_registrations(
    request: Request,
    decoded_token: dict = Depends(verify_firebase_token),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    data = bulk.list_user_bulk_registrations(store, decoded_token["uid"])
    return {"success": True, "data": data}


@router.delete("/bulk-registrations/{registration_id}", response_model=ApiResponse, responses=ERROR_RESPONSES)
@rate_limit_write
async def cancel_bulk_registration(
    request: Request,
    registration_id: str = Path(..., pattern=DOC_ID_PATTERN),
    decoded_token: dict = Depends(verify_firebase_token),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    """Delete a registration that is still waiting for payment."""
    bulk.cancel_bulk_registration(store, registration_id, decoded_token["uid"])
    return {"success": True, "message": "Bulk registration cancelled successfully"}


@router.post(
    "/bulk-registrations/{registration_id}/verify-payment",
    response_model=ApiResponse,
    responses=ERROR_RESPONSES,
)
@rate_limit_write
async def verify_bulk_payment(
    request: Request,
    registration_id: str = Path(..., pattern=DOC_ID_PATTERN),
    decoded_token: dict = Depends(verify_firebase_token),
    store: DocumentStore = Depends(get_store),
    payments: PaystackClient = Depends(get_payment_client),
    renderer: TicketRenderer = Depends(get_ticket_renderer),
    mailer: Mailer = Depends(get_mailer),
    queue: TaskQueue = Depends(get_task_queue),
) -> Dict[str, Any]:
    """Confirm the Paystack payment and issue the tickets (idempotent)."""
    data, event, tickets = bulk.confirm_payment(store, payments, registration_id, decoded_token["uid"])
    if tickets:
        _queue_delivery(queue, store, renderer, mailer, event, tickets, registration_id)
        message = "Payment verified. Tickets issued."
    else:
        message = "Registration already completed."
    return {"success": True, "message": message, "data": data}
