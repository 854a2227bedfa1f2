"""Subscription plan router - plan changes with proration.

Endpoints:
    POST /api/subscription/change-plan
    POST /api/subscription/preview-plan-change
    GET  /api/subscription/available-plans
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request

from ..dependencies import get_store, verify_firebase_token
from ..middleware.rate_limit import rate_limit_read, rate_limit_write
from ..models import ApiResponse, ErrorResponse, PlanChangeRequest
from ..services import plan_changes
from ..store import DocumentStore

router = APIRouter(prefix="/subscription", tags=["subscription"])

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    401: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
}


@router.post("/change-plan", response_model=ApiResponse, responses=ERROR_RESPONSES)
@rate_limit_write
async def change_plan(
    request: Request,
    payload: PlanChangeRequest,
    decoded_token: dict = Depends(verify_firebase_token),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    result = plan_changes.change_plan(store, decoded_token["uid"], payload.currentPlanId, payload.newPlanId)
    message = result.pop("message")
    return {"success": True, "message": message, "data": result}


@router.post("/preview-plan-change", response_model=ApiResponse, responses=ERROR_RESPONSES)
@rate_limit_read
async def preview_plan_change(
    request: Request,
    payload: PlanChangeRequest,
    decoded_token: dict = Depends(verify_firebase_token),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    """Validate and price a plan change without applying it."""
    result = plan_changes.preview_plan_change(store, decoded_token["uid"], payload.currentPlanId, payload.newPlanId)
    return {"success": True, "message": "Plan change preview", "data": result}


@router.get("/available-plans", response_model=ApiResponse, responses={401: {"model": ErrorResponse}})
@rate_limit_read
async def available_plans(
    request: Request,
    decoded_token: dict = Depends(verify_firebase_token),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    return {"success": True, "data": plan_changes.available_plans(store, decoded_token["uid"])}
