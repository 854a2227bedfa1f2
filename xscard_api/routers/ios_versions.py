"""iOS version router - update gating for the mobile app.

Endpoints:
    GET  /api/ios-version-info       - latest / minimum version (public)
    POST /api/ios-version-check      - update verdict for a client (public)
    POST /api/register-ios-version   - publish a version (admin)
    GET  /api/ios-versions           - version history (admin)
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request

from ..dependencies import get_store, require_admin
from ..middleware.rate_limit import rate_limit_public, rate_limit_read, rate_limit_write
from ..models import ApiResponse, ErrorResponse, IosVersionCheckRequest, IosVersionRegisterRequest
from ..services import versions
from ..store import DocumentStore

router = APIRouter(tags=["ios-versions"])
logger = logging.getLogger("api.ios_versions")


@router.get("/ios-version-info", response_model=ApiResponse)
@rate_limit_public
async def get_ios_version_info(
    request: Request,
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    return {"success": True, "data": {"versionInfo": versions.get_version_info(store)}}


@router.post("/ios-version-check", response_model=ApiResponse, responses={400: {"model": ErrorResponse}})
@rate_limit_public
async def check_ios_version(
    request: Request,
    payload: IosVersionCheckRequest,
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    result = versions.check_version(store, payload.currentVersion or "", payload.currentBuildNumber)
    logger.debug(
        "iOS version check current=%s needsUpdate=%s forceUpdate=%s",
        payload.currentVersion,
        result["needsUpdate"],
        result["forceUpdate"],
    )
    return {"success": True, "data": result}


@router.post(
    "/register-ios-version",
    status_code=201,
    response_model=ApiResponse,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
@rate_limit_write
async def register_ios_version(
    request: Request,
    payload: IosVersionRegisterRequest,
    decoded_token: dict = Depends(require_admin),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    record = versions.register_version(
        store,
        version=payload.version,
        build_number=payload.buildNumber if payload.buildNumber is not None else payload.versionCode,
        is_minimum_required=payload.isMinimumRequired,
        update_message=payload.updateMessage,
        update_url=payload.updateUrl,
        release_notes=payload.releaseNotes,
        published_at=payload.publishedAt,
    )
    logger.info("iOS version %s registered by %s", payload.version, decoded_token.get("uid"))
    return {"success": True, "message": "iOS version registered successfully", "data": record}


@router.get(
    "/ios-versions",
    response_model=ApiResponse,
    responses={401: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
@rate_limit_read
async def list_ios_versions(
    request: Request,
    decoded_token: dict = Depends(require_admin),
    store: DocumentStore = Depends(get_store),
) -> Dict[str, Any]:
    return {"success": True, "data": {"versions": versions.list_versions(store)}}
