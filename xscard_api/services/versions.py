"""App version comparison, update gating and the iOS version registry."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .. import config
from ..errors import ValidationError
from ..store import DocumentStore
from .proration import coerce_datetime

logger = logging.getLogger("api.versions")


def compare_versions(v1: str, v2: str) -> int:
    """Compare dotted numeric versions.

    Missing trailing segments count as zero, so "1.2" == "1.2.0".

    Returns:
        -1 if v1 < v2, 0 if equal, 1 if v1 > v2

    Raises:
        ValueError if a segment is not an integer
    """
    parts1 = [int(p) for p in str(v1).strip().split(".")]
    parts2 = [int(p) for p in str(v2).strip().split(".")]

    max_length = max(len(parts1), len(parts2))
    parts1 += [0] * (max_length - len(parts1))
    parts2 += [0] * (max_length - len(parts2))

    for part1, part2 in zip(parts1, parts2):
        if part1 < part2:
            return -1
        if part1 > part2:
            return 1
    return 0


def parse_build_number(value: Any) -> Optional[int]:
    """Integer build number, or None when absent or unparseable."""
    if value is None or value == "":
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def record_build_number(record: Dict[str, Any]) -> Optional[int]:
    """Stored build number; 0 and missing both mean the record has none."""
    for key in ("buildNumber", "versionCode"):
        build = parse_build_number(record.get(key))
        if build:
            return build
    return None


def evaluate_update(
    current_version: str,
    current_build: Any,
    latest: Dict[str, Any],
    minimum: Optional[Dict[str, Any]],
) -> Dict[str, bool]:
    """Decide whether a client on `current_version` must or should update.

    forceUpdate: current is strictly older than the minimum required version
    (the latest version stands in when no minimum is flagged).
    needsUpdate: current is older than latest; when both sides carry a build
    number the build comparison decides instead.
    """
    minimum_version = (minimum or {}).get("version") or latest["version"]
    force_update = compare_versions(current_version, minimum_version) < 0

    needs_update = compare_versions(current_version, latest["version"]) < 0
    client_build = parse_build_number(current_build)
    latest_build = record_build_number(latest)
    if client_build is not None and latest_build is not None:
        needs_update = client_build < latest_build

    return {
        "needsUpdate": needs_update or force_update,
        "forceUpdate": force_update,
    }


# =============================================================================
# VERSION RECORDS
# =============================================================================

IOS_VERSIONS = "ios_versions"


def _first_flagged(store: DocumentStore, flag: str) -> Optional[Dict[str, Any]]:
    docs = store.query(IOS_VERSIONS, where=[(flag, "==", True)], limit=1)
    return docs[0].to_dict() if docs else None


def _build_str(record: Optional[Dict[str, Any]], fallback: Optional[Dict[str, Any]] = None) -> str:
    build = record_build_number(record or {})
    if build is None and fallback is not None:
        build = record_build_number(fallback)
    return str(build if build is not None else 0)


def _iso(value: Any) -> Optional[str]:
    parsed = coerce_datetime(value)
    return parsed.isoformat() if parsed else None


def get_version_info(store: DocumentStore) -> Dict[str, Any]:
    latest = _first_flagged(store, "isLatest")
    if latest is None:
        return {
            "latestVersion": "0.0.0",
            "latestBuildNumber": "0",
            "minimumRequiredVersion": "0.0.0",
            "minimumRequiredBuildNumber": "0",
            "forceUpdate": False,
            "updateMessage": "",
            "updateUrl": config.IOS_APP_STORE_URL,
            "releaseNotes": "",
            "publishedAt": None,
        }

    minimum = _first_flagged(store, "isMinimumRequired")
    force_update = minimum is not None and compare_versions(minimum["version"], latest["version"]) > 0
    return {
        "latestVersion": latest["version"],
        "latestBuildNumber": _build_str(latest),
        "minimumRequiredVersion": (minimum or latest)["version"],
        "minimumRequiredBuildNumber": _build_str(minimum, latest),
        "forceUpdate": force_update,
        "updateMessage": latest.get("updateMessage") or config.IOS_DEFAULT_UPDATE_MESSAGE,
        "updateUrl": latest.get("updateUrl") or config.IOS_APP_STORE_URL,
        "releaseNotes": latest.get("releaseNotes") or "",
        "publishedAt": _iso(latest.get("publishedAt") or latest.get("uploadDate")),
    }


def check_version(store: DocumentStore, current_version: str, current_build: Any = None) -> Dict[str, Any]:
    """Update verdict for a client. Raises ValidationError for a malformed version."""
    if not current_version:
        raise ValidationError("currentVersion is required")

    latest = _first_flagged(store, "isLatest")
    if latest is None:
        return {"needsUpdate": False, "forceUpdate": False, "versionInfo": None}

    minimum = _first_flagged(store, "isMinimumRequired")
    try:
        verdict = evaluate_update(current_version, current_build, latest, minimum)
    except ValueError as exc:
        raise ValidationError("Invalid version format", code="INVALID_VERSION") from exc

    return {
        **verdict,
        "versionInfo": {
            "currentVersion": current_version,
            "currentBuildNumber": str(current_build) if current_build not in (None, "") else "N/A",
            "latestVersion": latest["version"],
            "latestBuildNumber": _build_str(latest),
            "minimumRequiredVersion": (minimum or latest)["version"],
            "minimumRequiredBuildNumber": _build_str(minimum, latest),
            "updateMessage": latest.get("updateMessage") or config.IOS_DEFAULT_UPDATE_MESSAGE,
            "updateUrl": latest.get("updateUrl") or config.IOS_APP_STORE_URL,
            "releaseNotes": latest.get("releaseNotes") or "",
        },
    }


def register_version(
    store: DocumentStore,
    *,
    version: str,
    build_number: Any = None,
    is_minimum_required: bool = False,
    update_message: Optional[str] = None,
    update_url: Optional[str] = None,
    release_notes: Optional[str] = None,
    published_at: Any = None,
) -> Dict[str, Any]:
    """Add a version as latest (and optionally minimum required).

    Prior flag holders are unflagged in the same batch that writes the new
    record, so at most one row carries each flag.
    """
    build = parse_build_number(build_number) or None
    batch = store.batch()

    for doc in store.query(IOS_VERSIONS, where=[("isLatest", "==", True)]):
        batch.update(IOS_VERSIONS, doc.id, {"isLatest": False})
    if is_minimum_required:
        for doc in store.query(IOS_VERSIONS, where=[("isMinimumRequired", "==", True)]):
            batch.update(IOS_VERSIONS, doc.id, {"isMinimumRequired": False})

    now = datetime.now(timezone.utc)
    record = {
        "version": version,
        "buildNumber": build,
        "versionCode": build,
        "isLatest": True,
        "isMinimumRequired": bool(is_minimum_required),
        "updateMessage": update_message or config.IOS_DEFAULT_UPDATE_MESSAGE,
        "updateUrl": update_url or config.IOS_APP_STORE_URL,
        "releaseNotes": release_notes or "",
        "uploadDate": now,
        "publishedAt": coerce_datetime(published_at) or now,
    }
    version_id = store.new_id(IOS_VERSIONS)
    batch.set(IOS_VERSIONS, version_id, record)
    batch.commit()

    logger.info(
        "Registered iOS version %s build=%s minimum=%s id=%s",
        version,
        build,
        record["isMinimumRequired"],
        version_id,
    )
    return {
        "id": version_id,
        **record,
        "uploadDate": record["uploadDate"].isoformat(),
        "publishedAt": record["publishedAt"].isoformat(),
    }


def list_versions(store: DocumentStore) -> List[Dict[str, Any]]:
    versions = []
    for doc in store.query(IOS_VERSIONS, order_by="uploadDate", descending=True):
        data = doc.data
        versions.append(
            {
                "id": doc.id,
                "version": data.get("version"),
                "buildNumber": record_build_number(data),
                "isLatest": bool(data.get("isLatest")),
                "isMinimumRequired": bool(data.get("isMinimumRequired")),
                "updateMessage": data.get("updateMessage") or "",
                "updateUrl": data.get("updateUrl") or "",
                "releaseNotes": data.get("releaseNotes") or "",
                "uploadDate": _iso(data.get("uploadDate")),
                "publishedAt": _iso(data.get("publishedAt")),
            }
        )
    return versions
