"""Security audit logging.

Structured JSON events for:
- Authentication failures (Firebase tokens)
- Authorization failures (ownership, admin-only endpoints)
- Webhook signature rejections
- Rate limit violations

Events go to the "security" logger and a rotating file under SECURITY_LOG_DIR.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional

from .. import config

SECURITY_LOG_FILE = config.SECURITY_LOG_DIR / "security.log"

MAX_LOG_SIZE = 10 * 1024 * 1024  # 10MB per file
BACKUP_COUNT = 5


class SecurityLogger:
    """Structured security event logger with rotation."""

    def __init__(self):
        self.logger = logging.getLogger("security")
        self._setup_handler()

    def _setup_handler(self):
        if self.logger.handlers:
            return
        try:
            config.SECURITY_LOG_DIR.mkdir(parents=True, exist_ok=True)
            handler = RotatingFileHandler(
                SECURITY_LOG_FILE,
                maxBytes=MAX_LOG_SIZE,
                backupCount=BACKUP_COUNT,
            )
        except OSError as exc:
            # Read-only filesystems (serverless, CI) still get the stream logs
            logging.getLogger("api.security").warning("Security log file unavailable: %s", exc)
            return
        handler.setLevel(logging.WARNING)
        handler.setFormatter(logging.Formatter("%(message)s"))
        self.logger.addHandler(handler)
        self.logger.setLevel(logging.WARNING)

    def log_event(
        self,
        event_type: str,
        severity: str,  # 'low', 'medium', 'high', 'critical'
        details: Dict[str, Any],
        ip: Optional[str] = None,
        uid: Optional[str] = None,
        path: Optional[str] = None,
    ):
        event = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "event": event_type,
            "severity": severity,
            "ip": ip,
            "uid": uid,
            "path": path,
            **details,
        }
        event = {k: v for k, v in event.items() if v is not None}
        self.logger.warning(json.dumps(event, default=str))

    def auth_failure(
        self,
        ip: str,
        reason: str,
        path: str,
        user_agent: Optional[str] = None,
        uid: Optional[str] = None,
        **extra: Any,
    ):
        """Log authentication failure."""
        self.log_event(
            event_type="auth_failure",
            severity="medium",
            details={"reason": reason, "user_agent": user_agent, **extra},
            ip=ip,
            uid=uid,
            path=path,
        )

    def unauthorized_access(
        self,
        uid: str,
        resource: str,
        ip: Optional[str] = None,
        path: Optional[str] = None,
    ):
        """Log access to a resource the user does not own."""
        self.log_event(
            event_type="unauthorized_access",
            severity="high",
            details={"resource": resource},
            ip=ip,
            uid=uid,
            path=path,
        )

    def webhook_rejected(self, ip: str, path: str, reason: str, provider: str = "revenuecat"):
        """Log a webhook that failed signature verification."""
        self.log_event(
            event_type="webhook_signature_failure",
            severity="high",
            details={"provider": provider, "reason": reason},
            ip=ip,
            path=path,
        )

    def rate_limit_exceeded(self, ip: str, path: str, limit: str):
        self.log_event(
            event_type="rate_limit_exceeded",
            severity="medium",
            details={"limit": limit},
            ip=ip,
            path=path,
        )


security_logger = SecurityLogger()
