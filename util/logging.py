"""
Structured operation logging for the release gate.
Verification, activation, grant and delivery audit lines all go through here.
"""

import logging
from typing import Any, Dict, List

# Field names whose values must never reach a log line
SENSITIVE_FIELDS = ['code', 'access_code', 'presented_code', 'unlock_code_hash',
                    'token', 'password', 'secret', 'body']


class StructuredLogger:
    """Structured logger for release gate operations."""

    def __init__(self, name: str = "release_gate"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {sanitize_payload(details)}"

        self.logger.info(message)

    def log_verification(self, owner_id: str, identity: str, status: str, reason: str = None):
        """Log an executor verification attempt. The presented code is never logged."""
        details = {"owner_id": owner_id, "identity": identity}
        if reason:
            details["reason"] = reason
        self.log_operation("executor.verify", status, details)

    def log_activation(self, owner_id: str, outcome: str, details: Dict[str, Any] = None):
        """Log the result of a release activation attempt."""
        log_details = {"owner_id": owner_id, "outcome": outcome}
        if details:
            log_details.update(details)
        self.log_operation("release.activate", outcome, log_details)

    def log_grant(self, action: str, owner_id: str, contact_ref: str, details: Dict[str, Any] = None):
        """Log access grant lifecycle events (issued, revoked, expired)."""
        log_details = {"owner_id": owner_id, "contact_ref": contact_ref}
        if details:
            log_details.update(details)
        self.log_operation(f"grant.{action}", "success", log_details)

    def log_delivery(self, letter_id: str, outcome: str, details: Dict[str, Any] = None):
        """Log a single letter delivery attempt."""
        log_details = {"letter_id": letter_id}
        if details:
            log_details.update(details)
        status = "success" if outcome in ("sent", "already_delivered") else "failed"
        self.log_operation(f"letter.{outcome}", status, log_details)

    def log_dispatch_run(self, run_id: str, owner_id: str, status: str, start_time: float,
                         end_time: float, details: Dict[str, Any] = None):
        """Log a completed (or crashed) dispatch run with its duration."""
        duration_ms = round((end_time - start_time) * 1000, 2)
        log_details = {"run_id": run_id, "owner_id": owner_id, "duration_ms": duration_ms}
        if details:
            log_details.update(details)
        self.log_operation("dispatch.run", status, log_details)

    def log_heartbeat_task(self, task_name: str, start_time: float, end_time: float,
                           status: str = "success", details: Dict[str, Any] = None):
        """Log heartbeat task execution."""
        duration_ms = round((end_time - start_time) * 1000, 2)
        log_details = {"duration_ms": duration_ms}
        if details:
            log_details.update(details)
        self.log_operation(f"heartbeat.{task_name}", status, log_details)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


def audit_event(event_type: str, identifiers: Dict[str, Any], payload: Dict[str, Any] = None,
                sensitive_fields: List[str] = None):
    """General audit event logging with privacy controls."""
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    log_details = identifiers.copy() if identifiers else {}

    if payload:
        log_details["payload"] = sanitize_payload(payload, sensitive_fields=sensitive_fields)

    logger.log_operation(event_type.replace(".", "_"), "audit", log_details)


def sanitize_payload(payload: Any, reveal_sensitive: bool = False, sensitive_fields: List[str] = None) -> Any:
    """Sanitize payloads for audit logging."""
    if sensitive_fields is None:
        sensitive_fields = SENSITIVE_FIELDS

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if reveal_sensitive or k not in sensitive_fields:
                sanitized[k] = sanitize_payload(v, reveal_sensitive, sensitive_fields)
            else:
                sanitized[k] = "[REDACTED]"
        return sanitized
    elif isinstance(payload, str):
        # Truncate long strings
        return payload[:100] + "..." if len(payload) > 100 else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, reveal_sensitive, sensitive_fields) for item in payload]
    else:
        return payload


# Global logger instance
logger = StructuredLogger()
