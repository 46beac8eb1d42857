"""Structured logging configuration for the application."""

from datetime import UTC, datetime
import json
import logging
import sys

from electoral.core.config import settings


class JSONFormatter(logging.Formatter):
    """Format logs as JSON for structured logging in production."""

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as JSON."""
        log_data = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


class StandardFormatter(logging.Formatter):
    """Human-readable formatter for development."""

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )


def setup_logging() -> None:
    """Configure application logging based on environment."""
    log_level = logging.INFO
    if settings.ENVIRONMENT == "development":
        log_level = logging.DEBUG
    elif settings.ENVIRONMENT == "production":
        log_level = logging.WARNING

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)

    # JSON in production, plain text elsewhere
    if settings.ENVIRONMENT == "production":
        formatter = JSONFormatter()
    else:
        formatter = StandardFormatter()

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Set specific log levels for noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.error").setLevel(logging.INFO)
    logging.getLogger("fastapi").setLevel(logging.INFO)
    logging.getLogger("botocore").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)


class AuditLogger:
    """Specialized logger for territorial access and correction events."""

    def __init__(self) -> None:
        self.logger = get_logger("audit")

    def log_access_denied(
        self,
        user_id: str,
        node_code: int,
        level: str,
        operation: str | None = None,
    ) -> None:
        """Log a refused territorial access check."""
        self.logger.warning(
            f"Access denied for user {user_id} on node {node_code} ({level})",
            extra={
                "extra_fields": {
                    "event_type": "access_denied",
                    "user_id": user_id,
                    "node_code": node_code,
                    "level": level,
                    "operation": operation,
                }
            },
        )

    def log_grant_change(
        self,
        action: str,
        grant_id: int,
        user_id: str,
        node_code: int,
        performed_by: str,
    ) -> None:
        """Log creation or deactivation of an access grant."""
        self.logger.info(
            f"Access grant {grant_id} {action} for user {user_id} on node {node_code}",
            extra={
                "extra_fields": {
                    "event_type": f"grant_{action}",
                    "grant_id": grant_id,
                    "user_id": user_id,
                    "node_code": node_code,
                    "performed_by": performed_by,
                }
            },
        )

    def log_correction(
        self,
        correction_id: int,
        target_kind: str,
        station_code: int,
        created_by: str,
        party_code: int | None = None,
    ) -> None:
        """Log a new correction appended to the ledger."""
        self.logger.info(
            f"Correction {correction_id} recorded on {target_kind} {station_code}",
            extra={
                "extra_fields": {
                    "event_type": "correction_recorded",
                    "correction_id": correction_id,
                    "target_kind": target_kind,
                    "station_code": station_code,
                    "party_code": party_code,
                    "created_by": created_by,
                }
            },
        )

    def log_review(
        self,
        entity: str,
        entity_id: int,
        status: str,
        performed_by: str,
        reason: str | None = None,
    ) -> None:
        """Log a review transition (approve, reject, validate)."""
        self.logger.info(
            f"{entity} {entity_id} marked {status} by {performed_by}",
            extra={
                "extra_fields": {
                    "event_type": "review_transition",
                    "entity": entity,
                    "entity_id": entity_id,
                    "status": status,
                    "performed_by": performed_by,
                    "reason": reason,
                }
            },
        )


# Global audit logger instance
audit_logger = AuditLogger()
