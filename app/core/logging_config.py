"""Structured logging configuration for the application."""

from datetime import UTC, datetime
import json
import logging
import sys

from app.core.config import settings


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

    # Use JSON formatter in production, standard in development
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


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance with the given name."""
    return logging.getLogger(name)


class TallyEventLogger:
    """Specialized logger for submission and tally events."""

    def __init__(self) -> None:
        self.logger = get_logger("tally")

    def log_submission_created(
        self,
        submission_id: int,
        polling_station_id: int,
        user_id: int,
        submission_type: str,
        location_verified: bool,
        confidence_score: int,
    ) -> None:
        """Log a new field submission."""
        self.logger.info(
            f"Submission {submission_id} created for station {polling_station_id}",
            extra={
                "extra_fields": {
                    "event_type": "submission_created",
                    "submission_id": submission_id,
                    "polling_station_id": polling_station_id,
                    "user_id": user_id,
                    "submission_type": submission_type,
                    "location_verified": location_verified,
                    "confidence_score": confidence_score,
                }
            },
        )

    def log_duplicate_submission(
        self, user_id: int, polling_station_id: int, candidate_id: int
    ) -> None:
        """Log a rejected duplicate submission."""
        self.logger.warning(
            f"Duplicate submission rejected for station {polling_station_id}",
            extra={
                "extra_fields": {
                    "event_type": "duplicate_submission",
                    "user_id": user_id,
                    "polling_station_id": polling_station_id,
                    "candidate_id": candidate_id,
                }
            },
        )

    def log_result_recorded(
        self, submission_id: int, position: str, valid: bool, errors: list[str]
    ) -> None:
        """Log a result payload attached to a submission."""
        message = f"Result recorded for submission {submission_id} ({position})"
        extra_fields = {
            "event_type": "result_recorded",
            "submission_id": submission_id,
            "position": position,
            "valid": valid,
        }

        if valid:
            self.logger.info(message, extra={"extra_fields": extra_fields})
        else:
            extra_fields["validation_errors"] = errors
            self.logger.warning(message, extra={"extra_fields": extra_fields})

    def log_anomalies(self, submission_id: int, flags: list[str]) -> None:
        """Log statistical anomalies detected on a result."""
        self.logger.warning(
            f"Anomalies flagged on submission {submission_id}: {'; '.join(flags)}",
            extra={
                "extra_fields": {
                    "event_type": "anomalies_flagged",
                    "submission_id": submission_id,
                    "flags": flags,
                }
            },
        )

    def log_review(
        self, submission_id: int, reviewer_id: int, action: str, new_status: str
    ) -> None:
        """Log a reviewer decision."""
        self.logger.info(
            f"Submission {submission_id} reviewed: {action}",
            extra={
                "extra_fields": {
                    "event_type": "submission_reviewed",
                    "submission_id": submission_id,
                    "reviewer_id": reviewer_id,
                    "action": action,
                    "status": new_status,
                }
            },
        )

    def log_scope_narrowed(
        self, user_id: int | None, requested: dict, applied: dict
    ) -> None:
        """Log a caller request that fell outside their electoral scope."""
        self.logger.info(
            "Requested scope narrowed to caller restriction",
            extra={
                "extra_fields": {
                    "event_type": "scope_narrowed",
                    "user_id": user_id,
                    "requested": requested,
                    "applied": applied,
                }
            },
        )


# Global tally event logger instance
tally_logger = TallyEventLogger()
