"""
Booking error taxonomy plus error aggregation for deduplicated logging.

Every error the scheduling core raises carries a translation key
(``error_key``) so presentation layers can show a specific message
without parsing exception text.
"""
import hashlib
import time
from collections import defaultdict
from enum import Enum
from typing import Any, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)


class BookingError(Exception):
    """Base class for all scheduling-core failures."""

    error_key = "booking.error"
    status_code = 400

    def __init__(self, message: str = "", *, error_key: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        if error_key:
            self.error_key = error_key
        self.details = details or {}
        super().__init__(message or self.error_key)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": False, "error_key": self.error_key}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(BookingError):
    """Malformed or missing input."""
    error_key = "validation.invalid"
    status_code = 422


class SlotConflict(BookingError):
    """Requested slot(s) were no longer available at commit time."""
    error_key = "booking.slotConflict"
    status_code = 409


class InvalidToken(BookingError):
    error_key = "cancel.invalidToken"
    status_code = 404


class AlreadyCancelled(BookingError):
    error_key = "cancel.alreadyCancelled"
    status_code = 409


class PastAppointment(BookingError):
    error_key = "cancel.pastAppointment"
    status_code = 400


class DeadlineExceeded(BookingError):
    error_key = "cancel.deadline"
    status_code = 400


class NotFound(BookingError):
    error_key = "booking.notFound"
    status_code = 404


class InvalidTransition(BookingError):
    """Status change not allowed from the appointment's current state."""
    error_key = "appointment.invalidTransition"
    status_code = 409


class TransientStoreError(BookingError):
    """Store timeout or connectivity failure. Safe to retry."""
    error_key = "booking.transientFailure"
    status_code = 503


class ErrorSeverity(Enum):
    """Error severity levels for log filtering."""
    LOW = "low"           # validation errors, expected failures
    MEDIUM = "medium"     # timeouts, recoverable errors
    HIGH = "high"         # data inconsistencies, service degradation
    CRITICAL = "critical" # service down, data loss


class ErrorPattern:
    """Track error patterns to reduce duplicate logging."""

    def __init__(self, error_type: str, message: str, context: Dict[str, Any]):
        self.error_type = error_type
        self.message = message[:100]
        self.context = {k: v for k, v in context.items() if k in ['endpoint', 'component', 'method']}
        self.fingerprint = self._generate_fingerprint()
        self.first_seen = time.time()
        self.last_seen = time.time()
        self.count = 1

    def _generate_fingerprint(self) -> str:
        content = f"{self.error_type}:{self.message}:{self.context.get('component', '')}"
        return hashlib.md5(content.encode(), usedforsecurity=False).hexdigest()[:8]

    def update(self):
        self.last_seen = time.time()
        self.count += 1


class ErrorAggregator:
    """Aggregate and deduplicate errors before they reach the log."""

    def __init__(self, log_threshold: int = 10, time_window: int = 300):
        self.log_threshold = log_threshold
        self.time_window = time_window
        self.patterns: Dict[str, ErrorPattern] = {}

    def _determine_severity(self, error: Exception) -> ErrorSeverity:
        if isinstance(error, TransientStoreError):
            return ErrorSeverity.MEDIUM
        if isinstance(error, BookingError):
            return ErrorSeverity.LOW
        if "timeout" in str(error).lower():
            return ErrorSeverity.MEDIUM
        return ErrorSeverity.HIGH

    def should_log(self, pattern: ErrorPattern, severity: ErrorSeverity) -> bool:
        if severity in [ErrorSeverity.HIGH, ErrorSeverity.CRITICAL]:
            return True

        if pattern.count == 1:
            return True

        if severity == ErrorSeverity.MEDIUM and pattern.count % self.log_threshold == 0:
            return True

        if severity == ErrorSeverity.LOW and pattern.count % (self.log_threshold * 5) == 0:
            return True

        return False

    def log_error(self, error: Exception, context: Optional[Dict[str, Any]] = None,
                  severity: Optional[ErrorSeverity] = None) -> str:
        """Log error with deduplication and frequency control."""
        context = context or {}

        if severity is None:
            severity = self._determine_severity(error)

        error_type = type(error).__name__
        message = str(error)

        pattern = ErrorPattern(error_type, message, context)
        fingerprint = pattern.fingerprint

        if fingerprint in self.patterns:
            self.patterns[fingerprint].update()
            pattern = self.patterns[fingerprint]
        else:
            self.patterns[fingerprint] = pattern

        if self.should_log(pattern, severity):
            logger.error(
                "aggregated_error",
                error_hash=fingerprint,
                error_type=error_type,
                error=message,
                count=pattern.count,
                severity=severity.value,
                **context
            )

        return fingerprint

    def get_error_summary(self) -> Dict[str, Any]:
        """Summary of recent errors for the metrics endpoint."""
        now = time.time()
        recent = {
            fp: pattern for fp, pattern in self.patterns.items()
            if now - pattern.last_seen < self.time_window
        }

        by_type: Dict[str, int] = defaultdict(int)
        for pattern in recent.values():
            by_type[pattern.error_type] += pattern.count

        top_errors = sorted(recent.values(), key=lambda p: p.count, reverse=True)[:5]
        return {
            "total_unique_errors": len(recent),
            "total_error_count": sum(p.count for p in recent.values()),
            "by_type": dict(by_type),
            "top_errors": [
                {"fingerprint": p.fingerprint, "type": p.error_type, "message": p.message, "count": p.count}
                for p in top_errors
            ],
        }

    def reset(self):
        self.patterns.clear()


# Global error aggregator instance
error_aggregator = ErrorAggregator()

def log_error(error: Exception, context: Optional[Dict[str, Any]] = None,
              severity: Optional[ErrorSeverity] = None) -> str:
    """Convenience function to log errors through the global aggregator."""
    return error_aggregator.log_error(error, context, severity)
