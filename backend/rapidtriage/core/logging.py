"""
RapidTriage - Structured Logging

Provides structured JSON logging with context injection for request IDs
and emergency IDs. Sensitive fields (keys, tokens, patient names) are masked.
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, List, Optional


# =============================================================================
# Context Variables
# =============================================================================

request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
emergency_id_var: ContextVar[Optional[str]] = ContextVar('emergency_id', default=None)


# =============================================================================
# Masking Utilities
# =============================================================================

SENSITIVE_KEYS = {
    'api_key', 'apikey', 'authorization', 'password', 'token', 'secret',
    'x-api-key', 'patient_name', 'phone',
}


def mask_emergency_id(eid: Optional[str]) -> Optional[str]:
    """Mask emergency ID to first 8 characters."""
    if not eid:
        return None
    return eid[:8] if len(eid) > 8 else eid


def mask_sensitive_data(data: Any) -> Any:
    """
    Recursively mask sensitive fields in a dictionary.

    Matching is by substring on the lower-cased key.
    """
    if not isinstance(data, dict):
        return data

    masked = {}
    for key, value in data.items():
        key_lower = str(key).lower()

        if any(s in key_lower for s in SENSITIVE_KEYS):
            if isinstance(value, str):
                masked[key] = f"***{value[-2:]}" if len(value) > 4 else "***"
            else:
                masked[key] = "[REDACTED]"
        elif isinstance(value, dict):
            masked[key] = mask_sensitive_data(value)
        else:
            masked[key] = value

    return masked


# =============================================================================
# Formatters
# =============================================================================

class StructuredFormatter(logging.Formatter):
    """
    JSON formatter that injects context variables and masks sensitive data.

    Output format:
    {
        "timestamp": "2025-01-30T00:00:00.000000Z",
        "level": "INFO",
        "logger": "rapidtriage.core.coordinator",
        "request_id": "req_abc123",
        "emergency_id": "1f0c2a9b",
        "message": "Human-readable message",
        "data": { ... }
    }
    """

    def __init__(self, anonymize: bool = True):
        super().__init__()
        self._anonymize = anonymize

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = request_id_var.get()
        if request_id:
            log_entry["request_id"] = request_id

        emergency_id = emergency_id_var.get()
        if emergency_id:
            log_entry["emergency_id"] = mask_emergency_id(emergency_id) if self._anonymize else emergency_id

        if hasattr(record, 'event_type'):
            log_entry["event_type"] = record.event_type

        if hasattr(record, 'data') and record.data:
            log_entry["data"] = mask_sensitive_data(record.data)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Human-readable formatter for development.
    Includes timestamp, level, logger, and message with context.
    """

    def __init__(self, anonymize: bool = True):
        super().__init__()
        self._anonymize = anonymize

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")

        context_parts = []

        request_id = request_id_var.get()
        if request_id:
            context_parts.append(f"req={request_id}")

        emergency_id = emergency_id_var.get()
        if emergency_id:
            context_parts.append(f"emergency={mask_emergency_id(emergency_id) if self._anonymize else emergency_id}")

        context_str = f" [{', '.join(context_parts)}]" if context_parts else ""

        message = f"{timestamp} | {record.levelname:<8} | {record.name}{context_str} | {record.getMessage()}"

        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)

        return message


# =============================================================================
# Logger Setup
# =============================================================================

def setup_structured_logging(
    level: str = "INFO",
    json_format: bool = False,
    anonymize: bool = True,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: Use JSON format (True for production, False for development)
        anonymize: Mask emergency IDs to their first 8 characters
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper()))

    if json_format:
        handler.setFormatter(StructuredFormatter(anonymize=anonymize))
    else:
        handler.setFormatter(HumanReadableFormatter(anonymize=anonymize))

    root_logger.addHandler(handler)

    # Suppress noisy loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# =============================================================================
# Context Manager
# =============================================================================

class LogContext:
    """
    Context manager for setting log context variables.

    Usage:
        with LogContext(request_id="req_abc", emergency_id=situation.id):
            logger.info("Processing emergency")
    """

    def __init__(
        self,
        request_id: Optional[str] = None,
        emergency_id: Optional[str] = None,
    ):
        self._request_id = request_id
        self._emergency_id = emergency_id
        self._tokens: List[tuple[ContextVar, Token]] = []

    def __enter__(self):
        if self._request_id:
            self._tokens.append((request_id_var, request_id_var.set(self._request_id)))
        if self._emergency_id:
            self._tokens.append((emergency_id_var, emergency_id_var.set(self._emergency_id)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()
        return False
