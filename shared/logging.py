"""
Structured logging for the What Went Wrong API.

Every event is one JSON line carrying the service name, the request id and,
once the authentication gate has passed, the subject id. Raw bearer tokens
and Authorization headers are never written.
"""

import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
subject_id_var: ContextVar[Optional[str]] = ContextVar("subject_id", default=None)

# Event keys whose values are credentials
REDACTED_KEYS = frozenset({"token", "access_token", "authorization", "private_key"})


def configure_logging(service_name: str, log_level: str = "info") -> None:
    """Configure structlog JSON output for ``service_name``."""

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            bind_service(service_name),
            add_request_context,
            redact_credentials,
            structlog.processors.JSONRenderer(sort_keys=True),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )


def bind_service(service_name: str):
    """Processor stamping every event with the service it came from."""

    def processor(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict.setdefault("service", service_name)
        return event_dict

    return processor


def add_request_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Attach the current request id and authenticated subject, when known."""
    request_id = request_id_var.get()
    if request_id:
        event_dict.setdefault("request_id", request_id)

    subject_id = subject_id_var.get()
    if subject_id:
        event_dict.setdefault("subject_id", subject_id)

    return event_dict


def redact_credentials(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    for key in REDACTED_KEYS.intersection(event_dict):
        event_dict[key] = "[redacted]"
    return event_dict


def set_request_id(request_id: Optional[str] = None) -> str:
    """Use the caller's X-Request-ID, or mint one."""
    request_id = request_id or str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def set_subject_context(subject_id: Optional[str] = None):
    """Bind the authenticated subject to the logging context."""
    if subject_id:
        subject_id_var.set(subject_id)


def clear_context():
    request_id_var.set(None)
    subject_id_var.set(None)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
