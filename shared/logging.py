"""
Structured logging for the OIDC access engine.

Engine modules log through ``get_logger("oidc.<component>")``. The host
service calls ``configure_logging`` once at startup; until then structlog's
defaults apply.
"""

import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Any, Dict, List, Optional

import structlog
from opentelemetry import trace

# Correlation of engine log lines with the request being authenticated
request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar('user_id', default=None)

# Event keys whose values are credentials and must never reach a log sink
SENSITIVE_KEYS = frozenset({
    "access_token",
    "id_token",
    "refresh_token",
    "client_secret",
    "code",
    "code_verifier",
    "password",
    "encryption_key",
})
REDACTED = "[redacted]"


def configure_logging(service_name: str, log_level: str = "info") -> None:
    """Route engine events through a JSON structlog pipeline on stdout."""
    structlog.configure(
        processors=_processors(service_name),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )
    get_logger("oidc.logging").debug("Logging configured", level=log_level)


def _processors(service_name: str) -> List[Any]:
    def add_service(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict.setdefault("service", service_name)
        return event_dict

    return [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        add_service,
        add_component_context,
        add_trace_context,
        add_correlation_context,
        redact_credentials,
        structlog.processors.JSONRenderer(),
    ]


def add_component_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """``oidc.client`` -> ``component=client``."""
    prefix, _, component = event_dict.get("logger", "").partition(".")
    if prefix == "oidc" and component:
        event_dict["component"] = component
    return event_dict


def add_trace_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Attach the active OpenTelemetry trace and span ids, if any."""
    span_context = trace.get_current_span().get_span_context()
    if span_context.is_valid:
        event_dict["trace_id"] = f"{span_context.trace_id:032x}"
        event_dict["span_id"] = f"{span_context.span_id:016x}"
    return event_dict


def add_correlation_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    request_id = request_id_var.get()
    if request_id:
        event_dict["request_id"] = request_id

    user_id = user_id_var.get()
    if user_id:
        event_dict["user_id"] = user_id

    return event_dict


def redact_credentials(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Mask token and secret values passed as event keys."""
    for key in SENSITIVE_KEYS.intersection(event_dict):
        event_dict[key] = REDACTED
    return event_dict


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind a request id (generated when absent) to the current context."""
    if request_id is None:
        request_id = str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def set_user_context(user_id: Optional[str] = None) -> None:
    """Bind the authenticated subject to the current context."""
    if user_id:
        user_id_var.set(user_id)


def clear_user_context() -> None:
    """Unbind the subject, leaving the request id in place."""
    user_id_var.set(None)


def clear_context() -> None:
    request_id_var.set(None)
    user_id_var.set(None)


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)
