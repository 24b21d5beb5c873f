"""Failure descriptors and the classifier that turns them into typed errors.

Two kinds of failure exist in this package:

* :class:`TransportFailure` is raised by the transport for any non-2xx
  response or request-level problem. It is raw: it only records what
  happened on the wire.
* :class:`ClassifiedError` is the typed error every caller branches on. The
  only place a raw failure becomes classified is :func:`classify`.

Classified errors are flat. Nothing wraps a classified error in another one;
adding context goes through :meth:`ClassifiedError.annotate`, which keeps the
kind and only extends the message.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any

from pydantic import ValidationError


class ErrorKind(str, Enum):
    AUTH = "AUTH"
    NOT_FOUND = "NOT_FOUND"
    VALIDATION = "VALIDATION"
    RATE_LIMIT = "RATE_LIMIT"
    NETWORK = "NETWORK"
    TIMEOUT = "TIMEOUT"
    API_ERROR = "API_ERROR"
    POLLING_TIMEOUT = "POLLING_TIMEOUT"
    SDK_ERROR = "SDK_ERROR"
    UNKNOWN = "UNKNOWN"


_STATUS_KINDS = {
    401: ErrorKind.AUTH,
    403: ErrorKind.AUTH,
    404: ErrorKind.NOT_FOUND,
    422: ErrorKind.VALIDATION,
    429: ErrorKind.RATE_LIMIT,
}

_KIND_HINTS = {
    ErrorKind.AUTH: "Please check your API key.",
    ErrorKind.RATE_LIMIT: "Please try again later.",
    ErrorKind.NOT_FOUND: "The requested resource could not be found.",
    ErrorKind.VALIDATION: "Please check your input parameters.",
    ErrorKind.POLLING_TIMEOUT: "The operation took too long to complete.",
    ErrorKind.NETWORK: "Please check your connection.",
    ErrorKind.TIMEOUT: "Please check your connection.",
}

REQUIRED_TOKEN_RE = re.compile(r"must include [`'\"]([^`'\"]+)[`'\"]", re.IGNORECASE)


class TransportFailure(Exception):
    """Unclassified failure raised by the transport."""

    def __init__(
        self,
        description: str,
        *,
        status_code: int | None = None,
        payload: Any = None,
        timed_out: bool = False,
        connection_failed: bool = False,
        method: str | None = None,
        path: str | None = None,
    ):
        super().__init__(description)
        self.description = description
        self.status_code = status_code
        self.payload = payload
        self.timed_out = timed_out
        self.connection_failed = connection_failed
        self.method = method
        self.path = path


class ClassifiedError(Exception):
    """Normalized failure with a fixed-vocabulary kind."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind,
        details: Any = None,
        http_status: int | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.details = details
        self.http_status = http_status
        self.context = dict(context or {})

    def __repr__(self) -> str:
        return f"ClassifiedError(kind={self.kind.value}, message={self.message!r}, http_status={self.http_status})"

    def annotate(self, prefix: str = "", suffix: str = "", **context: Any) -> ClassifiedError:
        """Return a copy with extra text around the message and merged context.

        Kind, details and HTTP status are carried over untouched.
        """
        return ClassifiedError(
            f"{prefix}{self.message}{suffix}",
            self.kind,
            details=self.details,
            http_status=self.http_status,
            context={**self.context, **context},
        )

    def to_user_message(self) -> str:
        message = self.message
        kind_hint = _KIND_HINTS.get(self.kind)
        if kind_hint:
            message += f" {kind_hint}"
        pattern_hint = remediation_hint(self.message)
        if pattern_hint:
            message += f"\n\n{pattern_hint}"
        return message


def remediation_hint(message: str) -> str | None:
    """Return advice for well-known service messages, if any applies."""
    token_match = REQUIRED_TOKEN_RE.search(message)
    if token_match:
        return (
            "This error occurs when using a LoRA that requires a specific token in the prompt. "
            f'Please add "{token_match.group(1)}" to your prompt text when using this LoRA.'
        )
    if "Model branch mismatch" in message:
        return (
            "This error occurs when trying to combine LoRAs from different model branches. "
            "You can only combine LoRAs that are from the same branch (e.g., all flux1 or all sd15)."
        )
    if "API error (422)" in message:
        return (
            "This may be due to:\n"
            "- Invalid LoRA ID or LoRA not accessible\n"
            "- Missing required token for a LoRA\n"
            "- Incompatible LoRAs from different branches\n"
            "- Other validation issues with the prompt or parameters"
        )
    return None


def _join_rails_errors(items: list[Any]) -> str:
    parts = []
    for item in items:
        if isinstance(item, dict) and "field" in item and "message" in item:
            parts.append(f"{item['field']}: {item['message']}")
        else:
            parts.append(str(item))
    return ", ".join(parts)


def _join_field_errors(data: dict[str, Any]) -> str:
    parts = []
    for field_name, value in data.items():
        if isinstance(value, list):
            parts.append(f"{field_name}: {', '.join(str(v) for v in value)}")
        elif isinstance(value, str):
            parts.append(f"{field_name}: {value}")
    return "; ".join(parts)


def extract_message(payload: Any, status_code: int | None = None) -> str:
    """Reduce an error payload of any known shape to one message string.

    Single-message fields win over field-keyed extraction, which wins over the
    generic ``API error (<status>)`` fallback.
    """
    fallback = f"API error ({status_code if status_code is not None else 'unknown status'})"
    if isinstance(payload, str):
        return payload if payload.strip() else fallback
    if not isinstance(payload, dict):
        return fallback

    for key in ("error", "message"):
        value = payload.get(key)
        if value:
            return value if isinstance(value, str) else str(value)

    errors = payload.get("errors")
    if isinstance(errors, list) and errors:
        return _join_rails_errors(errors)

    joined = _join_field_errors(payload)
    return joined or fallback


def _format_validation_error(exc: ValidationError) -> str:
    parts = []
    for item in exc.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        parts.append(f"{location}: {item.get('msg', '')}" if location else item.get("msg", ""))
    return "Invalid input parameters: " + ", ".join(parts)


def classify(raw: BaseException | ClassifiedError) -> ClassifiedError:
    """Map any failure onto the closed :class:`ErrorKind` taxonomy.

    Already-classified errors are returned as-is, so
    ``classify(classify(x)) is classify(x)``.
    """
    if isinstance(raw, ClassifiedError):
        return raw

    if isinstance(raw, TransportFailure):
        status = raw.status_code
        if status is not None:
            kind = _STATUS_KINDS.get(status, ErrorKind.API_ERROR)
        elif raw.timed_out:
            kind = ErrorKind.TIMEOUT
        elif raw.connection_failed:
            kind = ErrorKind.NETWORK
        else:
            kind = ErrorKind.UNKNOWN

        if raw.payload is None and status is None:
            message = raw.description or "Network error"
        else:
            message = extract_message(raw.payload, status)
        return ClassifiedError(message, kind, details=raw.payload, http_status=status)

    if isinstance(raw, ValidationError):
        return ClassifiedError(_format_validation_error(raw), ErrorKind.VALIDATION, details=raw.errors())

    return ClassifiedError(str(raw) or type(raw).__name__, ErrorKind.SDK_ERROR, details=raw)
