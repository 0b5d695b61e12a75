from __future__ import annotations

from contextvars import ContextVar, Token
from datetime import datetime, timezone
import json
import logging
import re
from typing import Any, Mapping
from uuid import uuid4


REQUEST_ID_CONTEXT: ContextVar[str] = ContextVar("request_id", default="-")
REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")
_HANDLER_MARKER = "_archreview_handler"

# Keys are compared after lower-casing and turning dashes into underscores.
SENSITIVE_KEY_NAMES = {"authorization", "cookie", "set_cookie", "email"}
SENSITIVE_KEY_FRAGMENTS = ("password", "secret", "token", "api_key", "apikey")

EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
BEARER_PATTERN = re.compile(r"(?i)\bBearer\s+[A-Za-z0-9\-._~+/]+=*")
PROVIDER_KEY_PATTERN = re.compile(r"\bsk-[A-Za-z0-9_-]{12,}\b")
API_KEY_INLINE_PATTERN = re.compile(r"(?i)\b(api[_-]?key|access[_-]?token)(\s*[:=]\s*)([^\s,;&]{6,})")


def normalize_request_id(candidate: str | None) -> str:
    if candidate:
        trimmed = candidate.strip()
        if REQUEST_ID_PATTERN.fullmatch(trimmed):
            return trimmed
    return str(uuid4())


def set_request_id(request_id: str) -> Token[str]:
    return REQUEST_ID_CONTEXT.set(request_id)


def reset_request_id(token: Token[str]) -> None:
    REQUEST_ID_CONTEXT.reset(token)


def _looks_sensitive_key(key: str) -> bool:
    normalized = key.strip().lower().replace("-", "_")
    return normalized in SENSITIVE_KEY_NAMES or any(fragment in normalized for fragment in SENSITIVE_KEY_FRAGMENTS)


def redact_text(value: str, *, max_length: int = 240) -> str:
    redacted = BEARER_PATTERN.sub("Bearer [REDACTED]", value)
    redacted = PROVIDER_KEY_PATTERN.sub("[REDACTED_KEY]", redacted)
    redacted = API_KEY_INLINE_PATTERN.sub(r"\1\2[REDACTED]", redacted)
    redacted = EMAIL_PATTERN.sub("[REDACTED_EMAIL]", redacted)
    if len(redacted) > max_length:
        return f"{redacted[:max_length]}...[truncated]"
    return redacted


def mask_secret(value: str | None) -> str | None:
    """Keep the last four characters of a credential so operators can tell keys apart."""
    if not value:
        return value
    if len(value) <= 8:
        return "****"
    return f"****{value[-4:]}"


def sanitize_for_logging(value: Any, *, max_string_length: int = 240) -> Any:
    if isinstance(value, Mapping):
        return {
            str(key): "[REDACTED]"
            if _looks_sensitive_key(str(key))
            else sanitize_for_logging(item, max_string_length=max_string_length)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [sanitize_for_logging(item, max_string_length=max_string_length) for item in value]
    if isinstance(value, str):
        return redact_text(value, max_length=max_string_length)
    return value


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = REQUEST_ID_CONTEXT.get()
        return True


class JsonFormatter(logging.Formatter):
    _STANDARD_ATTRS = set(
        logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__.keys()
    ) | {"message", "asctime", "taskName"}

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", REQUEST_ID_CONTEXT.get()),
        }
        for key, value in record.__dict__.items():
            if key not in self._STANDARD_ATTRS and key not in payload:
                payload[key] = sanitize_for_logging(value)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level_name: str) -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name.upper(), logging.INFO))
    if any(getattr(handler, _HANDLER_MARKER, False) for handler in root.handlers):
        return

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    handler.addFilter(RequestIdFilter())
    setattr(handler, _HANDLER_MARKER, True)
    root.addHandler(handler)
