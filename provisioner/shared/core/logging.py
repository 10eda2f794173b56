import logging
import re
import sys
from typing import Any, cast

import structlog

from provisioner.shared.core.config import get_settings

REDACTED = "[REDACTED]"

_SENSITIVE_FIELDS = {
    "password",
    "secret",
    "client_secret",
    "connection_string",
    "token",
    "access_token",
    "api_key",
    "account_key",
    "shared_access_key",
    "sas_token",
    "private_key",
}
_SENSITIVE_SUFFIXES = ("_token", "_secret", "_password", "_key", "_connection_string")

# Credential fragments embedded in connection strings: AccountKey=..., SharedAccessKey=..., Password=...
_INLINE_SECRET = re.compile(
    r"(?i)\b(AccountKey|SharedAccessKey|SharedAccessSignature|Password|pwd)=([^;]+)"
)


def is_sensitive_key(key: Any) -> bool:
    key_norm = str(key).lower().strip().replace("-", "_")
    if key_norm in _SENSITIVE_FIELDS:
        return True
    return key_norm.endswith(_SENSITIVE_SUFFIXES)


def redact_text(text: Any) -> Any:
    if not isinstance(text, str):
        return text
    return _INLINE_SECRET.sub(lambda m: f"{m.group(1)}={REDACTED}", text)


def sensitive_field_redactor(
    _logger: Any, _method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """
    Recursively redact credentials and connection strings from log events.
    Runs before rendering so no renderer ever sees plaintext secrets.
    """

    def redact_recursive(data: Any) -> Any:
        if isinstance(data, dict):
            return {
                k: (REDACTED if is_sensitive_key(k) else redact_recursive(v))
                for k, v in data.items()
            }
        if isinstance(data, (list, tuple)):
            return [redact_recursive(item) for item in data]
        return redact_text(data)

    redacted = redact_recursive(event_dict)
    if isinstance(redacted, dict):
        return cast(dict[str, Any], redacted)
    return {}


def setup_logging() -> None:
    settings = get_settings()

    base_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        sensitive_field_redactor,
    ]

    if settings.DEBUG:
        renderer: Any = structlog.dev.ConsoleRenderer()
        processors = base_processors + [renderer]
        min_level = logging.DEBUG
    else:
        renderer = structlog.processors.JSONRenderer()
        processors = base_processors + [structlog.processors.dict_tracebacks, renderer]
        min_level = logging.INFO

    structlog.configure(
        processors=cast(Any, processors),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    # Azure SDK loggers go through stdlib logging; keep them on stderr with ours.
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=min_level,
    )
    logging.getLogger("azure").setLevel(logging.WARNING)
