"""
Logging utilities for the FastAPI application, the scheduler and the CLI.

Provides a consistent logging format and keeps partner credentials out of log
output.
"""

import logging
import re
import sys

_SECRET_PATTERNS = (
    re.compile(r"(?i)(access_token=)[^&\s\"']+"),
    re.compile(r"(?i)(Bearer\s+)[A-Za-z0-9._~+/=-]+"),
    re.compile(r"(?i)(\"?password\"?\s*[:=]\s*\"?)[^&\s\",}]+"),
)


def redact(text: str) -> str:
    """Mask token and password values embedded in ``text``."""
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(r"\1***", text)
    return text


class SecretRedactionFilter(logging.Filter):
    """Rewrite each record's rendered message with secrets masked."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        masked = redact(message)
        if masked != message:
            record.msg = masked
            record.args = None
        return True


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with a sensible default format."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, SecretRedactionFilter) for f in handler.filters):
            handler.addFilter(SecretRedactionFilter())
    # httpx logs every request line at INFO, including query strings.
    logging.getLogger("httpx").setLevel(logging.WARNING)


__all__ = ["SecretRedactionFilter", "configure_logging", "redact"]
