"""
Logging utilities for safe log output.

Provides a custom LogRecord factory that sanitizes log arguments
to prevent log injection attacks (CWE-117). Channel names, group titles
and stream URLs all come from untrusted playlists and could contain
newlines that forge log entries.

Call configure_logging() once at startup; it installs the sanitizer.
"""

import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_ORIGINAL_FACTORY = logging.getLogRecordFactory()


def _sanitize_value(value):
    """Strip newlines and carriage returns from a value for safe logging."""
    if isinstance(value, str):
        return value.replace('\r\n', '\\r\\n').replace('\r', '\\r').replace('\n', '\\n')
    return value


def _safe_record_factory(*args, **kwargs):
    """LogRecord factory that sanitizes args to prevent log injection."""
    record = _ORIGINAL_FACTORY(*args, **kwargs)
    if record.args:
        if isinstance(record.args, dict):
            record.args = {k: _sanitize_value(v) for k, v in record.args.items()}
        elif isinstance(record.args, tuple):
            record.args = tuple(_sanitize_value(a) for a in record.args)
    return record


def log_excerpt(value, limit: int = 120) -> str:
    """
    Sanitized, length-capped rendering of untrusted playlist text.

    Escapes CR/LF even when the safe record factory is not installed and
    cuts the text at limit characters.
    """
    text = _sanitize_value("" if value is None else str(value))
    if len(text) > limit:
        return text[:limit] + "..."
    return text


def install_safe_logging():
    """
    Install a global LogRecord factory that sanitizes all log arguments.

    Only %-style arguments are sanitized; messages pre-formatted with
    f-strings pass through untouched.
    """
    logging.setLogRecordFactory(_safe_record_factory)


def configure_logging(level: str = "INFO") -> None:
    """Apply the standard log format at `level` and install the sanitizer."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    install_safe_logging()
