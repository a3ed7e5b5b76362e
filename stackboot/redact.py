"""Secret redaction for log output."""

import logging
import os
import re

# Env vars whose values should be redacted from all output
_SECRET_ENV_VARS = [
    "OPENSTACK_SECRET_ACCESS_KEY",
    "OPENSTACK_ACCESS_KEY_ID",
]

_MIN_SECRET_LENGTH = 4  # skip very short values to avoid false positives

# Values registered at runtime (CLI flags, config file)
_registered: set[str] = set()

# Lazy-initialized module cache
_patterns: list[re.Pattern] | None = None


def _collect_secret_values() -> set[str]:
    values = set(_registered)
    for var in _SECRET_ENV_VARS:
        val = os.environ.get(var, "")
        if len(val) >= _MIN_SECRET_LENGTH:
            values.add(val)
    return values


def _get_patterns() -> list[re.Pattern]:
    global _patterns
    if _patterns is None:
        # Longer values first so a secret containing another is fully masked
        values = sorted(_collect_secret_values(), key=len, reverse=True)
        _patterns = [re.compile(re.escape(v)) for v in values]
    return _patterns


def register_secret(value: str | None) -> None:
    """Mask *value* in all subsequent log output."""
    global _patterns
    if value and len(value) >= _MIN_SECRET_LENGTH:
        _registered.add(value)
        _patterns = None


def reset() -> None:
    """Forget registered values and re-read the environment on next use."""
    global _patterns
    _registered.clear()
    _patterns = None


def redact_secrets(text: str) -> str:
    """Replace known secret values with '***'."""
    for pattern in _get_patterns():
        text = pattern.sub("***", text)
    return text


class SecretRedactingFilter(logging.Filter):
    """Logging filter that replaces secret values in log records with '***'.

    Handles both f-string messages (msg is pre-formatted) and %-style
    messages (msg + args).
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if _get_patterns():
            record.msg = redact_secrets(str(record.msg))
            if isinstance(record.args, dict):
                record.args = {k: redact_secrets(v) if isinstance(v, str) else v for k, v in record.args.items()}
            elif isinstance(record.args, tuple):
                record.args = tuple(redact_secrets(a) if isinstance(a, str) else a for a in record.args)
        return True
