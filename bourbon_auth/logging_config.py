"""
Structured security audit logging.

All security events are logged as JSON for machine parsing. Guard events
follow one schema: timestamp, type, severity, masked identifier, ip and
a details object.

NEVER logs: passwords, session tokens, or raw account identifiers.
"""

import json
import logging
import re
import time
from typing import Any, Dict


AUDIT_LOGGER_NAME = 'security.audit'

SEVERITY_LEVELS = {
    'low': logging.INFO,
    'medium': logging.INFO,
    'high': logging.WARNING,
    'critical': logging.CRITICAL,
}

# Control characters that could forge extra log lines.
_LOG_INJECTION_PATTERN = re.compile(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]')


def sanitize_log_value(value: str, max_length: int = 256) -> str:
    """
    Sanitize a string for safe inclusion in log output.

    Prevents log injection by removing control characters and
    truncating to a maximum length.
    """
    cleaned = _LOG_INJECTION_PATTERN.sub('', str(value))
    return cleaned[:max_length]


def mask_identifier(identifier: str) -> str:
    """
    Mask an account identifier for logs and events.

    Emails keep the first and last two characters of the local part and
    the full domain (``jo***oe@example.com``); local parts of four
    characters or fewer keep only their first character. Other
    identifiers get the same treatment on the whole string.
    """
    identifier = str(identifier)

    if '@' in identifier:
        username, _, domain = identifier.partition('@')
        return f'{_mask(username)}@{domain}'

    return _mask(identifier)


def _mask(value: str) -> str:
    if len(value) <= 4:
        return f'{value[:1]}***'
    return f'{value[:2]}***{value[-2:]}'


class SecurityAuditFormatter(logging.Formatter):
    """JSON formatter for security audit events."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            'timestamp': time.strftime('%Y-%m-%dT%H:%M:%S%z', time.gmtime(record.created)),
            'level': record.levelname,
            'event': getattr(record, 'event', 'unknown'),
            'message': record.getMessage(),
        }

        for field in ('severity', 'masked_identifier', 'ip', 'user_agent', 'request_id', 'reason'):
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = sanitize_log_value(str(value))

        details = getattr(record, 'details', None)
        if details:
            log_entry['details'] = {
                sanitize_log_value(k, 64): v if isinstance(v, (int, float, bool)) else sanitize_log_value(str(v))
                for k, v in details.items()
            }

        return json.dumps(log_entry)


def setup_security_logging(app=None) -> logging.Logger:
    """
    Configure the security audit logger.

    Returns the dedicated 'security.audit' logger writing JSON to stderr.
    Safe to call repeatedly; handlers are attached once.
    """
    logger = logging.getLogger(AUDIT_LOGGER_NAME)
    logger.setLevel(logging.INFO)

    if logger.handlers:
        return logger

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(SecurityAuditFormatter())
    logger.addHandler(console_handler)

    return logger


def audit_log(event: str, message: str, level: int = logging.INFO, **context) -> None:
    """
    Log a security audit event.

    Args:
        event: Event type (e.g., 'login_success', 'account_lockout')
        message: Human-readable description
        level: Logging level for the record
        **context: Additional context (ip, masked_identifier, details, ...)
    """
    logger = logging.getLogger(AUDIT_LOGGER_NAME)
    extra = {'event': event}
    extra.update(context)
    logger.log(level, message, extra=extra)


def log_security_event(event) -> None:
    """Write a guard SecurityEvent to the audit log."""
    audit_log(
        event=event.type,
        message=f'{event.severity.upper()} {event.type}',
        level=SEVERITY_LEVELS.get(event.severity, logging.INFO),
        severity=event.severity,
        masked_identifier=event.masked_identifier,
        ip=event.ip,
        details=dict(event.details),
    )
