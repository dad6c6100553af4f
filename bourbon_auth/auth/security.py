"""
Security utilities: timing-safe credential verification, guard access
and audit helpers.

Protects against:
- Timing-based user enumeration (dummy hash technique)
- Lockout-state probing through response timing
- Information leakage through error messages and logs
"""

from typing import Optional

from flask import current_app, g, request

from bourbon_auth.extensions import bcrypt
from bourbon_auth.guard import LockoutPolicy, LoginSecurityGuard
from bourbon_auth.logging_config import audit_log, mask_identifier, sanitize_log_value

GUARD_EXTENSION_KEY = 'login_guard'

# bcrypt hash checked for unknown users and blocked attempts so every
# login request costs the same bcrypt work.
DUMMY_HASH: Optional[str] = None


def init_dummy_hash(app) -> None:
    """Generate the dummy hash with the app's configured cost factor."""
    global DUMMY_HASH
    DUMMY_HASH = bcrypt.generate_password_hash('dummy_password_for_timing').decode('utf-8')


def burn_dummy_hash(password: str) -> None:
    """Spend one bcrypt verification without checking anything real."""
    bcrypt.check_password_hash(DUMMY_HASH, password)


def verify_credentials(email: str, password: str) -> bool:
    """
    Verify credentials in constant time regardless of whether the user exists.

    The caller MUST NOT reveal why verification failed.
    """
    from bourbon_auth.auth.models import get_user_by_email

    user = get_user_by_email(email)

    if user is not None:
        return bcrypt.check_password_hash(user['password_hash'], password)

    burn_dummy_hash(password)
    return False


# --- Login Guard ---

def init_login_guard(app) -> LoginSecurityGuard:
    """Create the process-wide guard from app config and attach it to the app."""
    guard = LoginSecurityGuard(
        LockoutPolicy.from_config(app.config),
        environment=app.config.get('ENVIRONMENT', 'production'),
        reset_token=app.config.get('SECURITY_RESET_TOKEN'),
    )
    app.extensions[GUARD_EXTENSION_KEY] = guard
    return guard


def get_login_guard() -> LoginSecurityGuard:
    return current_app.extensions[GUARD_EXTENSION_KEY]


def get_client_ip() -> str:
    # ProxyFix (see create_app) has already resolved X-Forwarded-For.
    return request.remote_addr or 'unknown'


def get_request_context() -> dict:
    """
    Extract security-relevant context from the current request.

    User-agent is truncated to 200 chars to keep crafted UA strings from
    bloating the log.
    """
    return {
        'ip': get_client_ip(),
        'user_agent': sanitize_log_value(
            request.headers.get('User-Agent', 'unknown'),
            max_length=200,
        ),
        'request_id': g.get('request_id', 'unknown'),
    }


def log_login_success(email: str) -> None:
    masked = mask_identifier(email)
    audit_log(
        event='login_success',
        message=f'Successful login for {masked}',
        masked_identifier=masked,
        **get_request_context(),
    )


def log_login_failed(email: str, reason: str = 'invalid_credentials') -> None:
    masked = mask_identifier(email)
    audit_log(
        event='login_failed',
        message=f'Failed login for {masked}: {reason}',
        masked_identifier=masked,
        reason=reason,
        **get_request_context(),
    )


def log_logout(email: str) -> None:
    masked = mask_identifier(email)
    audit_log(
        event='logout',
        message=f'Logout for {masked}',
        masked_identifier=masked,
        **get_request_context(),
    )


def log_csrf_failure() -> None:
    audit_log(
        event='csrf_failure',
        message='CSRF token validation failed',
        **get_request_context(),
    )


def log_unauthorized_cleanup(reason: str) -> None:
    audit_log(
        event='unauthorized_cleanup_attempt',
        message='Rejected lock cleanup request',
        reason=reason,
        **get_request_context(),
    )
