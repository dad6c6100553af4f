"""
Authentication routes: JSON API around the login security guard.

Request flow (login POST):
1. Rate limiter (flask-limiter decorator): raw request volume
2. CSRF validation (flask-wtf before_request hook)
3. WTForms validation: input constraints
4. Guard check: blocked IP or locked account gets the generic lockout
   answer; a dummy bcrypt run keeps its timing identical to a real check
5. Timing-safe credential verification: bcrypt always runs
6. Guard bookkeeping: record_failed_attempt() or reset_on_success()

Lockout answers never say whether the account or the address is blocked.
"""

import hmac
import uuid
from datetime import datetime, timezone
from functools import wraps

from flask import current_app, g, jsonify, request, session
from flask_wtf.csrf import generate_csrf

from bourbon_auth.auth import auth_bp
from bourbon_auth.auth.forms import LockoutQueryForm, LoginForm, SyncUserForm
from bourbon_auth.auth.models import upsert_user_profile
from bourbon_auth.auth.security import (
    burn_dummy_hash,
    get_client_ip,
    get_login_guard,
    log_login_failed,
    log_login_success,
    log_logout,
    log_unauthorized_cleanup,
    verify_credentials,
)
from bourbon_auth.extensions import csrf, limiter
from bourbon_auth.logging_config import audit_log, mask_identifier

LOCKED_MESSAGE = 'Too many failed attempts. Please try again later.'
INVALID_MESSAGE = 'Invalid email or password.'


def normalize_email(value: str) -> str:
    return (value or '').strip().lower()


# --- Decorators ---

def login_required(f):
    """Reject requests without an authenticated server-side session."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if 'user_email' not in session:
            return jsonify(error='Authentication required.'), 401
        return f(*args, **kwargs)
    return decorated_function


# --- Request Hooks ---

@auth_bp.before_app_request
def set_request_id() -> None:
    """Short per-request ID for log correlation."""
    g.request_id = str(uuid.uuid4())[:8]


# --- Login / Logout ---

def _locked_response():
    return jsonify(error=LOCKED_MESSAGE), 429


@auth_bp.route('/api/auth/login', methods=['POST'])
@limiter.limit(
    lambda: current_app.config.get('LOGIN_RATE_LIMIT_IP', '30/minute'),
    error_message='Too many login attempts. Please wait a moment and try again.',
)
@limiter.limit(
    lambda: current_app.config.get('LOGIN_RATE_LIMIT_ACCOUNT', '10/minute'),
    key_func=lambda: normalize_email(request.form.get('email') or (request.get_json(silent=True) or {}).get('email', '')) or get_client_ip(),
    error_message='Too many login attempts for this account. Please wait a moment.',
)
def login():
    """Authenticate an email/password pair."""
    if 'user_email' in session:
        return jsonify(status='authenticated', user={'email': session['user_email']}), 200

    form = LoginForm()
    if not form.validate_on_submit():
        return jsonify(error='Invalid input.', errors=form.errors), 400

    email = normalize_email(form.email.data)
    password = form.password.data
    guard = get_login_guard()
    ip = get_client_ip()

    if guard.is_ip_blocked(ip) or guard.is_account_locked(email):
        burn_dummy_hash(password)
        log_login_failed(email, reason='locked_out')
        return _locked_response()

    if verify_credentials(email, password):
        # Fresh session before storing authenticated state (fixation defence).
        session.clear()
        session['user_email'] = email
        session['login_time'] = datetime.now(timezone.utc).isoformat()
        session['login_ip'] = ip
        session.permanent = True

        guard.reset_on_success(email, ip)
        log_login_success(email)
        return jsonify(status='authenticated', user={'email': email}), 200

    result = guard.record_failed_attempt(email, ip)
    if result.account_locked or result.ip_blocked:
        log_login_failed(email, reason='lockout_triggered')
        return _locked_response()

    log_login_failed(email)
    payload = {'error': INVALID_MESSAGE}

    # Shown for ANY email, registered or not, so it leaks nothing.
    threshold = guard.policy.max_attempts
    warning_after = current_app.config.get('LOCKOUT_WARNING_AFTER', 3)
    remaining = max(0, threshold - result.attempts)
    if result.attempts >= warning_after and remaining > 0:
        payload['warning'] = f'Warning: {remaining} attempt(s) remaining before temporary lockout.'

    return jsonify(payload), 401


@auth_bp.route('/api/auth/logout', methods=['POST'])
@login_required
def logout():
    """Invalidate the server-side session. POST-only."""
    email = session.get('user_email', 'unknown')
    session.clear()
    log_logout(email)
    return jsonify(status='unauthenticated'), 200


@auth_bp.route('/api/auth/csrf-token')
def csrf_token():
    """Token for the X-CSRFToken header on state-changing requests."""
    return jsonify(csrfToken=generate_csrf())


@auth_bp.route('/api/auth/session')
@login_required
def current_session():
    return jsonify(
        status='authenticated',
        user={'email': session.get('user_email')},
        login_time=session.get('login_time'),
    )


# --- Lockout Status & Bookkeeping ---

@auth_bp.route('/api/auth/check-lockout', methods=['GET', 'POST'])
@csrf.exempt
def check_lockout():
    """
    Report whether an account is locked and for how long.

    The attempt count is never returned.
    """
    ip = get_client_ip()
    form = LockoutQueryForm(formdata=request.args) if request.method == 'GET' else LockoutQueryForm()

    if not form.validate():
        audit_log(event='invalid_email_param', message='Lockout check without email', ip=ip)
        return jsonify(error='Email is required', status='error'), 400

    email = normalize_email(form.email.data)
    status = get_login_guard().get_status(email)

    audit_log(
        event='account_lock_status_check',
        message=f'Lock status checked for {mask_identifier(email)}',
        masked_identifier=mask_identifier(email),
        ip=ip,
        details={'is_locked': status.locked},
    )

    payload = {'isLocked': status.locked, 'status': 'success'}
    if status.locked and status.remaining_ms:
        payload['remainingTimeSeconds'] = -(-status.remaining_ms // 1000)
        payload['remainingTime'] = -(-status.remaining_ms // 60000)
    return jsonify(payload), 200


@auth_bp.route('/api/auth/record-attempt', methods=['POST'])
@csrf.exempt
def record_attempt():
    """
    Record a login outcome reported by a front end.

    A success only resets the counter for the account the caller is
    signed in as; anyone else could otherwise clear a lockout.
    """
    form = LockoutQueryForm()
    if not form.validate():
        return jsonify(error='Email is required'), 400

    email = normalize_email(form.email.data)
    ip = get_client_ip()
    guard = get_login_guard()

    if form.success.data:
        if session.get('user_email') != email:
            return jsonify(error='Authentication required.'), 403
        guard.reset_on_success(email, ip)
        return jsonify(success=True), 200

    guard.record_failed_attempt(email, ip)
    audit_log(
        event='login_attempt_recorded',
        message=f'Failed attempt recorded for {mask_identifier(email)}',
        masked_identifier=mask_identifier(email),
        ip=ip,
    )
    return jsonify(success=True), 200


@auth_bp.route('/api/cron/cleanup-locks')
def cleanup_locks():
    """Maintenance sweep, called by a scheduler with the cron bearer token."""
    auth_header = request.headers.get('Authorization', '')
    expected = current_app.config.get('CRON_SECRET')

    if not auth_header.startswith('Bearer '):
        log_unauthorized_cleanup('missing_token')
        return jsonify(error='Unauthorized access'), 401

    token = auth_header[len('Bearer '):]
    if not expected or not hmac.compare_digest(token.encode('utf-8'), expected.encode('utf-8')):
        log_unauthorized_cleanup('invalid_token')
        return jsonify(error='Invalid API key'), 401

    removed = get_login_guard().cleanup_expired_locks()
    return jsonify(
        success=True,
        removed=removed,
        message='Expired login attempt locks have been cleaned up',
        timestamp=datetime.now(timezone.utc).isoformat(),
    ), 200


# --- User Sync Target ---

@auth_bp.route('/api/auth/sync-user', methods=['POST'])
@csrf.exempt
@login_required
def sync_user():
    """Idempotent upsert of the signed-in user's provider profile."""
    form = SyncUserForm()
    if not form.validate():
        return jsonify(error='Invalid input.', errors=form.errors), 400

    email = normalize_email(form.email.data)
    if email != session.get('user_email'):
        return jsonify(error='Authentication required.'), 403

    profile = upsert_user_profile(form.user_id.data, email, form.display_name.data or None)
    return jsonify(success=True, user=profile), 200
