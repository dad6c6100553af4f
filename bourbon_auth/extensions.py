"""
Flask extension instances: created here, initialized in the app factory.

Kept apart from __init__.py so blueprints can import them without
circular imports.
"""

from flask_bcrypt import Bcrypt
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_session import Session
from flask_wtf.csrf import CSRFProtect

# Password hashing: bcrypt with configurable rounds (see config.py).
bcrypt = Bcrypt()

# CSRF protection for cookie-authenticated POSTs.
csrf = CSRFProtect()

# Server-side sessions; the cookie carries only an opaque ID.
sess = Session()

# Request-rate limits in front of the lockout guard, keyed by client IP.
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri='memory://',
)
