"""
Authentication blueprint: login, logout, lockout status and user sync
endpoints.
"""

from flask import Blueprint

auth_bp = Blueprint('auth', __name__)

# Import routes to register them with the blueprint.
from bourbon_auth.auth import routes  # noqa: E402, F401
