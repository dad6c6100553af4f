"""
WSGI entry point for production deployment (gunicorn).

Usage:
    gunicorn -c gunicorn.conf.py wsgi:app

Fails fast if required environment variables are missing.
"""

import sys

from bourbon_auth.config import ProductionConfig

if not ProductionConfig.SECRET_KEY:
    print(
        'FATAL: SECRET_KEY environment variable is required.\n'
        'Generate one with: python -c "import secrets; print(secrets.token_hex(32))"',
        file=sys.stderr,
    )
    sys.exit(1)

from bourbon_auth import create_app  # noqa: E402

app = create_app(config_class=ProductionConfig)
