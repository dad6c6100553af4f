"""
Application configuration: every security threshold in one place.

Durations are in seconds. Each value carries a short note on what it
bounds; the guard and the session client read them through
LockoutPolicy.from_config() and ReconcilerSettings.from_config().
"""

import os
import secrets


class BaseConfig:
    """Shared configuration for all environments."""

    # --- Flask Core ---
    # 256-bit random secret for session signing and CSRF tokens.
    SECRET_KEY = os.environ.get('SECRET_KEY') or secrets.token_hex(32)

    # Login payloads are ~200 bytes; anything beyond 16KB is rejected.
    MAX_CONTENT_LENGTH = 16 * 1024

    # Environment name, consulted by the guard's reset_all() safety check.
    ENVIRONMENT = os.environ.get('BOURBON_ENV', 'development')

    # --- Session Configuration (flask-session) ---
    SESSION_TYPE = 'filesystem'
    SESSION_PERMANENT = True
    # 30-minute idle timeout.
    PERMANENT_SESSION_LIFETIME = 1800
    SESSION_USE_SIGNER = True
    SESSION_KEY_PREFIX = 'session:'

    # --- Session Cookie Flags ---
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'
    SESSION_COOKIE_NAME = 'session'

    # --- bcrypt ---
    BCRYPT_LOG_ROUNDS = 12

    # --- Rate Limiting (flask-limiter) ---
    # Request-rate limits sit in front of the lockout guard and cap raw
    # request volume; the guard tracks failed credentials only.
    RATELIMIT_ENABLED = True
    RATELIMIT_STORAGE_URI = 'memory://'
    RATELIMIT_HEADERS_ENABLED = True
    RATELIMIT_DEFAULT = '200/hour'
    LOGIN_RATE_LIMIT_IP = '30/minute'
    LOGIN_RATE_LIMIT_ACCOUNT = '10/minute'

    # --- Account Lockout (login security guard) ---
    # Failed attempts inside one window before the account locks.
    LOCKOUT_MAX_ATTEMPTS = 5
    # Progressive account lockouts: 15min → 30min → 1h → 3h → 24h.
    LOCKOUT_DURATIONS = [15 * 60, 30 * 60, 60 * 60, 3 * 60 * 60, 24 * 60 * 60]
    # Warn after this many failures; shown for ANY email so it leaks nothing.
    LOCKOUT_WARNING_AFTER = 3
    # Attempts older than this no longer count toward the threshold.
    LOCKOUT_ATTEMPT_WINDOW = 60 * 60

    # --- IP Blocking ---
    # Failed attempts from one address, across any accounts, before a block.
    IP_BLOCK_THRESHOLD = 10
    # Progressive IP blocks: 1h → 3h → 12h → 24h → 7d.
    IP_BLOCK_DURATIONS = [
        60 * 60,
        3 * 60 * 60,
        12 * 60 * 60,
        24 * 60 * 60,
        7 * 24 * 60 * 60,
    ]

    # --- Maintenance ---
    # Bearer token the cron sweep endpoint expects. Unset disables the endpoint.
    CRON_SECRET = os.environ.get('CRON_SECRET')
    # Token required by reset_all() outside development/test.
    SECURITY_RESET_TOKEN = os.environ.get('SECURITY_RESET_TOKEN')

    # --- Session Reconciliation (client library defaults) ---
    SESSION_MIN_REFRESH_INTERVAL = 30
    # Sessions valid for longer than this skip the token-refresh call.
    SESSION_REFRESH_THRESHOLD = 10 * 60
    SESSION_REFRESH_TIMEOUT = 10
    SESSION_DEBOUNCE_INTERVALS = {'USER_UPDATED': 1.0, 'TOKEN_REFRESHED': 10.0}
    # Delay before syncing a freshly signed-in user, so the provider's own
    # write lands first.
    SESSION_SYNC_DELAY = 1.0
    SESSION_SYNC_INTERVAL = 60 * 60

    # --- Database ---
    DATABASE_NAME = 'app.db'


class ProductionConfig(BaseConfig):
    """Production environment: all security controls enforced."""

    DEBUG = False
    TESTING = False
    ENVIRONMENT = 'production'

    # Never fall back to a random key in production; sessions would not
    # survive a restart.
    SECRET_KEY = os.environ.get('SECRET_KEY')

    SESSION_COOKIE_SECURE = True
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = 'Lax'

    # Number of trusted reverse proxies in front of the app.
    PROXY_COUNT = int(os.environ.get('PROXY_COUNT', '1'))

    @classmethod
    def init_app(cls, app):
        """Validate required configuration at startup."""
        if not cls.SECRET_KEY:
            raise RuntimeError(
                'SECRET_KEY environment variable is required in production. '
                'Generate one with: python -c "import secrets; print(secrets.token_hex(32))"'
            )


class DevelopmentConfig(BaseConfig):
    """Development environment: relaxed cookie settings for HTTP."""

    DEBUG = True
    ENVIRONMENT = 'development'
    SESSION_COOKIE_SECURE = False


class TestConfig(BaseConfig):
    """Test environment: fast bcrypt, CSRF/rate-limiting off by default."""

    TESTING = True
    ENVIRONMENT = 'test'
    SESSION_COOKIE_SECURE = False
    BCRYPT_LOG_ROUNDS = 4
    RATELIMIT_ENABLED = False
    WTF_CSRF_ENABLED = False
    DATABASE_NAME = 'test.db'
    CRON_SECRET = 'test-cron-secret'


class RateLimitTestConfig(TestConfig):
    """Test config with rate limiting enabled."""

    RATELIMIT_ENABLED = True


class CSRFTestConfig(TestConfig):
    """Test config with CSRF protection enabled."""

    WTF_CSRF_ENABLED = True
