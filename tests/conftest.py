"""
Pytest fixtures for the bourbon auth test suite.

Provides multiple app configurations for testing different security
controls in isolation:
- app/client: Base test config (CSRF off, rate limiting off)
- csrf_app/csrf_client: CSRF enabled
- rate_limit_app/rate_limit_client: Rate limiting enabled

and doubles for the guard and the session client:
- clock: controllable time source
- guard/security_events: LoginSecurityGuard recording its events
- make_session/auth_client/user_sync: fakes for the hosted auth provider
"""

import asyncio
import os

import pytest

from bourbon_auth import create_app
from bourbon_auth.auth.models import DEMO_EMAIL, DEMO_PASSWORD
from bourbon_auth.config import CSRFTestConfig, RateLimitTestConfig, TestConfig
from bourbon_auth.guard import LoginSecurityGuard
from bourbon_auth.session import AuthProviderError, Session, User


def _build_app(config_class, tmp_path):
    app = create_app(config_class)
    # Override instance path to use a temp directory per test.
    app.instance_path = str(tmp_path)

    session_dir = os.path.join(str(tmp_path), 'flask_sessions')
    os.makedirs(session_dir, exist_ok=True)
    app.config['SESSION_FILE_DIR'] = session_dir

    # Re-init database in the temp directory.
    app.config['DATABASE_NAME'] = 'test.db'
    from bourbon_auth.auth.models import init_db
    with app.app_context():
        init_db(app)

    return app


@pytest.fixture
def app(tmp_path):
    """Create a Flask app with the base test configuration."""
    yield _build_app(TestConfig, tmp_path)


@pytest.fixture
def client(app):
    """Test client for the base app configuration."""
    return app.test_client()


@pytest.fixture
def csrf_app(tmp_path):
    """Create a Flask app with CSRF protection enabled."""
    yield _build_app(CSRFTestConfig, tmp_path)


@pytest.fixture
def csrf_client(csrf_app):
    """Test client with CSRF protection enabled."""
    return csrf_app.test_client()


@pytest.fixture
def rate_limit_app(tmp_path):
    """Create a Flask app with rate limiting enabled."""
    yield _build_app(RateLimitTestConfig, tmp_path)


@pytest.fixture
def rate_limit_client(rate_limit_app):
    """Test client with rate limiting enabled."""
    return rate_limit_app.test_client()


@pytest.fixture
def authenticated_client(app, client):
    """Test client that is already logged in as the demo user."""
    response = client.post('/api/auth/login', data={
        'email': DEMO_EMAIL,
        'password': DEMO_PASSWORD,
    })
    assert response.status_code == 200
    return client


# --- Time ---

class FakeClock:
    """Callable time source that only moves when told to."""

    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


# --- Login guard ---

@pytest.fixture
def security_events():
    return []


@pytest.fixture
def guard(clock, security_events):
    """Guard with default policy, fake clock and an event list as sink."""
    return LoginSecurityGuard(clock=clock, event_sink=security_events.append)


# --- Session client ---

@pytest.fixture
def make_session(clock):
    """Build a Session expiring ``expires_in`` seconds from the fake now."""
    def factory(expires_in=3600, user_id='user-1', email=DEMO_EMAIL, token='access-1', metadata=None):
        return Session(
            access_token=token,
            refresh_token=f'refresh-{token}',
            expires_at=clock.now + expires_in,
            user=User(id=user_id, email=email, user_metadata=metadata or {}),
        )
    return factory


class FakeAuthClient:
    """
    In-memory stand-in for the hosted auth provider.

    ``delay`` makes get_session() yield to the loop, so concurrent callers
    can pile up behind one request.
    """

    def __init__(self, session=None, refreshed=None, fetch_error=None, refresh_error=None, delay=0.0):
        self.session = session
        self.refreshed = refreshed
        self.fetch_error = fetch_error
        self.refresh_error = refresh_error
        self.delay = delay
        self.fetch_calls = 0
        self.refresh_calls = 0
        self.sign_out_calls = 0
        self.subscribers = []

    async def get_session(self):
        self.fetch_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fetch_error is not None:
            raise self.fetch_error
        return self.session

    async def refresh_session(self, session=None):
        self.refresh_calls += 1
        if self.refresh_error is not None:
            raise self.refresh_error
        if self.refreshed is None:
            raise AuthProviderError('No refresh token available')
        return self.refreshed

    async def sign_out(self):
        self.sign_out_calls += 1
        self.session = None

    def on_auth_state_change(self, callback):
        self.subscribers.append(callback)
        callback('INITIAL_SESSION', self.session)

        def unsubscribe():
            self.subscribers.remove(callback)

        return unsubscribe

    def emit(self, event, session=None):
        for callback in list(self.subscribers):
            callback(event, session)


@pytest.fixture
def auth_client():
    """Factory for FakeAuthClient instances."""
    return FakeAuthClient


class FakeUserSync:
    def __init__(self, error=None, gate=None):
        self.error = error
        self.gate = gate
        self.synced = []

    async def sync_user(self, user):
        if self.gate is not None:
            await self.gate.wait()
        self.synced.append(user)
        if self.error is not None:
            raise self.error


@pytest.fixture
def user_sync():
    """Factory for FakeUserSync instances."""
    return FakeUserSync
