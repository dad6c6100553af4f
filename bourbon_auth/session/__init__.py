"""
Session reconciliation client for the hosted auth provider.

Typical wiring::

    http = httpx.AsyncClient()
    client = HttpAuthClient(PROVIDER_URL, ANON_KEY, http_client=http)
    reconciler = SessionReconciler(
        client,
        JsonFileStore(state_path),
        user_sync=HttpUserSync(f'{APP_URL}/api/auth/sync-user', http),
    )
    reconciler.start()
    await reconciler.refresh_session()
"""

from bourbon_auth.session.client import (
    AuthClient,
    AuthEventBus,
    HttpAuthClient,
    HttpUserSync,
    UserSync,
)
from bourbon_auth.session.debounce import should_process
from bourbon_auth.session.errors import (
    AuthProviderError,
    SessionClientError,
    UnknownAuthEventError,
)
from bourbon_auth.session.events import AuthEventType, parse_auth_event
from bourbon_auth.session.models import Session, User
from bourbon_auth.session.reconciler import (
    SIGNED_OUT_MARKER,
    ReconcilerSettings,
    SessionPhase,
    SessionReconciler,
)
from bourbon_auth.session.stores import JsonFileStore, KeyValueStore, MemoryKeyValueStore

__all__ = [
    'SIGNED_OUT_MARKER',
    'AuthClient',
    'AuthEventBus',
    'AuthEventType',
    'AuthProviderError',
    'HttpAuthClient',
    'HttpUserSync',
    'JsonFileStore',
    'KeyValueStore',
    'MemoryKeyValueStore',
    'ReconcilerSettings',
    'Session',
    'SessionClientError',
    'SessionPhase',
    'SessionReconciler',
    'UnknownAuthEventError',
    'User',
    'UserSync',
    'parse_auth_event',
    'should_process',
]
