"""
Tests for how SessionReconciler applies provider auth events.

Covers: the initial session, deferred stabilization after sign-in,
immediate sign-out, debouncing, the sign-out marker and rejected events.
"""

import asyncio

from bourbon_auth.session import (
    SIGNED_OUT_MARKER,
    AuthEventType,
    MemoryKeyValueStore,
    SessionPhase,
    SessionReconciler,
    UnknownAuthEventError,
    parse_auth_event,
)
from bourbon_auth.session.events import InitialSession, SessionMissing, SignedOut, TokenRefreshed


def make_reconciler(auth_client, clock, **kwargs):
    return SessionReconciler(auth_client(), clock=clock, **kwargs)


class TestParseAuthEvent:
    """The provider's (name, payload) pairs become typed events."""

    def test_session_payload_dict(self, make_session):
        session = make_session()

        event = parse_auth_event('TOKEN_REFRESHED', session.to_dict())

        assert isinstance(event, TokenRefreshed)
        assert event.session == session

    def test_initial_session_without_session(self):
        event = parse_auth_event('INITIAL_SESSION', None)

        assert isinstance(event, InitialSession)
        assert event.session is None

    def test_signed_out_ignores_payload(self, make_session):
        assert isinstance(parse_auth_event('SIGNED_OUT', make_session()), SignedOut)

    def test_session_event_without_session(self):
        event = parse_auth_event('USER_UPDATED', None)

        assert isinstance(event, SessionMissing)
        assert event.type is AuthEventType.USER_UPDATED

    def test_unknown_name(self):
        try:
            parse_auth_event('PASSWORD_RECOVERY', None)
        except UnknownAuthEventError as exc:
            assert exc.name == 'PASSWORD_RECOVERY'
        else:
            raise AssertionError('expected UnknownAuthEventError')


class TestInitialState:

    def test_starts_loading(self, auth_client, clock):
        reconciler = make_reconciler(auth_client, clock)

        assert reconciler.status == 'loading'
        assert reconciler.phase is SessionPhase.UNINITIALIZED
        assert reconciler.is_session_stable is False

    def test_initial_session_round_trip(self, auth_client, clock, make_session):
        """The first INITIAL_SESSION settles status in one step."""
        reconciler = make_reconciler(auth_client, clock)
        session = make_session()

        assert reconciler.on_auth_event('INITIAL_SESSION', session) is True

        assert reconciler.session == session
        assert reconciler.status == 'authenticated'
        assert reconciler.is_session_stable is True
        assert reconciler.is_loading is False

    def test_initial_session_none(self, auth_client, clock):
        reconciler = make_reconciler(auth_client, clock)

        reconciler.on_auth_event('INITIAL_SESSION', None)

        assert reconciler.status == 'unauthenticated'

    def test_start_subscribes_and_receives_initial_session(self, auth_client, clock, make_session):
        client = auth_client(session=make_session())
        reconciler = SessionReconciler(client, clock=clock)

        reconciler.start()

        assert len(client.subscribers) == 1
        assert reconciler.status == 'authenticated'
        assert reconciler.user.id == 'user-1'

    def test_close_unsubscribes(self, auth_client, clock):
        client = auth_client()
        reconciler = SessionReconciler(client, clock=clock)
        reconciler.start()

        asyncio.run(reconciler.close())

        assert client.subscribers == []


class TestSignedIn:
    """A new sign-in stabilizes one loop tick later."""

    def test_unstable_until_next_tick(self, auth_client, clock, make_session):
        reconciler = make_reconciler(auth_client, clock)
        reconciler.on_auth_event('INITIAL_SESSION', None)
        session = make_session()

        async def scenario():
            reconciler.on_auth_event('SIGNED_IN', session)
            during = (reconciler.is_session_stable, reconciler.status, reconciler.session)
            await asyncio.sleep(0)
            return during

        stable, status, seen = asyncio.run(scenario())

        assert stable is False
        assert status == 'loading'
        # Dependents see the new session before status settles.
        assert seen == session
        assert reconciler.is_session_stable is True
        assert reconciler.status == 'authenticated'

    def test_stable_immediately_without_loop(self, auth_client, clock, make_session):
        reconciler = make_reconciler(auth_client, clock)

        reconciler.on_auth_event('SIGNED_IN', make_session())

        assert reconciler.status == 'authenticated'

    def test_clears_signed_out_marker(self, auth_client, clock, make_session):
        store = MemoryKeyValueStore({SIGNED_OUT_MARKER: 1.0})
        reconciler = make_reconciler(auth_client, clock, store=store)

        reconciler.on_auth_event('SIGNED_IN', make_session())

        assert store.get(SIGNED_OUT_MARKER) is None

    def test_repeated_sign_ins_not_debounced(self, auth_client, clock, make_session):
        reconciler = make_reconciler(auth_client, clock)

        assert reconciler.on_auth_event('SIGNED_IN', make_session(token='a')) is True
        assert reconciler.on_auth_event('SIGNED_IN', make_session(token='b')) is True
        assert reconciler.session.access_token == 'b'


class TestSignedOut:
    """Sign-out applies immediately and is remembered."""

    def test_clears_session_immediately(self, auth_client, clock, make_session):
        reconciler = make_reconciler(auth_client, clock)
        reconciler.on_auth_event('INITIAL_SESSION', make_session())

        reconciler.on_auth_event('SIGNED_OUT', None)

        assert reconciler.session is None
        assert reconciler.status == 'unauthenticated'
        assert reconciler.is_session_stable is True

    def test_sets_marker(self, auth_client, clock):
        store = MemoryKeyValueStore()
        reconciler = make_reconciler(auth_client, clock, store=store)

        reconciler.on_auth_event('SIGNED_OUT')

        assert store.get(SIGNED_OUT_MARKER) == clock.now

    def test_sign_out_calls_provider(self, auth_client, clock, make_session):
        client = auth_client(session=make_session())
        reconciler = SessionReconciler(client, clock=clock)
        reconciler.start()

        assert asyncio.run(reconciler.sign_out()) is True

        assert client.sign_out_calls == 1
        assert reconciler.status == 'unauthenticated'

    def test_initial_session_ignored_after_sign_out(self, auth_client, clock, make_session):
        """A restart finds a cached provider session but the user had signed out."""
        client = auth_client(session=make_session())
        store = MemoryKeyValueStore({SIGNED_OUT_MARKER: clock.now})
        reconciler = SessionReconciler(client, store, clock=clock)

        reconciler.start()

        assert reconciler.session is None
        assert reconciler.status == 'unauthenticated'
        assert asyncio.run(reconciler.refresh_session()) is None
        assert client.fetch_calls == 0

    def test_sign_in_after_restart_with_marker(self, auth_client, clock, make_session):
        store = MemoryKeyValueStore({SIGNED_OUT_MARKER: clock.now})
        reconciler = SessionReconciler(auth_client(session=make_session()), store, clock=clock)
        reconciler.start()

        reconciler.on_auth_event('SIGNED_IN', make_session(token='new'))

        assert reconciler.status == 'authenticated'
        assert store.get(SIGNED_OUT_MARKER) is None


class TestDebouncing:
    """USER_UPDATED and TOKEN_REFRESHED bursts are thinned out."""

    def test_user_updated_burst(self, auth_client, clock, make_session):
        reconciler = make_reconciler(auth_client, clock)
        first, second = make_session(token='first'), make_session(token='second')

        assert reconciler.on_auth_event('USER_UPDATED', first) is True
        assert reconciler.on_auth_event('USER_UPDATED', second) is False

        assert reconciler.session == first

    def test_user_updated_after_interval(self, auth_client, clock, make_session):
        reconciler = make_reconciler(auth_client, clock)
        reconciler.on_auth_event('USER_UPDATED', make_session(token='first'))

        clock.advance(1.0)
        later = make_session(token='later')

        assert reconciler.on_auth_event('USER_UPDATED', later) is True
        assert reconciler.session == later

    def test_token_refreshed_debounced_for_ten_seconds(self, auth_client, clock, make_session):
        reconciler = make_reconciler(auth_client, clock)
        reconciler.on_auth_event('TOKEN_REFRESHED', make_session(token='first'))

        clock.advance(9)
        assert reconciler.on_auth_event('TOKEN_REFRESHED', make_session(token='second')) is False
        clock.advance(1)
        assert reconciler.on_auth_event('TOKEN_REFRESHED', make_session(token='third')) is True
        assert reconciler.session.access_token == 'third'

    def test_token_refreshed_counts_as_successful_refresh(self, auth_client, clock, make_session):
        reconciler = make_reconciler(auth_client, clock)

        reconciler.on_auth_event('TOKEN_REFRESHED', make_session())

        assert reconciler.last_successful_refresh_at == clock.now

    def test_records_last_event_time(self, auth_client, clock, make_session):
        reconciler = make_reconciler(auth_client, clock)

        reconciler.on_auth_event('INITIAL_SESSION', make_session())

        assert reconciler.last_event_at == {'INITIAL_SESSION': clock.now}


class TestRejectedEvents:
    """Unknown or malformed events leave state alone."""

    def test_unknown_event_ignored(self, auth_client, clock, make_session):
        reconciler = make_reconciler(auth_client, clock)
        session = make_session()
        reconciler.on_auth_event('INITIAL_SESSION', session)

        assert reconciler.on_auth_event('PASSWORD_RECOVERY', None) is False

        assert reconciler.session == session
        assert reconciler.status == 'authenticated'

    def test_malformed_payload_ignored(self, auth_client, clock, make_session):
        reconciler = make_reconciler(auth_client, clock)
        session = make_session()
        reconciler.on_auth_event('INITIAL_SESSION', session)

        assert reconciler.on_auth_event('USER_UPDATED', {'access_token': 'x'}) is False

        assert reconciler.session == session

    def test_session_event_without_session_signs_out(self, auth_client, clock, make_session):
        reconciler = make_reconciler(auth_client, clock)
        reconciler.on_auth_event('INITIAL_SESSION', make_session())

        assert reconciler.on_auth_event('TOKEN_REFRESHED', None) is True

        assert reconciler.session is None
        assert reconciler.status == 'unauthenticated'
        assert reconciler.is_session_stable is True
