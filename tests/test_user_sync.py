"""
Tests for the background user sync scheduled on sign-in.

Covers: the delayed start, the per-user resync interval, failure
handling, cancellation on sign-out and the is_syncing flag.
"""

import asyncio

from bourbon_auth.session import AuthProviderError, ReconcilerSettings, SessionReconciler

FAST = ReconcilerSettings(sync_delay=0.01)


def make_reconciler(auth_client, clock, sync, settings=FAST):
    return SessionReconciler(auth_client(), user_sync=sync, settings=settings, clock=clock)


class TestScheduling:

    def test_sync_runs_after_delay(self, auth_client, clock, make_session, user_sync):
        sync = user_sync()
        reconciler = make_reconciler(auth_client, clock, sync)
        session = make_session()

        async def scenario():
            reconciler.on_auth_event('SIGNED_IN', session)
            await asyncio.sleep(0)
            before = list(sync.synced)
            await asyncio.sleep(0.05)
            return before

        before = asyncio.run(scenario())

        assert before == []
        assert sync.synced == [session.user]

    def test_sign_in_not_blocked_by_sync(self, auth_client, clock, make_session, user_sync):
        """Authentication settles before the sync even starts."""
        sync = user_sync()
        reconciler = make_reconciler(auth_client, clock, sync, ReconcilerSettings(sync_delay=10))

        async def scenario():
            reconciler.on_auth_event('SIGNED_IN', make_session())
            await asyncio.sleep(0)
            status = reconciler.status
            await reconciler.close()
            return status

        assert asyncio.run(scenario()) == 'authenticated'
        assert sync.synced == []

    def test_recently_synced_user_skipped(self, auth_client, clock, make_session, user_sync):
        sync = user_sync()
        reconciler = make_reconciler(auth_client, clock, sync)

        async def scenario():
            reconciler.on_auth_event('SIGNED_IN', make_session())
            await asyncio.sleep(0.05)
            reconciler.on_auth_event('SIGNED_IN', make_session(token='again'))
            await asyncio.sleep(0.05)

        asyncio.run(scenario())

        assert len(sync.synced) == 1

    def test_resync_after_interval(self, auth_client, clock, make_session, user_sync):
        sync = user_sync()
        reconciler = make_reconciler(auth_client, clock, sync)

        async def scenario():
            reconciler.on_auth_event('SIGNED_IN', make_session())
            await asyncio.sleep(0.05)
            clock.advance(FAST.sync_interval)
            reconciler.on_auth_event('SIGNED_IN', make_session(token='again'))
            await asyncio.sleep(0.05)

        asyncio.run(scenario())

        assert len(sync.synced) == 2

    def test_no_sync_without_collaborator(self, auth_client, clock, make_session):
        reconciler = SessionReconciler(auth_client(), settings=FAST, clock=clock)

        async def scenario():
            reconciler.on_auth_event('SIGNED_IN', make_session())
            await asyncio.sleep(0.05)

        asyncio.run(scenario())

        assert reconciler._sync_handles == {}


class TestFailures:

    def test_failure_does_not_affect_auth(self, auth_client, clock, make_session, user_sync):
        sync = user_sync(error=AuthProviderError('sync endpoint down', status_code=503))
        reconciler = make_reconciler(auth_client, clock, sync)

        async def scenario():
            reconciler.on_auth_event('SIGNED_IN', make_session())
            await asyncio.sleep(0.05)

        asyncio.run(scenario())

        assert len(sync.synced) == 1
        assert reconciler.status == 'authenticated'
        assert reconciler.error is None
        assert reconciler.is_syncing is False

    def test_failed_sync_retried_on_next_sign_in(self, auth_client, clock, make_session, user_sync):
        sync = user_sync(error=AuthProviderError('sync endpoint down'))
        reconciler = make_reconciler(auth_client, clock, sync)

        async def scenario():
            reconciler.on_auth_event('SIGNED_IN', make_session())
            await asyncio.sleep(0.05)
            reconciler.on_auth_event('SIGNED_IN', make_session(token='again'))
            await asyncio.sleep(0.05)

        asyncio.run(scenario())

        assert len(sync.synced) == 2


class TestCancellation:

    def test_sign_out_cancels_pending_sync(self, auth_client, clock, make_session, user_sync):
        sync = user_sync()
        reconciler = make_reconciler(auth_client, clock, sync)

        async def scenario():
            reconciler.on_auth_event('SIGNED_IN', make_session())
            reconciler.on_auth_event('SIGNED_OUT')
            await asyncio.sleep(0.05)

        asyncio.run(scenario())

        assert sync.synced == []

    def test_is_syncing_while_running(self, auth_client, clock, make_session, user_sync):
        async def scenario():
            gate = asyncio.Event()
            sync = user_sync(gate=gate)
            reconciler = make_reconciler(auth_client, clock, sync)
            reconciler.on_auth_event('SIGNED_IN', make_session())
            await asyncio.sleep(0.05)
            during = reconciler.is_syncing
            gate.set()
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            return during, reconciler.is_syncing, sync

        during, after, sync = asyncio.run(scenario())

        assert during is True
        assert after is False
        assert len(sync.synced) == 1

    def test_close_cancels_running_sync(self, auth_client, clock, make_session, user_sync):
        async def scenario():
            sync = user_sync(gate=asyncio.Event())
            reconciler = make_reconciler(auth_client, clock, sync)
            reconciler.on_auth_event('SIGNED_IN', make_session())
            await asyncio.sleep(0.05)
            await reconciler.close()
            return reconciler, sync

        reconciler, sync = asyncio.run(scenario())

        assert sync.synced == []
        assert reconciler.is_syncing is False

    def test_cancelled_sync_keeps_newer_schedule(self, auth_client, clock, make_session, user_sync):
        """Sign out mid-sync, sign back in: the new schedule stays tracked."""
        async def scenario():
            sync = user_sync(gate=asyncio.Event())
            reconciler = make_reconciler(auth_client, clock, sync)
            reconciler.on_auth_event('SIGNED_IN', make_session())
            await asyncio.sleep(0.05)
            reconciler.on_auth_event('SIGNED_OUT')

            reconciler.settings = ReconcilerSettings(sync_delay=10)
            reconciler.on_auth_event('SIGNED_IN', make_session(token='again'))
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            tracked = 'user-1' in reconciler._sync_handles
            handle = reconciler._sync_handles['user-1'][1]

            await reconciler.close()
            return tracked, handle, sync

        tracked, handle, sync = asyncio.run(scenario())

        assert tracked is True
        assert handle.cancelled()
        assert sync.synced == []
