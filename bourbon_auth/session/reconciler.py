"""
Client-side session reconciliation.

SessionReconciler keeps one view of "who is signed in" for a client
process and hides the noise of the provider's event stream from the UI:

- status is ``loading`` until the first definitive answer, then
  ``authenticated`` or ``unauthenticated``; background refreshes never
  send it back to ``loading``;
- USER_UPDATED and TOKEN_REFRESHED are debounced per type;
- refresh_session() is throttled, coalesced into a single in-flight
  request and bounded by a timeout;
- network failures keep the last known good session (fail-open).

Everything runs on one asyncio event loop; only refresh_session() and
the background user sync await I/O.
"""

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Set, Tuple

from bourbon_auth.logging_config import mask_identifier
from bourbon_auth.session.client import AuthClient, Unsubscribe, UserSync
from bourbon_auth.session.debounce import DEFAULT_DEBOUNCE_INTERVALS, should_process
from bourbon_auth.session.errors import AuthProviderError, UnknownAuthEventError
from bourbon_auth.session.events import (
    AuthEvent,
    InitialSession,
    SessionMissing,
    SignedIn,
    SignedOut,
    TokenRefreshed,
    UserUpdated,
    parse_auth_event,
)
from bourbon_auth.session.models import Session, User
from bourbon_auth.session.stores import KeyValueStore, MemoryKeyValueStore

logger = logging.getLogger(__name__)

SIGNED_OUT_MARKER = 'auth.explicitly_signed_out'


class SessionPhase(str, enum.Enum):
    UNINITIALIZED = 'uninitialized'
    LOADING = 'loading'
    STABLE = 'stable'
    REFRESHING = 'refreshing'


@dataclass(frozen=True)
class ReconcilerSettings:
    """Timing knobs, all in seconds."""

    min_refresh_interval: float = 30.0
    refresh_threshold: float = 10 * 60.0
    refresh_timeout: float = 10.0
    debounce_intervals: Mapping[str, float] = field(
        default_factory=lambda: dict(DEFAULT_DEBOUNCE_INTERVALS)
    )
    sync_delay: float = 1.0
    sync_interval: float = 60 * 60.0

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> 'ReconcilerSettings':
        defaults = cls()
        return cls(
            min_refresh_interval=config.get('SESSION_MIN_REFRESH_INTERVAL', defaults.min_refresh_interval),
            refresh_threshold=config.get('SESSION_REFRESH_THRESHOLD', defaults.refresh_threshold),
            refresh_timeout=config.get('SESSION_REFRESH_TIMEOUT', defaults.refresh_timeout),
            debounce_intervals=dict(config.get('SESSION_DEBOUNCE_INTERVALS', defaults.debounce_intervals)),
            sync_delay=config.get('SESSION_SYNC_DELAY', defaults.sync_delay),
            sync_interval=config.get('SESSION_SYNC_INTERVAL', defaults.sync_interval),
        )


class SessionReconciler:
    """Auth state for one client context, fed by provider events and refreshes."""

    def __init__(
        self,
        client: Optional[AuthClient],
        store: Optional[KeyValueStore] = None,
        *,
        user_sync: Optional[UserSync] = None,
        settings: Optional[ReconcilerSettings] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.store = store if store is not None else MemoryKeyValueStore()
        self.user_sync = user_sync
        self.settings = settings or ReconcilerSettings()
        self.clock = clock

        self.session: Optional[Session] = None
        self.error: Optional[str] = None
        self.phase = SessionPhase.UNINITIALIZED
        self.last_successful_refresh_at: Optional[float] = None
        self.last_event_at: Dict[str, float] = {}

        self._stable = False
        self._loading = False
        self._inflight: Optional[asyncio.Future] = None
        # Bumped on SIGNED_IN and SIGNED_OUT; a refresh started under an older
        # epoch must not write its result back.
        self._auth_epoch = 0
        self._unsubscribe: Optional[Unsubscribe] = None
        self._synced_at: Dict[str, float] = {}
        self._sync_handles: Dict[str, Tuple[object, asyncio.TimerHandle]] = {}
        self._sync_tasks: Set[asyncio.Task] = set()
        self._syncing = 0

    @classmethod
    def create(cls, client_factory: Callable[[], AuthClient], *args, **kwargs) -> 'SessionReconciler':
        """
        Build a reconciler around a freshly constructed auth client.

        If the client cannot be built the reconciler starts in a terminal
        error state: stable, not loading, unauthenticated.
        """
        try:
            client = client_factory()
        except Exception as exc:
            logger.exception('Auth client initialization failed')
            reconciler = cls(None, *args, **kwargs)
            reconciler.error = f'Auth client initialization failed: {exc}'
            reconciler._mark_stable()
            return reconciler
        return cls(client, *args, **kwargs)

    # --- Derived state ---

    @property
    def is_session_stable(self) -> bool:
        return self._stable

    @property
    def is_loading(self) -> bool:
        return self._loading

    @property
    def is_syncing(self) -> bool:
        return self._syncing > 0

    @property
    def user(self) -> Optional[User]:
        return self.session.user if self.session is not None else None

    @property
    def status(self) -> str:
        if not self._stable or self._loading:
            return 'loading'
        return 'authenticated' if self.session is not None else 'unauthenticated'

    def _mark_stable(self) -> None:
        self._stable = True
        self._loading = False
        self.phase = SessionPhase.STABLE

    # --- Lifecycle ---

    def start(self) -> None:
        """Subscribe to the provider's event stream."""
        if self.client is None or self._unsubscribe is not None:
            return
        if not self._stable:
            self._loading = True
            self.phase = SessionPhase.LOADING
        self._unsubscribe = self.client.on_auth_state_change(self.on_auth_event)

    async def close(self) -> None:
        """Unsubscribe and cancel scheduled or running user syncs."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._cancel_syncs()
        tasks = list(self._sync_tasks)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # --- Refresh ---

    async def refresh_session(self) -> Optional[Session]:
        """
        Bring the session up to date with the provider.

        Never raises; provider trouble ends up in ``error``. Calls inside
        min_refresh_interval of the last success return the cached session,
        and calls made while a refresh is in flight share its result.
        """
        if self.client is None:
            return None

        if self._inflight is not None:
            return await asyncio.shield(self._inflight)

        if self.store.get(SIGNED_OUT_MARKER):
            self.session = None
            self._mark_stable()
            return None

        now = self.clock()
        last = self.last_successful_refresh_at
        if last is not None and now - last < self.settings.min_refresh_interval:
            return self.session

        future = asyncio.get_running_loop().create_future()
        self._inflight = future
        if self._stable:
            self.phase = SessionPhase.REFRESHING
        else:
            self._loading = True
            self.phase = SessionPhase.LOADING

        try:
            await asyncio.wait_for(self._refresh(self._auth_epoch), timeout=self.settings.refresh_timeout)
        except asyncio.TimeoutError:
            logger.warning('Session refresh timed out after %ss', self.settings.refresh_timeout)
            self.error = 'Session refresh timed out'
        except Exception as exc:
            logger.exception('Unexpected error during session refresh')
            self.error = f'Unexpected error: {exc}'
        finally:
            self._inflight = None
            self._mark_stable()
            if not future.done():
                future.set_result(self.session)

        return self.session

    async def _refresh(self, epoch: int) -> None:
        prior = self.session

        try:
            fetched = await self.client.get_session()
        except AuthProviderError as exc:
            logger.warning('Session fetch failed: %s', exc)
            if self._superseded(epoch):
                return
            self.error = f'Session fetch failed: {exc}'
            await self._recover(prior, epoch)
            return

        if self._superseded(epoch):
            return

        if fetched is None:
            self._apply_refreshed(None, epoch)
            return

        if fetched.expires_in(self.clock()) > self.settings.refresh_threshold:
            self._apply_refreshed(fetched, epoch)
            return

        try:
            refreshed = await self.client.refresh_session(fetched)
        except AuthProviderError as exc:
            logger.warning('Token refresh failed: %s', exc)
            if self._superseded(epoch):
                return
            # The fetched session is still the best we have.
            self.session = fetched
            self.error = f'Token refresh failed: {exc}'
            return

        self._apply_refreshed(refreshed, epoch)

    async def _recover(self, prior: Optional[Session], epoch: int) -> None:
        """Fetch failed: try the refresh token, else fall back to ``prior``."""
        try:
            refreshed = await self.client.refresh_session(prior)
        except AuthProviderError as exc:
            logger.warning('Token refresh failed: %s', exc)
            if prior is None and not self._superseded(epoch):
                self.session = None
            # With a prior session, keep it: a network blip is not a logout.
            return

        self._apply_refreshed(refreshed, epoch)

    def _apply_refreshed(self, session: Optional[Session], epoch: int) -> None:
        if self._superseded(epoch):
            return
        self.session = session
        self.error = None
        self.last_successful_refresh_at = self.clock()

    def _superseded(self, epoch: int) -> bool:
        """True when a sign-in or sign-out happened after the refresh started."""
        if epoch != self._auth_epoch or self.store.get(SIGNED_OUT_MARKER):
            logger.debug('Discarding refresh result from an older auth state')
            return True
        return False

    # --- Provider events ---

    def on_auth_event(self, event_type, session=None) -> bool:
        """
        Apply one provider notification.

        Returns False when the event was debounced or rejected.
        """
        try:
            event = parse_auth_event(event_type, session)
        except UnknownAuthEventError as exc:
            logger.warning('%s; ignoring', exc)
            return False
        except (KeyError, TypeError, ValueError):
            logger.warning('Malformed session payload on %s; ignoring', event_type, exc_info=True)
            return False

        return self.handle_event(event)

    def handle_event(self, event: AuthEvent) -> bool:
        now = self.clock()
        logger.debug('Auth event %s', event.type.value)

        if isinstance(event, (UserUpdated, TokenRefreshed, SessionMissing)):
            if not should_process(event.type.value, now, self.last_event_at, self.settings.debounce_intervals):
                logger.debug('Debounced %s', event.type.value)
                return False

        if isinstance(event, InitialSession):
            # A recorded sign-out outlives whatever the provider still caches.
            self.session = None if self.store.get(SIGNED_OUT_MARKER) else event.session
            self._mark_stable()

        elif isinstance(event, SignedIn):
            self._auth_epoch += 1
            self._stable = False
            self.phase = SessionPhase.LOADING
            self.session = event.session
            self.store.delete(SIGNED_OUT_MARKER)
            self._defer_stabilize()
            self._schedule_user_sync(event.session.user)

        elif isinstance(event, SignedOut):
            self._auth_epoch += 1
            self.session = None
            self.store.set(SIGNED_OUT_MARKER, now)
            self._cancel_syncs()
            self._mark_stable()

        elif isinstance(event, (UserUpdated, TokenRefreshed)):
            self.session = event.session
            if isinstance(event, TokenRefreshed):
                self.last_successful_refresh_at = now
            self._mark_stable()

        else:
            # Session-carrying event without a session: safest is signed out.
            self.session = None
            self._mark_stable()

        self.last_event_at[event.type.value] = now
        return True

    def _defer_stabilize(self) -> None:
        # One loop tick lets dependents observe the new session first.
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._mark_stable()
            return
        loop.call_soon(self._mark_stable)

    async def sign_out(self) -> bool:
        """Sign out upstream, then locally. Returns False if the provider refused."""
        if self.client is None:
            return False
        try:
            await self.client.sign_out()
        except AuthProviderError as exc:
            logger.warning('Sign out failed: %s', exc)
            self.error = f'Sign out failed: {exc}'
            return False
        self.handle_event(SignedOut())
        return True

    # --- Background user sync ---

    def _schedule_user_sync(self, user: User) -> None:
        if self.user_sync is None:
            return

        last = self._synced_at.get(user.id)
        if last is not None and self.clock() - last < self.settings.sync_interval:
            return
        if user.id in self._sync_handles:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug('No running loop; skipping user sync')
            return

        # Delay so the provider's own write lands before ours.
        token = object()
        handle = loop.call_later(self.settings.sync_delay, self._start_sync, user, token)
        self._sync_handles[user.id] = (token, handle)

    def _start_sync(self, user: User, token: object) -> None:
        task = asyncio.get_running_loop().create_task(self._sync_user(user, token))
        self._sync_tasks.add(task)
        task.add_done_callback(self._sync_tasks.discard)

    async def _sync_user(self, user: User, token: object) -> None:
        self._syncing += 1
        try:
            await self.user_sync.sync_user(user)
        except Exception:
            # Retried on the next sign-in; authentication is unaffected.
            logger.warning('User sync failed for %s', mask_identifier(user.email or user.id), exc_info=True)
        else:
            self._synced_at[user.id] = self.clock()
            logger.info('User %s synced', mask_identifier(user.email or user.id))
        finally:
            self._syncing -= 1
            # A sync cancelled by sign-out must not drop the entry of a newer schedule.
            entry = self._sync_handles.get(user.id)
            if entry is not None and entry[0] is token:
                del self._sync_handles[user.id]

    def _cancel_syncs(self) -> None:
        for _, handle in self._sync_handles.values():
            handle.cancel()
        self._sync_handles.clear()
        for task in self._sync_tasks:
            task.cancel()
