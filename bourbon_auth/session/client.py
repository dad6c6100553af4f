"""
HTTP collaborators of the session reconciler.

HttpAuthClient speaks the GoTrue-style REST API of the hosted auth
provider and pushes lifecycle events to its subscribers the way the
provider's browser SDK does. HttpUserSync posts the signed-in user to the
application's sync endpoint.
"""

import asyncio
import inspect
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Protocol, Set

import httpx

from bourbon_auth.session.errors import AuthProviderError
from bourbon_auth.session.events import AuthEventType
from bourbon_auth.session.models import Session, User

logger = logging.getLogger(__name__)

AuthEventCallback = Callable[[str, Optional[Session]], Any]
Unsubscribe = Callable[[], None]

DEFAULT_TIMEOUT = httpx.Timeout(10.0, connect=5.0)


class AuthClient(Protocol):
    """What the reconciler needs from the auth provider."""

    async def get_session(self) -> Optional[Session]: ...

    async def refresh_session(self, session: Optional[Session] = None) -> Session: ...

    async def sign_out(self) -> None: ...

    def on_auth_state_change(self, callback: AuthEventCallback) -> Unsubscribe: ...


class UserSync(Protocol):
    async def sync_user(self, user: User) -> None: ...


class AuthEventBus:
    """Fan-out of auth events to subscribers, in subscription order."""

    def __init__(self) -> None:
        self._subscribers: List[AuthEventCallback] = []
        self._tasks: Set[asyncio.Future] = set()

    def subscribe(self, callback: AuthEventCallback) -> Unsubscribe:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def emit(self, event: str, session: Optional[Session]) -> None:
        for callback in list(self._subscribers):
            self.deliver(callback, event, session)

    def deliver(self, callback: AuthEventCallback, event: str, session: Optional[Session]) -> None:
        """Call one subscriber; coroutine subscribers run as tracked tasks."""
        try:
            result = callback(event, session)
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._task_done)
        except Exception:
            logger.exception('Auth event subscriber failed on %s', event)

    def _task_done(self, task: asyncio.Future) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error('Async auth event subscriber failed', exc_info=task.exception())


class HttpAuthClient:
    """
    Minimal async client for the hosted auth provider.

    The current session is held in memory; get_session() validates it
    against the provider, refresh_session() trades the refresh token for
    a new bundle.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        session: Optional[Session] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.http = http_client or httpx.AsyncClient(timeout=DEFAULT_TIMEOUT)
        self.session = session
        self.clock = clock
        self.events = AuthEventBus()

    def _headers(self, access_token: Optional[str] = None) -> Dict[str, str]:
        headers = {'apikey': self.api_key, 'Content-Type': 'application/json'}
        headers['Authorization'] = f'Bearer {access_token or self.api_key}'
        return headers

    async def _request(self, method: str, path: str, *, access_token=None, **kwargs) -> httpx.Response:
        try:
            response = await self.http.request(
                method,
                f'{self.base_url}{path}',
                headers=self._headers(access_token),
                **kwargs,
            )
        except httpx.HTTPError as exc:
            raise AuthProviderError(f'{method} {path} failed: {exc}') from exc

        if response.is_error:
            raise AuthProviderError(
                f'{method} {path} returned {response.status_code}',
                status_code=response.status_code,
            )
        return response

    # --- Provider calls ---

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        response = await self._request(
            'POST',
            '/auth/v1/token',
            params={'grant_type': 'password'},
            json={'email': email, 'password': password},
        )
        self.session = Session.from_payload(response.json(), now=self.clock())
        self.events.emit(AuthEventType.SIGNED_IN.value, self.session)
        return self.session

    async def get_session(self) -> Optional[Session]:
        """Return the held session after confirming its user with the provider."""
        if self.session is None:
            return None
        response = await self._request('GET', '/auth/v1/user', access_token=self.session.access_token)
        user = User.from_payload(response.json())
        self.session = Session(
            access_token=self.session.access_token,
            refresh_token=self.session.refresh_token,
            expires_at=self.session.expires_at,
            user=user,
        )
        return self.session

    async def refresh_session(self, session: Optional[Session] = None) -> Session:
        current = session or self.session
        if current is None or not current.refresh_token:
            raise AuthProviderError('No refresh token available')

        response = await self._request(
            'POST',
            '/auth/v1/token',
            params={'grant_type': 'refresh_token'},
            json={'refresh_token': current.refresh_token},
        )
        self.session = Session.from_payload(response.json(), now=self.clock())
        self.events.emit(AuthEventType.TOKEN_REFRESHED.value, self.session)
        return self.session

    async def sign_out(self) -> None:
        session = self.session
        if session is not None:
            await self._request('POST', '/auth/v1/logout', access_token=session.access_token)
        self.session = None
        self.events.emit(AuthEventType.SIGNED_OUT.value, None)

    def on_auth_state_change(self, callback: AuthEventCallback) -> Unsubscribe:
        """Subscribe; the callback first receives INITIAL_SESSION with the held session."""
        unsubscribe = self.events.subscribe(callback)
        self.events.deliver(callback, AuthEventType.INITIAL_SESSION.value, self.session)
        return unsubscribe

    async def aclose(self) -> None:
        await self.http.aclose()


class HttpUserSync:
    """Posts the provider user to the application's sync endpoint."""

    def __init__(self, sync_url: str, http_client: httpx.AsyncClient) -> None:
        self.sync_url = sync_url
        self.http = http_client

    async def sync_user(self, user: User) -> None:
        payload = {'user_id': user.id, 'email': user.email}
        if user.display_name:
            payload['display_name'] = user.display_name
        try:
            response = await self.http.post(self.sync_url, json=payload)
        except httpx.HTTPError as exc:
            raise AuthProviderError(f'User sync failed: {exc}') from exc
        if response.is_error:
            raise AuthProviderError(
                f'User sync returned {response.status_code}',
                status_code=response.status_code,
            )
