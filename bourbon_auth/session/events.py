"""
Auth lifecycle events pushed by the hosted auth provider.

Events form a closed set. parse_auth_event() turns the provider's
(name, payload) pair into one of the variants below and rejects names
outside the set instead of matching them loosely.
"""

import enum
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

from bourbon_auth.session.errors import UnknownAuthEventError
from bourbon_auth.session.models import Session


class AuthEventType(str, enum.Enum):
    INITIAL_SESSION = 'INITIAL_SESSION'
    SIGNED_IN = 'SIGNED_IN'
    SIGNED_OUT = 'SIGNED_OUT'
    USER_UPDATED = 'USER_UPDATED'
    TOKEN_REFRESHED = 'TOKEN_REFRESHED'


@dataclass(frozen=True)
class InitialSession:
    """Bootstrap event; the payload may be None when nobody is signed in."""

    session: Optional[Session]
    type = AuthEventType.INITIAL_SESSION


@dataclass(frozen=True)
class SignedIn:
    session: Session
    type = AuthEventType.SIGNED_IN


@dataclass(frozen=True)
class SignedOut:
    type = AuthEventType.SIGNED_OUT


@dataclass(frozen=True)
class UserUpdated:
    session: Session
    type = AuthEventType.USER_UPDATED


@dataclass(frozen=True)
class TokenRefreshed:
    session: Session
    type = AuthEventType.TOKEN_REFRESHED


@dataclass(frozen=True)
class SessionMissing:
    """A session-carrying event arrived without a session."""

    type: AuthEventType


AuthEvent = Union[InitialSession, SignedIn, SignedOut, UserUpdated, TokenRefreshed, SessionMissing]

_SESSION_EVENTS = {
    AuthEventType.SIGNED_IN: SignedIn,
    AuthEventType.USER_UPDATED: UserUpdated,
    AuthEventType.TOKEN_REFRESHED: TokenRefreshed,
}


def coerce_session(payload: Union[Session, Mapping[str, Any], None]) -> Optional[Session]:
    if payload is None or isinstance(payload, Session):
        return payload
    return Session.from_payload(payload)


def parse_auth_event(name, payload=None) -> AuthEvent:
    """
    Build the typed event for a provider notification.

    Raises:
        UnknownAuthEventError: for names outside AuthEventType.
    """
    try:
        event_type = AuthEventType(name)
    except ValueError:
        raise UnknownAuthEventError(name) from None

    if event_type is AuthEventType.SIGNED_OUT:
        return SignedOut()

    session = coerce_session(payload)
    if event_type is AuthEventType.INITIAL_SESSION:
        return InitialSession(session)
    if session is None:
        return SessionMissing(event_type)
    return _SESSION_EVENTS[event_type](session)
