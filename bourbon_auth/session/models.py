"""
Session and user value types as returned by the hosted auth provider.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional


@dataclass(frozen=True)
class User:
    id: str
    email: Optional[str] = None
    user_metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> 'User':
        return cls(
            id=str(payload['id']),
            email=payload.get('email'),
            user_metadata=dict(payload.get('user_metadata') or {}),
        )

    @property
    def display_name(self) -> Optional[str]:
        return self.user_metadata.get('full_name') or self.user_metadata.get('name')

    def to_dict(self) -> Dict[str, Any]:
        return {'id': self.id, 'email': self.email, 'user_metadata': dict(self.user_metadata)}


@dataclass(frozen=True)
class Session:
    """Opaque token bundle plus the user it belongs to."""

    access_token: str
    refresh_token: str
    expires_at: float
    user: User

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], now: Optional[float] = None) -> 'Session':
        """
        Build a Session from a provider token response.

        Providers send either an absolute ``expires_at`` (epoch seconds) or
        a relative ``expires_in``; the latter is anchored at ``now``.
        """
        expires_at = payload.get('expires_at')
        if expires_at is None:
            issued = time.time() if now is None else now
            expires_at = issued + float(payload.get('expires_in', 0))
        return cls(
            access_token=payload['access_token'],
            refresh_token=payload.get('refresh_token', ''),
            expires_at=float(expires_at),
            user=User.from_payload(payload['user']),
        )

    def expires_in(self, now: float) -> float:
        return self.expires_at - now

    def to_dict(self) -> Dict[str, Any]:
        return {
            'access_token': self.access_token,
            'refresh_token': self.refresh_token,
            'expires_at': self.expires_at,
            'user': self.user.to_dict(),
        }
