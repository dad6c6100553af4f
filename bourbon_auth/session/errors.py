"""Exceptions raised inside the session client."""

from typing import Optional


class SessionClientError(Exception):
    """Base class for session client errors."""


class AuthProviderError(SessionClientError):
    """The hosted auth provider rejected a call or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class UnknownAuthEventError(SessionClientError):
    """An auth event name outside the known set."""

    def __init__(self, name) -> None:
        super().__init__(f'Unknown auth event: {name!r}')
        self.name = name
