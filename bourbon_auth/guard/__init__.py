"""
Login security guard: brute-force protection independent of Flask.
"""

from bourbon_auth.guard.guard import (
    AttemptResult,
    LockoutPolicy,
    LockoutStatus,
    LoginSecurityGuard,
    SecurityEvent,
)
from bourbon_auth.guard.store import (
    AttemptStore,
    FailedAttemptRecord,
    IPRecord,
    MemoryAttemptStore,
)

__all__ = [
    'AttemptResult',
    'AttemptStore',
    'FailedAttemptRecord',
    'IPRecord',
    'LockoutPolicy',
    'LockoutStatus',
    'LoginSecurityGuard',
    'MemoryAttemptStore',
    'SecurityEvent',
]
