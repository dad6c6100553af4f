"""
Login security guard: progressive account lockout and IP blocking.

Two independent state machines share one entry point:

- per account identifier: password guessing against one account. After
  max_attempts failures inside the attempt window the account locks for
  lockout_durations[consecutive_lockouts] (capped at the last entry).
- per source IP: credential stuffing across many accounts. Every failure
  counts toward ip_block_threshold regardless of the identifier used.

Expiry is lazy: a lock that has run out is cleared by the next check, so
no background job is needed for correctness. cleanup_expired_locks()
only reclaims memory.

The guard never raises. Callers check is_ip_blocked()/is_account_locked()
before verifying credentials, then call record_failed_attempt() or
reset_on_success(), and answer a blocked attempt with one generic
"try again later" message whichever side is blocked.
"""

import hmac
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

from bourbon_auth.guard.store import (
    AttemptStore,
    FailedAttemptRecord,
    IPRecord,
    MemoryAttemptStore,
)
from bourbon_auth.logging_config import log_security_event, mask_identifier

logger = logging.getLogger(__name__)

MINUTE = 60
HOUR = 60 * MINUTE
DAY = 24 * HOUR

# Environments where reset_all() needs no token.
_UNGUARDED_ENVIRONMENTS = ('development', 'test')


@dataclass(frozen=True)
class LockoutPolicy:
    """Thresholds and escalation tables, all durations in seconds."""

    max_attempts: int = 5
    lockout_durations: Sequence[float] = (15 * MINUTE, 30 * MINUTE, HOUR, 3 * HOUR, DAY)
    attempt_window: float = HOUR
    ip_block_threshold: int = 10
    ip_block_durations: Sequence[float] = (HOUR, 3 * HOUR, 12 * HOUR, DAY, 7 * DAY)

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> 'LockoutPolicy':
        """Build a policy from Flask config keys, keeping defaults for missing ones."""
        defaults = cls()
        return cls(
            max_attempts=config.get('LOCKOUT_MAX_ATTEMPTS', defaults.max_attempts),
            lockout_durations=tuple(config.get('LOCKOUT_DURATIONS', defaults.lockout_durations)),
            attempt_window=config.get('LOCKOUT_ATTEMPT_WINDOW', defaults.attempt_window),
            ip_block_threshold=config.get('IP_BLOCK_THRESHOLD', defaults.ip_block_threshold),
            ip_block_durations=tuple(config.get('IP_BLOCK_DURATIONS', defaults.ip_block_durations)),
        )

    def lockout_duration(self, consecutive_lockouts: int) -> float:
        index = min(consecutive_lockouts, len(self.lockout_durations) - 1)
        return self.lockout_durations[index]

    def ip_block_duration(self, block_count: int) -> float:
        index = min(block_count, len(self.ip_block_durations) - 1)
        return self.ip_block_durations[index]


@dataclass(frozen=True)
class SecurityEvent:
    """One entry for the security event sink. Identifiers are pre-masked."""

    timestamp: float
    type: str
    severity: str
    masked_identifier: Optional[str] = None
    ip: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class LockoutStatus:
    """Read-only diagnostics for one account."""

    locked: bool
    attempts: int
    remaining_ms: Optional[int] = None


@dataclass(frozen=True)
class AttemptResult:
    """State after record_failed_attempt()."""

    attempts: int
    account_locked: bool
    ip_blocked: bool
    lock_duration: Optional[float] = None


class LoginSecurityGuard:
    """In-memory brute-force protection for the login endpoint."""

    def __init__(
        self,
        policy: Optional[LockoutPolicy] = None,
        account_store: Optional[AttemptStore[FailedAttemptRecord]] = None,
        ip_store: Optional[AttemptStore[IPRecord]] = None,
        *,
        clock: Callable[[], float] = time.time,
        event_sink: Callable[[SecurityEvent], None] = log_security_event,
        environment: str = 'production',
        reset_token: Optional[str] = None,
    ) -> None:
        self.policy = policy or LockoutPolicy()
        self.accounts = account_store if account_store is not None else MemoryAttemptStore()
        self.ips = ip_store if ip_store is not None else MemoryAttemptStore()
        self.clock = clock
        self.event_sink = event_sink
        self.environment = environment
        self.reset_token = reset_token
        self._lock = threading.RLock()

    # --- Checks ---

    def is_account_locked(self, identifier) -> bool:
        """True while an unexpired lockout is active for the identifier."""
        key = _normalize(identifier)
        with self._lock:
            record = self.accounts.get(key)
            if record is None or not record.locked:
                return False

            if record.lock_expires_at is not None and self.clock() < record.lock_expires_at:
                return True

            # Expired: unlock but keep consecutive_lockouts for escalation.
            record.locked = False
            record.count = 0
            record.lock_expires_at = None
            self.accounts.put(key, record)
            return False

    def is_ip_blocked(self, ip) -> bool:
        """True while an unexpired block is active for the address."""
        key = _normalize(ip)
        with self._lock:
            record = self.ips.get(key)
            if record is None or not record.locked:
                return False

            if record.lock_expires_at is not None and self.clock() < record.lock_expires_at:
                return True

            record.locked = False
            record.count = 0
            record.lock_expires_at = None
            self.ips.put(key, record)
            return False

    # --- Transitions ---

    def record_failed_attempt(self, identifier, ip=None) -> AttemptResult:
        """
        Count one failed login against the account and, if given, the IP.

        A window older than attempt_window restarts the count at 1 but keeps
        the lockout history, so the next lockout still escalates.
        """
        key = _normalize(identifier)
        with self._lock:
            now = self.clock()
            lock_duration = self._record_account_failure(key, ip, now)
            ip_blocked = False
            if ip:
                ip_blocked = self._record_ip_failure(_normalize(ip), now)

            record = self.accounts.get(key)
            return AttemptResult(
                attempts=record.count,
                account_locked=record.locked,
                ip_blocked=ip_blocked,
                lock_duration=lock_duration,
            )

    def _record_account_failure(self, key: str, ip, now: float) -> Optional[float]:
        policy = self.policy
        record = self.accounts.get(key)

        if record is None:
            record = FailedAttemptRecord(count=1, window_start=now, last_attempt=now)
        elif now - record.window_start > policy.attempt_window:
            record.count = 1
            record.window_start = now
            record.last_attempt = now
            if not _lock_active(record, now):
                record.locked = False
                record.lock_expires_at = None
        else:
            record.count += 1
            record.last_attempt = now

        lock_duration = None
        if record.count >= policy.max_attempts:
            lock_duration = policy.lockout_duration(record.consecutive_lockouts)
            record.locked = True
            record.lock_expires_at = now + lock_duration
            record.consecutive_lockouts += 1

        self.accounts.put(key, record)

        if lock_duration is not None:
            self._emit(
                'account_lockout',
                'high',
                identifier=key,
                ip=ip or 'unknown',
                attempts=record.count,
                lock_duration_minutes=lock_duration / MINUTE,
                consecutive_lockouts=record.consecutive_lockouts,
            )
        return lock_duration

    def _record_ip_failure(self, key: str, now: float) -> bool:
        policy = self.policy
        record = self.ips.get(key)

        if record is None:
            record = IPRecord(count=1, window_start=now, last_attempt=now)
        elif now - record.window_start > policy.attempt_window:
            record.count = 1
            record.window_start = now
            record.last_attempt = now
            if not _lock_active(record, now):
                record.locked = False
                record.lock_expires_at = None
        else:
            record.count += 1
            record.last_attempt = now

        block_duration = None
        if record.count >= policy.ip_block_threshold:
            # Duration comes from block_count before this block is counted.
            block_duration = policy.ip_block_duration(record.block_count)
            record.locked = True
            record.lock_expires_at = now + block_duration
            record.block_count += 1

        self.ips.put(key, record)

        if block_duration is not None:
            self._emit(
                'ip_blocked',
                'critical',
                ip=key,
                attempts=record.count,
                block_duration_hours=block_duration / HOUR,
                block_count=record.block_count,
            )
        return record.locked

    def reset_on_success(self, identifier, ip=None) -> None:
        """
        Clear the account's counter and lock after a successful login.

        consecutive_lockouts survives, and the IP record is left alone: one
        valid login must not wipe credential-stuffing history from a
        shared connection.
        """
        key = _normalize(identifier)
        with self._lock:
            record = self.accounts.get(key)
            if record is None:
                return

            now = self.clock()
            record.count = 0
            record.window_start = now
            record.last_attempt = now
            record.locked = False
            record.lock_expires_at = None
            self.accounts.put(key, record)

        self._emit('login_attempt_reset', 'low', identifier=key, ip=ip or 'unknown')

    # --- Diagnostics ---

    def get_status(self, identifier) -> LockoutStatus:
        key = _normalize(identifier)
        with self._lock:
            if self.accounts.get(key) is None:
                return LockoutStatus(locked=False, attempts=0)

            locked = self.is_account_locked(key)
            record = self.accounts.get(key)
            remaining_ms = None
            if record.lock_expires_at is not None:
                remaining_ms = max(0, int((record.lock_expires_at - self.clock()) * 1000))
            return LockoutStatus(locked=locked, attempts=record.count, remaining_ms=remaining_ms)

    # --- Maintenance ---

    def cleanup_expired_locks(self) -> int:
        """
        Drop records that no longer matter and return how many went.

        A record goes when its lock ran out more than one window ago, or
        when it has seen no activity for two windows. Dropping a record
        also forgets its escalation history.
        """
        removed = 0
        with self._lock:
            now = self.clock()
            for store in (self.accounts, self.ips):
                for key, record in store.items():
                    if self._is_stale(record, now):
                        store.delete(key)
                        removed += 1

        if removed:
            logger.info('Login guard sweep removed %d record(s)', removed)
        self._emit('account_locks_cleanup', 'low', removed=removed)
        return removed

    def _is_stale(self, record, now: float) -> bool:
        window = self.policy.attempt_window
        if _lock_active(record, now):
            return False
        if record.lock_expires_at is not None and now - record.lock_expires_at > window:
            return True
        return now - record.last_attempt > 2 * window

    def reset_all(self, auth_token: Optional[str] = None) -> bool:
        """
        Wipe all lockout and block data.

        Outside development/test a matching reset token is required.
        """
        if self.environment not in _UNGUARDED_ENVIRONMENTS:
            if not auth_token or not self.reset_token or not hmac.compare_digest(
                auth_token.encode('utf-8'), self.reset_token.encode('utf-8')
            ):
                self._emit('unauthorized_security_reset', 'critical', environment=self.environment)
                return False

        with self._lock:
            self.accounts.clear()
            self.ips.clear()

        self._emit('security_data_reset', 'high', environment=self.environment)
        return True

    # --- Events ---

    def _emit(self, event_type: str, severity: str, identifier=None, ip=None, **details) -> None:
        event = SecurityEvent(
            timestamp=self.clock(),
            type=event_type,
            severity=severity,
            masked_identifier=mask_identifier(identifier) if identifier is not None else None,
            ip=ip,
            details=details,
        )
        try:
            self.event_sink(event)
        except Exception:
            # Logging is best-effort; the lock decision already happened.
            logger.warning('Security event sink failed for %s', event_type, exc_info=True)


def _normalize(value) -> str:
    if value is None:
        return ''
    return value if isinstance(value, str) else str(value)


def _lock_active(record, now: float) -> bool:
    return bool(record.locked and record.lock_expires_at is not None and now < record.lock_expires_at)
