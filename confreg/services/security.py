import secrets
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Protocol

PIN_LENGTH = 8
SESSION_COOKIE = "sessionid"
CSRF_HEADER = "x-csrf-token"
SAFE_METHODS = {"GET", "HEAD", "OPTIONS"}


def generate_pin(length: int = PIN_LENGTH) -> str:
    """Numeric PIN drawn from the OS CSPRNG; leading zeros are allowed."""
    return "".join(str(secrets.randbelow(10)) for _ in range(length))


def build_csrf_token() -> str:
    return secrets.token_urlsafe(32)


def build_session_id() -> str:
    return secrets.token_hex(16)


@dataclass
class Session:
    session_id: str
    registration_id: int
    csrf_token: str
    expires_at: float


@dataclass(frozen=True)
class AuthContext:
    """Authenticated caller, resolved once per request from the session cookie."""

    registration_id: int
    is_organizer: bool
    session_id: str
    csrf_token: str


class SessionStore(Protocol):
    ttl_seconds: int

    def create(self, registration_id: int) -> Session: ...

    def get(self, session_id: str | None) -> Session | None: ...

    def delete(self, session_id: str | None) -> None: ...

    def expire(self) -> int: ...


class InMemorySessionStore:
    """Process-local sessions; only valid for a single-instance deployment."""

    def __init__(self, ttl_seconds: int, clock=time.time):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    def create(self, registration_id: int) -> Session:
        session = Session(
            session_id=build_session_id(),
            registration_id=registration_id,
            csrf_token=build_csrf_token(),
            expires_at=self._clock() + self.ttl_seconds,
        )
        with self._lock:
            self._sessions[session.session_id] = session
        return session

    def get(self, session_id: str | None) -> Session | None:
        if not session_id:
            return None
        with self._lock:
            session = self._sessions.get(session_id)
            if not session:
                return None
            now = self._clock()
            if session.expires_at <= now:
                del self._sessions[session_id]
                return None
            # sliding expiry
            session.expires_at = now + self.ttl_seconds
            return session

    def delete(self, session_id: str | None) -> None:
        if not session_id:
            return
        with self._lock:
            self._sessions.pop(session_id, None)

    def expire(self) -> int:
        with self._lock:
            now = self._clock()
            stale = [sid for sid, s in self._sessions.items() if s.expires_at <= now]
            for sid in stale:
                del self._sessions[sid]
            return len(stale)

    def __len__(self) -> int:
        return len(self._sessions)


@dataclass
class _AttemptBucket:
    attempts: int
    first_attempt_at: float
    blocked_until: float = 0.0


class EmailAttemptLimiter:
    """Failed-login tracker keyed by (email, client address).

    More than ``max_attempts`` failures inside ``window_seconds`` blocks the
    key for ``block_seconds``. Successful logins clear the key. Keys whose
    window and block have both lapsed are swept every ``sweep_seconds``.
    """

    def __init__(
        self,
        window_seconds: int = 10 * 60,
        max_attempts: int = 10,
        block_seconds: int = 30 * 60,
        sweep_seconds: int = 60,
        clock=time.time,
    ):
        self.window_seconds = window_seconds
        self.max_attempts = max_attempts
        self.block_seconds = block_seconds
        self.sweep_seconds = sweep_seconds
        self._clock = clock
        self._buckets: dict[str, _AttemptBucket] = {}
        self._next_sweep = clock() + sweep_seconds
        self._lock = threading.Lock()

    @staticmethod
    def _key(email: str, ip: str) -> str:
        return f"{email}|{ip}"

    def _is_stale(self, bucket: _AttemptBucket, now: float) -> bool:
        if bucket.blocked_until:
            return now >= bucket.blocked_until
        return now - bucket.first_attempt_at > self.window_seconds

    def _sweep(self, now: float) -> int:
        stale = [key for key, bucket in self._buckets.items() if self._is_stale(bucket, now)]
        for key in stale:
            del self._buckets[key]
        self._next_sweep = now + self.sweep_seconds
        return len(stale)

    def check(self, email: str, ip: str) -> int | None:
        """Seconds until the key is unblocked, or None when allowed."""
        key = self._key(email, ip)
        with self._lock:
            bucket = self._buckets.get(key)
            if not bucket:
                return None
            now = self._clock()
            if bucket.blocked_until and now < bucket.blocked_until:
                return max(1, int(bucket.blocked_until - now + 0.999))
            if now - bucket.first_attempt_at > self.window_seconds:
                del self._buckets[key]
            return None

    def record_failure(self, email: str, ip: str):
        key = self._key(email, ip)
        with self._lock:
            now = self._clock()
            if now >= self._next_sweep:
                self._sweep(now)
            bucket = self._buckets.get(key)
            if not bucket or self._is_stale(bucket, now):
                self._buckets[key] = _AttemptBucket(attempts=1, first_attempt_at=now)
                return
            bucket.attempts += 1
            if bucket.attempts > self.max_attempts:
                bucket.blocked_until = now + self.block_seconds

    def reset(self, email: str, ip: str):
        with self._lock:
            self._buckets.pop(self._key(email, ip), None)

    def prune(self) -> int:
        with self._lock:
            return self._sweep(self._clock())

    def __len__(self) -> int:
        return len(self._buckets)


class InMemoryRateLimiter:
    """Sliding-window event counter per key; idle keys are swept periodically."""

    def __init__(self, sweep_seconds: int = 60, clock=time.time):
        self.sweep_seconds = sweep_seconds
        self._clock = clock
        self._events: dict[str, deque] = defaultdict(deque)
        self._periods: dict[str, int] = {}
        self._next_sweep = clock() + sweep_seconds
        self._lock = threading.Lock()

    def _sweep(self, now: float) -> int:
        idle = [
            key for key, dq in self._events.items() if not dq or dq[-1] <= now - self._periods.get(key, 0)
        ]
        for key in idle:
            del self._events[key]
            self._periods.pop(key, None)
        self._next_sweep = now + self.sweep_seconds
        return len(idle)

    def allow(self, key: str, limit: int, period_seconds: int) -> bool:
        with self._lock:
            now = self._clock()
            if now >= self._next_sweep:
                self._sweep(now)
            self._periods[key] = period_seconds
            dq = self._events[key]
            while dq and dq[0] <= now - period_seconds:
                dq.popleft()
            if len(dq) >= limit:
                return False
            dq.append(now)
            return True

    def prune(self) -> int:
        with self._lock:
            return self._sweep(self._clock())

    def __len__(self) -> int:
        return len(self._events)
