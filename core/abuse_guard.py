"""
Abuse Guard Module

Protects the enrollment path before any embedding is persisted. Two
checks run, in this order:

1. Suspicious-client heuristic: a resolvable client whose User-Agent is
   missing, shorter than 10 characters, or contains one of the deny-list
   words (bot, crawler, spider, scraper, curl, wget) is rejected. A client
   whose address cannot be resolved ("unknown") is not evaluated at all,
   so traffic behind unidentified proxies is never blocked by this check.

2. Fixed-window rate limiting keyed by client identifier (5 requests per
   60 s by default). Only accepted requests consume quota; a rejected
   request does not move the counter.

Rate-limit state lives in a RateLimitStore. InMemoryRateLimitStore is
correct for a single process only; a multi-instance deployment needs a
store backed by a shared counter. Expired windows are swept periodically
so the table does not grow without bound.

Usage:
    from core.abuse_guard import AbuseGuard, resolve_client_ip

    guard = AbuseGuard(config)
    guard.check(resolve_client_ip(headers), headers.get("user-agent", ""))
"""

import json
import logging
import re
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

from core.errors import RateLimitExceeded, SecurityViolation

logger = logging.getLogger(__name__)
security_logger = logging.getLogger("security")


UNKNOWN_CLIENT = "unknown"

DEFAULT_MAX_REQUESTS = 5
DEFAULT_WINDOW_MS = 60000
DEFAULT_SWEEP_INTERVAL_MS = 300000

DEFAULT_MIN_USER_AGENT_LENGTH = 10
DEFAULT_SUSPICIOUS_PATTERNS = ["bot", "crawler", "spider", "scraper", "curl", "wget"]

# Headers consulted for the client address, most specific first
CLIENT_IP_HEADERS = ("x-forwarded-for", "x-real-ip", "x-client-ip")


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def resolve_client_ip(headers: Mapping[str, str]) -> str:
    """
    Best-effort client address from request headers.

    Uses the first hop of X-Forwarded-For, then X-Real-IP, then
    X-Client-IP, and falls back to the literal "unknown".
    """
    lookup = {k.lower(): v for k, v in headers.items()}

    for name in CLIENT_IP_HEADERS:
        value = lookup.get(name)
        if value:
            first = value.split(",")[0].strip()
            if first:
                return first

    return UNKNOWN_CLIENT


# ============================================================
# Security events
# ============================================================

@dataclass
class SecurityEvent:
    """
    A security-relevant occurrence handed to the security log.

    Attributes:
        kind: "rate_limit", "suspicious_activity", "validation_error"
              or "authentication_failure".
        client_key: Client identifier the event concerns.
        user_agent: Declared client agent string.
        timestamp: When the event happened (UTC).
        details: Extra context (endpoint, reason, reset time, ...).
    """

    kind: str
    client_key: str
    user_agent: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        entry = {
            "timestamp": self.timestamp.isoformat(),
            "type": self.kind,
            "ip": self.client_key,
            "userAgent": self.user_agent,
        }
        entry.update(self.details)
        return entry


def log_security_event(event: SecurityEvent) -> None:
    """Write a security event as one JSON line to the "security" logger."""
    security_logger.warning(f"Security event: {json.dumps(event.to_dict())}")


# ============================================================
# Rate-limit storage
# ============================================================

@dataclass
class RateLimitWindow:
    """
    Fixed-window counter for one client key.

    Attributes:
        key: Client identifier.
        count: Requests accepted in the current window.
        window_reset_at: Epoch ms at which the window expires.
    """

    key: str
    count: int
    window_reset_at: int


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_time: int


class RateLimitStore(ABC):
    """
    Keyed storage for rate-limit windows.

    A check-then-increment on one key must not lose updates, so callers
    run get/reset/increment for a key inside `locked(key)`.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[RateLimitWindow]:
        """Return the current window for key, expired or not, or None."""
        pass

    @abstractmethod
    def increment(self, key: str) -> RateLimitWindow:
        """Add one to an existing window's count and return the window."""
        pass

    @abstractmethod
    def reset(self, key: str, window_reset_at: int) -> RateLimitWindow:
        """Start a fresh window for key with count 1."""
        pass

    @abstractmethod
    def sweep(self, now: int) -> int:
        """Drop windows that expired at or before now; return how many."""
        pass

    @abstractmethod
    def locked(self, key: str):
        """Context manager holding exclusive access to key."""
        pass


class InMemoryRateLimitStore(RateLimitStore):
    """
    Process-local window table.

    A single re-entrant lock guards the whole table, which makes every
    per-key critical section atomic. Not shared across processes.
    """

    def __init__(self):
        self._windows: Dict[str, RateLimitWindow] = {}
        self._lock = threading.RLock()

    def get(self, key: str) -> Optional[RateLimitWindow]:
        with self._lock:
            window = self._windows.get(key)
            if window is None:
                return None
            return RateLimitWindow(window.key, window.count, window.window_reset_at)

    def increment(self, key: str) -> RateLimitWindow:
        with self._lock:
            window = self._windows[key]
            window.count += 1
            return RateLimitWindow(window.key, window.count, window.window_reset_at)

    def reset(self, key: str, window_reset_at: int) -> RateLimitWindow:
        with self._lock:
            self._windows[key] = RateLimitWindow(key, 1, window_reset_at)
            return RateLimitWindow(key, 1, window_reset_at)

    def sweep(self, now: int) -> int:
        with self._lock:
            expired = [k for k, w in self._windows.items() if w.window_reset_at <= now]
            for key in expired:
                del self._windows[key]
            return len(expired)

    @contextmanager
    def locked(self, key: str) -> Iterator[None]:
        with self._lock:
            yield

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)


# ============================================================
# Checks
# ============================================================

class RateLimiter:
    """
    Fixed-window rate limiter.

    The first request for a key (or the first after its window expired)
    opens a window with count 1 that resets at now + window_ms. Further
    requests are accepted while count < max_requests; after that they are
    rejected with remaining=0 and the window's reset time until it expires.

    Args:
        config: Dictionary with optional keys:
            - max_requests: Requests allowed per window (default 5)
            - window_ms: Window length in milliseconds (default 60000)
            - sweep_interval_ms: How often expired windows are dropped
        store: Window storage (default: a new InMemoryRateLimitStore).
        clock: Callable returning epoch milliseconds (default: wall clock).
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        store: Optional[RateLimitStore] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        if config is None:
            config = {}
        self.max_requests = config.get("max_requests", DEFAULT_MAX_REQUESTS)
        self.window_ms = config.get("window_ms", DEFAULT_WINDOW_MS)
        self.sweep_interval_ms = config.get("sweep_interval_ms", DEFAULT_SWEEP_INTERVAL_MS)
        self.store = store if store is not None else InMemoryRateLimitStore()
        self._clock = clock or now_ms
        self._next_sweep_at = self._clock() + self.sweep_interval_ms
        self._sweep_lock = threading.Lock()

    def check(self, key: str) -> RateLimitResult:
        """Count one request for key and report whether it is allowed."""
        now = self._clock()
        self._maybe_sweep(now)

        with self.store.locked(key):
            window = self.store.get(key)

            if window is None or window.window_reset_at <= now:
                window = self.store.reset(key, now + self.window_ms)
                return RateLimitResult(
                    allowed=True,
                    remaining=self.max_requests - 1,
                    reset_time=window.window_reset_at,
                )

            if window.count >= self.max_requests:
                return RateLimitResult(allowed=False, remaining=0, reset_time=window.window_reset_at)

            window = self.store.increment(key)
            return RateLimitResult(
                allowed=True,
                remaining=self.max_requests - window.count,
                reset_time=window.window_reset_at,
            )

    def _maybe_sweep(self, now: int) -> None:
        with self._sweep_lock:
            if now < self._next_sweep_at:
                return
            self._next_sweep_at = now + self.sweep_interval_ms

        removed = self.store.sweep(now)
        if removed:
            logger.debug(f"Swept {removed} expired rate-limit windows")


class SuspiciousActivityDetector:
    """
    User-Agent heuristic for automated clients.

    Args:
        config: Dictionary with optional keys:
            - min_user_agent_length: Shorter agents are suspicious (default 10)
            - patterns: Case-insensitive deny-list substrings
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        if config is None:
            config = {}
        self.min_user_agent_length = config.get("min_user_agent_length", DEFAULT_MIN_USER_AGENT_LENGTH)
        patterns: List[str] = config.get("patterns", DEFAULT_SUSPICIOUS_PATTERNS)
        self._pattern = re.compile("|".join(re.escape(p) for p in patterns), re.IGNORECASE) if patterns else None

    def check(self, client_key: str, user_agent: Optional[str]) -> Optional[str]:
        """
        Classify a client.

        Returns:
            None when the client is not suspicious (or cannot be evaluated),
            otherwise a short reason string.
        """
        if not client_key or client_key == UNKNOWN_CLIENT:
            return None

        if not user_agent or len(user_agent) < self.min_user_agent_length:
            return "short_user_agent"

        if self._pattern is not None and self._pattern.search(user_agent):
            return "denied_user_agent"

        return None

    def is_suspicious(self, client_key: str, user_agent: Optional[str]) -> bool:
        return self.check(client_key, user_agent) is not None


class AbuseGuard:
    """
    Suspicious-client check followed by rate limiting.

    Args:
        config: The "abuse_guard" config section (keys "rate_limit" and
                "suspicious").
        store: Optional rate-limit store to share or inject.
        clock: Optional epoch-ms clock, mainly for tests.
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        store: Optional[RateLimitStore] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        if config is None:
            config = {}
        self.detector = SuspiciousActivityDetector(config.get("suspicious", {}))
        self.rate_limiter = RateLimiter(config.get("rate_limit", {}), store=store, clock=clock)

    def check(self, client_key: str, user_agent: Optional[str], endpoint: str = "enroll") -> RateLimitResult:
        """
        Run both checks for one request.

        Returns:
            The RateLimitResult of an accepted request.

        Raises:
            SecurityViolation: The client looks automated.
            RateLimitExceeded: The client's window is exhausted.
        """
        user_agent = user_agent or ""

        reason = self.detector.check(client_key, user_agent)
        if reason is not None:
            log_security_event(SecurityEvent(
                kind="suspicious_activity",
                client_key=client_key,
                user_agent=user_agent,
                details={"endpoint": endpoint, "reason": reason},
            ))
            raise SecurityViolation(reason)

        result = self.rate_limiter.check(client_key)
        if not result.allowed:
            log_security_event(SecurityEvent(
                kind="rate_limit",
                client_key=client_key,
                user_agent=user_agent,
                details={"endpoint": endpoint, "reset_time": result.reset_time},
            ))
            raise RateLimitExceeded(result.reset_time)

        return result


# Singleton instance for the guard
_guard_instance: Optional[AbuseGuard] = None
_guard_lock = threading.Lock()


def get_abuse_guard() -> AbuseGuard:
    """
    Get or create the process-wide AbuseGuard.

    The in-memory window table only works if every request goes through
    the same guard, hence the singleton.
    """
    global _guard_instance

    with _guard_lock:
        if _guard_instance is None:
            from core.config import get_abuse_guard_config

            _guard_instance = AbuseGuard(get_abuse_guard_config())

    return _guard_instance
