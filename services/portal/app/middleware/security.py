"""
Abuse controls for the public endpoints.

SecurityTracker records categorized security events and feeds a per-client
failure counter; ten qualifying failures within the rolling window put the
client on a temporary blacklist.
"""
import threading
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import settings
from app.middleware.rate_limiter import parse_limit
from app.obs.errors import BlacklistedError, RateLimitExceeded
from app.obs.logging import get_logger, log_security_event
from app.obs.metrics import metrics

logger = get_logger(__name__)

DAY_SECONDS = 24 * 60 * 60


class SecurityEventType(str, Enum):
    RATE_LIMIT = "rate_limit"
    CAPTCHA_FAIL = "captcha_fail"
    VALIDATION_ERROR = "validation_error"
    BLACKLIST = "blacklist"
    SUSPICIOUS = "suspicious"


SEVERITY = {
    SecurityEventType.BLACKLIST: "high",
    SecurityEventType.SUSPICIOUS: "medium",
    SecurityEventType.CAPTCHA_FAIL: "medium",
    SecurityEventType.RATE_LIMIT: "low",
    SecurityEventType.VALIDATION_ERROR: "low",
}

# Only these feed the auto-blacklist counter
TRACKED_EVENTS = frozenset({
    SecurityEventType.CAPTCHA_FAIL,
    SecurityEventType.RATE_LIMIT,
    SecurityEventType.VALIDATION_ERROR,
})


@dataclass
class SecurityEvent:
    type: SecurityEventType
    identifier: str
    endpoint: str
    user_agent: Optional[str] = None
    details: Any = None
    timestamp: float = 0.0

    @property
    def severity(self) -> str:
        return SEVERITY[self.type]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": datetime.fromtimestamp(self.timestamp, tz=timezone.utc).isoformat(),
            "type": self.type.value,
            "ip": self.identifier,
            "endpoint": self.endpoint,
            "severity": self.severity,
        }


@dataclass
class SuspiciousActivity:
    failed_attempts: int = 0
    last_attempt: float = 0.0
    counts: Counter = field(default_factory=Counter)


class Blacklist:
    """Temporary deny-list; entries lapse once their duration has elapsed."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._expires: Dict[str, float] = {}
        self._lock = threading.Lock()

    def add(self, identifier: str, duration_seconds: float):
        with self._lock:
            self._expires[identifier] = self._clock() + duration_seconds
        logger.warning(
            f"Identifier temporarily blacklisted for {int(duration_seconds)} seconds",
            extra={'ip': identifier},
        )

    def remove(self, identifier: str):
        with self._lock:
            self._expires.pop(identifier, None)

    def is_blacklisted(self, identifier: str) -> bool:
        with self._lock:
            expires = self._expires.get(identifier)
            if expires is None:
                return False
            if self._clock() >= expires:
                del self._expires[identifier]
                return False
            return True

    def active(self) -> List[str]:
        now = self._clock()
        with self._lock:
            for identifier in [k for k, v in self._expires.items() if now >= v]:
                del self._expires[identifier]
            return list(self._expires)

    def __contains__(self, identifier: str) -> bool:
        return self.is_blacklisted(identifier)


class SecurityTracker:
    """Security event log and auto-blacklist state, one instance per process."""

    def __init__(
        self,
        blacklist: Optional[Blacklist] = None,
        clock: Callable[[], float] = time.time,
        threshold: int = 10,
        window_seconds: float = 3600,
        blacklist_seconds: float = DAY_SECONDS,
        history_size: int = 1000,
        max_tracked_identifiers: int = 1000,
    ):
        self._clock = clock
        self.blacklist = blacklist or Blacklist(clock=clock)
        self.threshold = threshold
        self.window_seconds = window_seconds
        self.blacklist_seconds = blacklist_seconds
        self.max_tracked_identifiers = max_tracked_identifiers
        self._activity: Dict[str, SuspiciousActivity] = {}
        self._events: Deque[SecurityEvent] = deque(maxlen=history_size)
        self._violations: Dict[str, SuspiciousActivity] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, config=None) -> "SecurityTracker":
        config = config or settings
        return cls(
            threshold=config.BLACKLIST_THRESHOLD,
            window_seconds=config.SUSPICIOUS_WINDOW_SECONDS,
            blacklist_seconds=config.BLACKLIST_DURATION_SECONDS,
        )

    def is_blacklisted(self, identifier: str) -> bool:
        return self.blacklist.is_blacklisted(identifier)

    def log_event(
        self,
        event_type: SecurityEventType,
        identifier: str,
        endpoint: str,
        user_agent: Optional[str] = None,
        details: Any = None,
    ) -> bool:
        """
        Record a security event. Returns True when this event blacklisted the identifier.
        """
        event = SecurityEvent(
            type=SecurityEventType(event_type),
            identifier=identifier,
            endpoint=endpoint,
            user_agent=user_agent,
            details=details,
            timestamp=self._clock(),
        )
        log_security_event(
            logger,
            event_type=event.type.value,
            severity=event.severity,
            ip=identifier,
            endpoint=endpoint,
            details={"user_agent": user_agent, "reason": details} if user_agent else {"reason": details},
        )
        metrics.record_security_event(event.type.value, event.severity)

        with self._lock:
            self._events.append(event)
            violation = self._violations.setdefault(identifier, SuspiciousActivity())
            violation.failed_attempts += 1
            violation.last_attempt = event.timestamp
            violation.counts[event.type] += 1
            self._prune_violations(event.timestamp - DAY_SECONDS)

        if event.type in TRACKED_EVENTS:
            blacklisted = self.track_failure(identifier)
            if blacklisted:
                logger.warning(
                    "Auto-blacklisted identifier after repeated violations",
                    extra={'ip': identifier, 'event_type': event.type.value},
                )
            return blacklisted
        return False

    def track_failure(self, identifier: str) -> bool:
        now = self._clock()
        with self._lock:
            activity = self._activity.get(identifier) or SuspiciousActivity()
            if now - activity.last_attempt > self.window_seconds:
                activity.failed_attempts = 1
            else:
                activity.failed_attempts += 1
            activity.last_attempt = now
            self._activity[identifier] = activity

            if activity.failed_attempts < self.threshold:
                return False
            del self._activity[identifier]

        self.blacklist.add(identifier, self.blacklist_seconds)
        metrics.set_blacklisted_identifiers(len(self.blacklist.active()))
        return True

    def _prune_violations(self, cutoff: float):
        """Drop offenders idle since before cutoff, then the oldest beyond the cap. Caller holds the lock."""
        for identifier in [k for k, v in self._violations.items() if v.last_attempt < cutoff]:
            del self._violations[identifier]
        overflow = len(self._violations) - self.max_tracked_identifiers
        if overflow > 0:
            oldest = sorted(self._violations, key=lambda k: self._violations[k].last_attempt)[:overflow]
            for identifier in oldest:
                del self._violations[identifier]

    def failure_count(self, identifier: str) -> int:
        with self._lock:
            activity = self._activity.get(identifier)
            return activity.failed_attempts if activity else 0

    def stats(self, top: int = 5, recent: int = 20) -> Dict[str, Any]:
        """Counts over the last 24 hours, top offenders and most recent events."""
        cutoff = self._clock() - DAY_SECONDS
        with self._lock:
            window = [e for e in self._events if e.timestamp >= cutoff]
            self._prune_violations(cutoff)
            offenders = list(self._violations.items())

        by_type = Counter(e.type for e in window)
        offenders.sort(key=lambda item: item[1].failed_attempts, reverse=True)

        return {
            "last_24_hours": {
                "total_events": len(window),
                "rate_limit_violations": by_type[SecurityEventType.RATE_LIMIT],
                "captcha_failures": by_type[SecurityEventType.CAPTCHA_FAIL],
                "validation_errors": by_type[SecurityEventType.VALIDATION_ERROR],
                "blacklist_hits": by_type[SecurityEventType.BLACKLIST],
                "suspicious_activity": by_type[SecurityEventType.SUSPICIOUS],
                "blacklisted_ips": len(self.blacklist.active()),
            },
            "top_violating_ips": [
                {
                    "ip": identifier,
                    "violations": v.failed_attempts,
                    "type": v.counts.most_common(1)[0][0].value,
                    "last_seen": datetime.fromtimestamp(v.last_attempt, tz=timezone.utc).isoformat(),
                }
                for identifier, v in offenders[:top]
            ],
            "recent_events": [e.to_dict() for e in reversed(window[-recent:])],
        }


def is_suspicious_user_agent(user_agent: Optional[str]) -> bool:
    ua = user_agent or ""
    return len(ua) < 10 or "bot" in ua or "crawler" in ua


def perform_security_checks(
    tracker: SecurityTracker,
    identifier: str,
    endpoint: str,
    user_agent: Optional[str],
):
    """
    Pre-check run before any rate-limit or CAPTCHA logic.

    Blacklisted identifiers are rejected without consuming a rate count;
    odd user agents are only logged.
    """
    if tracker.is_blacklisted(identifier):
        tracker.log_event(
            SecurityEventType.BLACKLIST, identifier, endpoint,
            details="Blocked blacklisted IP",
        )
        raise BlacklistedError("IP temporarily blocked due to suspicious activity")

    if is_suspicious_user_agent(user_agent):
        tracker.log_event(
            SecurityEventType.SUSPICIOUS, identifier, endpoint,
            user_agent=user_agent or "",
            details="Suspicious user agent",
        )


def enforce_rate_limit(
    limiter,
    tracker: SecurityTracker,
    identifier: str,
    scope: str,
    limit: str,
    endpoint: str,
    user_agent: Optional[str] = None,
):
    """Check one scoped limit; a hit is counted, logged and raised as RateLimitExceeded."""
    if not settings.is_rate_limiting_enabled():
        return
    count, window_seconds = parse_limit(limit)
    key = f"{scope}:{identifier}"
    if limiter.allow(key, count, window_seconds):
        return

    metrics.record_rate_limit_hit(scope)
    tracker.log_event(
        SecurityEventType.RATE_LIMIT, identifier, endpoint,
        user_agent=user_agent,
        details=f"Exceeded {limit}",
    )
    raise RateLimitExceeded(retry_after=limiter.retry_after(key))


SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": (
        "default-src 'self'; "
        "script-src 'self' 'unsafe-inline' https://challenges.cloudflare.com; "
        "style-src 'self' 'unsafe-inline'; "
        "img-src 'self' data: https:; "
        "connect-src 'self' https://challenges.cloudflare.com;"
    ),
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds hardening headers to API responses."""

    def __init__(self, app, path_prefix: str = "/api/"):
        super().__init__(app)
        self.path_prefix = path_prefix

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        if request.url.path.startswith(self.path_prefix):
            for name, value in SECURITY_HEADERS.items():
                response.headers.setdefault(name, value)
        return response
