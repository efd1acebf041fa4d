import math
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional
from pymongo import ReturnDocument
import logging

logger = logging.getLogger(__name__)


@dataclass
class RateLimitRecord:
    identifier: str
    attempt_count: int
    window_start: float


@dataclass
class RateLimitResult:
    allowed: bool
    message: Optional[str] = None
    retry_after: Optional[int] = None


def _retry_minutes(window_start: float, window_seconds: float, now: float) -> int:
    remaining = (window_start + window_seconds) - now
    return max(int(math.ceil(remaining / 60.0)), 1)


def _denied(window_start: float, window_seconds: float, now: float, subject: str = "OTP requests") -> RateLimitResult:
    minutes = _retry_minutes(window_start, window_seconds, now)
    return RateLimitResult(
        allowed=False,
        message=f"Too many {subject}. Please try again in {minutes} minute{'s' if minutes > 1 else ''}.",
        retry_after=minutes,
    )


class InMemoryRateLimiter:
    """Fixed window counter per identifier held in process memory.

    Counters are not shared between processes; run with USE_MONGO for
    deployments with more than one instance.
    """

    def __init__(self, max_requests: int = 3, window_seconds: float = 15 * 60, clock: Callable[[], float] = time.time, subject: str = "OTP requests"):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self.subject = subject
        self._records: Dict[str, RateLimitRecord] = {}
        self._lock = threading.Lock()
        self._next_sweep = 0.0

    def _sweep(self, now: float) -> None:
        # Caller holds the lock
        if now < self._next_sweep:
            return
        self._next_sweep = now + self.window_seconds
        stale = [k for k, r in self._records.items() if now - r.window_start > self.window_seconds]
        for key in stale:
            del self._records[key]

    async def check(self, identifier: str) -> RateLimitResult:
        now = self.clock()
        with self._lock:
            self._sweep(now)
            record = self._records.get(identifier)
            if record is None or now - record.window_start > self.window_seconds:
                record = RateLimitRecord(identifier=identifier, attempt_count=0, window_start=now)
                self._records[identifier] = record
            record.attempt_count += 1
            if record.attempt_count > self.max_requests:
                return _denied(record.window_start, self.window_seconds, now, self.subject)
        return RateLimitResult(allowed=True)

    def get_record(self, identifier: str) -> Optional[RateLimitRecord]:
        return self._records.get(identifier)

    def reset(self) -> None:
        with self._lock:
            self._records.clear()


class MongoRateLimiter:
    """Same window semantics backed by a shared collection (`rate_limits` by default)"""

    def __init__(
        self,
        db,
        max_requests: int = 3,
        window_seconds: float = 15 * 60,
        clock: Callable[[], float] = time.time,
        subject: str = "OTP requests",
        collection: str = "rate_limits",
    ):
        self.db = db
        self.collection = collection
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self.subject = subject

    async def check(self, identifier: str) -> RateLimitResult:
        now = self.clock()
        collection = self.db[self.collection]
        doc = await collection.find_one_and_update(
            {"_id": identifier, "window_start": {"$gte": now - self.window_seconds}},
            {"$inc": {"attempt_count": 1}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            # No live window: open a new one
            await collection.replace_one(
                {"_id": identifier},
                {
                    "_id": identifier,
                    "attempt_count": 1,
                    "window_start": now,
                    "expires_at": datetime.fromtimestamp(now + self.window_seconds, tz=timezone.utc),
                },
                upsert=True,
            )
            return RateLimitResult(allowed=True)
        if int(doc.get("attempt_count", 0)) > self.max_requests:
            logger.info(f"Rate limit exceeded for {identifier}")
            return _denied(float(doc["window_start"]), self.window_seconds, now, self.subject)
        return RateLimitResult(allowed=True)
