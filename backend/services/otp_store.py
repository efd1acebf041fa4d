"""OTP issuance and the two interchangeable verification backends.

``SignedTokenVerifier`` needs no shared storage for the code itself: everything
required to check it travels in the signed token handed back to the client.
Per-token state (wrong guesses, consumption) lives in a small store keyed by
the token id, so a token is burned after too many wrong codes and a verified
token cannot be replayed.

``StoredOtpVerifier`` keeps an ``OtpRecord`` per identifier. Every attempt is
claimed atomically against the attempt limit before the code is compared, and
success is only reported by the caller that actually removes the record.

Both report every failure as a bare ``False``.
"""
import threading
import time
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Callable, Dict, Optional
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError
from starlette.concurrency import run_in_threadpool
from core.security import (
    create_otp_token,
    decode_otp_token,
    otp_digest_matches,
    hash_otp,
    verify_otp_hash,
)
import logging

logger = logging.getLogger(__name__)

# In-process stores drop expired entries at most this often
SWEEP_INTERVAL_SECONDS = 60


def _now_ms(clock: Callable[[], float]) -> int:
    return int(round(clock() * 1000))


def _ms_to_datetime(value_ms: int) -> datetime:
    return datetime.fromtimestamp(value_ms / 1000.0, tz=timezone.utc)


@dataclass
class OtpRecord:
    identifier: str
    code_hash: str
    phone: str
    issued_at_ms: int
    expires_at_ms: int
    attempts: int = 0


@dataclass
class IssuedOtp:
    expires_at: int
    signed_token: str
    jti: str


@dataclass
class TokenState:
    expires_at_ms: int
    failures: int = 0
    consumed: bool = False


class _LazySweep:
    """Mixin for in-process stores: purge expired entries on write"""

    clock: Callable[[], float]
    _next_sweep_ms: int = 0

    def _maybe_sweep(self) -> None:
        now_ms = _now_ms(self.clock)
        if now_ms < self._next_sweep_ms:
            return
        self._next_sweep_ms = now_ms + SWEEP_INTERVAL_SECONDS * 1000
        self.cleanup_expired()


# ---------------------------------------------------------------------------
# Record stores
# ---------------------------------------------------------------------------

class InMemoryOtpStore(_LazySweep):
    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._records: Dict[str, OtpRecord] = {}
        self._lock = threading.Lock()

    async def save(self, record: OtpRecord) -> None:
        self._maybe_sweep()
        with self._lock:
            self._records[record.identifier] = record

    async def claim_attempt(self, identifier: str, max_attempts: int) -> Optional[OtpRecord]:
        """Count one attempt against a live record; None if absent, expired or exhausted"""
        now_ms = _now_ms(self.clock)
        with self._lock:
            record = self._records.get(identifier)
            if record is None or now_ms > record.expires_at_ms or record.attempts >= max_attempts:
                return None
            record.attempts += 1
            return OtpRecord(**asdict(record))

    async def delete_issued(self, identifier: str, issued_at_ms: int) -> bool:
        """Remove the record issued at `issued_at_ms`; True only for the caller that removed it"""
        with self._lock:
            record = self._records.get(identifier)
            if record is None or record.issued_at_ms != issued_at_ms:
                return False
            del self._records[identifier]
            return True

    def cleanup_expired(self) -> int:
        now_ms = _now_ms(self.clock)
        with self._lock:
            expired = [k for k, r in self._records.items() if now_ms > r.expires_at_ms]
            for key in expired:
                del self._records[key]
        if expired:
            logger.info(f"Removed {len(expired)} expired OTP record(s)")
        return len(expired)

    def __len__(self) -> int:
        return len(self._records)


class MongoOtpStore:
    """`otp_records` collection; a TTL index on expires_at purges old rows"""

    def __init__(self, db, clock: Callable[[], float] = time.time):
        self.db = db
        self.clock = clock

    async def save(self, record: OtpRecord) -> None:
        doc = asdict(record)
        doc["_id"] = record.identifier
        doc["expires_at"] = _ms_to_datetime(record.expires_at_ms)
        await self.db.otp_records.replace_one({"_id": record.identifier}, doc, upsert=True)

    async def claim_attempt(self, identifier: str, max_attempts: int) -> Optional[OtpRecord]:
        doc = await self.db.otp_records.find_one_and_update(
            {
                "_id": identifier,
                "attempts": {"$lt": max_attempts},
                "expires_at_ms": {"$gte": _now_ms(self.clock)},
            },
            {"$inc": {"attempts": 1}},
            return_document=ReturnDocument.AFTER,
        )
        if not doc:
            return None
        return OtpRecord(
            identifier=doc["identifier"],
            code_hash=doc["code_hash"],
            phone=doc.get("phone", ""),
            issued_at_ms=int(doc["issued_at_ms"]),
            expires_at_ms=int(doc["expires_at_ms"]),
            attempts=int(doc.get("attempts", 0)),
        )

    async def delete_issued(self, identifier: str, issued_at_ms: int) -> bool:
        doc = await self.db.otp_records.find_one_and_delete({"_id": identifier, "issued_at_ms": issued_at_ms})
        return doc is not None


class InMemoryConsumedTokenStore(_LazySweep):
    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._tokens: Dict[str, TokenState] = {}
        self._lock = threading.Lock()

    def _live(self, jti: str, now_ms: int) -> Optional[TokenState]:
        state = self._tokens.get(jti)
        if state is None or now_ms > state.expires_at_ms:
            return None
        return state

    async def mark_consumed(self, jti: str, expires_at_ms: int) -> bool:
        """Record a token id as used; False when it was already consumed"""
        self._maybe_sweep()
        now_ms = _now_ms(self.clock)
        with self._lock:
            state = self._live(jti, now_ms)
            if state is not None and state.consumed:
                return False
            if state is None:
                state = self._tokens[jti] = TokenState(expires_at_ms=expires_at_ms)
            state.consumed = True
            return True

    async def register_failure(self, jti: str, expires_at_ms: int, max_attempts: int) -> int:
        """Count a wrong code; the token is consumed once `max_attempts` is reached"""
        self._maybe_sweep()
        now_ms = _now_ms(self.clock)
        with self._lock:
            state = self._live(jti, now_ms)
            if state is None:
                state = self._tokens[jti] = TokenState(expires_at_ms=expires_at_ms)
            state.failures += 1
            if state.failures >= max_attempts:
                state.consumed = True
            return state.failures

    async def is_consumed(self, jti: str) -> bool:
        state = self._live(jti, _now_ms(self.clock))
        return state is not None and state.consumed

    def cleanup_expired(self) -> int:
        now_ms = _now_ms(self.clock)
        with self._lock:
            expired = [k for k, s in self._tokens.items() if now_ms > s.expires_at_ms]
            for key in expired:
                del self._tokens[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._tokens)


class MongoConsumedTokenStore:
    """`consumed_otp_tokens` collection keyed by jti, purged by TTL"""

    def __init__(self, db):
        self.db = db

    async def mark_consumed(self, jti: str, expires_at_ms: int) -> bool:
        try:
            result = await self.db.consumed_otp_tokens.update_one(
                {"_id": jti, "consumed": {"$ne": True}},
                {
                    "$set": {"consumed": True},
                    "$setOnInsert": {"failures": 0, "expires_at": _ms_to_datetime(expires_at_ms)},
                },
                upsert=True,
            )
        except DuplicateKeyError:
            # The document exists and is already consumed
            return False
        return result.upserted_id is not None or result.modified_count == 1

    async def register_failure(self, jti: str, expires_at_ms: int, max_attempts: int) -> int:
        doc = await self.db.consumed_otp_tokens.find_one_and_update(
            {"_id": jti},
            {
                "$inc": {"failures": 1},
                "$setOnInsert": {"consumed": False, "expires_at": _ms_to_datetime(expires_at_ms)},
            },
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        failures = int(doc.get("failures", 0)) if doc else 0
        if failures >= max_attempts:
            await self.db.consumed_otp_tokens.update_one({"_id": jti}, {"$set": {"consumed": True}})
        return failures

    async def is_consumed(self, jti: str) -> bool:
        return await self.db.consumed_otp_tokens.find_one({"_id": jti, "consumed": True}) is not None


# ---------------------------------------------------------------------------
# Verification backends
# ---------------------------------------------------------------------------

class SignedTokenVerifier:
    """Stateless issue/verify through a signed token"""

    def __init__(
        self,
        expiry_seconds: int = 300,
        consumed_store=None,
        max_attempts: int = 3,
        single_use: bool = True,
        secret_key: Optional[str] = None,
        algorithm: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.expiry_seconds = expiry_seconds
        self.consumed_store = consumed_store
        self.max_attempts = max_attempts
        self.single_use = single_use
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.clock = clock

    async def issue(self, identifier: str, code: str, email: str, phone: str) -> IssuedOtp:
        expires_at = _now_ms(self.clock) + self.expiry_seconds * 1000
        token, jti = create_otp_token(
            identifier, code, phone, expires_at,
            secret_key=self.secret_key, algorithm=self.algorithm,
        )
        return IssuedOtp(expires_at=expires_at, signed_token=token, jti=jti)

    async def verify(self, identifier: str, code: str, signed_token: Optional[str] = None) -> bool:
        claims = decode_otp_token(signed_token, secret_key=self.secret_key, algorithm=self.algorithm)
        if claims is None:
            return False
        jti, expires_at = claims["jti"], claims["expires_at"]
        store = self.consumed_store
        if store is not None and await store.is_consumed(jti):
            return False
        # Each check runs regardless of the others
        fresh = _now_ms(self.clock) <= expires_at
        owner = claims["sub"] == identifier
        code_ok = otp_digest_matches(claims, code, secret_key=self.secret_key)
        if not (fresh and owner and code_ok):
            if store is not None and fresh and owner:
                failures = await store.register_failure(jti, expires_at, self.max_attempts)
                if failures >= self.max_attempts:
                    logger.warning(f"OTP token for {identifier} burned after {failures} wrong code(s)")
            return False
        if store is not None and self.single_use:
            if not await store.mark_consumed(jti, expires_at):
                logger.warning(f"Replayed OTP token for {identifier}")
                return False
        return True


class StoredOtpVerifier:
    """Server-side record lookup; codes are kept hashed"""

    def __init__(
        self,
        store,
        expiry_seconds: int = 300,
        max_attempts: int = 3,
        secret_key: Optional[str] = None,
        algorithm: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.expiry_seconds = expiry_seconds
        self.max_attempts = max_attempts
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.clock = clock

    async def issue(self, identifier: str, code: str, email: str, phone: str) -> IssuedOtp:
        issued_at = _now_ms(self.clock)
        expires_at = issued_at + self.expiry_seconds * 1000
        code_hash = await run_in_threadpool(hash_otp, code)
        await self.store.save(OtpRecord(
            identifier=identifier,
            code_hash=code_hash,
            phone=phone,
            issued_at_ms=issued_at,
            expires_at_ms=expires_at,
        ))
        token, jti = create_otp_token(
            identifier, code, phone, expires_at,
            secret_key=self.secret_key, algorithm=self.algorithm,
        )
        return IssuedOtp(expires_at=expires_at, signed_token=token, jti=jti)

    async def verify(self, identifier: str, code: str, signed_token: Optional[str] = None) -> bool:
        record = await self.store.claim_attempt(identifier, self.max_attempts)
        if record is None:
            return False
        if not await run_in_threadpool(verify_otp_hash, code or "", record.code_hash):
            if record.attempts >= self.max_attempts:
                await self.store.delete_issued(identifier, record.issued_at_ms)
            return False
        return await self.store.delete_issued(identifier, record.issued_at_ms)
