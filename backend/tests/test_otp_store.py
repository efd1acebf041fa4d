"""
Unit tests for OTP issuance and the stateless / stateful verification backends.
"""
import asyncio
import pytest
from unittest.mock import MagicMock
from pymongo.errors import DuplicateKeyError

import services.otp_store as otp_store
from core.security import hash_otp
from services.otp_store import (
    OtpRecord,
    SignedTokenVerifier,
    StoredOtpVerifier,
    InMemoryOtpStore,
    InMemoryConsumedTokenStore,
    MongoOtpStore,
    MongoConsumedTokenStore,
)

IDENTIFIER = "jane@acme.com"
PHONE = "+15551234567"


class YieldingOtpStore(InMemoryOtpStore):
    """Hands control back to the loop around every call, like a network round-trip."""

    async def claim_attempt(self, identifier, max_attempts):
        await asyncio.sleep(0)
        record = await super().claim_attempt(identifier, max_attempts)
        await asyncio.sleep(0)
        return record

    async def delete_issued(self, identifier, issued_at_ms):
        await asyncio.sleep(0)
        return await super().delete_issued(identifier, issued_at_ms)


@pytest.fixture
def threadpool_calls(monkeypatch):
    """Record every function handed to the threadpool, running it inline."""
    calls = []

    async def inline(func, *args, **kwargs):
        calls.append(func.__name__)
        return func(*args, **kwargs)

    monkeypatch.setattr(otp_store, "run_in_threadpool", inline)
    return calls


class TestSignedTokenVerifier:

    @pytest.mark.asyncio
    async def test_expires_exactly_five_minutes_after_issue(self, token_verifier, clock):
        issued = await token_verifier.issue(IDENTIFIER, "123456", "Jane@Acme.com", PHONE)
        assert issued.expires_at == int(clock.now * 1000) + 5 * 60 * 1000
        assert issued.signed_token
        assert issued.jti

    @pytest.mark.asyncio
    async def test_valid_code_verifies(self, token_verifier):
        issued = await token_verifier.issue(IDENTIFIER, "123456", IDENTIFIER, PHONE)
        assert await token_verifier.verify(IDENTIFIER, "123456", issued.signed_token)

    @pytest.mark.asyncio
    async def test_wrong_code_fails(self, token_verifier):
        issued = await token_verifier.issue(IDENTIFIER, "123456", IDENTIFIER, PHONE)
        assert not await token_verifier.verify(IDENTIFIER, "000000", issued.signed_token)

    @pytest.mark.asyncio
    async def test_other_identifier_fails(self, token_verifier):
        issued = await token_verifier.issue(IDENTIFIER, "123456", IDENTIFIER, PHONE)
        assert not await token_verifier.verify("john@acme.com", "123456", issued.signed_token)

    @pytest.mark.asyncio
    async def test_valid_at_expiry_instant(self, token_verifier, clock):
        issued = await token_verifier.issue(IDENTIFIER, "123456", IDENTIFIER, PHONE)
        clock.advance(300)
        assert await token_verifier.verify(IDENTIFIER, "123456", issued.signed_token)

    @pytest.mark.asyncio
    async def test_invalid_one_millisecond_after_expiry(self, token_verifier, clock):
        issued = await token_verifier.issue(IDENTIFIER, "123456", IDENTIFIER, PHONE)
        clock.advance(300.001)
        assert not await token_verifier.verify(IDENTIFIER, "123456", issued.signed_token)

    @pytest.mark.asyncio
    async def test_tampered_token_fails(self, token_verifier):
        issued = await token_verifier.issue(IDENTIFIER, "123456", IDENTIFIER, PHONE)
        token = issued.signed_token
        middle = len(token) // 2
        tampered = token[:middle] + ("A" if token[middle] != "A" else "B") + token[middle + 1:]
        assert not await token_verifier.verify(IDENTIFIER, "123456", tampered)

    @pytest.mark.asyncio
    async def test_missing_token_fails(self, token_verifier):
        assert not await token_verifier.verify(IDENTIFIER, "123456", None)

    @pytest.mark.asyncio
    async def test_token_is_single_use(self, token_verifier):
        issued = await token_verifier.issue(IDENTIFIER, "123456", IDENTIFIER, PHONE)
        assert await token_verifier.verify(IDENTIFIER, "123456", issued.signed_token)
        assert not await token_verifier.verify(IDENTIFIER, "123456", issued.signed_token)

    @pytest.mark.asyncio
    async def test_failed_attempt_does_not_consume_token(self, token_verifier):
        issued = await token_verifier.issue(IDENTIFIER, "123456", IDENTIFIER, PHONE)
        assert not await token_verifier.verify(IDENTIFIER, "111111", issued.signed_token)
        assert await token_verifier.verify(IDENTIFIER, "123456", issued.signed_token)

    @pytest.mark.asyncio
    async def test_token_burned_after_max_wrong_codes(self, token_verifier):
        issued = await token_verifier.issue(IDENTIFIER, "123456", IDENTIFIER, PHONE)
        for guess in ("000000", "000001", "000002"):
            assert not await token_verifier.verify(IDENTIFIER, guess, issued.signed_token)
        assert not await token_verifier.verify(IDENTIFIER, "123456", issued.signed_token)

    @pytest.mark.asyncio
    async def test_wrong_identifier_does_not_burn_token(self, token_verifier):
        issued = await token_verifier.issue(IDENTIFIER, "123456", IDENTIFIER, PHONE)
        for _ in range(5):
            assert not await token_verifier.verify("mallory@acme.com", "000000", issued.signed_token)
        assert await token_verifier.verify(IDENTIFIER, "123456", issued.signed_token)

    @pytest.mark.asyncio
    async def test_replay_allowed_when_single_use_disabled(self, clock):
        verifier = SignedTokenVerifier(
            expiry_seconds=300,
            consumed_store=InMemoryConsumedTokenStore(clock=clock),
            max_attempts=3,
            single_use=False,
            clock=clock,
        )
        issued = await verifier.issue(IDENTIFIER, "123456", IDENTIFIER, PHONE)
        assert await verifier.verify(IDENTIFIER, "123456", issued.signed_token)
        assert await verifier.verify(IDENTIFIER, "123456", issued.signed_token)

    @pytest.mark.asyncio
    async def test_wrong_codes_still_counted_when_single_use_disabled(self, clock):
        verifier = SignedTokenVerifier(
            expiry_seconds=300,
            consumed_store=InMemoryConsumedTokenStore(clock=clock),
            max_attempts=2,
            single_use=False,
            clock=clock,
        )
        issued = await verifier.issue(IDENTIFIER, "123456", IDENTIFIER, PHONE)
        assert not await verifier.verify(IDENTIFIER, "000000", issued.signed_token)
        assert not await verifier.verify(IDENTIFIER, "000001", issued.signed_token)
        assert not await verifier.verify(IDENTIFIER, "123456", issued.signed_token)

    @pytest.mark.asyncio
    async def test_replay_allowed_without_consumed_store(self, clock):
        verifier = SignedTokenVerifier(expiry_seconds=300, consumed_store=None, clock=clock)
        issued = await verifier.issue(IDENTIFIER, "123456", IDENTIFIER, PHONE)
        assert await verifier.verify(IDENTIFIER, "123456", issued.signed_token)
        assert await verifier.verify(IDENTIFIER, "123456", issued.signed_token)


class TestConsumedTokenStore:

    @pytest.mark.asyncio
    async def test_marks_once(self, clock):
        store = InMemoryConsumedTokenStore(clock=clock)
        expires = int(clock.now * 1000) + 1000
        assert await store.mark_consumed("jti-1", expires)
        assert await store.is_consumed("jti-1")
        assert not await store.mark_consumed("jti-1", expires)

    @pytest.mark.asyncio
    async def test_failures_consume_at_limit(self, clock):
        store = InMemoryConsumedTokenStore(clock=clock)
        expires = int(clock.now * 1000) + 1000
        assert await store.register_failure("jti-1", expires, 2) == 1
        assert not await store.is_consumed("jti-1")
        assert await store.register_failure("jti-1", expires, 2) == 2
        assert await store.is_consumed("jti-1")

    @pytest.mark.asyncio
    async def test_cleanup_drops_expired_markers(self, clock):
        store = InMemoryConsumedTokenStore(clock=clock)
        await store.mark_consumed("jti-1", int(clock.now * 1000) + 1000)
        clock.advance(2)
        assert store.cleanup_expired() == 1
        assert not await store.is_consumed("jti-1")

    @pytest.mark.asyncio
    async def test_expired_markers_swept_on_write(self, clock):
        store = InMemoryConsumedTokenStore(clock=clock)
        await store.mark_consumed("jti-1", int(clock.now * 1000) + 1000)
        clock.advance(otp_store.SWEEP_INTERVAL_SECONDS + 1)
        await store.mark_consumed("jti-2", int(clock.now * 1000) + 1000)
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_mongo_marker_uses_upsert(self, mock_mongo_db):
        collection = mock_mongo_db.consumed_otp_tokens
        collection.update_one.return_value = MagicMock(upserted_id="jti-1", modified_count=0)
        store = MongoConsumedTokenStore(mock_mongo_db)
        assert await store.mark_consumed("jti-1", 1_700_000_300_000)

        filter_doc = collection.update_one.call_args.args[0]
        assert filter_doc == {"_id": "jti-1", "consumed": {"$ne": True}}
        assert collection.update_one.call_args.kwargs["upsert"] is True

    @pytest.mark.asyncio
    async def test_mongo_marker_after_failures_updates_existing(self, mock_mongo_db):
        mock_mongo_db.consumed_otp_tokens.update_one.return_value = MagicMock(upserted_id=None, modified_count=1)
        assert await MongoConsumedTokenStore(mock_mongo_db).mark_consumed("jti-1", 1_700_000_300_000)

    @pytest.mark.asyncio
    async def test_mongo_marker_rejects_consumed_token(self, mock_mongo_db):
        mock_mongo_db.consumed_otp_tokens.update_one.side_effect = DuplicateKeyError("E11000 duplicate key")
        assert not await MongoConsumedTokenStore(mock_mongo_db).mark_consumed("jti-1", 1_700_000_300_000)

    @pytest.mark.asyncio
    async def test_mongo_register_failure_burns_at_limit(self, mock_mongo_db):
        collection = mock_mongo_db.consumed_otp_tokens
        store = MongoConsumedTokenStore(mock_mongo_db)

        collection.find_one_and_update.return_value = {"_id": "jti-1", "failures": 1}
        assert await store.register_failure("jti-1", 1_700_000_300_000, 3) == 1
        collection.update_one.assert_not_called()

        collection.find_one_and_update.return_value = {"_id": "jti-1", "failures": 3}
        assert await store.register_failure("jti-1", 1_700_000_300_000, 3) == 3
        collection.update_one.assert_called_once_with({"_id": "jti-1"}, {"$set": {"consumed": True}})
        assert collection.find_one_and_update.call_args.kwargs["upsert"] is True

    @pytest.mark.asyncio
    async def test_mongo_is_consumed(self, mock_mongo_db):
        collection = mock_mongo_db.consumed_otp_tokens
        collection.find_one.return_value = {"_id": "jti-1", "consumed": True}
        assert await MongoConsumedTokenStore(mock_mongo_db).is_consumed("jti-1")
        collection.find_one.assert_called_with({"_id": "jti-1", "consumed": True})


class TestStoredOtpVerifier:

    @pytest.fixture
    def store(self, clock):
        return InMemoryOtpStore(clock=clock)

    @pytest.fixture
    def verifier(self, store, clock):
        return StoredOtpVerifier(store, expiry_seconds=300, max_attempts=3, clock=clock)

    @pytest.mark.asyncio
    async def test_issue_persists_hashed_record(self, verifier, store):
        issued = await verifier.issue(IDENTIFIER, "123456", IDENTIFIER, PHONE)
        record = await store.claim_attempt(IDENTIFIER, 3)

        assert record.code_hash != "123456"
        assert record.expires_at_ms == issued.expires_at
        assert record.expires_at_ms - record.issued_at_ms == 300_000
        assert issued.signed_token

    @pytest.mark.asyncio
    async def test_verify_consumes_record(self, verifier, store):
        await verifier.issue(IDENTIFIER, "123456", IDENTIFIER, PHONE)
        assert await verifier.verify(IDENTIFIER, "123456")
        assert len(store) == 0
        assert not await verifier.verify(IDENTIFIER, "123456")

    @pytest.mark.asyncio
    async def test_concurrent_correct_codes_verify_once(self, verifier):
        await verifier.issue(IDENTIFIER, "123456", IDENTIFIER, PHONE)
        results = await asyncio.gather(*(verifier.verify(IDENTIFIER, "123456") for _ in range(5)))
        assert sorted(results) == [False, False, False, False, True]

    @pytest.mark.asyncio
    async def test_concurrent_correct_codes_verify_once_with_slow_store(self, clock):
        verifier = StoredOtpVerifier(YieldingOtpStore(clock=clock), expiry_seconds=300, max_attempts=3, clock=clock)
        await verifier.issue(IDENTIFIER, "123456", IDENTIFIER, PHONE)
        results = await asyncio.gather(verifier.verify(IDENTIFIER, "123456"), verifier.verify(IDENTIFIER, "123456"))
        assert sorted(results) == [False, True]

    @pytest.mark.asyncio
    async def test_concurrent_wrong_codes_respect_attempt_limit(self, clock):
        store = YieldingOtpStore(clock=clock)
        verifier = StoredOtpVerifier(store, expiry_seconds=300, max_attempts=3, clock=clock)
        await verifier.issue(IDENTIFIER, "123456", IDENTIFIER, PHONE)
        await asyncio.gather(*(verifier.verify(IDENTIFIER, "000000") for _ in range(6)))
        assert not await verifier.verify(IDENTIFIER, "123456")

    @pytest.mark.asyncio
    async def test_expired_record_rejected(self, verifier, clock):
        await verifier.issue(IDENTIFIER, "123456", IDENTIFIER, PHONE)
        clock.advance(301)
        assert not await verifier.verify(IDENTIFIER, "123456")

    @pytest.mark.asyncio
    async def test_attempt_limit(self, verifier, store):
        await verifier.issue(IDENTIFIER, "123456", IDENTIFIER, PHONE)
        for _ in range(3):
            assert not await verifier.verify(IDENTIFIER, "000000")
        assert len(store) == 0
        assert not await verifier.verify(IDENTIFIER, "123456")

    @pytest.mark.asyncio
    async def test_reissue_replaces_previous_code(self, verifier):
        await verifier.issue(IDENTIFIER, "111111", IDENTIFIER, PHONE)
        await verifier.issue(IDENTIFIER, "222222", IDENTIFIER, PHONE)
        assert not await verifier.verify(IDENTIFIER, "111111")
        assert await verifier.verify(IDENTIFIER, "222222")

    @pytest.mark.asyncio
    async def test_delete_ignores_reissued_record(self, store, clock):
        await store.save(OtpRecord(IDENTIFIER, "h", PHONE, 1, int(clock.now * 1000) + 1000))
        assert not await store.delete_issued(IDENTIFIER, 2)
        assert await store.delete_issued(IDENTIFIER, 1)

    @pytest.mark.asyncio
    async def test_cleanup_expired(self, store, verifier, clock):
        await verifier.issue(IDENTIFIER, "123456", IDENTIFIER, PHONE)
        await verifier.issue("john@acme.com", "123456", "john@acme.com", PHONE)
        clock.advance(301)
        assert store.cleanup_expired() == 2

    @pytest.mark.asyncio
    async def test_expired_records_swept_on_issue(self, store, verifier, clock):
        await verifier.issue(IDENTIFIER, "123456", IDENTIFIER, PHONE)
        clock.advance(300 + otp_store.SWEEP_INTERVAL_SECONDS + 1)
        await verifier.issue("john@acme.com", "123456", "john@acme.com", PHONE)
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_hashing_runs_in_threadpool(self, verifier, threadpool_calls):
        await verifier.issue(IDENTIFIER, "123456", IDENTIFIER, PHONE)
        assert await verifier.verify(IDENTIFIER, "123456")
        assert threadpool_calls == ["hash_otp", "verify_otp_hash"]


class TestMongoOtpStore:

    @pytest.mark.asyncio
    async def test_save_sets_ttl_field(self, mock_mongo_db):
        store = MongoOtpStore(mock_mongo_db)
        record = OtpRecord(IDENTIFIER, hash_otp("123456"), PHONE, 1_700_000_000_000, 1_700_000_300_000)
        await store.save(record)

        filter_doc, doc = mock_mongo_db.otp_records.replace_one.call_args.args
        assert filter_doc == {"_id": IDENTIFIER}
        assert doc["_id"] == IDENTIFIER
        assert doc["expires_at"].timestamp() == 1_700_000_300
        assert doc["attempts"] == 0

    @pytest.mark.asyncio
    async def test_claim_attempt_is_conditional_increment(self, mock_mongo_db, clock):
        mock_mongo_db.otp_records.find_one_and_update.return_value = {
            "_id": IDENTIFIER,
            "identifier": IDENTIFIER,
            "code_hash": "h",
            "phone": PHONE,
            "issued_at_ms": 1,
            "expires_at_ms": 2,
            "attempts": 1,
        }
        record = await MongoOtpStore(mock_mongo_db, clock=clock).claim_attempt(IDENTIFIER, 3)
        assert record == OtpRecord(IDENTIFIER, "h", PHONE, 1, 2, 1)

        filter_doc, update = mock_mongo_db.otp_records.find_one_and_update.call_args.args
        assert filter_doc == {
            "_id": IDENTIFIER,
            "attempts": {"$lt": 3},
            "expires_at_ms": {"$gte": int(clock.now * 1000)},
        }
        assert update == {"$inc": {"attempts": 1}}

    @pytest.mark.asyncio
    async def test_claim_attempt_without_live_record(self, mock_mongo_db):
        assert await MongoOtpStore(mock_mongo_db).claim_attempt(IDENTIFIER, 3) is None

    @pytest.mark.asyncio
    async def test_delete_issued_scoped_to_issue_time(self, mock_mongo_db):
        collection = mock_mongo_db.otp_records
        store = MongoOtpStore(mock_mongo_db)

        collection.find_one_and_delete.return_value = {"_id": IDENTIFIER}
        assert await store.delete_issued(IDENTIFIER, 1_700_000_000_000)
        collection.find_one_and_delete.assert_called_with({"_id": IDENTIFIER, "issued_at_ms": 1_700_000_000_000})

        collection.find_one_and_delete.return_value = None
        assert not await store.delete_issued(IDENTIFIER, 1_700_000_000_000)
