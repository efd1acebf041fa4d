from functools import lru_cache
from fastapi import Depends
from core.config import settings
from db.mongodb import get_mongo_db
from services.otp_service import OtpService
from services.otp_store import (
    InMemoryConsumedTokenStore,
    InMemoryOtpStore,
    MongoConsumedTokenStore,
    MongoOtpStore,
    SignedTokenVerifier,
    StoredOtpVerifier,
)
from services.privacy_service import PrivacyIdentity
from services.rate_limiter import InMemoryRateLimiter, MongoRateLimiter
from services.recaptcha import RecaptchaVerifier
from utils.email import SmtpMailer
import logging

logger = logging.getLogger(__name__)


def _shared_db():
    if not settings.USE_MONGO:
        return None
    db = get_mongo_db()
    if db is None:
        logger.warning("USE_MONGO=true but Mongo is unavailable; falling back to in-process state")
    return db


@lru_cache()
def get_rate_limiter():
    window_seconds = settings.RATE_LIMIT_WINDOW_MINUTES * 60
    db = _shared_db()
    if db is not None:
        return MongoRateLimiter(db, settings.RATE_LIMIT_MAX_REQUESTS, window_seconds)
    return InMemoryRateLimiter(settings.RATE_LIMIT_MAX_REQUESTS, window_seconds)


@lru_cache()
def get_verify_rate_limiter():
    window_seconds = settings.VERIFY_RATE_LIMIT_WINDOW_MINUTES * 60
    max_requests = settings.VERIFY_RATE_LIMIT_MAX_REQUESTS
    subject = "verification attempts"
    db = _shared_db()
    if db is not None:
        return MongoRateLimiter(db, max_requests, window_seconds, subject=subject, collection="verify_rate_limits")
    return InMemoryRateLimiter(max_requests, window_seconds, subject=subject)


@lru_cache()
def get_otp_verifier():
    """Verification backend chosen by OTP_VERIFICATION_BACKEND"""
    expiry_seconds = settings.OTP_EXPIRY_MINUTES * 60
    db = _shared_db()
    if settings.OTP_VERIFICATION_BACKEND == "store":
        store = MongoOtpStore(db) if db is not None else InMemoryOtpStore()
        return StoredOtpVerifier(
            store,
            expiry_seconds=expiry_seconds,
            max_attempts=settings.OTP_MAX_VERIFY_ATTEMPTS,
            secret_key=settings.SECRET_KEY,
            algorithm=settings.ALGORITHM,
        )
    consumed_store = MongoConsumedTokenStore(db) if db is not None else InMemoryConsumedTokenStore()
    return SignedTokenVerifier(
        expiry_seconds=expiry_seconds,
        consumed_store=consumed_store,
        max_attempts=settings.OTP_MAX_VERIFY_ATTEMPTS,
        single_use=settings.OTP_SINGLE_USE,
        secret_key=settings.SECRET_KEY,
        algorithm=settings.ALGORITHM,
    )


@lru_cache()
def get_mailer() -> SmtpMailer:
    return SmtpMailer(
        host=settings.SMTP_HOST,
        port=settings.SMTP_PORT,
        username=settings.SMTP_USERNAME,
        password=settings.SMTP_PASSWORD,
        from_email=settings.SMTP_FROM_EMAIL,
        from_name=settings.SMTP_FROM_NAME,
        use_tls=settings.SMTP_USE_TLS,
        use_ssl=settings.SMTP_USE_SSL,
        timeout=settings.SMTP_TIMEOUT,
        debug=settings.SMTP_DEBUG,
    )


@lru_cache()
def get_recaptcha_verifier() -> RecaptchaVerifier:
    return RecaptchaVerifier(
        secret_key=settings.RECAPTCHA_SECRET_KEY,
        verify_url=settings.RECAPTCHA_VERIFY_URL,
        min_score=settings.RECAPTCHA_MIN_SCORE,
        fail_open=settings.RECAPTCHA_FAIL_OPEN,
    )


def get_privacy_identity() -> PrivacyIdentity:
    return PrivacyIdentity.from_settings(settings)


def get_otp_service(
    rate_limiter=Depends(get_rate_limiter),
    verifier=Depends(get_otp_verifier),
    mailer: SmtpMailer = Depends(get_mailer),
    recaptcha: RecaptchaVerifier = Depends(get_recaptcha_verifier),
    verify_limiter=Depends(get_verify_rate_limiter),
) -> OtpService:
    return OtpService(
        rate_limiter=rate_limiter,
        verifier=verifier,
        mailer=mailer,
        recaptcha=recaptcha,
        verify_limiter=verify_limiter,
        otp_length=settings.OTP_LENGTH,
        email_expiry_minutes=settings.OTP_EMAIL_EXPIRY_MINUTES,
        brand=settings.SMTP_FROM_NAME or settings.PRIVACY_BRAND_NAME,
        development=settings.is_development,
    )
