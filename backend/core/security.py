import hashlib
import hmac
import secrets
import time
from typing import Optional, Tuple
from jose import JWTError, jwt
from jose.utils import base64url_decode, base64url_encode
from passlib.context import CryptContext
from core.config import settings
import logging

logger = logging.getLogger(__name__)

# Hashing for OTP codes persisted server-side
otp_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

OTP_TOKEN_TYPE = "otp"


def generate_otp(length: int = 6) -> str:
    """Generate a numeric one-time passcode of exactly `length` digits"""
    if length < 1:
        raise ValueError("OTP length must be at least 1")
    return "".join(str(secrets.randbelow(10)) for _ in range(length))


def hash_otp(code: str) -> str:
    return otp_context.hash(code)


def verify_otp_hash(code: str, code_hash: str) -> bool:
    try:
        return otp_context.verify(code, code_hash)
    except (ValueError, TypeError):
        return False


def _otp_digest(jti: str, code: str, secret_key: str) -> str:
    return hmac.new(secret_key.encode("utf-8"), f"{jti}:{code}".encode("utf-8"), hashlib.sha256).hexdigest()


def create_otp_token(
    identifier: str,
    code: str,
    phone: str,
    expires_at_ms: int,
    secret_key: Optional[str] = None,
    algorithm: Optional[str] = None,
) -> Tuple[str, str]:
    """Create a signed OTP token for stateless verification.

    The token never carries the raw code, only an HMAC of it bound to the
    token id. Returns ``(token, jti)``.
    """
    secret_key = secret_key or settings.SECRET_KEY
    algorithm = algorithm or settings.ALGORITHM
    jti = secrets.token_urlsafe(16)
    to_encode = {
        "sub": identifier,
        "phone": phone or "",
        "otp": _otp_digest(jti, code, secret_key),
        "jti": jti,
        "iat": int(time.time()),
        "expires_at": int(expires_at_ms),
        "typ": OTP_TOKEN_TYPE,
    }
    encoded_jwt = jwt.encode(to_encode, secret_key, algorithm=algorithm)
    return encoded_jwt, jti


def _is_canonical(token: str) -> bool:
    # base64url admits several spellings of the same trailing bits; only the
    # canonical one is accepted so that every character of the token matters
    segments = token.split(".")
    if len(segments) != 3:
        return False
    for segment in segments:
        raw = segment.encode("ascii")
        if base64url_encode(base64url_decode(raw)) != raw:
            return False
    return True


def decode_otp_token(token: str, secret_key: Optional[str] = None, algorithm: Optional[str] = None) -> Optional[dict]:
    """Verify signature and shape of an OTP token; return its claims or None"""
    secret_key = secret_key or settings.SECRET_KEY
    algorithm = algorithm or settings.ALGORITHM
    if not token or not isinstance(token, str):
        return None
    try:
        if not _is_canonical(token):
            return None
        payload = jwt.decode(token, secret_key, algorithms=[algorithm])
    except (JWTError, ValueError, TypeError, UnicodeError) as e:
        logger.warning(f"OTP token rejected: {e}")
        return None
    if payload.get("typ") != OTP_TOKEN_TYPE:
        return None
    if not isinstance(payload.get("expires_at"), int) or not payload.get("jti") or not payload.get("sub"):
        return None
    return payload


def otp_digest_matches(claims: dict, code: str, secret_key: Optional[str] = None) -> bool:
    secret_key = secret_key or settings.SECRET_KEY
    expected = _otp_digest(str(claims.get("jti", "")), code or "", secret_key)
    return hmac.compare_digest(expected, str(claims.get("otp", "")))
