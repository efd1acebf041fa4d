from dataclasses import dataclass
from typing import Optional
from core.exceptions import OtpRequestError
from core.security import generate_otp
from services.rate_limiter import InMemoryRateLimiter
from services.recaptcha import RecaptchaVerifier
from services.otp_store import SignedTokenVerifier
from utils.email import SmtpMailer, send_otp_email
from utils.email_validation import normalize_identifier, is_valid_email, is_corporate_email
from fastapi import HTTPException
import logging

logger = logging.getLogger(__name__)

MSG_MISSING_FIELDS = "Email and phone are required"
MSG_INVALID_EMAIL = "Invalid email format"
MSG_PERSONAL_EMAIL = "Please use a business email address. Personal email addresses are not accepted."
MSG_RECAPTCHA_FAILED = "reCAPTCHA verification failed. Please try again."
MSG_EMAIL_FAILED = "Failed to send OTP email. Please try again."
MSG_SEND_FAILED = "Failed to send OTP"
MSG_SENT = "OTP sent successfully to your email"
MSG_VERIFY_MISSING = "Email and OTP are required"
MSG_VERIFY_INVALID = "Invalid or expired OTP. Please request a new one."
MSG_VERIFIED = "OTP verified successfully."
MSG_VERIFY_FAILED = "Failed to verify OTP"


def _clean(value) -> str:
    return value.strip() if isinstance(value, str) else ""


@dataclass
class OtpService:
    """Lead-capture OTP flow: validate, throttle, challenge, issue, mail"""

    rate_limiter: InMemoryRateLimiter
    verifier: SignedTokenVerifier
    mailer: SmtpMailer
    recaptcha: Optional[RecaptchaVerifier] = None
    verify_limiter: Optional[InMemoryRateLimiter] = None
    otp_length: int = 6
    email_expiry_minutes: int = 5
    brand: str = "SalesCentri"
    development: bool = False

    async def _check_recaptcha(self, recaptcha_token: Optional[str]) -> None:
        if self.development:
            logger.info("[DEV MODE] Skipping reCAPTCHA verification")
            return
        if not recaptcha_token or self.recaptcha is None or not self.recaptcha.is_configured:
            return
        if not await self.recaptcha.verify(recaptcha_token):
            raise OtpRequestError(status_code=400, detail=MSG_RECAPTCHA_FAILED)

    async def send_otp(self, email, phone, recaptcha_token: Optional[str] = None) -> dict:
        try:
            email = _clean(email)
            phone = _clean(phone)
            if not email or not phone:
                raise OtpRequestError(status_code=400, detail=MSG_MISSING_FIELDS)
            if not is_valid_email(email):
                raise OtpRequestError(status_code=400, detail=MSG_INVALID_EMAIL)
            if not is_corporate_email(email):
                raise OtpRequestError(status_code=400, detail=MSG_PERSONAL_EMAIL)

            identifier = normalize_identifier(email)
            rate_limit = await self.rate_limiter.check(identifier)
            if not rate_limit.allowed:
                raise OtpRequestError(status_code=429, detail=rate_limit.message)

            await self._check_recaptcha(_clean(recaptcha_token) or None)

            otp_code = generate_otp(self.otp_length)
            issued = await self.verifier.issue(identifier, otp_code, email, phone)
            if self.development:
                logger.info(f"[OTP] Generated for {email}: {otp_code} (expires at {issued.expires_at})")
            else:
                logger.info(f"[OTP] Generated for {email}")

            sent = await send_otp_email(self.mailer, email, otp_code, self.email_expiry_minutes, self.brand)
            if not sent:
                logger.error(f"[OTP] Failed to send email to {email}")
                raise OtpRequestError(status_code=500, detail=MSG_EMAIL_FAILED)

            response = {
                "success": True,
                "message": MSG_SENT,
                "expiresAt": issued.expires_at,
                "signedToken": issued.signed_token,
            }
            if self.development:
                response["debug"] = {"otp": otp_code}
            return response
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"[OTP] Error sending OTP: {e}")
            raise OtpRequestError(status_code=500, detail=MSG_SEND_FAILED)

    async def verify_otp(self, email, otp, signed_token: Optional[str] = None) -> dict:
        email = _clean(email)
        otp = _clean(otp)
        if not email or not otp:
            raise OtpRequestError(status_code=400, detail=MSG_VERIFY_MISSING)
        identifier = normalize_identifier(email)
        if self.verify_limiter is not None:
            rate_limit = await self.verify_limiter.check(identifier)
            if not rate_limit.allowed:
                raise OtpRequestError(status_code=429, detail=rate_limit.message)
        try:
            valid = await self.verifier.verify(identifier, otp, _clean(signed_token) or None)
        except Exception as e:
            logger.error(f"[OTP] Error verifying OTP for {identifier}: {e}")
            raise OtpRequestError(status_code=500, detail=MSG_VERIFY_FAILED)
        if not valid:
            raise OtpRequestError(status_code=400, detail=MSG_VERIFY_INVALID)
        logger.info(f"[OTP] Verified {identifier}")
        return {"success": True, "message": MSG_VERIFIED}
