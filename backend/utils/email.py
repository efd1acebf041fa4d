import smtplib
from datetime import datetime
from email.message import EmailMessage
from typing import Dict, Optional, Tuple
from starlette.concurrency import run_in_threadpool
import logging

logger = logging.getLogger(__name__)

OTP_PRIORITY_HEADERS = {
    "X-Priority": "1",
    "X-MSMail-Priority": "High",
    "Importance": "high",
}


class SmtpMailer:
    """Thin wrapper over smtplib holding one SMTP account's settings"""

    def __init__(
        self,
        host: Optional[str],
        port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        from_email: Optional[str] = None,
        from_name: Optional[str] = None,
        use_tls: bool = True,
        use_ssl: bool = False,
        timeout: int = 15,
        debug: bool = False,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.from_email = from_email or username
        self.from_name = from_name
        self.use_tls = use_tls
        self.use_ssl = use_ssl
        self.timeout = timeout or 15
        self.debug = debug

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.username and self.password)

    def _build_message(
        self,
        subject: str,
        to_email: str,
        html_body: str,
        text_body: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        from_email: Optional[str] = None,
        from_name: Optional[str] = None,
    ) -> EmailMessage:
        sender = from_email or self.from_email or "no-reply@example.com"
        name = from_name or self.from_name
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = f"{name} <{sender}>" if name else sender
        msg["To"] = to_email
        for key, value in (headers or {}).items():
            msg[key] = value
        if text_body:
            msg.set_content(text_body)
        msg.add_alternative(html_body, subtype="html")
        return msg

    def send(
        self,
        subject: str,
        to_email: str,
        html_body: str,
        text_body: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        from_email: Optional[str] = None,
        from_name: Optional[str] = None,
    ) -> bool:
        if not self.is_configured:
            logger.warning("SMTP not configured; skipping email send")
            return False
        try:
            msg = self._build_message(subject, to_email, html_body, text_body, headers, from_email, from_name)
            debug = 1 if self.debug else 0
            # SSL (SMTPS) or STARTTLS
            if self.use_ssl:
                with smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout) as server:
                    server.set_debuglevel(debug)
                    server.login(self.username, self.password)
                    server.send_message(msg)
            else:
                with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                    server.set_debuglevel(debug)
                    if self.use_tls:
                        server.starttls()
                    server.login(self.username, self.password)
                    server.send_message(msg)
            logger.info(f"Sent email to {to_email} with subject '{subject}'")
            return True
        except (smtplib.SMTPException, OSError) as exc:
            logger.error(f"Failed to send email to {to_email}: {exc}")
            return False

    async def send_async(self, *args, **kwargs) -> bool:
        return await run_in_threadpool(self.send, *args, **kwargs)


def render_otp_email(otp_code: str, expiry_minutes: int, brand: str = "SalesCentri") -> Tuple[str, str, str]:
    """Return (subject, text, html) for a verification code email"""
    year = datetime.utcnow().year
    subject = f"Your {brand} Verification Code: {otp_code}"
    text = (
        f"{brand} - Verification Code\n\n"
        f"Thank you for your interest in {brand}.\n\n"
        f"Your OTP Code: {otp_code}\n\n"
        f"This code will expire in {expiry_minutes} minutes.\n\n"
        "For security reasons, never share this code with anyone.\n\n"
        "If you didn't request this code, please ignore this email.\n\n"
        f"© {year} {brand}. All rights reserved."
    )
    html = f"""
    <div style='font-family: -apple-system, Segoe UI, Roboto, Arial, sans-serif; background-color: #000000; padding: 40px 20px;'>
      <div style='max-width: 600px; margin: 0 auto; background-color: #0D1117; border-radius: 12px; overflow: hidden;'>
        <div style='background: linear-gradient(135deg, #3B82F6 0%, #2563EB 100%); padding: 40px 20px; text-align: center;'>
          <h1 style='color: #ffffff; margin: 0; font-size: 28px;'>Verification Code</h1>
          <p style='color: #E0F2FE; margin: 10px 0 0 0;'>{brand}</p>
        </div>
        <div style='padding: 40px 30px; text-align: center;'>
          <p style='color: #E5E7EB; font-size: 16px;'>Thank you for your interest in {brand}. Use the code below to verify your identity:</p>
          <p style='color: #ffffff; font-size: 36px; font-weight: 700; letter-spacing: 8px; font-family: Courier New, monospace;'>{otp_code}</p>
          <p style='color: #9CA3AF; font-size: 14px;'>This code will expire in <strong style='color: #60A5FA;'>{expiry_minutes} minutes</strong></p>
          <p style='color: #9CA3AF; font-size: 14px;'>For security reasons, never share this code with anyone.</p>
        </div>
        <div style='background-color: #030712; padding: 30px; text-align: center; border-top: 1px solid #1F2937;'>
          <p style='color: #6B7280; font-size: 12px;'>If you didn't request this code, please ignore this email.</p>
          <p style='color: #4B5563; font-size: 12px;'>&copy; {year} {brand}. All rights reserved.</p>
        </div>
      </div>
    </div>
    """
    return subject, text, html


async def send_otp_email(mailer: SmtpMailer, to_email: str, otp_code: str, expiry_minutes: int = 5, brand: str = "SalesCentri") -> bool:
    subject, text, html = render_otp_email(otp_code, expiry_minutes, brand)
    return await mailer.send_async(subject, to_email, html, text, headers=OTP_PRIORITY_HEADERS)
