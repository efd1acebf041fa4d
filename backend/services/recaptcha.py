import asyncio
import aiohttp
from typing import Any, Dict, Optional
import logging

logger = logging.getLogger(__name__)

GOOGLE_SITEVERIFY_URL = "https://www.google.com/recaptcha/api/siteverify"


class RecaptchaVerifier:
    """reCAPTCHA v3 score check.

    When the provider cannot be reached or answers garbage the verdict is
    `fail_open`: True lets the request through, False blocks it.
    """

    def __init__(self, secret_key: Optional[str], verify_url: str = GOOGLE_SITEVERIFY_URL, min_score: float = 0.5, fail_open: bool = True):
        self.secret_key = secret_key
        self.verify_url = verify_url
        self.min_score = min_score
        self.fail_open = fail_open

    @property
    def is_configured(self) -> bool:
        return bool(self.secret_key)

    async def _post_siteverify(self, token: str) -> Dict[str, Any]:
        form = {"secret": self.secret_key, "response": token}
        async with aiohttp.ClientSession() as session:
            async with session.post(self.verify_url, data=form) as resp:
                return await resp.json(content_type=None)

    async def verify(self, token: str) -> bool:
        try:
            data = await self._post_siteverify(token)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error(f"[reCAPTCHA] Verification error: {e}")
            return self.fail_open
        if not isinstance(data, dict):
            logger.error(f"[reCAPTCHA] Unexpected response: {data!r}")
            return self.fail_open
        try:
            score = float(data.get("score") or 0.0)
        except (TypeError, ValueError):
            score = 0.0
        if not data.get("success") or score < self.min_score:
            logger.info(f"[reCAPTCHA] Verification failed: {data}")
            return False
        logger.info(f"[reCAPTCHA] Score: {score}")
        return True
