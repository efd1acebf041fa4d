"""
Unit tests for the reCAPTCHA v3 verifier.
"""
import asyncio
import aiohttp
import pytest
from unittest.mock import AsyncMock, patch

from services.recaptcha import RecaptchaVerifier


def _verifier(**kwargs) -> RecaptchaVerifier:
    return RecaptchaVerifier(secret_key="recaptcha-secret", **kwargs)


class TestRecaptchaVerifier:

    def test_unconfigured_without_secret(self):
        assert not RecaptchaVerifier(secret_key=None).is_configured
        assert _verifier().is_configured

    @pytest.mark.asyncio
    async def test_good_score_passes(self):
        verifier = _verifier()
        with patch.object(verifier, "_post_siteverify", AsyncMock(return_value={"success": True, "score": 0.9})) as post:
            assert await verifier.verify("token-123")
        post.assert_awaited_once_with("token-123")

    @pytest.mark.asyncio
    async def test_score_at_threshold_passes(self):
        verifier = _verifier(min_score=0.5)
        with patch.object(verifier, "_post_siteverify", AsyncMock(return_value={"success": True, "score": 0.5})):
            assert await verifier.verify("token")

    @pytest.mark.asyncio
    async def test_low_score_is_rejected(self):
        verifier = _verifier()
        with patch.object(verifier, "_post_siteverify", AsyncMock(return_value={"success": True, "score": 0.2})):
            assert not await verifier.verify("token")

    @pytest.mark.asyncio
    async def test_unsuccessful_response_is_rejected(self):
        verifier = _verifier()
        response = {"success": False, "error-codes": ["invalid-input-response"]}
        with patch.object(verifier, "_post_siteverify", AsyncMock(return_value=response)):
            assert not await verifier.verify("token")

    @pytest.mark.asyncio
    async def test_missing_score_is_rejected(self):
        verifier = _verifier()
        with patch.object(verifier, "_post_siteverify", AsyncMock(return_value={"success": True})):
            assert not await verifier.verify("token")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [aiohttp.ClientError("boom"), asyncio.TimeoutError(), ValueError("bad json")])
    async def test_provider_errors_fail_open_by_default(self, error):
        verifier = _verifier()
        with patch.object(verifier, "_post_siteverify", AsyncMock(side_effect=error)):
            assert await verifier.verify("token")

    @pytest.mark.asyncio
    async def test_provider_errors_fail_closed_when_configured(self):
        verifier = _verifier(fail_open=False)
        with patch.object(verifier, "_post_siteverify", AsyncMock(side_effect=aiohttp.ClientError("boom"))):
            assert not await verifier.verify("token")

    @pytest.mark.asyncio
    async def test_non_object_response_uses_fail_policy(self):
        verifier = _verifier(fail_open=False)
        with patch.object(verifier, "_post_siteverify", AsyncMock(return_value=["unexpected"])):
            assert not await verifier.verify("token")
