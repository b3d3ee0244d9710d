from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

import httpx

from refugio_api.platform.errors import CaptchaError

logger = logging.getLogger(__name__)

DEFAULT_VERIFY_URL = "https://www.google.com/recaptcha/api/siteverify"


@dataclass(frozen=True)
class CaptchaVerdict:
    success: bool
    error_codes: list[str] = field(default_factory=list)
    hostname: str | None = None
    challenge_ts: str | None = None


class CaptchaVerifier(Protocol):
    async def verify(self, token: str, client_ip: str | None = None) -> CaptchaVerdict: ...


class RecaptchaVerifier:
    def __init__(
        self,
        secret: str | None,
        *,
        verify_url: str = DEFAULT_VERIFY_URL,
        timeout_seconds: float = 10.0,
        expected_hostname: str | None = None,
    ) -> None:
        self._secret = secret
        self._verify_url = verify_url
        self._timeout = httpx.Timeout(timeout_seconds)
        self._expected_hostname = expected_hostname

        if not secret:
            logger.warning("RECAPTCHA_SECRET_KEY is not set; every CAPTCHA check will fail")

    async def verify(self, token: str, client_ip: str | None = None) -> CaptchaVerdict:
        if not self._secret:
            raise CaptchaError("RECAPTCHA_SECRET_KEY is not configured")

        data = {"secret": self._secret, "response": token}
        if client_ip:
            data["remoteip"] = client_ip

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self._verify_url, data=data)
                resp.raise_for_status()
                payload = resp.json()
        except httpx.HTTPError as exc:
            raise CaptchaError(f"reCAPTCHA verification request failed: {exc}") from exc
        except ValueError as exc:
            raise CaptchaError("reCAPTCHA verification returned invalid JSON") from exc

        if not isinstance(payload, dict):
            raise CaptchaError("reCAPTCHA verification returned an unexpected payload")

        return self._parse_verdict(payload)

    def _parse_verdict(self, payload: dict) -> CaptchaVerdict:
        raw_codes = payload.get("error-codes")
        error_codes = [str(c) for c in raw_codes] if isinstance(raw_codes, list) else []
        hostname = payload.get("hostname")
        hostname = hostname if isinstance(hostname, str) else None
        challenge_ts = payload.get("challenge_ts")
        challenge_ts = challenge_ts if isinstance(challenge_ts, str) else None

        success = payload.get("success") is True
        if success and self._expected_hostname and hostname != self._expected_hostname:
            success = False
            error_codes.append("hostname-mismatch")

        return CaptchaVerdict(
            success=success,
            error_codes=error_codes,
            hostname=hostname,
            challenge_ts=challenge_ts,
        )
