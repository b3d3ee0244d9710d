from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from refugio_api.platform.errors import CaptchaError
from refugio_api.platform.services.recaptcha import CaptchaVerdict, RecaptchaVerifier


def _patched_client(mock_client_instance):
    patcher = patch("refugio_api.platform.services.recaptcha.httpx.AsyncClient")
    MockClient = patcher.start()
    MockClient.return_value.__aenter__ = AsyncMock(return_value=mock_client_instance)
    MockClient.return_value.__aexit__ = AsyncMock(return_value=False)
    return patcher


def _response(payload) -> MagicMock:
    mock_resp = MagicMock()
    mock_resp.json.return_value = payload
    mock_resp.raise_for_status = MagicMock()
    return mock_resp


@pytest.mark.asyncio
async def test_verify_posts_form_fields_and_parses_success():
    client = AsyncMock()
    client.post = AsyncMock(
        return_value=_response({"success": True, "hostname": "mirefugio.github.io", "challenge_ts": "2024-01-01T00:00:00Z"})
    )
    patcher = _patched_client(client)
    try:
        verifier = RecaptchaVerifier("top-secret", verify_url="https://captcha.test/siteverify")
        verdict = await verifier.verify("token-123", "10.0.0.7")
    finally:
        patcher.stop()

    client.post.assert_awaited_once_with(
        "https://captcha.test/siteverify",
        data={"secret": "top-secret", "response": "token-123", "remoteip": "10.0.0.7"},
    )
    assert verdict == CaptchaVerdict(
        success=True,
        error_codes=[],
        hostname="mirefugio.github.io",
        challenge_ts="2024-01-01T00:00:00Z",
    )


@pytest.mark.asyncio
async def test_verify_omits_remoteip_when_unknown():
    client = AsyncMock()
    client.post = AsyncMock(return_value=_response({"success": True}))
    patcher = _patched_client(client)
    try:
        await RecaptchaVerifier("s").verify("tok")
    finally:
        patcher.stop()

    _, kwargs = client.post.call_args
    assert "remoteip" not in kwargs["data"]


@pytest.mark.asyncio
async def test_verify_reports_error_codes():
    client = AsyncMock()
    client.post = AsyncMock(return_value=_response({"success": False, "error-codes": ["invalid-input-response"]}))
    patcher = _patched_client(client)
    try:
        verdict = await RecaptchaVerifier("s").verify("bad")
    finally:
        patcher.stop()

    assert verdict.success is False
    assert verdict.error_codes == ["invalid-input-response"]


@pytest.mark.asyncio
async def test_only_literal_true_counts_as_success():
    client = AsyncMock()
    client.post = AsyncMock(return_value=_response({"success": "true"}))
    patcher = _patched_client(client)
    try:
        verdict = await RecaptchaVerifier("s").verify("tok")
    finally:
        patcher.stop()

    assert verdict.success is False


@pytest.mark.asyncio
async def test_hostname_mismatch_fails_verdict():
    client = AsyncMock()
    client.post = AsyncMock(return_value=_response({"success": True, "hostname": "evil.example"}))
    patcher = _patched_client(client)
    try:
        verifier = RecaptchaVerifier("s", expected_hostname="mirefugio.github.io")
        verdict = await verifier.verify("tok")
    finally:
        patcher.stop()

    assert verdict.success is False
    assert verdict.error_codes == ["hostname-mismatch"]


@pytest.mark.asyncio
async def test_transport_failure_fails_closed():
    client = AsyncMock()
    client.post = AsyncMock(side_effect=httpx.ConnectTimeout("timed out"))
    patcher = _patched_client(client)
    try:
        with pytest.raises(CaptchaError):
            await RecaptchaVerifier("s").verify("tok")
    finally:
        patcher.stop()


@pytest.mark.asyncio
async def test_invalid_json_fails_closed():
    mock_resp = MagicMock()
    mock_resp.raise_for_status = MagicMock()
    mock_resp.json.side_effect = ValueError("not json")
    client = AsyncMock()
    client.post = AsyncMock(return_value=mock_resp)
    patcher = _patched_client(client)
    try:
        with pytest.raises(CaptchaError):
            await RecaptchaVerifier("s").verify("tok")
    finally:
        patcher.stop()


@pytest.mark.asyncio
async def test_missing_secret_never_calls_out():
    with patch("refugio_api.platform.services.recaptcha.httpx.AsyncClient") as MockClient:
        with pytest.raises(CaptchaError):
            await RecaptchaVerifier(None).verify("tok")

    MockClient.assert_not_called()
