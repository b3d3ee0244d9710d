from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

from refugio_api.features.health.routes import get_mail_relay
from refugio_api.main import create_app
from refugio_api.platform.config import Settings
from refugio_api.platform.services.mailer import RelayHealth


class _Relay:
    def __init__(self, status: RelayHealth) -> None:
        self.status = status
        self.verify_calls = 0

    async def send(self, message) -> str:
        raise AssertionError("health check must not send mail")

    async def verify(self) -> RelayHealth:
        self.verify_calls += 1
        return self.status


def _settings() -> Settings:
    return Settings(_env_file=None, smtp_user="contacto@example.com", mail_to="destino@example.com")


@pytest.mark.asyncio
async def test_health_ok_when_smtp_verifies():
    relay = _Relay(RelayHealth(healthy=True))
    app = create_app(_settings(), mail_relay=relay)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/health")

    assert response.status_code == 200
    payload = response.json()
    assert payload["ok"] is True
    assert payload["smtp"] == "ok"
    assert payload["time"]
    assert relay.verify_calls == 1


@pytest.mark.asyncio
async def test_health_fails_when_smtp_unreachable():
    relay = _Relay(RelayHealth(healthy=False, error="SMTP relay unavailable: refused"))
    app = create_app(_settings(), mail_relay=relay)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/health")

    assert response.status_code == 500
    payload = response.json()
    assert payload["ok"] is False
    assert payload["smtp"] == "fail"
    assert payload["error"] == "SMTP relay unavailable: refused"
    assert response.headers["Referrer-Policy"] == "strict-origin-when-cross-origin"


@pytest.mark.asyncio
async def test_health_relay_dependency_override():
    app = create_app(_settings(), mail_relay=_Relay(RelayHealth(healthy=False)))
    app.dependency_overrides[get_mail_relay] = lambda: _Relay(RelayHealth(healthy=True))

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/health")

    assert response.status_code == 200


@pytest.mark.asyncio
async def test_lifespan_verifies_smtp_and_closes_pool():
    relay = _Relay(RelayHealth(healthy=True))
    closed = []

    async def close():
        closed.append(True)

    relay.close = close
    app = create_app(_settings(), mail_relay=relay)

    with patch("refugio_api.main.close_redis", new=AsyncMock()) as close_redis:
        async with app.router.lifespan_context(app):
            assert relay.verify_calls == 1

    assert closed == [True]
    close_redis.assert_called_once()
