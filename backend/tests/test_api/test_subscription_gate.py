"""Tests for the cookie-based subscription gating middleware."""

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from quillsign.main import app as quillsign_app
from quillsign.middleware.subscription_gate import SubscriptionGateMiddleware


def _build_app() -> FastAPI:
    app = FastAPI()
    app.add_middleware(SubscriptionGateMiddleware)

    @app.get("/{path:path}")
    async def page(path: str) -> dict[str, str]:
        return {"page": path}

    return app


@pytest_asyncio.fixture
async def gate_client():
    transport = ASGITransport(app=_build_app())
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac


async def _get(client: AsyncClient, path: str, cookies: str | None = None):
    headers = {"Cookie": cookies} if cookies else {}
    return await client.get(path, headers=headers)


class TestPassThrough:
    @pytest.mark.parametrize("path", ["/", "/pricing", "/login", "/about", "/dashboarding"])
    async def test_public_paths(self, gate_client: AsyncClient, path):
        response = await _get(gate_client, path)
        assert response.status_code == 200

    async def test_api_paths_are_not_gated(self, gate_client: AsyncClient):
        response = await _get(gate_client, "/api/v1/contracts")
        assert response.status_code == 200


class TestGatedPaths:
    async def test_no_session_redirects_to_login(self, gate_client: AsyncClient):
        response = await _get(gate_client, "/dashboard")
        assert response.status_code == 307
        assert response.headers["location"] == "/login?from=%2Fdashboard"

    async def test_stale_subscription_cookie_is_cleared(self, gate_client: AsyncClient):
        response = await _get(gate_client, "/contracts/42", cookies="subscription_status=active")
        assert response.status_code == 307
        assert response.headers["location"] == "/login?from=%2Fcontracts%2F42&reset=true"
        set_cookie = response.headers["set-cookie"]
        assert set_cookie.startswith("subscription_status=")
        assert "Max-Age=0" in set_cookie

    async def test_active_passes(self, gate_client: AsyncClient):
        response = await _get(gate_client, "/dashboard", cookies="session=tok; subscription_status=active")
        assert response.status_code == 200
        assert response.json() == {"page": "dashboard"}

    async def test_canceled_goes_to_pricing_expired(self, gate_client: AsyncClient):
        response = await _get(gate_client, "/invoices", cookies="session=tok; subscription_status=canceled")
        assert response.status_code == 307
        assert response.headers["location"] == "/pricing?expired=true&from=%2Finvoices"

    @pytest.mark.parametrize("cookie", ["session=tok", "session=tok; subscription_status=past_due"])
    async def test_other_states_go_to_pricing_required(self, gate_client: AsyncClient, cookie):
        response = await _get(gate_client, "/settings", cookies=cookie)
        assert response.status_code == 307
        assert response.headers["location"] == "/pricing?required=true&from=%2Fsettings"


class TestAuthOnlyPaths:
    async def test_session_is_enough(self, gate_client: AsyncClient):
        response = await _get(gate_client, "/subscribe", cookies="session=tok")
        assert response.status_code == 200

    async def test_no_session_redirects_to_login(self, gate_client: AsyncClient):
        response = await _get(gate_client, "/payment-success")
        assert response.status_code == 307
        assert response.headers["location"] == "/login?from=%2Fpayment-success"


class TestInstalledOnApp:
    async def test_application_gates_dashboard(self):
        transport = ASGITransport(app=quillsign_app)
        async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
            response = await ac.get("/dashboard")
            health = await ac.get("/health")
        assert response.status_code == 307
        assert health.json()["status"] == "healthy"
