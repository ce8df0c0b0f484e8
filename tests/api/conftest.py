"""Test fixtures for API integration tests."""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from pokerclub.main import app
from pokerclub.tournament.api import set_engine


# =============================================================================
# FastAPI App & Client Fixtures
# =============================================================================


@pytest_asyncio.fixture(scope="function")
async def test_client(engine) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the real app, wired to the test engine.

    ASGITransport does not run the lifespan, so the engine is installed here.
    """
    set_engine(engine)
    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
    finally:
        set_engine(None)


@pytest.fixture
def owner_headers() -> dict:
    return {"X-Actor-Id": "owner"}


@pytest.fixture
def dealer_headers() -> dict:
    return {"X-Actor-Id": "dealer"}


@pytest.fixture
def create_game(test_client: AsyncClient, owner_headers: dict):
    async def _create(**overrides) -> dict:
        body = {"club_id": "club-1", "name": "API Night", "buy_in_amount": 2000}
        body.update(overrides)
        response = await test_client.post(
            "/api/v1/tournament/games", json=body, headers=owner_headers
        )
        assert response.status_code == 201, response.text
        return response.json()

    return _create
