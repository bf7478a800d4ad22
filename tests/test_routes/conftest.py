import httpx
import pytest

from app.dependencies import get_db
from app.main import app


@pytest.fixture
async def client(session_factory):
    """API client wired to the per-test database, authenticated with the development login"""
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test", auth=("admin", "changeme")) as client:
        yield client
    app.dependency_overrides.clear()
