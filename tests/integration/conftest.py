from types import SimpleNamespace

import pytest
from httpx import ASGITransport, AsyncClient

from agenda.main import app


@pytest.fixture
async def client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
def ids(business, catalog) -> SimpleNamespace:
    """Plain ids: a rejected request rolls the shared session back and
    expires every loaded instance."""
    return SimpleNamespace(
        business=business.id,
        x=catalog.x.id,
        y=catalog.y.id,
        p1=catalog.p1.id,
        p2=catalog.p2.id,
        p3=catalog.p3.id,
    )
