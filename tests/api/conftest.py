"""Fixtures for HTTP API tests (FastAPI)."""

from __future__ import annotations

from collections.abc import AsyncIterator
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

from tests._db_factory import make_db
from tests.conftest import BASIC_SNAPSHOT
from trellis.api import create_app
from trellis.core import TrellisDB


@pytest.fixture
def api_db(tmp_path: Path) -> TrellisDB:
    """DB with tenant ``acme`` (admin ``alice``) holding the basic snapshot.

    Opened with check_same_thread=False as the server does.
    """
    db = make_db(tmp_path, check_same_thread=False)
    db.create_tenant("Acme Corp", tenant_id="acme")
    db.grant_admin("acme", "alice")
    db.import_items("acme", BASIC_SNAPSHOT)
    return db


@pytest.fixture
async def client(api_db: TrellisDB) -> AsyncIterator[AsyncClient]:
    app = create_app(api_db)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    api_db.close()
