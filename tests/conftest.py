"""Shared pytest fixtures for trellis tests."""

from __future__ import annotations

from collections.abc import Generator
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pytest
from click.testing import CliRunner

from trellis.core import DB_FILENAME, TRELLIS_DIR_NAME, TrellisDB, write_config
from tests._db_factory import make_db

ADMIN = "alice"
TENANT = "acme"

# product p1 > epic e1 > feature f1. Valid under "safe"; under "less" the
# epic is disabled and f1 has a single HIGH confidence target (p1).
BASIC_SNAPSHOT: list[dict[str, Any]] = [
    {"id": "p1", "type": "product", "title": "Platform"},
    {"id": "e1", "type": "epic", "title": "Checkout", "parentId": "p1"},
    {"id": "f1", "type": "feature", "title": "One-click pay", "parentId": "e1"},
]

# Three features under an epic; under "less" each moves to p1 with HIGH confidence.
SIBLINGS: list[dict[str, Any]] = [
    {"id": "p1", "type": "product"},
    {"id": "e1", "type": "epic", "parentId": "p1"},
    {"id": "fa", "type": "feature", "parentId": "e1"},
    {"id": "fb", "type": "feature", "parentId": "e1"},
    {"id": "fc", "type": "feature", "parentId": "e1"},
]


@pytest.fixture
def db(tmp_path: Path) -> Generator[TrellisDB, None, None]:
    """Fresh TrellisDB for each test."""
    d = make_db(tmp_path)
    yield d
    d.close()


@dataclass
class TenantDB:
    """A DB with one tenant (``acme``) administered by ``alice``."""

    db: TrellisDB
    tenant_id: str
    admin: str

    def load(self, records: list[dict[str, Any]]) -> None:
        self.db.import_items(self.tenant_id, records)

    def hierarchy(self) -> dict[str, tuple[str | None, list[str]]]:
        """item id -> (parent_id, children_ids)."""
        return {i.id: (i.parent_id, list(i.children_ids)) for i in self.db.list_items(self.tenant_id)}


@pytest.fixture
def tenant_db(db: TrellisDB) -> TenantDB:
    db.create_tenant("Acme Corp", tenant_id=TENANT)
    db.grant_admin(TENANT, ADMIN)
    return TenantDB(db=db, tenant_id=TENANT, admin=ADMIN)


@pytest.fixture
def basic_tenant(tenant_db: TenantDB) -> TenantDB:
    """tenant_db loaded with BASIC_SNAPSHOT."""
    tenant_db.load(BASIC_SNAPSHOT)
    return tenant_db


@pytest.fixture
def trellis_project(tmp_path: Path) -> Path:
    """A tmp directory set up as a trellis project (.trellis/ with config + db).

    Returns the project root (parent of .trellis/).
    """
    trellis_dir = tmp_path / TRELLIS_DIR_NAME
    trellis_dir.mkdir()
    write_config(trellis_dir, {"prefix": "proj", "version": 1, "default_preset": "safe"})

    d = TrellisDB(trellis_dir / DB_FILENAME, prefix="proj")
    d.initialize()
    d.close()
    return tmp_path


@pytest.fixture
def cli_runner() -> CliRunner:
    """Click CLI test runner."""
    return CliRunner()
