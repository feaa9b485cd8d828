"""Core database operations for trellis.

Single source of truth for all SQLite operations. The CLI, the HTTP API and
the migration service all go through :class:`TrellisDB`. No daemon and no sync;
just direct SQLite with WAL mode.

Covers tenants, tenant admins, work items (with their ``children_ids`` index),
transactions, and (via :class:`~trellis.db_jobs.JobsMixin`) migration jobs,
move logs and reports.

Convention-based discovery: each project has a `.trellis/` directory containing
`trellis.db` (SQLite) and `config.json` (project prefix, default preset).
"""

from __future__ import annotations

import contextlib
import json
import logging
import sqlite3
import uuid
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeVar

from trellis.db_base import _now_iso
from trellis.db_jobs import JobsMixin
from trellis.db_schema import CURRENT_SCHEMA_VERSION, SCHEMA_SQL
from trellis.errors import ValidationError
from trellis.presets import DEFAULT_PRESET_KEY, normalize_type
from trellis.types.core import ISOTimestamp, ProjectConfig, TenantDict, WorkItemDict

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Convention-based discovery
# ---------------------------------------------------------------------------

TRELLIS_DIR_NAME = ".trellis"
DB_FILENAME = "trellis.db"
CONFIG_FILENAME = "config.json"


def find_trellis_root(start: Path | None = None) -> Path:
    """Walk up from start (default cwd) looking for .trellis/ directory.

    Returns the .trellis/ directory path (not the project root).
    """
    current = (start or Path.cwd()).resolve()
    for parent in [current, *current.parents]:
        candidate = parent / TRELLIS_DIR_NAME
        if candidate.is_dir():
            return candidate
    msg = f"No {TRELLIS_DIR_NAME}/ directory found in {current} or any parent"
    raise FileNotFoundError(msg)


def read_config(trellis_dir: Path) -> ProjectConfig:
    """Read .trellis/config.json. Returns defaults if missing or corrupt."""
    defaults = ProjectConfig(prefix="trellis", version=1, default_preset=DEFAULT_PRESET_KEY)
    config_path = trellis_dir / CONFIG_FILENAME
    if not config_path.exists():
        return defaults
    try:
        result: ProjectConfig = json.loads(config_path.read_text())
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("Failed to read %s, using defaults: %s", config_path, exc)
        return defaults
    if not isinstance(result, dict):
        logger.warning("Ignoring non-object config in %s, using defaults", config_path)
        return defaults
    return result


def write_config(trellis_dir: Path, config: dict[str, Any] | ProjectConfig) -> None:
    """Write .trellis/config.json."""
    config_path = trellis_dir / CONFIG_FILENAME
    config_path.write_text(json.dumps(config, indent=2) + "\n")


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass
class Tenant:
    id: str
    name: str
    preset_key: str = ""
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> TenantDict:
        return {
            "id": self.id,
            "name": self.name,
            "preset_key": self.preset_key,
            "created_at": ISOTimestamp(self.created_at),
            "updated_at": ISOTimestamp(self.updated_at),
        }


@dataclass
class WorkItem:
    id: str
    tenant_id: str
    type: str
    title: str = ""
    # Source of truth for ancestry; children_ids is a writer-maintained index.
    parent_id: str | None = None
    children_ids: list[str] = field(default_factory=list)
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> WorkItemDict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "type": self.type,
            "title": self.title,
            "parent_id": self.parent_id,
            "children_ids": list(self.children_ids),
            "created_at": ISOTimestamp(self.created_at),
            "updated_at": ISOTimestamp(self.updated_at),
        }


def _load_children(raw: str | None) -> list[str]:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Corrupt children_ids value ignored: %r", raw)
        return []
    if not isinstance(value, list):
        return []
    return [str(v) for v in value]


def _dedupe(ids: Iterable[str]) -> list[str]:
    """Order-preserving de-duplication."""
    return list(dict.fromkeys(ids))


# ---------------------------------------------------------------------------
# TrellisDB: the core
# ---------------------------------------------------------------------------


class TrellisDB(JobsMixin):
    """Direct SQLite operations. Constructed once and passed to whoever needs it."""

    def __init__(
        self,
        db_path: str | Path,
        *,
        prefix: str = "trellis",
        default_preset: str = DEFAULT_PRESET_KEY,
        check_same_thread: bool = True,
    ) -> None:
        self.db_path = Path(db_path)
        self.prefix = prefix
        self.default_preset = default_preset
        self._conn: sqlite3.Connection | None = None
        self._check_same_thread = check_same_thread
        self._tx_depth = 0

    @classmethod
    def from_project(cls, project_path: Path | None = None) -> TrellisDB:
        """Create a TrellisDB by discovering .trellis/ from project_path (or cwd)."""
        trellis_dir = find_trellis_root(project_path)
        config = read_config(trellis_dir)
        db = cls(
            trellis_dir / DB_FILENAME,
            prefix=config.get("prefix", "trellis"),
            default_preset=config.get("default_preset", DEFAULT_PRESET_KEY),
        )
        db.initialize()
        return db

    def __enter__(self) -> TrellisDB:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(
                str(self.db_path),
                isolation_level="DEFERRED",
                check_same_thread=self._check_same_thread,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
            self._conn.execute("PRAGMA busy_timeout=5000")
        return self._conn

    def initialize(self) -> None:
        """Create tables on a fresh database and stamp the schema version."""
        current_version = self.get_schema_version()
        if current_version == 0:
            self.conn.executescript(SCHEMA_SQL)
            self.conn.execute(f"PRAGMA user_version = {CURRENT_SCHEMA_VERSION}")
        elif current_version > CURRENT_SCHEMA_VERSION:
            msg = f"Database schema v{current_version} is newer than this trellis (v{CURRENT_SCHEMA_VERSION})"
            raise ValueError(msg)
        self.conn.commit()

    def get_schema_version(self) -> int:
        """Return the current schema version from PRAGMA user_version."""
        result: int = self.conn.execute("PRAGMA user_version").fetchone()[0]
        return result

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _generate_unique_id(self, table: str, infix: str = "") -> str:
        """Generate a unique ID using O(1) EXISTS checks against the PK index.

        *table* is always a hardcoded literal at the call site (never user input).
        """
        sep = f"-{infix}-" if infix else "-"
        for _ in range(10):
            candidate = f"{self.prefix}{sep}{uuid.uuid4().hex[:10]}"
            if self.conn.execute(f"SELECT 1 FROM {table} WHERE id = ?", (candidate,)).fetchone() is None:
                return candidate
        return f"{self.prefix}{sep}{uuid.uuid4().hex[:16]}"

    # -- Transactions --------------------------------------------------------

    @contextlib.contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block inside one IMMEDIATE transaction.

        Commits on success, rolls back and re-raises on any exception.
        Nested use joins the outermost transaction.
        """
        if self._tx_depth:
            self._tx_depth += 1
            try:
                yield self.conn
            finally:
                self._tx_depth -= 1
            return

        if self.conn.in_transaction:
            self.conn.commit()
        self.conn.execute("BEGIN IMMEDIATE")
        self._tx_depth = 1
        try:
            yield self.conn
        except BaseException:
            self.conn.rollback()
            raise
        else:
            self.conn.commit()
        finally:
            self._tx_depth = 0

    def run_transaction(self, fn: Callable[[], T]) -> T:
        """Execute *fn* inside :meth:`transaction`; all of its writes commit together or not at all."""
        with self.transaction():
            return fn()

    # -- Tenants -------------------------------------------------------------

    def _build_tenant(self, row: sqlite3.Row) -> Tenant:
        return Tenant(
            id=row["id"],
            name=row["name"],
            preset_key=row["preset_key"] or self.default_preset,
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def create_tenant(self, name: str, *, tenant_id: str | None = None, preset_key: str = "") -> Tenant:
        if not isinstance(name, str) or not name.strip():
            msg = "Tenant name cannot be empty"
            raise ValidationError(msg)
        now = _now_iso()
        with self.transaction() as conn:
            tid = tenant_id or self._generate_unique_id("tenants", "t")
            conn.execute(
                "INSERT INTO tenants (id, name, preset_key, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
                (tid, name.strip(), preset_key, now, now),
            )
        logger.info("Created tenant %s", tid, extra={"tenant_id": tid})
        return self.get_tenant(tid)

    def get_tenant(self, tenant_id: str) -> Tenant:
        row = self.conn.execute("SELECT * FROM tenants WHERE id = ?", (tenant_id,)).fetchone()
        if row is None:
            raise KeyError(tenant_id)
        return self._build_tenant(row)

    def list_tenants(self) -> list[Tenant]:
        rows = self.conn.execute("SELECT * FROM tenants ORDER BY created_at, id").fetchall()
        return [self._build_tenant(r) for r in rows]

    def get_tenant_preset_key(self, tenant_id: str) -> str:
        """Current preset key, or the default when the tenant never chose one."""
        return self.get_tenant(tenant_id).preset_key

    def set_tenant_preset(self, tenant_id: str, preset_key: str) -> Tenant:
        self.get_tenant(tenant_id)
        with self.transaction() as conn:
            conn.execute(
                "UPDATE tenants SET preset_key = ?, updated_at = ? WHERE id = ?",
                (preset_key, _now_iso(), tenant_id),
            )
        return self.get_tenant(tenant_id)

    def grant_admin(self, tenant_id: str, actor: str) -> bool:
        """Make *actor* an admin of the tenant. Returns False if already granted."""
        self.get_tenant(tenant_id)
        with self.transaction() as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO tenant_admins (tenant_id, actor, created_at) VALUES (?, ?, ?)",
                (tenant_id, actor, _now_iso()),
            )
        return cursor.rowcount > 0

    def revoke_admin(self, tenant_id: str, actor: str) -> bool:
        with self.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM tenant_admins WHERE tenant_id = ? AND actor = ?",
                (tenant_id, actor),
            )
        return cursor.rowcount > 0

    def is_tenant_admin(self, tenant_id: str, actor: str) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM tenant_admins WHERE tenant_id = ? AND actor = ?",
            (tenant_id, actor),
        ).fetchone()
        return row is not None

    def list_admins(self, tenant_id: str) -> list[str]:
        rows = self.conn.execute(
            "SELECT actor FROM tenant_admins WHERE tenant_id = ? ORDER BY actor",
            (tenant_id,),
        ).fetchall()
        return [r["actor"] for r in rows]

    # -- Work items ----------------------------------------------------------

    def _build_item(self, row: sqlite3.Row) -> WorkItem:
        return WorkItem(
            id=row["id"],
            tenant_id=row["tenant_id"],
            type=row["type"],
            title=row["title"],
            parent_id=row["parent_id"],
            children_ids=_load_children(row["children_ids"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def get_item(self, item_id: str) -> WorkItem | None:
        row = self.conn.execute("SELECT * FROM work_items WHERE id = ?", (item_id,)).fetchone()
        if row is None:
            return None
        return self._build_item(row)

    def list_items(self, tenant_id: str) -> list[WorkItem]:
        """All of a tenant's items, in creation order."""
        rows = self.conn.execute(
            "SELECT * FROM work_items WHERE tenant_id = ? ORDER BY created_at, rowid",
            (tenant_id,),
        ).fetchall()
        return [self._build_item(r) for r in rows]

    def create_item(
        self,
        tenant_id: str,
        item_type: str,
        title: str = "",
        *,
        parent_id: str | None = None,
        item_id: str | None = None,
    ) -> WorkItem:
        """Create a work item and register it in its parent's ``children_ids``."""
        self.get_tenant(tenant_id)
        canonical = normalize_type(item_type)
        if parent_id:
            parent = self.get_item(parent_id)
            if parent is None:
                msg = f"Invalid parent_id '{parent_id}': item not found"
                raise ValidationError(msg)
            if parent.tenant_id != tenant_id:
                msg = f"Invalid parent_id '{parent_id}': belongs to another tenant"
                raise ValidationError(msg)

        now = _now_iso()
        with self.transaction() as conn:
            new_id = item_id or self._generate_unique_id("work_items")
            conn.execute(
                "INSERT INTO work_items (id, tenant_id, type, title, parent_id, children_ids, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, '[]', ?, ?)",
                (new_id, tenant_id, canonical, title, parent_id or None, now, now),
            )
            if parent_id:
                self.add_child(parent_id, new_id)
        item = self.get_item(new_id)
        assert item is not None
        return item

    def import_items(self, tenant_id: str, records: Iterable[Mapping[str, Any]]) -> int:
        """Load raw item records verbatim into a tenant.

        Parent links are not validated, so snapshots that already violate a
        taxonomy (or point at missing parents) can be loaded for scanning.
        Records without ``childrenIds`` get them derived from the batch's
        parent links. Accepts camelCase or snake_case keys. Returns the count.
        """
        self.get_tenant(tenant_id)
        prepared: list[dict[str, Any]] = []
        for index, record in enumerate(records):
            if not isinstance(record, Mapping):
                msg = f"Record {index} must be an object"
                raise ValidationError(msg)
            item_id = record.get("id")
            if item_id is not None and (not isinstance(item_id, str) or not item_id):
                msg = f"Record {index}: id must be a non-empty string"
                raise ValidationError(msg)
            parent_id = record.get("parentId", record.get("parent_id"))
            if parent_id is not None and not isinstance(parent_id, str):
                msg = f"Record {index}: parentId must be a string or null"
                raise ValidationError(msg)
            children = record.get("childrenIds", record.get("children_ids"))
            if children is not None and (not isinstance(children, list) or not all(isinstance(c, str) for c in children)):
                msg = f"Record {index}: childrenIds must be a list of strings"
                raise ValidationError(msg)
            prepared.append(
                {
                    "id": item_id,
                    "type": normalize_type(record.get("type"), context=f"Record {index} type"),
                    "title": str(record.get("title", "")),
                    "parent_id": parent_id,
                    "children_ids": _dedupe(children) if children is not None else None,
                }
            )

        derived: dict[str, list[str]] = {}
        for rec in prepared:
            if rec["id"] is not None and rec["parent_id"] is not None:
                derived.setdefault(rec["parent_id"], []).append(rec["id"])

        now = _now_iso()
        with self.transaction() as conn:
            for rec in prepared:
                item_id = rec["id"] if rec["id"] is not None else self._generate_unique_id("work_items")
                children = rec["children_ids"] if rec["children_ids"] is not None else derived.get(item_id, [])
                conn.execute(
                    "INSERT INTO work_items (id, tenant_id, type, title, parent_id, children_ids, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (item_id, tenant_id, rec["type"], rec["title"], rec["parent_id"], json.dumps(children), now, now),
                )
        logger.info("Imported %d items", len(prepared), extra={"tenant_id": tenant_id})
        return len(prepared)

    def _write_children(self, parent_id: str, children: list[str]) -> None:
        self.conn.execute(
            "UPDATE work_items SET children_ids = ?, updated_at = ? WHERE id = ?",
            (json.dumps(children), _now_iso(), parent_id),
        )

    def add_child(self, parent_id: str, child_id: str, *, position: int | None = None) -> bool:
        """Insert *child_id* into the parent's ``children_ids`` if absent.

        Appends by default; *position* inserts at that index (clamped). Must
        run inside :meth:`transaction`. Returns False when the parent no
        longer exists.
        """
        parent = self.get_item(parent_id)
        if parent is None:
            return False
        if child_id not in parent.children_ids:
            children = list(parent.children_ids)
            if position is None:
                children.append(child_id)
            else:
                children.insert(max(0, min(position, len(children))), child_id)
            self._write_children(parent_id, _dedupe(children))
        return True

    def remove_child(self, parent_id: str, child_id: str) -> int | None:
        """Drop *child_id* from the parent's ``children_ids``.

        Returns the index it held, or None when the parent no longer exists or
        did not list it. Must run inside :meth:`transaction`.
        """
        parent = self.get_item(parent_id)
        if parent is None or child_id not in parent.children_ids:
            return None
        position = parent.children_ids.index(child_id)
        self._write_children(parent_id, [c for c in parent.children_ids if c != child_id])
        return position

    def set_parent(self, item_id: str, parent_id: str | None) -> None:
        """Point *item_id* at *parent_id*. Must run inside :meth:`transaction`."""
        cursor = self.conn.execute(
            "UPDATE work_items SET parent_id = ?, updated_at = ? WHERE id = ?",
            (parent_id, _now_iso(), item_id),
        )
        if cursor.rowcount == 0:
            raise KeyError(item_id)
