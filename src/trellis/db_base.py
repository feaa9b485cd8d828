"""Shared utilities, types, and Protocol for DB mixins."""

from __future__ import annotations

import sqlite3
from contextlib import AbstractContextManager
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from trellis.core import WorkItem


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class DBMixinProtocol(Protocol):
    """Shared attributes and methods that DB mixins access via self.

    Mixins inherit this Protocol so mypy can type-check self.conn,
    self.get_item(), etc. without ``type: ignore`` on every call.
    Actual implementations are provided by TrellisDB at composition time.
    """

    db_path: Path
    prefix: str
    _conn: sqlite3.Connection | None

    @property
    def conn(self) -> sqlite3.Connection: ...

    def get_item(self, item_id: str) -> WorkItem | None: ...

    def transaction(self) -> AbstractContextManager[sqlite3.Connection]: ...

    def _generate_unique_id(self, table: str, infix: str = "") -> str: ...
