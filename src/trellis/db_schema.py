"""Database schema definitions for trellis.

Contains the canonical SQL schema and the current schema version constant.
"""

from __future__ import annotations

SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS tenants (
    id          TEXT PRIMARY KEY,
    name        TEXT NOT NULL,
    preset_key  TEXT NOT NULL DEFAULT '',
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS tenant_admins (
    tenant_id   TEXT NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
    actor       TEXT NOT NULL,
    created_at  TEXT NOT NULL,
    PRIMARY KEY (tenant_id, actor)
);

-- parent_id is deliberately not a foreign key: imported snapshots may
-- reference parents that no longer exist, and the scanner reports them.
CREATE TABLE IF NOT EXISTS work_items (
    id            TEXT PRIMARY KEY,
    tenant_id     TEXT NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
    type          TEXT NOT NULL,
    title         TEXT NOT NULL DEFAULT '',
    parent_id     TEXT,
    children_ids  TEXT NOT NULL DEFAULT '[]',
    created_at    TEXT NOT NULL,
    updated_at    TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_work_items_tenant ON work_items(tenant_id, created_at, id);
CREATE INDEX IF NOT EXISTS idx_work_items_parent ON work_items(parent_id);
CREATE INDEX IF NOT EXISTS idx_work_items_type ON work_items(tenant_id, type);

CREATE TABLE IF NOT EXISTS migration_jobs (
    id                  TEXT PRIMARY KEY,
    tenant_id           TEXT NOT NULL REFERENCES tenants(id) ON DELETE CASCADE,
    from_preset_key     TEXT NOT NULL DEFAULT '',
    to_preset_key       TEXT NOT NULL,
    mode                TEXT NOT NULL,
    status              TEXT NOT NULL,
    actor               TEXT NOT NULL DEFAULT '',
    started_at          TEXT NOT NULL,
    finished_at         TEXT,
    progress_total      INTEGER NOT NULL DEFAULT 0,
    progress_done       INTEGER NOT NULL DEFAULT 0,
    moved_items         INTEGER NOT NULL DEFAULT 0,
    flagged_for_review  INTEGER NOT NULL DEFAULT 0,
    invalid_items       INTEGER NOT NULL DEFAULT 0,
    errors              TEXT NOT NULL DEFAULT '[]',

    CHECK (mode IN ('DRY_RUN', 'APPLY')),
    CHECK (status IN ('RUNNING', 'COMPLETED', 'FAILED', 'ROLLED_BACK'))
);

CREATE INDEX IF NOT EXISTS idx_migration_jobs_tenant ON migration_jobs(tenant_id, started_at DESC);

CREATE TABLE IF NOT EXISTS migration_moves (
    job_id          TEXT NOT NULL REFERENCES migration_jobs(id) ON DELETE CASCADE,
    seq             INTEGER NOT NULL,
    item_id         TEXT NOT NULL,
    prev_parent_id  TEXT,
    prev_position   INTEGER,
    next_parent_id  TEXT,
    moved_at        TEXT NOT NULL,
    moved_by        TEXT NOT NULL DEFAULT '',
    PRIMARY KEY (job_id, seq)
);

CREATE TABLE IF NOT EXISTS migration_reports (
    job_id        TEXT PRIMARY KEY REFERENCES migration_jobs(id) ON DELETE CASCADE,
    tenant_id     TEXT NOT NULL,
    issues        TEXT NOT NULL DEFAULT '[]',
    review_queue  TEXT NOT NULL DEFAULT '[]',
    moved_items   TEXT NOT NULL DEFAULT '[]',
    generated_at  TEXT NOT NULL
);
"""

CURRENT_SCHEMA_VERSION = 1
