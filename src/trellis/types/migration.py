"""TypedDicts for scan results, migration jobs, move logs and reports."""

from __future__ import annotations

from typing import Any, Literal, TypedDict

from trellis.types.core import ISOTimestamp

IssueType = Literal["INVALID_PARENT", "DISABLED_TYPE"]
IssueSeverity = Literal["INFO", "WARN", "ERROR"]
Confidence = Literal["HIGH", "LOW"]
MigrationMode = Literal["DRY_RUN", "APPLY"]
JobStatus = Literal["RUNNING", "COMPLETED", "FAILED", "ROLLED_BACK"]


class ScanIssueDict(TypedDict):
    type: IssueType
    severity: IssueSeverity
    item_id: str
    item_type: str
    message: str


class ReviewItemDict(TypedDict):
    item_id: str
    item_type: str
    reason: str
    suggested_actions: list[dict[str, Any]]


class RecommendedMoveDict(TypedDict):
    item_id: str
    from_parent_id: str | None
    to_parent_id: str | None
    confidence: Confidence


class ScanResultDict(TypedDict):
    issues: list[ScanIssueDict]
    review_queue: list[ReviewItemDict]
    recommended_moves: list[RecommendedMoveDict]


class MovedItemDict(TypedDict):
    item_id: str
    from_parent_id: str | None
    to_parent_id: str | None


class JobProgress(TypedDict):
    total: int
    done: int


class JobSummary(TypedDict):
    moved_items: int
    flagged_for_review: int
    invalid_items: int


class MigrationJobDict(TypedDict):
    id: str
    tenant_id: str
    from_preset_key: str
    to_preset_key: str
    mode: MigrationMode
    status: JobStatus
    actor: str
    started_at: ISOTimestamp
    finished_at: ISOTimestamp | None
    progress: JobProgress
    summary: JobSummary
    errors: list[str]


class MoveRecordDict(TypedDict):
    job_id: str
    seq: int
    item_id: str
    prev_parent_id: str | None
    prev_position: int | None
    next_parent_id: str | None
    moved_at: ISOTimestamp
    moved_by: str


class MigrationReportDict(TypedDict):
    job_id: str
    tenant_id: str
    issues: list[ScanIssueDict]
    review_queue: list[ReviewItemDict]
    moved_items: list[MovedItemDict]
    generated_at: ISOTimestamp


class MigrationResult(TypedDict):
    """Bounded response returned to callers of ``migrate()``."""

    job_id: str
    tenant_id: str
    status: JobStatus
    summary: JobSummary
