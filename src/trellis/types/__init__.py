# IMPORT CONSTRAINT: types/ modules must only import from typing, stdlib, and each other.
# NEVER import from core.py, db_base.py, or any mixin; these modules import from here.
"""Typed return-value contracts for trellis core, service and API layers."""

from __future__ import annotations

from trellis.types.core import (
    ISOTimestamp,
    ProjectConfig,
    TenantDict,
    WorkItemDict,
)
from trellis.types.migration import (
    JobProgress,
    JobSummary,
    MigrationJobDict,
    MigrationReportDict,
    MigrationResult,
    MovedItemDict,
    MoveRecordDict,
    RecommendedMoveDict,
    ReviewItemDict,
    ScanIssueDict,
    ScanResultDict,
)

__all__ = [
    "ISOTimestamp",
    "JobProgress",
    "JobSummary",
    "MigrationJobDict",
    "MigrationReportDict",
    "MigrationResult",
    "MoveRecordDict",
    "MovedItemDict",
    "ProjectConfig",
    "RecommendedMoveDict",
    "ReviewItemDict",
    "ScanIssueDict",
    "ScanResultDict",
    "TenantDict",
    "WorkItemDict",
]
