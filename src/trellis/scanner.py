"""Compatibility scan: classify a tenant snapshot against a target preset.

Pure and deterministic. Given the same items (in the same order) and the same
preset, :func:`scan_compatibility` always returns the same result. It never
reads from or writes to the database.

Per item:

* a type outside ``preset.enabled_types`` yields a WARN ``DISABLED_TYPE``
  issue and nothing else;
* a ``parent_id`` that does not resolve inside the snapshot yields an ERROR
  ``INVALID_PARENT`` issue and a review-queue entry;
* a parent whose type may not contain the item's type yields an ERROR
  ``INVALID_PARENT`` issue, then a replacement parent is searched for:

  - candidates are the other items whose type is enabled and may contain the
    item's type;
  - exactly one candidate under the item's product ancestor -> HIGH move;
  - otherwise exactly one candidate tenant-wide -> LOW move;
  - otherwise the item goes to the review queue with the candidate count.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from trellis.presets import ANCHOR_TYPE, Preset
from trellis.types.migration import (
    Confidence,
    IssueSeverity,
    IssueType,
    RecommendedMoveDict,
    ReviewItemDict,
    ScanIssueDict,
    ScanResultDict,
)

if TYPE_CHECKING:
    from trellis.core import WorkItem

REASON_MISSING_PARENT = "Missing parent"
REASON_NO_UNIQUE_CANDIDATE = "Invalid parent; multiple or no candidate new parents"


@dataclass(frozen=True)
class ScanIssue:
    type: IssueType
    severity: IssueSeverity
    item_id: str
    item_type: str
    message: str

    def to_dict(self) -> ScanIssueDict:
        return {
            "type": self.type,
            "severity": self.severity,
            "item_id": self.item_id,
            "item_type": self.item_type,
            "message": self.message,
        }


@dataclass(frozen=True)
class ReviewItem:
    item_id: str
    item_type: str
    reason: str
    suggested_actions: tuple[dict[str, Any], ...] = ()

    def to_dict(self) -> ReviewItemDict:
        return {
            "item_id": self.item_id,
            "item_type": self.item_type,
            "reason": self.reason,
            "suggested_actions": [dict(a) for a in self.suggested_actions],
        }


@dataclass(frozen=True)
class RecommendedMove:
    item_id: str
    from_parent_id: str | None
    to_parent_id: str | None
    confidence: Confidence

    def to_dict(self) -> RecommendedMoveDict:
        return {
            "item_id": self.item_id,
            "from_parent_id": self.from_parent_id,
            "to_parent_id": self.to_parent_id,
            "confidence": self.confidence,
        }


@dataclass
class ScanResult:
    issues: list[ScanIssue] = field(default_factory=list)
    review_queue: list[ReviewItem] = field(default_factory=list)
    recommended_moves: list[RecommendedMove] = field(default_factory=list)

    @property
    def high_confidence_moves(self) -> list[RecommendedMove]:
        return [m for m in self.recommended_moves if m.confidence == "HIGH"]

    @property
    def error_count(self) -> int:
        return sum(1 for i in self.issues if i.severity == "ERROR")

    def to_dict(self) -> ScanResultDict:
        return {
            "issues": [i.to_dict() for i in self.issues],
            "review_queue": [r.to_dict() for r in self.review_queue],
            "recommended_moves": [m.to_dict() for m in self.recommended_moves],
        }


class _SnapshotIndex:
    """Id, type and product-ancestor lookups built once per scan."""

    def __init__(self, items: Sequence[WorkItem]) -> None:
        self.by_id: dict[str, WorkItem] = {}
        self.by_type: dict[str, list[WorkItem]] = {}
        for item in items:
            # First occurrence wins, as a linear search would find it.
            if item.id in self.by_id:
                continue
            self.by_id[item.id] = item
            self.by_type.setdefault(item.type, []).append(item)
        self._product_of: dict[str, str | None] = {}

    def product_ancestor(self, item_id: str) -> str | None:
        """Nearest item of the anchor type reached by following parent links.

        An anchor-type item is its own product ancestor. Cycles in the parent
        chain end the walk with no ancestor.
        """
        if item_id in self._product_of:
            return self._product_of[item_id]
        chain: list[str] = []
        seen: set[str] = set()
        result: str | None = None
        current = self.by_id.get(item_id)
        while current is not None and current.id not in seen:
            if current.id in self._product_of:
                result = self._product_of[current.id]
                break
            seen.add(current.id)
            chain.append(current.id)
            if current.type == ANCHOR_TYPE:
                result = current.id
                break
            current = self.by_id.get(current.parent_id) if current.parent_id else None
        for visited in chain:
            self._product_of[visited] = result
        return result


def _candidate_parents(item: WorkItem, index: _SnapshotIndex, preset: Preset) -> list[WorkItem]:
    candidates: list[WorkItem] = []
    for parent_type in sorted(preset.parent_types_for(item.type)):
        if not preset.is_enabled(parent_type):
            continue
        for other in index.by_type.get(parent_type, []):
            if other.id != item.id and other.tenant_id == item.tenant_id:
                candidates.append(other)
    return candidates


def scan_compatibility(items: Sequence[WorkItem], preset: Preset) -> ScanResult:
    """Classify every item as compliant, fixable (recommended move) or ambiguous."""
    index = _SnapshotIndex(items)
    result = ScanResult()

    for item in items:
        if not preset.is_enabled(item.type):
            result.issues.append(
                ScanIssue(
                    type="DISABLED_TYPE",
                    severity="WARN",
                    item_id=item.id,
                    item_type=item.type,
                    message=f'Item type "{item.type}" is not in preset enabled types',
                )
            )

        if not item.parent_id:
            continue

        parent = index.by_id.get(item.parent_id)
        if parent is None:
            result.issues.append(
                ScanIssue(
                    type="INVALID_PARENT",
                    severity="ERROR",
                    item_id=item.id,
                    item_type=item.type,
                    message=f"Parent {item.parent_id} not found",
                )
            )
            result.review_queue.append(
                ReviewItem(
                    item_id=item.id,
                    item_type=item.type,
                    reason=REASON_MISSING_PARENT,
                    suggested_actions=({"action": "reparent", "options": "find_valid_parent"},),
                )
            )
            continue

        if preset.allows_child(parent.type, item.type):
            continue

        result.issues.append(
            ScanIssue(
                type="INVALID_PARENT",
                severity="ERROR",
                item_id=item.id,
                item_type=item.type,
                message=f'Parent type "{parent.type}" cannot have child type "{item.type}" in preset',
            )
        )

        candidates = _candidate_parents(item, index, preset)
        product_id = index.product_ancestor(item.id)
        if product_id is None:
            same_product = candidates
        else:
            same_product = [c for c in candidates if index.product_ancestor(c.id) == product_id]

        if len(same_product) == 1:
            chosen, confidence = same_product[0], "HIGH"
        elif len(candidates) == 1:
            chosen, confidence = candidates[0], "LOW"
        else:
            result.review_queue.append(
                ReviewItem(
                    item_id=item.id,
                    item_type=item.type,
                    reason=REASON_NO_UNIQUE_CANDIDATE,
                    suggested_actions=({"action": "reparent", "candidates": len(candidates)},),
                )
            )
            continue

        result.recommended_moves.append(
            RecommendedMove(
                item_id=item.id,
                from_parent_id=item.parent_id,
                to_parent_id=chosen.id,
                confidence=confidence,  # type: ignore[arg-type]
            )
        )

    return result
