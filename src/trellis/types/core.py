"""Foundational TypedDicts for dataclass to_dict() returns."""

from __future__ import annotations

from typing import NewType, TypedDict

ISOTimestamp = NewType("ISOTimestamp", str)


class ProjectConfig(TypedDict, total=False):
    """Shape of .trellis/config.json."""

    prefix: str
    version: int
    default_preset: str
    actor: str
    log_level: str


class TenantDict(TypedDict):
    id: str
    name: str
    preset_key: str
    created_at: ISOTimestamp
    updated_at: ISOTimestamp


class WorkItemDict(TypedDict):
    id: str
    tenant_id: str
    type: str
    title: str
    parent_id: str | None
    children_ids: list[str]
    created_at: ISOTimestamp
    updated_at: ISOTimestamp
