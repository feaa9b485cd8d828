"""Work-item type enumeration and hierarchy presets.

A preset is a named taxonomy: which work-item types are enabled and which
parent -> child type pairs are legal. Presets arrive from callers as loosely
typed JSON; :func:`parse_preset` is the only way to turn such a payload into
a :class:`Preset`, so everything downstream (the scanner in particular) can
rely on a closed type set and a ``type -> frozenset[type]`` hierarchy.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from trellis.errors import ValidationError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Type enumeration
# ---------------------------------------------------------------------------

# Display order. Closed: anything else is rejected at the boundary.
CANONICAL_TYPES: tuple[str, ...] = (
    "company",
    "product",
    "epic",
    "feature",
    "story",
    "task",
    "bug",
    "initiative",
    "capability",
    "strategic-theme",
    "solution",
)
WORK_ITEM_TYPES: frozenset[str] = frozenset(CANONICAL_TYPES)

# Legacy spellings accepted on input.
TYPE_ALIASES: dict[str, str] = {"user-story": "story", "userstory": "story", "user_story": "story"}

# Product ancestors scope the candidate-parent search.
ANCHOR_TYPE = "product"


def normalize_type(value: Any, *, context: str = "type") -> str:
    """Return the canonical spelling of a work-item type or raise ValidationError."""
    if not isinstance(value, str) or not value.strip():
        msg = f"{context} must be a non-empty string"
        raise ValidationError(msg)
    cleaned = value.strip().lower()
    cleaned = TYPE_ALIASES.get(cleaned, cleaned)
    if cleaned not in WORK_ITEM_TYPES:
        msg = f"{context} contains unknown type: {value!r}. Valid types: {', '.join(CANONICAL_TYPES)}"
        raise ValidationError(msg)
    return cleaned


def _type_order(type_name: str) -> int:
    return CANONICAL_TYPES.index(type_name)


# ---------------------------------------------------------------------------
# Preset
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Preset:
    """A validated taxonomy. Build via :func:`parse_preset` or the built-in catalog."""

    key: str
    enabled_types: frozenset[str]
    hierarchy: Mapping[str, frozenset[str]]
    name: str = ""
    description: str = field(default="", compare=False)

    def is_enabled(self, type_name: str) -> bool:
        return type_name in self.enabled_types

    def allows_child(self, parent_type: str, child_type: str) -> bool:
        """True if *parent_type* may directly contain *child_type*."""
        return child_type in self.hierarchy.get(parent_type, frozenset())

    def parent_types_for(self, child_type: str) -> frozenset[str]:
        """All types that may legally contain *child_type*."""
        return frozenset(p for p, children in self.hierarchy.items() if child_type in children)

    def to_payload(self) -> dict[str, Any]:
        """Render back to the JSON payload shape accepted by :func:`parse_preset`."""
        return {
            "enabledTypes": sorted(self.enabled_types, key=_type_order),
            "hierarchy": {
                parent: sorted(children, key=_type_order)
                for parent, children in sorted(self.hierarchy.items(), key=lambda kv: _type_order(kv[0]))
            },
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "name": self.name or self.key,
            "description": self.description,
            **self.to_payload(),
        }


def parse_preset(payload: Any, *, key: str = "custom", name: str = "", description: str = "") -> Preset:
    """Validate and convert a loosely-typed preset payload.

    Accepts ``enabledTypes`` (or ``enabled_types``) as a non-empty list of
    type names and ``hierarchy`` as a mapping of parent type to a list of
    child types. Raises ValidationError listing every problem found.
    """
    if not isinstance(payload, Mapping):
        msg = "preset must be an object with enabledTypes and hierarchy"
        raise ValidationError(msg)

    errors: list[str] = []
    raw_enabled = payload.get("enabledTypes", payload.get("enabled_types"))
    raw_hierarchy = payload.get("hierarchy")

    enabled: set[str] = set()
    if not isinstance(raw_enabled, list) or not raw_enabled:
        errors.append("preset.enabledTypes must be a non-empty list")
    else:
        for value in raw_enabled:
            try:
                enabled.add(normalize_type(value, context="preset.enabledTypes"))
            except ValidationError as e:
                errors.append(str(e))

    hierarchy: dict[str, frozenset[str]] = {}
    if not isinstance(raw_hierarchy, Mapping):
        errors.append("preset.hierarchy must be an object mapping parent type to a list of child types")
    else:
        for raw_parent, raw_children in raw_hierarchy.items():
            try:
                parent = normalize_type(raw_parent, context="preset.hierarchy key")
            except ValidationError as e:
                errors.append(str(e))
                continue
            if not isinstance(raw_children, list):
                errors.append(f"preset.hierarchy.{parent} must be a list")
                continue
            children: set[str] = set()
            for raw_child in raw_children:
                try:
                    child = normalize_type(raw_child, context=f"preset.hierarchy.{parent}")
                except ValidationError as e:
                    errors.append(str(e))
                    continue
                if child == parent:
                    errors.append(f"preset.hierarchy.{parent} must not contain self-reference")
                    continue
                children.add(child)
            hierarchy[parent] = hierarchy.get(parent, frozenset()) | frozenset(children)

    if errors:
        raise ValidationError("; ".join(errors))
    return Preset(
        key=key,
        enabled_types=frozenset(enabled),
        hierarchy=hierarchy,
        name=name,
        description=description,
    )


def validate_preset(preset: Preset) -> list[str]:
    """Strict consistency check for stored presets. Returns a list of problems.

    Caller-supplied migration payloads only need to parse; catalog presets
    must also only reference enabled types as children.
    """
    problems: list[str] = []
    for parent, children in preset.hierarchy.items():
        for child in sorted(children, key=_type_order):
            if child not in preset.enabled_types:
                problems.append(f"hierarchy.{parent} has child {child} which is not in enabledTypes")
    return problems


# ---------------------------------------------------------------------------
# Built-in catalog
# ---------------------------------------------------------------------------

DEFAULT_PRESET_KEY = "safe"

_BUILTIN_DEFINITIONS: list[dict[str, Any]] = [
    {
        "key": "default",
        "name": "Default",
        "description": "Company, Product, Epic, Feature, Story, Task, Bug with permissive nesting.",
        "enabledTypes": ["company", "product", "epic", "feature", "story", "task", "bug"],
        "hierarchy": {
            "company": ["product"],
            "product": ["epic", "feature"],
            "epic": ["feature", "story"],
            "feature": ["story"],
            "story": ["task", "bug"],
        },
    },
    {
        "key": "safe",
        "name": "SAFe",
        "description": "Scaled Agile Framework: Epic, Feature, Story, Task, Bug.",
        "enabledTypes": ["company", "product", "epic", "feature", "story", "task", "bug"],
        "hierarchy": {
            "company": ["product"],
            "product": ["epic"],
            "epic": ["feature"],
            "feature": ["story"],
            "story": ["task", "bug"],
        },
    },
    {
        "key": "less",
        "name": "LeSS",
        "description": "Large-Scale Scrum: Feature, Story, Task, Bug (no Epic).",
        "enabledTypes": ["company", "product", "feature", "story", "task", "bug"],
        "hierarchy": {
            "company": ["product"],
            "product": ["feature"],
            "feature": ["story"],
            "story": ["task", "bug"],
        },
    },
    {
        "key": "spotify",
        "name": "Spotify",
        "description": "Squad/tribe style: Feature, Story, Task, Bug.",
        "enabledTypes": ["company", "product", "feature", "story", "task", "bug"],
        "hierarchy": {
            "company": ["product"],
            "product": ["feature"],
            "feature": ["story", "bug"],
            "story": ["task", "bug"],
        },
    },
    {
        "key": "apple",
        "name": "Apple",
        "description": "Initiative, Project (epic), Story, Task, Bug.",
        "enabledTypes": ["company", "product", "initiative", "epic", "story", "task", "bug"],
        "hierarchy": {
            "company": ["product"],
            "product": ["initiative"],
            "initiative": ["epic"],
            "epic": ["story"],
            "story": ["task", "bug"],
        },
    },
    {
        "key": "dad",
        "name": "Disciplined Agile (DaD)",
        "description": "Lean: Feature, Story, Task, Bug.",
        "enabledTypes": ["company", "product", "feature", "story", "task", "bug"],
        "hierarchy": {
            "company": ["product"],
            "product": ["feature"],
            "feature": ["story", "task", "bug"],
            "story": ["task", "bug"],
        },
    },
]


def _load_builtins() -> dict[str, Preset]:
    presets: dict[str, Preset] = {}
    for definition in _BUILTIN_DEFINITIONS:
        preset = parse_preset(
            definition,
            key=definition["key"],
            name=definition["name"],
            description=definition["description"],
        )
        problems = validate_preset(preset)
        if problems:
            msg = f"Invalid built-in preset {preset.key}: {'; '.join(problems)}"
            raise RuntimeError(msg)
        presets[preset.key] = preset
    logger.debug("Loaded %d built-in presets", len(presets))
    return presets


BUILTIN_PRESETS: dict[str, Preset] = _load_builtins()


def get_preset(key: str) -> Preset:
    """Return a built-in preset by key. Raises KeyError if unknown."""
    try:
        return BUILTIN_PRESETS[key]
    except KeyError:
        msg = f"Unknown preset: {key}"
        raise KeyError(msg) from None


def list_presets() -> list[Preset]:
    return list(BUILTIN_PRESETS.values())


def resolve_preset(to_preset_key: str, payload: Any = None) -> Preset:
    """Use *payload* when given, else the built-in preset named *to_preset_key*."""
    if payload is not None:
        return parse_preset(payload, key=to_preset_key)
    try:
        return get_preset(to_preset_key)
    except KeyError:
        msg = f"Unknown preset {to_preset_key!r} and no preset payload supplied"
        raise ValidationError(msg) from None
