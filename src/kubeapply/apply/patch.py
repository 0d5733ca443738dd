#!/usr/bin/env python3
"""
KUBEAPPLY THREE-WAY PATCH
-------------------------
Computes the patch that moves a live object to its desired state while
leaving alone every field the cluster (or another actor) owns:

    patch = deletions(original -> modified)  +  delta(current -> modified)

* original: the pristine snapshot kubeapply applied last time
* modified: the desired object as rendered now
* current:  the live object as the store holds it

Two variants are supported. The strategic variant reads per-field patch
metadata (list merge keys, merge vs replace) from the store's published
OpenAPI schema. The JSON merge variant needs no schema: maps merge
recursively, lists are replaced wholesale, and a precondition guards
against apiVersion / kind / name changes.

Author: KubeApply Team
Date: 2026-10-18
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from kubeapply.core.errors import MergeError, PreconditionFailedError

STRATEGIC_MERGE = "strategic-merge"
JSON_MERGE = "json-merge"

CONTENT_TYPES = {
    STRATEGIC_MERGE: "application/strategic-merge-patch+json",
    JSON_MERGE: "application/merge-patch+json",
}

GVK_EXTENSION = "x-kubernetes-group-version-kind"
STRATEGY_EXTENSION = "x-kubernetes-patch-strategy"
MERGE_KEY_EXTENSION = "x-kubernetes-patch-merge-key"

DELETE_FROM_PRIMITIVE_LIST = "$deleteFromPrimitiveList/"
PATCH_DIRECTIVE = "$patch"


@dataclass
class PatchPlan:
    """The chosen patch variant, why it was chosen, and the patch itself."""
    patch_type: str
    reason: str
    patch: Dict[str, Any] = field(default_factory=dict)

    @property
    def content_type(self) -> str:
        return CONTENT_TYPES[self.patch_type]

    def is_empty(self) -> bool:
        return not self.patch

    def to_bytes(self) -> bytes:
        return json.dumps(self.patch, sort_keys=True, separators=(",", ":")).encode("utf-8")


# ---------------------------------------------------------------------------
# Patch metadata from the OpenAPI (v2) schema
# ---------------------------------------------------------------------------

class SchemaPatchMeta:
    """Patch metadata for one level of an object, backed by an OpenAPI schema node."""

    def __init__(self, schema: Dict[str, Any], definitions: Dict[str, Any]):
        self.definitions = definitions
        self.schema = self._resolve(schema)

    def _resolve(self, schema: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        seen = set()
        while isinstance(schema, dict) and "$ref" in schema:
            ref = schema["$ref"]
            if ref in seen:
                raise MergeError(f"circular schema reference {ref}")
            seen.add(ref)
            name = ref.rsplit("/", 1)[-1]
            if name not in self.definitions:
                raise MergeError(f"unresolved schema reference {ref}")
            schema = self.definitions[name]
        return schema if isinstance(schema, dict) else {}

    def lookup(self, key: str) -> Tuple[Optional["SchemaPatchMeta"], str, str]:
        """(child metadata, patch strategy, merge key) for a field of this level."""
        prop = (self.schema.get("properties") or {}).get(key)
        if prop is None:
            additional = self.schema.get("additionalProperties")
            if isinstance(additional, dict):
                return SchemaPatchMeta(additional, self.definitions), "", ""
            return None, "", ""

        strategy = prop.get(STRATEGY_EXTENSION, "")
        merge_key = prop.get(MERGE_KEY_EXTENSION, "")
        resolved = self._resolve(prop)
        if resolved.get("type") == "array":
            items = resolved.get("items")
            child = SchemaPatchMeta(items, self.definitions) if isinstance(items, dict) else None
            return child, strategy, merge_key
        return SchemaPatchMeta(resolved, self.definitions), strategy, merge_key

    @classmethod
    def for_kind(cls, document: Dict[str, Any], group: str, version: str,
                 kind: str) -> Tuple[Optional["SchemaPatchMeta"], str]:
        """
        Finds the definition published for group/version/kind. Returns the
        metadata (or None) and a human-readable reason for diagnostics.
        """
        definitions = document.get("definitions") or {}
        for name, definition in definitions.items():
            for gvk in definition.get(GVK_EXTENSION) or []:
                if (gvk.get("group", ""), gvk.get("version"), gvk.get("kind")) != (group, version, kind):
                    continue
                # Custom resources publish schemas but reject strategic patches
                if not name.startswith("io.k8s."):
                    return None, f"{kind} is a custom resource ({name})"
                return cls(definition, definitions), f"schema {name}"
        return None, f"no schema published for {group or 'core'}/{version} {kind}"


# ---------------------------------------------------------------------------
# Generic JSON merge patch
# ---------------------------------------------------------------------------

def _diff_json(source: Dict[str, Any], target: Dict[str, Any],
               ignore_deletions: bool, ignore_changes: bool) -> Dict[str, Any]:
    patch: Dict[str, Any] = {}
    for key, target_value in target.items():
        if key not in source:
            if not ignore_changes:
                patch[key] = target_value
            continue
        source_value = source[key]
        if isinstance(source_value, dict) and isinstance(target_value, dict):
            sub = _diff_json(source_value, target_value, ignore_deletions, ignore_changes)
            if sub:
                patch[key] = sub
        elif source_value != target_value and not ignore_changes:
            patch[key] = target_value

    if not ignore_deletions:
        for key in source:
            if key not in target:
                patch[key] = None
    return patch


def _merge_json(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in overlay.items():
        if isinstance(merged.get(key), dict) and isinstance(value, dict):
            merged[key] = _merge_json(merged[key], value)
        else:
            merged[key] = value
    return merged


def _type_and_name(obj: Dict[str, Any]) -> Tuple[Any, Any, Any]:
    return obj.get("apiVersion"), obj.get("kind"), (obj.get("metadata") or {}).get("name")


def check_preconditions(original: Dict[str, Any], modified: Dict[str, Any], patch: Dict[str, Any]):
    """apiVersion, kind and metadata.name must not move."""
    changed = (
        "apiVersion" in patch
        or "kind" in patch
        or "name" in (patch.get("metadata") or {})
        or (original and _type_and_name(original) != _type_and_name(modified))
    )
    if changed:
        raise PreconditionFailedError("At least one of apiVersion, kind and name was changed")


def three_way_json_merge_patch(original: Dict[str, Any], modified: Dict[str, Any],
                               current: Dict[str, Any]) -> Dict[str, Any]:
    delta = _diff_json(current, modified, ignore_deletions=True, ignore_changes=False)
    deletions = _diff_json(original, modified, ignore_deletions=False, ignore_changes=True)
    patch = _merge_json(deletions, delta)
    check_preconditions(original, modified, patch)
    return patch


# ---------------------------------------------------------------------------
# Schema-aware strategic merge patch
# ---------------------------------------------------------------------------

def _is_keyed(items: List[Any], merge_key: str) -> bool:
    return all(isinstance(item, dict) and merge_key in item for item in items)


def _diff_keyed_list(source: List[Dict[str, Any]], target: List[Dict[str, Any]], merge_key: str,
                     meta: Optional[SchemaPatchMeta], ignore_deletions: bool,
                     ignore_changes: bool) -> List[Dict[str, Any]]:
    source_index = {item[merge_key]: item for item in source}
    target_keys = set()
    entries: List[Dict[str, Any]] = []

    for item in target:
        key = item[merge_key]
        target_keys.add(key)
        if key not in source_index:
            if not ignore_changes:
                entries.append(item)
            continue
        sub = _diff_strategic(source_index[key], item, meta, ignore_deletions, ignore_changes)
        if sub:
            sub[merge_key] = key
            entries.append(sub)

    if not ignore_deletions:
        for key in source_index:
            if key not in target_keys:
                entries.append({merge_key: key, PATCH_DIRECTIVE: "delete"})
    return entries


def _diff_strategic(source: Dict[str, Any], target: Dict[str, Any], meta: Optional[SchemaPatchMeta],
                    ignore_deletions: bool, ignore_changes: bool) -> Dict[str, Any]:
    patch: Dict[str, Any] = {}
    for key, target_value in target.items():
        child, strategy, merge_key = meta.lookup(key) if meta else (None, "", "")
        if key not in source:
            if not ignore_changes:
                patch[key] = target_value
            continue
        source_value = source[key]

        if isinstance(source_value, dict) and isinstance(target_value, dict):
            sub = _diff_strategic(source_value, target_value, child, ignore_deletions, ignore_changes)
            if sub:
                patch[key] = sub
        elif isinstance(source_value, list) and isinstance(target_value, list) and "merge" in strategy:
            if merge_key and _is_keyed(source_value, merge_key) and _is_keyed(target_value, merge_key):
                entries = _diff_keyed_list(source_value, target_value, merge_key, child,
                                           ignore_deletions, ignore_changes)
                if entries:
                    patch[key] = entries
            elif merge_key:
                if source_value != target_value and not ignore_changes:
                    patch[key] = target_value
            else:
                # Primitive lists merge as sets
                if not ignore_changes:
                    added = [v for v in target_value if v not in source_value]
                    if added:
                        patch[key] = added
                if not ignore_deletions:
                    removed = [v for v in source_value if v not in target_value]
                    if removed:
                        patch[DELETE_FROM_PRIMITIVE_LIST + key] = removed
        elif source_value != target_value and not ignore_changes:
            patch[key] = target_value

    if not ignore_deletions:
        for key in source:
            if key not in target:
                patch[key] = None
    return patch


def _merge_strategic(base: Dict[str, Any], overlay: Dict[str, Any],
                     meta: Optional[SchemaPatchMeta]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in overlay.items():
        existing = merged.get(key)
        child, strategy, merge_key = meta.lookup(key) if meta and not key.startswith("$") else (None, "", "")
        if isinstance(existing, dict) and isinstance(value, dict):
            merged[key] = _merge_strategic(existing, value, child)
        elif (isinstance(existing, list) and isinstance(value, list) and merge_key
              and _is_keyed(existing, merge_key) and _is_keyed(value, merge_key)):
            by_key = {item[merge_key]: item for item in existing}
            order = [item[merge_key] for item in existing]
            for item in value:
                k = item[merge_key]
                if k in by_key:
                    by_key[k] = _merge_strategic(by_key[k], item, child)
                else:
                    by_key[k] = item
                    order.append(k)
            merged[key] = [by_key[k] for k in order]
        elif isinstance(existing, list) and isinstance(value, list) and "merge" in strategy:
            merged[key] = existing + [v for v in value if v not in existing]
        else:
            merged[key] = value
    return merged


def three_way_strategic_merge_patch(original: Dict[str, Any], modified: Dict[str, Any],
                                    current: Dict[str, Any], meta: SchemaPatchMeta) -> Dict[str, Any]:
    delta = _diff_strategic(current, modified, meta, ignore_deletions=True, ignore_changes=False)
    deletions = _diff_strategic(original, modified, meta, ignore_deletions=False, ignore_changes=True)
    return _merge_strategic(deletions, delta, meta)


def create_patch(original: Dict[str, Any], modified: Dict[str, Any], current: Dict[str, Any],
                 meta: Optional[SchemaPatchMeta], reason: str) -> PatchPlan:
    """Runs the variant matching the available metadata."""
    if meta is not None:
        patch = three_way_strategic_merge_patch(original, modified, current, meta)
        return PatchPlan(STRATEGIC_MERGE, reason, patch)
    patch = three_way_json_merge_patch(original, modified, current)
    return PatchPlan(JSON_MERGE, reason, patch)
