#!/usr/bin/env python3
"""
KUBEAPPLY CORE MODELS
---------------------
Defines the fundamental data structures used across the KubeApply engine.
A KubeObject wraps the plain mapping produced by the manifest source (or
returned by the cluster) and exposes the metadata fields the apply engine
reasons about.

Author: KubeApply Team
Date: 2026-10-18
"""

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

# Store-visible annotation and label keys
VENDOR = "kubeapply.io"
ANNOTATION_MANAGED = f"{VENDOR}/managed"
ANNOTATION_GC_TAG = f"{VENDOR}/garbage-collect-tag"
ANNOTATION_GC_STRATEGY = f"{VENDOR}/garbage-collect-strategy"
LABEL_COMPONENT = f"{VENDOR}/component"
LABEL_DEPLOY_MANAGER = "app.kubernetes.io/deploy-manager"
DEPLOY_MANAGER = "kubeapply"

# Garbage collection strategies
GC_STRATEGY_AUTO = "auto"
GC_STRATEGY_IGNORE = "ignore"


@dataclass(frozen=True)
class ObjectIdentity:
    """(namespace, kind, name) triple naming a resource inside the store."""
    namespace: str
    kind: str
    name: str

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.kind} {self.namespace}.{self.name}"
        return f"{self.kind} {self.name}"


@dataclass
class KubeObject:
    """
    A structured resource record. Used both for desired objects (built fresh
    from the manifest source on every run) and for live objects read back
    from the cluster.
    """
    body: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KubeObject":
        return cls(body=copy.deepcopy(dict(data)))

    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self.body)

    def copy(self) -> "KubeObject":
        return KubeObject.from_dict(self.body)

    # --- Type information ---

    @property
    def api_version(self) -> str:
        return self.body.get("apiVersion") or ""

    @property
    def kind(self) -> str:
        return self.body.get("kind") or ""

    @property
    def group(self) -> str:
        if "/" in self.api_version:
            return self.api_version.split("/", 1)[0]
        return ""

    # --- Metadata accessors ---

    @property
    def metadata(self) -> Dict[str, Any]:
        meta = self.body.get("metadata")
        return meta if isinstance(meta, dict) else {}

    def _mutable_metadata(self) -> Dict[str, Any]:
        meta = self.body.get("metadata")
        if not isinstance(meta, dict):
            meta = {}
            self.body["metadata"] = meta
        return meta

    @property
    def name(self) -> str:
        return self.metadata.get("name") or ""

    @property
    def generate_name(self) -> str:
        return self.metadata.get("generateName") or ""

    @property
    def namespace(self) -> str:
        return self.metadata.get("namespace") or ""

    @namespace.setter
    def namespace(self, value: str):
        if value:
            self._mutable_metadata()["namespace"] = value
        else:
            self.metadata.pop("namespace", None)

    @property
    def uid(self) -> str:
        return self.metadata.get("uid") or ""

    @uid.setter
    def uid(self, value: str):
        if value:
            self._mutable_metadata()["uid"] = value
        else:
            self.metadata.pop("uid", None)

    @property
    def resource_version(self) -> str:
        return self.metadata.get("resourceVersion") or ""

    @resource_version.setter
    def resource_version(self, value: str):
        if value:
            self._mutable_metadata()["resourceVersion"] = value
        else:
            self.metadata.pop("resourceVersion", None)

    @property
    def annotations(self) -> Dict[str, str]:
        """The object's own annotation map; mutations travel with the object."""
        annotations = self.metadata.get("annotations")
        if not isinstance(annotations, dict):
            annotations = {}
            self._mutable_metadata()["annotations"] = annotations
        return annotations

    @property
    def labels(self) -> Dict[str, str]:
        labels = self.metadata.get("labels")
        if not isinstance(labels, dict):
            labels = {}
            self._mutable_metadata()["labels"] = labels
        return labels

    def get_annotation(self, key: str) -> Optional[str]:
        annotations = self.metadata.get("annotations") or {}
        return annotations.get(key)

    def set_annotation(self, key: str, value: str):
        self.annotations[key] = value

    def set_label(self, key: str, value: str):
        self.labels[key] = value

    @property
    def owner_references(self) -> List[Dict[str, Any]]:
        return self.metadata.get("ownerReferences") or []

    def has_controller_owner(self) -> bool:
        return any(ref.get("controller") is True for ref in self.owner_references)

    # --- Identity & description ---

    @property
    def identity(self) -> ObjectIdentity:
        return ObjectIdentity(self.namespace, self.kind, self.name or self.generate_name)

    def fq_name(self) -> str:
        """Namespace-qualified name, e.g. 'web.frontend' or 'frontend'."""
        name = self.name or self.generate_name
        if self.namespace:
            return f"{self.namespace}.{name}"
        return name

    def describe(self) -> str:
        return f"{self.kind.lower()} {self.fq_name()}"

