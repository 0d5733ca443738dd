#!/usr/bin/env python3
"""
KUBEAPPLY DEPENDENCY ORDERER
----------------------------
Produces a deterministic, total order over a batch of desired objects so that
prerequisites (namespaces, secrets, RBAC, ...) reach the cluster before the
workloads that depend on them.

Key chain, applied left to right until a tie breaks:
    namespace -> kind priority -> apiVersion -> name -> generateName -> uid

Author: KubeApply Team
Date: 2026-10-18
"""

from types import MappingProxyType
from typing import Iterable, List, Mapping, Sequence, Tuple

from kubeapply.core.models import KubeObject

DEFAULT_KIND_ORDER: Tuple[str, ...] = (
    "Namespace",
    "ResourceQuota",
    "LimitRange",
    "PodSecurityPolicy",
    "Secret",
    "ConfigMap",
    "StorageClass",
    "PersistentVolume",
    "PersistentVolumeClaim",
    "ServiceAccount",
    "CustomResourceDefinition",
    "ClusterRole",
    "ClusterRoleBinding",
    "Role",
    "RoleBinding",
    "Service",
    "DaemonSet",
    "Pod",
    "ReplicationController",
    "ReplicaSet",
    "Deployment",
    "StatefulSet",
    "Job",
    "CronJob",
    "Ingress",
    "APIService",
)


class KindPriorityTable:
    """Read-only kind -> rank table. Unranked kinds share the rank after the last entry."""

    def __init__(self, kinds: Sequence[str] = DEFAULT_KIND_ORDER):
        self._ranks: Mapping[str, int] = MappingProxyType(
            {kind: rank for rank, kind in enumerate(kinds)}
        )

    def rank(self, kind: str) -> int:
        return self._ranks.get(kind, len(self._ranks))

    def __contains__(self, kind: str) -> bool:
        return kind in self._ranks

    def __len__(self) -> int:
        return len(self._ranks)


class DependencyOrderer:
    """
    Sorts objects with a stable sort over the key chain. Objects sharing every
    key level keep their relative input order.
    """

    def __init__(self, table: KindPriorityTable):
        self.table = table

    def sort_key(self, obj: KubeObject) -> Tuple:
        return (
            obj.namespace,
            self.table.rank(obj.kind),
            # Unranked kinds fall back to lexical kind order
            obj.kind,
            obj.api_version,
            obj.name,
            obj.generate_name,
            obj.uid,
        )

    def order(self, objects: Iterable[KubeObject]) -> List[KubeObject]:
        return sorted(objects, key=self.sort_key)
