#!/usr/bin/env python3
"""
KUBEAPPLY ENGINE - The Reconciler
---------------------------------
ApplyEngine drives one apply run:

    source -> order -> annotate/tag -> merge -> upsert -> collect UIDs -> gc

Objects are reconciled strictly one after another in dependency order. Any
per-object failure aborts the run and is raised as ApplyError naming the
phase (annotate / merge / upsert / gc) and the object.

DeleteEngine removes every declared object from the cluster, in reverse
dependency order.

Author: KubeApply Team
Date: 2026-10-18
"""

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Set

from kubeapply.apply.codec import tag_managed
from kubeapply.apply.gc import GarbageCollector, delete_options
from kubeapply.apply.merger import DefaultObjectMerger, ObjectMerger
from kubeapply.apply.orderer import DependencyOrderer, KindPriorityTable
from kubeapply.apply.upserter import (
    BACKOFF_SECONDS,
    MAX_ATTEMPTS,
    PATCHED,
    UNCHANGED,
    DefaultUpserter,
    Upserter,
)
from kubeapply.cluster.client import ResourceClientFactory
from kubeapply.cluster.discovery import Discovery
from kubeapply.core.errors import ApplyError, KubeApplyError, NotFoundError
from kubeapply.core.models import ANNOTATION_GC_TAG, KubeObject
from kubeapply.source.manifests import ObjectSource

logger = logging.getLogger("kubeapply.apply.engine")

PHASE_SOURCE = "source"
PHASE_ANNOTATE = "annotate"
PHASE_MERGE = "merge"
PHASE_UPSERT = "upsert"
PHASE_GC = "gc"
PHASE_DELETE = "delete"


@dataclass
class ApplyConfig:
    """Run configuration, bound from command-line flags."""
    env_name: str = ""
    component_names: List[str] = field(default_factory=list)
    create: bool = True
    dry_run: bool = False
    gc_tag: str = ""
    skip_gc: bool = False
    max_attempts: int = MAX_ATTEMPTS
    backoff_seconds: float = BACKOFF_SECONDS

    @property
    def gc_enabled(self) -> bool:
        return bool(self.gc_tag) and not self.skip_gc


@dataclass
class ObjectResult:
    description: str
    action: str
    uid: str


@dataclass
class ApplyReport:
    dry_run: bool = False
    results: List[ObjectResult] = field(default_factory=list)
    garbage_collected: List[str] = field(default_factory=list)

    def summary(self) -> Dict[str, Any]:
        counts: Dict[str, int] = {}
        for r in self.results:
            counts[r.action] = counts.get(r.action, 0) + 1
        return {
            "total_objects": len(self.results),
            "actions": counts,
            "garbage_collected": len(self.garbage_collected),
            "dry_run": self.dry_run,
            "summary_timestamp": time.strftime("%Y-%m-%d %H:%M:%S"),
        }


@contextmanager
def phase(name: str, description: str) -> Iterator[None]:
    """Wraps kubeapply errors raised inside the block with phase and object."""
    try:
        yield
    except ApplyError:
        raise
    except KubeApplyError as e:
        raise ApplyError(name, description, e) from e


class ApplyEngine:
    """
    Composes source, orderer, merger, upserter and garbage collector. Every
    collaborator can be injected; defaults are built from the factory and
    discovery service.
    """

    def __init__(self, config: ApplyConfig, source: ObjectSource,
                 factory: ResourceClientFactory, discovery: Discovery,
                 namespace: str = "",
                 orderer: Optional[DependencyOrderer] = None,
                 merger: Optional[ObjectMerger] = None,
                 upserter: Optional[Upserter] = None,
                 collector: Optional[GarbageCollector] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.config = config
        self.source = source
        self.factory = factory
        self.discovery = discovery
        self.namespace = namespace

        self.orderer = orderer or DependencyOrderer(KindPriorityTable())
        self.merger = merger or DefaultObjectMerger(factory, discovery, dry_run=config.dry_run)
        self.upserter = upserter or DefaultUpserter(
            factory,
            namespace=namespace,
            create=config.create,
            dry_run=config.dry_run,
            max_attempts=config.max_attempts,
            backoff=config.backoff_seconds,
            sleep=sleep,
            describe=discovery.describe,
        )
        self.collector = collector or GarbageCollector(factory, discovery, dry_run=config.dry_run)

    def apply(self) -> ApplyReport:
        with phase(PHASE_SOURCE, f"environment '{self.config.env_name}'"):
            objects = self.source.objects(self.config.env_name, self.config.component_names)

        report = ApplyReport(dry_run=self.config.dry_run)
        # Some objects appear under several kinds (e.g. a Deployment served by
        # two API groups); the UID is the only stable link between the views.
        seen_uids: Set[str] = set()

        for obj in self.orderer.order(objects):
            result = self.handle_object(obj)
            seen_uids.add(result.uid)
            report.results.append(result)

        if self.config.gc_enabled:
            with phase(PHASE_GC, f"tag '{self.config.gc_tag}'"):
                report.garbage_collected = self.collector.run(self.config.gc_tag, seen_uids)
        elif self.config.gc_tag:
            logger.info("Skipping garbage collection for tag '%s'", self.config.gc_tag)

        return report

    def handle_object(self, obj: KubeObject) -> ObjectResult:
        desc = str(obj.identity)

        with phase(PHASE_ANNOTATE, desc):
            desc = self.discovery.describe(obj)
            if self.config.gc_tag:
                obj.set_annotation(ANNOTATION_GC_TAG, self.config.gc_tag)
            tag_managed(obj)

        merged_by_patch = False
        with phase(PHASE_MERGE, desc):
            try:
                merge = self.merger.merge(self.namespace, obj)
                merged, merged_by_patch = merge.object, merge.patched
            except NotFoundError:
                # Nothing live yet: the desired object is the merge result
                merged = obj

        with phase(PHASE_UPSERT, desc):
            outcome = self.upserter.upsert(merged)

        action = outcome.action
        if merged_by_patch and action == UNCHANGED:
            action = PATCHED
        return ObjectResult(description=desc, action=action, uid=outcome.uid)


class DeleteEngine:
    """Deletes the declared objects of an environment from the cluster."""

    def __init__(self, config: ApplyConfig, source: ObjectSource,
                 factory: ResourceClientFactory, discovery: Discovery,
                 namespace: str = "", grace_period: Optional[int] = None,
                 orderer: Optional[DependencyOrderer] = None):
        self.config = config
        self.source = source
        self.factory = factory
        self.discovery = discovery
        self.namespace = namespace
        self.grace_period = grace_period
        self.orderer = orderer or DependencyOrderer(KindPriorityTable())

    def delete(self) -> List[str]:
        with phase(PHASE_SOURCE, f"environment '{self.config.env_name}'"):
            objects = self.source.objects(self.config.env_name, self.config.component_names)
            version = self.discovery.server_version()

        dry_run_text = " (dry-run)" if self.config.dry_run else ""
        deleted: List[str] = []
        # Dependents go first
        for obj in reversed(self.orderer.order(objects)):
            desc = str(obj.identity)
            with phase(PHASE_DELETE, desc):
                desc = self.discovery.describe(obj)
            with phase(PHASE_DELETE, desc):
                logger.info("Deleting %s%s", desc, dry_run_text)
                if not self.config.dry_run:
                    rc = self.factory.client_for(obj, self.namespace)
                    try:
                        rc.delete(delete_options(version, grace_period=self.grace_period))
                    except NotFoundError:
                        logger.debug("%s already gone", desc)
                        continue
            deleted.append(desc)
        return deleted
