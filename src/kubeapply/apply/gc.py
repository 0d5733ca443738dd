#!/usr/bin/env python3
"""
KUBEAPPLY GARBAGE COLLECTOR
---------------------------
Deletes objects that an earlier run applied (they carry this run's GC tag)
but that the current run no longer declares. Only objects bearing the
current tag are ever considered; untagged and foreign objects are left
alone, as are objects owned by a controller (the controller prunes those).

Author: KubeApply Team
Date: 2026-10-18
"""

import logging
from typing import Any, Dict, List, Optional, Set

from kubeapply.cluster.client import ResourceClientFactory
from kubeapply.cluster.discovery import Discovery, ServerVersion
from kubeapply.core.errors import (
    ConfigError,
    ConflictError,
    GcDeleteError,
    NotFoundError,
    StoreError,
)
from kubeapply.core.models import (
    ANNOTATION_GC_STRATEGY,
    ANNOTATION_GC_TAG,
    GC_STRATEGY_AUTO,
    KubeObject,
)

logger = logging.getLogger("kubeapply.apply.gc")


def eligible_for_gc(obj: KubeObject, gc_tag: str) -> bool:
    """True when the object is tagged for this run, strategy is auto and no controller owns it."""
    if obj.has_controller_owner():
        return False

    strategy = obj.get_annotation(ANNOTATION_GC_STRATEGY) or GC_STRATEGY_AUTO
    return obj.get_annotation(ANNOTATION_GC_TAG) == gc_tag and strategy == GC_STRATEGY_AUTO


def delete_options(version: ServerVersion, uid: str = "",
                   grace_period: Optional[int] = None) -> Dict[str, Any]:
    """DeleteOptions body. Pre-1.6 servers only understand orphanDependents."""
    options: Dict[str, Any] = {"apiVersion": "v1", "kind": "DeleteOptions"}
    if uid:
        options["preconditions"] = {"uid": uid}
    if version.compare(1, 6) < 0:
        options["orphanDependents"] = False
    else:
        options["propagationPolicy"] = "Foreground"
    if grace_period is not None and grace_period >= 0:
        options["gracePeriodSeconds"] = grace_period
    return options


class GarbageCollector:
    """
    Walks every listable resource kind the server reports and deletes the
    eligible objects whose UID was not seen during this run.
    """

    def __init__(self, factory: ResourceClientFactory, discovery: Discovery, dry_run: bool = False):
        self.factory = factory
        self.discovery = discovery
        self.dry_run = dry_run

    def run(self, gc_tag: str, seen_uids: Set[str]) -> List[str]:
        """Returns descriptions of the objects collected (or that would be, in dry-run)."""
        if not gc_tag:
            raise ConfigError("garbage collection requires a non-empty tag")

        version = self.discovery.server_version()
        dry_run_text = " (dry-run)" if self.dry_run else ""
        collected: List[str] = []
        collected_uids: Set[str] = set()

        for resource in self.discovery.server_resources():
            if not resource.listable:
                logger.debug("Don't know how to list %s %s, skipping", resource.group_version, resource.kind)
                continue

            logger.debug("Listing %s %s", resource.group_version, resource.kind)
            for obj in self.factory.list_objects(resource):
                desc = f"{resource.name} {obj.fq_name()} ({resource.group_version})"
                logger.debug("Considering %s for gc", desc)

                # The same object may be served under several group/versions
                if obj.uid in seen_uids or obj.uid in collected_uids:
                    continue
                if not eligible_for_gc(obj, gc_tag):
                    continue

                logger.info("Garbage collecting %s%s", desc, dry_run_text)
                collected_uids.add(obj.uid)
                collected.append(desc)
                if not self.dry_run:
                    self.delete(obj, version, desc)

        return collected

    def delete(self, obj: KubeObject, version: ServerVersion, desc: str):
        rc = self.factory.client_for(obj)
        try:
            rc.delete(delete_options(version, uid=obj.uid))
        except (NotFoundError, ConflictError) as e:
            # Lost a race with something else changing the object
            logger.debug("Ignoring error while deleting %s: %s", desc, e)
        except StoreError as e:
            raise GcDeleteError(f"Error deleting {desc}: {e}") from e
