#!/usr/bin/env python3
"""
KUBEAPPLY OBJECT MERGER
-----------------------
Merges a desired object with the object already in the cluster so that
values the cluster owns (a Service's nodePort, defaulted fields, labels
added by other controllers) are not overwritten on re-apply.

The patch variant is chosen per object at runtime:
    * strategic-merge when the server publishes a schema for the kind
    * json-merge otherwise, or when the schema cannot be retrieved
The choice and its reason are logged and returned in the MergeResult.

Author: KubeApply Team
Date: 2026-10-18
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Tuple

from kubeapply.apply.codec import original_configuration
from kubeapply.apply.patch import PatchPlan, SchemaPatchMeta, create_patch
from kubeapply.cluster.client import ResourceClientFactory
from kubeapply.cluster.discovery import Discovery
from kubeapply.core.errors import KubeApplyError, MergeError, PreconditionFailedError
from kubeapply.core.models import KubeObject

logger = logging.getLogger("kubeapply.apply.merger")


@dataclass
class MergeResult:
    """The merged object plus the patch that produced it."""
    object: KubeObject
    plan: Optional[PatchPlan] = None
    patched: bool = False


class ObjectMerger(ABC):

    @abstractmethod
    def merge(self, namespace: str, desired: KubeObject) -> MergeResult:
        """
        Merges ``desired`` with its live counterpart. Raises NotFoundError
        when there is nothing live to merge with.
        """


class DefaultObjectMerger(ObjectMerger):

    def __init__(self, factory: ResourceClientFactory, discovery: Discovery, dry_run: bool = False):
        self.factory = factory
        self.discovery = discovery
        self.dry_run = dry_run

    def patch_meta(self, obj: KubeObject) -> Tuple[Optional[SchemaPatchMeta], str]:
        """Schema metadata for the object's kind, or None with the reason it is unavailable."""
        group, _, version = obj.api_version.rpartition("/")
        try:
            document = self.discovery.openapi_schema()
        except KubeApplyError as e:
            logger.warning("Unable to retrieve schema for %s, using json merge patch: %s",
                           obj.describe(), e)
            return None, f"schema unavailable: {e}"
        return SchemaPatchMeta.for_kind(document, group, version, obj.kind)

    def plan(self, live: KubeObject, desired: KubeObject) -> PatchPlan:
        original = original_configuration(live)
        modified = desired.to_dict()
        current = live.to_dict()

        meta, reason = self.patch_meta(desired)
        try:
            plan = create_patch(original, modified, current, meta, reason)
        except PreconditionFailedError:
            raise
        except MergeError as e:
            if meta is None:
                raise
            logger.warning("Error calculating patch from schema for %s: %s", desired.describe(), e)
            plan = create_patch(original, modified, current, None, f"schema patch failed: {e}")

        logger.debug("Patch strategy for %s: %s (%s)", desired.describe(), plan.patch_type, plan.reason)
        return plan

    def merge(self, namespace: str, desired: KubeObject) -> MergeResult:
        rc = self.factory.client_for(desired, namespace)
        live = rc.get()

        plan = self.plan(live, desired)
        if plan.is_empty():
            return MergeResult(live, plan, patched=False)

        logger.debug("Applying %s patch to %s: %s", plan.patch_type, desired.describe(), plan.to_bytes())
        if self.dry_run:
            merged = desired.copy()
            merged.uid = live.uid
            merged.resource_version = live.resource_version
            return MergeResult(merged, plan, patched=True)

        return MergeResult(rc.patch(plan.content_type, plan.to_bytes()), plan, patched=True)
