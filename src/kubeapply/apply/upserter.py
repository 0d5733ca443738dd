#!/usr/bin/env python3
"""
KUBEAPPLY UPSERTER
------------------
Updates or creates a single object. Updates are sent as JSON merge patches
carrying the object's resourceVersion, so the store rejects them with a
conflict when another writer got there first. Conflicts are retried with a
fixed backoff up to a bounded number of attempts; exhausting the budget
raises ApplyConflictError.

Author: KubeApply Team
Date: 2026-10-18
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from kubeapply.apply.patch import CONTENT_TYPES, JSON_MERGE
from kubeapply.cluster.client import ResourceClient, ResourceClientFactory
from kubeapply.core.errors import (
    ApplyConflictError,
    ConflictError,
    NotCreatableError,
    NotFoundError,
)
from kubeapply.core.models import KubeObject

logger = logging.getLogger("kubeapply.apply.upserter")

MAX_ATTEMPTS = 5
BACKOFF_SECONDS = 1.0

# Outcomes reported per object
CREATED = "created"
PATCHED = "patched"
UNCHANGED = "unchanged"
DRY_RUN = "dry-run"


@dataclass
class UpsertResult:
    uid: str
    action: str


class Upserter(ABC):

    @abstractmethod
    def upsert(self, obj: KubeObject) -> UpsertResult:
        """Updates or creates ``obj``; the result carries its store-assigned UID."""


def additive_patch(current: Dict[str, Any], desired: Dict[str, Any]) -> Dict[str, Any]:
    """Fields of ``desired`` that ``current`` lacks or holds a different value for."""
    patch: Dict[str, Any] = {}
    for key, value in desired.items():
        if key not in current:
            patch[key] = value
        elif isinstance(current[key], dict) and isinstance(value, dict):
            sub = additive_patch(current[key], value)
            if sub:
                patch[key] = sub
        elif current[key] != value:
            patch[key] = value
    return patch


def dry_run_uid(obj: KubeObject) -> str:
    """Placeholder identifier for objects that were never sent to the store."""
    return f"dry-run:{obj.api_version}:{obj.kind}:{obj.fq_name()}"


class DefaultUpserter(Upserter):

    def __init__(self, factory: ResourceClientFactory, namespace: str = "",
                 create: bool = True, dry_run: bool = False,
                 max_attempts: int = MAX_ATTEMPTS, backoff: float = BACKOFF_SECONDS,
                 sleep: Callable[[float], None] = time.sleep,
                 describe: Optional[Callable[[KubeObject], str]] = None):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.factory = factory
        self.namespace = namespace
        self.create = create
        self.dry_run = dry_run
        self.max_attempts = max_attempts
        self.backoff = backoff
        self.sleep = sleep
        self.describe = describe or KubeObject.describe

    def _dry_run_text(self) -> str:
        return " (dry-run)" if self.dry_run else ""

    def upsert(self, obj: KubeObject) -> UpsertResult:
        desc = self.describe(obj)
        logger.info("Applying %s%s", desc, self._dry_run_text())

        if self.dry_run:
            return UpsertResult(obj.uid or dry_run_uid(obj), DRY_RUN)

        rc = self.factory.client_for(obj, self.namespace)
        try:
            live = rc.get()
        except NotFoundError:
            return self._create(rc, obj, desc)

        for attempt in range(1, self.max_attempts + 1):
            patch = additive_patch(live.to_dict(), obj.to_dict())
            if not patch:
                logger.debug("%s is up to date", desc)
                return UpsertResult(live.uid, UNCHANGED)

            patch.setdefault("metadata", {})["resourceVersion"] = obj.resource_version or live.resource_version
            try:
                patched = rc.patch(CONTENT_TYPES[JSON_MERGE], json.dumps(patch).encode("utf-8"))
                logger.debug("Patch(%s) returned uid %s", obj.fq_name(), patched.uid)
                return UpsertResult(patched.uid, PATCHED)
            except NotFoundError:
                return self._create(rc, obj, desc)
            except ConflictError:
                if attempt == self.max_attempts:
                    break
                logger.info("Conflict applying %s (attempt %d/%d), retrying in %.1fs",
                            desc, attempt, self.max_attempts, self.backoff)

            try:
                live = rc.get()
            except NotFoundError:
                return self._create(rc, obj, desc)
            obj.resource_version = live.resource_version
            self.sleep(self.backoff)

        raise ApplyConflictError(desc, self.max_attempts)

    def _create(self, rc: ResourceClient, obj: KubeObject, desc: str) -> UpsertResult:
        if not self.create:
            raise NotCreatableError(f"not creating non-existent object {desc}")

        logger.info("Creating non-existent %s", desc)
        # The store assigns these on creation
        obj.resource_version = ""
        obj.uid = ""
        created = rc.create()
        logger.debug("Create(%s) returned uid %s", obj.fq_name(), created.uid)
        return UpsertResult(created.uid, CREATED)
