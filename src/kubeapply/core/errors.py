#!/usr/bin/env python3
"""
KUBEAPPLY ERRORS
----------------
Exception taxonomy for the apply engine. Store failures are translated into
NotFoundError / ConflictError at the client boundary so the merge, upsert
and garbage collection phases can branch on them without knowing anything
about the underlying Kubernetes client.

Author: KubeApply Team
Date: 2026-10-18
"""

from typing import Optional


class KubeApplyError(Exception):
    """Root of every error raised by kubeapply."""


# --- Pristine annotation codec ---

class EncodingError(KubeApplyError):
    """The pristine snapshot could not be serialized or compressed."""


class DecodingError(KubeApplyError):
    """The pristine annotation is present but not decodable."""


# --- Three-way merge ---

class MergeError(KubeApplyError):
    """Patch computation failed."""


class PreconditionFailedError(MergeError):
    """apiVersion, kind or metadata.name changed between snapshots."""


# --- Object store ---

class StoreError(KubeApplyError):
    """A request against the object store failed."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class NotFoundError(StoreError):
    """No live object exists at the requested identity."""

    def __init__(self, message: str = "object not found"):
        super().__init__(message, status=404)


class ConflictError(StoreError):
    """Optimistic-concurrency conflict: the live object changed since it was read."""

    def __init__(self, message: str = "object has been modified"):
        super().__init__(message, status=409)


# --- Upsert ---

class NotCreatableError(KubeApplyError):
    """The object does not exist and the run does not allow creation."""


class ApplyConflictError(KubeApplyError):
    """The conflict retry budget was exhausted."""

    def __init__(self, description: str, attempts: int):
        super().__init__(f"{description}: still conflicting after {attempts} attempts")
        self.description = description
        self.attempts = attempts


# --- Garbage collection ---

class GcDeleteError(KubeApplyError):
    """Deleting an eligible object failed for a reason other than a lost race."""


# --- Configuration & sources ---

class ConfigError(KubeApplyError):
    """Invalid run or environment configuration."""


class SourceError(KubeApplyError):
    """Desired objects could not be loaded."""


class ApplyError(KubeApplyError):
    """
    A per-object failure, wrapped with the phase it happened in and the object
    it happened to. The underlying exception is kept as ``cause`` (and chained
    via ``raise ... from``).
    """

    def __init__(self, phase: str, description: str, cause: Exception):
        super().__init__(f"{phase} {description}: {cause}")
        self.phase = phase
        self.description = description
        self.cause = cause
