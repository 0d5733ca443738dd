#!/usr/bin/env python3
"""
KUBEAPPLY RESOURCE CLIENTS
--------------------------
Narrow capabilities the engine needs from the object store, plus the
production implementation over the official `kubernetes` dynamic client.

* ResourceClient        - get / patch / create / delete one object
* ResourceClientFactory - builds a ResourceClient for an object and lists
                          every instance of a resource kind

API exceptions are translated by HTTP status into the kubeapply taxonomy
(404 -> NotFoundError, 409 -> ConflictError); transport failures become a
StoreError without a status. Callers never import the kubernetes package
themselves.

Author: KubeApply Team
Date: 2026-10-18
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from kubernetes import config as kube_config
from kubernetes.client import ApiClient
from kubernetes.client.exceptions import ApiException
from kubernetes.dynamic import DynamicClient
from kubernetes.dynamic.exceptions import DynamicApiError, ResourceNotFoundError, ResourceNotUniqueError
from urllib3.exceptions import HTTPError

from kubeapply.core.errors import ConfigError, ConflictError, NotFoundError, StoreError
from kubeapply.core.models import KubeObject

logger = logging.getLogger("kubeapply.cluster.client")

# Status errors from the API server and transport failures below it
API_ERRORS = (DynamicApiError, ApiException, HTTPError)


def translate_api_error(err: Exception, context: str) -> StoreError:
    """Maps a kubernetes client exception onto the store error taxonomy."""
    status = getattr(err, "status", None)
    if status == 404:
        return NotFoundError(f"{context}: not found")
    if status == 409:
        return ConflictError(f"{context}: conflict")
    reason = getattr(err, "reason", None) or str(err)
    return StoreError(f"{context}: {reason}", status)


class ResourceClient(ABC):
    """Client bound to a single object identity."""

    @abstractmethod
    def get(self) -> KubeObject:
        """Current live state. Raises NotFoundError."""

    @abstractmethod
    def patch(self, content_type: str, body: bytes) -> KubeObject:
        """Sends a patch; returns the object the store returns."""

    @abstractmethod
    def create(self) -> KubeObject:
        """Creates the bound object; returns it with its assigned UID."""

    @abstractmethod
    def delete(self, options: Dict[str, Any]):
        """Deletes the bound object with the given DeleteOptions body."""


class ResourceClientFactory(ABC):

    @abstractmethod
    def client_for(self, obj: KubeObject, namespace: str = "") -> ResourceClient:
        """
        Client for ``obj``. Namespaced kinds without an explicit namespace
        fall back to ``namespace``.
        """

    @abstractmethod
    def list_objects(self, resource: "APIResource") -> List[KubeObject]:
        """Every instance of a resource kind, across all namespaces."""


# ---------------------------------------------------------------------------
# Production implementation
# ---------------------------------------------------------------------------

class KubeResourceClient(ResourceClient):

    def __init__(self, resource: Any, obj: KubeObject, namespace: Optional[str]):
        self.resource = resource
        self.obj = obj
        self.namespace = namespace

    def _context(self, verb: str) -> str:
        return f"{verb} {self.obj.describe()}"

    def get(self) -> KubeObject:
        try:
            live = self.resource.get(name=self.obj.name, namespace=self.namespace)
        except API_ERRORS as e:
            raise translate_api_error(e, self._context("get")) from e
        return KubeObject(body=live.to_dict())

    def patch(self, content_type: str, body: bytes) -> KubeObject:
        logger.debug("Patch(%s) %s: %s", self.obj.fq_name(), content_type, body)
        try:
            patched = self.resource.patch(
                body=json.loads(body),
                name=self.obj.name,
                namespace=self.namespace,
                content_type=content_type,
            )
        except API_ERRORS as e:
            raise translate_api_error(e, self._context("patch")) from e
        return KubeObject(body=patched.to_dict())

    def create(self) -> KubeObject:
        logger.debug("Create(%s)", self.obj.fq_name())
        try:
            created = self.resource.create(body=self.obj.to_dict(), namespace=self.namespace)
        except API_ERRORS as e:
            raise translate_api_error(e, self._context("create")) from e
        return KubeObject(body=created.to_dict())

    def delete(self, options: Dict[str, Any]):
        try:
            self.resource.delete(name=self.obj.name, namespace=self.namespace, body=options)
        except API_ERRORS as e:
            raise translate_api_error(e, self._context("delete")) from e


class KubeResourceClientFactory(ResourceClientFactory):
    """Resolves resources through the dynamic client's discovery cache."""

    def __init__(self, dynamic: DynamicClient):
        self.dynamic = dynamic

    def _resource(self, api_version: str, kind: str) -> Any:
        try:
            return self.dynamic.resources.get(api_version=api_version, kind=kind)
        except ResourceNotFoundError as e:
            raise StoreError(f"unknown resource {api_version} {kind}") from e
        except ResourceNotUniqueError as e:
            raise StoreError(f"ambiguous resource {api_version} {kind}") from e
        except API_ERRORS as e:
            raise translate_api_error(e, f"discover {api_version} {kind}") from e

    def client_for(self, obj: KubeObject, namespace: str = "") -> ResourceClient:
        resource = self._resource(obj.api_version, obj.kind)
        ns = (obj.namespace or namespace or "default") if resource.namespaced else None
        return KubeResourceClient(resource, obj, ns)

    def list_objects(self, resource: "APIResource") -> List[KubeObject]:
        rsrc = self._resource(resource.group_version, resource.kind)
        try:
            listing = rsrc.get().to_dict()
        except API_ERRORS as e:
            raise translate_api_error(e, f"list {resource.group_version} {resource.name}") from e

        objects = []
        for item in listing.get("items") or []:
            # List responses omit per-item type information
            item.setdefault("apiVersion", resource.group_version)
            item.setdefault("kind", resource.kind)
            objects.append(KubeObject(body=item))
        return objects


def connect(context: Optional[str] = None) -> ApiClient:
    """ApiClient for a kubeconfig context (the current context when None)."""
    try:
        return kube_config.new_client_from_config(context=context)
    except kube_config.ConfigException as e:
        raise ConfigError(f"loading kubeconfig context {context!r}: {e}") from e
