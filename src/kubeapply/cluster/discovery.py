#!/usr/bin/env python3
"""
KUBEAPPLY DISCOVERY
-------------------
What the object store can tell us about itself: which resource kinds exist
(and their verbs / namespacing), the server version, and the published
OpenAPI schema used for schema-aware patching.

Author: KubeApply Team
Date: 2026-10-18
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from kubernetes.client import ApiClient

from kubeapply.cluster.client import API_ERRORS, translate_api_error
from kubeapply.core.errors import ConfigError
from kubeapply.core.models import KubeObject

logger = logging.getLogger("kubeapply.cluster.discovery")


@dataclass(frozen=True)
class APIResource:
    """One resource kind as reported by discovery."""
    group_version: str
    kind: str
    name: str
    namespaced: bool
    verbs: Tuple[str, ...] = ()

    @property
    def listable(self) -> bool:
        return "list" in self.verbs


@dataclass(frozen=True)
class ServerVersion:
    """Kubernetes major.minor version in parsed form."""
    major: int
    minor: int

    @classmethod
    def parse(cls, major: str, minor: str) -> "ServerVersion":
        # Managed control planes report minors like "27+"
        match_major = re.fullmatch(r"\d+", str(major))
        match_minor = re.fullmatch(r"(\d+)\+?", str(minor))
        if not match_major or not match_minor:
            raise ConfigError(f"unparseable server version {major}.{minor}")
        return cls(int(match_major.group(0)), int(match_minor.group(1)))

    def compare(self, major: int, minor: int) -> int:
        """-1 / 0 / +1 when this version is lower / equal / higher than major.minor."""
        mine, theirs = (self.major, self.minor), (major, minor)
        if mine < theirs:
            return -1
        if mine > theirs:
            return 1
        return 0

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}"


class Discovery(ABC):

    @abstractmethod
    def server_resources(self) -> List[APIResource]:
        """Every resource kind of every served group/version."""

    @abstractmethod
    def server_version(self) -> ServerVersion:
        """Parsed server version."""

    @abstractmethod
    def openapi_schema(self) -> Dict[str, Any]:
        """The OpenAPI v2 document the server publishes."""

    def resource_name(self, obj: KubeObject) -> str:
        """Plural resource name of an object's kind, e.g. 'deployments'."""
        for resource in self.server_resources():
            if resource.group_version == obj.api_version and resource.kind == obj.kind:
                return resource.name
        return obj.kind.lower()

    def describe(self, obj: KubeObject) -> str:
        return f"{self.resource_name(obj)} {obj.fq_name()}"


class KubeDiscovery(Discovery):
    """
    Discovery over the raw discovery endpoints (/api, /apis, /version,
    /openapi/v2). Resource lists and the schema are cached for the lifetime
    of the instance, which is one run.
    """

    def __init__(self, api_client: ApiClient):
        self.api_client = api_client
        self._resources: Optional[List[APIResource]] = None
        self._schema: Optional[Dict[str, Any]] = None

    def _get(self, path: str) -> Dict[str, Any]:
        try:
            return self.api_client.call_api(
                path, "GET",
                header_params={"Accept": "application/json"},
                response_type="object",
                auth_settings=["BearerToken"],
                _return_http_data_only=True,
            )
        except API_ERRORS as e:
            raise translate_api_error(e, f"discovery GET {path}") from e

    def _group_versions(self) -> List[Tuple[str, str]]:
        """(groupVersion, discovery path) for core and every API group."""
        pairs = [(v, f"/api/{v}") for v in self._get("/api").get("versions", [])]
        for group in self._get("/apis").get("groups", []):
            for version in group.get("versions", []):
                gv = version["groupVersion"]
                pairs.append((gv, f"/apis/{gv}"))
        return pairs

    def server_resources(self) -> List[APIResource]:
        if self._resources is None:
            resources = []
            for group_version, path in self._group_versions():
                listing = self._get(path)
                for rsrc in listing.get("resources", []):
                    # Subresources (pods/log, deployments/scale, ...) are not objects
                    if "/" in rsrc["name"]:
                        continue
                    resources.append(APIResource(
                        group_version=group_version,
                        kind=rsrc["kind"],
                        name=rsrc["name"],
                        namespaced=bool(rsrc.get("namespaced")),
                        verbs=tuple(rsrc.get("verbs") or ()),
                    ))
            logger.debug("Discovered %d resource kinds", len(resources))
            self._resources = resources
        return self._resources

    def server_version(self) -> ServerVersion:
        info = self._get("/version")
        return ServerVersion.parse(info.get("major", ""), info.get("minor", ""))

    def openapi_schema(self) -> Dict[str, Any]:
        if self._schema is None:
            self._schema = self._get("/openapi/v2")
        return self._schema
