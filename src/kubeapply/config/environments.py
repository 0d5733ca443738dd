#!/usr/bin/env python3
"""
KUBEAPPLY ENVIRONMENTS
----------------------
Maps an environment name onto cluster connection details, read from
`environments.yaml` at the manifest root:

    environments:
      staging:
        context: gke-staging
        namespace: web

Without the file, the environment name doubles as the kubeconfig context
and objects default to the `default` namespace.

Author: KubeApply Team
Date: 2026-10-18
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from kubeapply.core.errors import ConfigError

ENVIRONMENTS_FILE = "environments.yaml"
DEFAULT_NAMESPACE = "default"


@dataclass(frozen=True)
class EnvironmentSpec:
    name: str
    context: Optional[str] = None
    namespace: str = DEFAULT_NAMESPACE


class EnvironmentRegistry:

    def __init__(self, environments: Dict[str, EnvironmentSpec], declared: bool = True):
        self.environments = environments
        self.declared = declared

    @classmethod
    def load(cls, root: str) -> "EnvironmentRegistry":
        path = Path(root) / ENVIRONMENTS_FILE
        if not path.exists():
            return cls({}, declared=False)

        try:
            data = YAML(typ="safe").load(path.read_text(encoding="utf-8-sig")) or {}
        except (OSError, YAMLError) as e:
            raise ConfigError(f"{path}: {e}") from e

        entries = data.get("environments") if isinstance(data, dict) else None
        if not isinstance(entries, dict):
            raise ConfigError(f"{path}: expected an 'environments' mapping")

        environments = {}
        for name, spec in entries.items():
            spec = spec or {}
            if not isinstance(spec, dict):
                raise ConfigError(f"{path}: environment '{name}' must be a mapping")
            environments[str(name)] = EnvironmentSpec(
                name=str(name),
                context=spec.get("context"),
                namespace=spec.get("namespace") or DEFAULT_NAMESPACE,
            )
        return cls(environments)

    def resolve(self, name: str) -> EnvironmentSpec:
        if not self.declared:
            return EnvironmentSpec(name=name, context=name or None)
        if name not in self.environments:
            known = ", ".join(sorted(self.environments)) or "none"
            raise ConfigError(f"unknown environment '{name}' (known: {known})")
        return self.environments[name]
