#!/usr/bin/env python3
"""
KUBEAPPLY MANIFEST SOURCE
-------------------------
Supplies the desired objects for a run. The engine only depends on the
ObjectSource capability; ManifestDirectorySource reads rendered YAML
manifests laid out as

    <root>/components/<component>.yaml            shared by every environment
    <root>/environments/<env>/<component>.yaml    environment-specific; replaces
                                                  a shared component of the same name

Every object is stamped with the component that declared it.

Author: KubeApply Team
Date: 2026-10-18
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Sequence

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from kubeapply.core.errors import SourceError
from kubeapply.core.models import LABEL_COMPONENT, KubeObject

logger = logging.getLogger("kubeapply.source.manifests")

MANIFEST_SUFFIXES = (".yaml", ".yml", ".json")


class ObjectSource(ABC):

    @abstractmethod
    def objects(self, env_name: str, component_names: Sequence[str] = ()) -> List[KubeObject]:
        """Desired objects for an environment; all components when none are named."""


def _plain(data: Any) -> Any:
    """ruamel containers -> builtin dict/list, so snapshots serialize canonically."""
    if isinstance(data, dict):
        return {str(k): _plain(v) for k, v in data.items()}
    if isinstance(data, list):
        return [_plain(v) for v in data]
    return data


def validate_manifest(doc: Any, origin: str) -> Dict[str, Any]:
    """The minimal shape every object must have before it reaches the engine."""
    if not isinstance(doc, dict):
        raise SourceError(f"{origin}: document is not a mapping")
    for field in ("apiVersion", "kind"):
        if not isinstance(doc.get(field), str) or not doc.get(field):
            raise SourceError(f"{origin}: missing required field '{field}'")
    metadata = doc.get("metadata")
    if not isinstance(metadata, dict):
        raise SourceError(f"{origin}: missing required field 'metadata'")
    if not metadata.get("name") and not metadata.get("generateName"):
        raise SourceError(f"{origin}: metadata.name or metadata.generateName is required")
    for field in ("name", "generateName", "namespace"):
        value = metadata.get(field)
        if value is not None and not isinstance(value, str):
            raise SourceError(f"{origin}: metadata.{field} must be a string")
    return doc


class ManifestDirectorySource(ObjectSource):

    def __init__(self, root: str):
        self.root = Path(root).resolve()
        self.yaml = YAML(typ="safe")

    def components(self, env_name: str) -> Dict[str, Path]:
        """Component name -> manifest file, environment files taking precedence."""
        found: Dict[str, Path] = {}
        search = [self.root / "components"]
        if env_name:
            search.append(self.root / "environments" / env_name)

        for directory in search:
            if not directory.is_dir():
                continue
            for path in sorted(directory.iterdir()):
                if path.is_file() and not path.is_symlink() and path.suffix.lower() in MANIFEST_SUFFIXES:
                    found[path.stem] = path
        return found

    def _load(self, path: Path) -> Iterable[Any]:
        try:
            text = path.read_text(encoding="utf-8-sig")
            return [doc for doc in self.yaml.load_all(text) if doc is not None]
        except (OSError, UnicodeDecodeError, YAMLError) as e:
            raise SourceError(f"{path}: {e}") from e

    def objects(self, env_name: str, component_names: Sequence[str] = ()) -> List[KubeObject]:
        available = self.components(env_name)
        if not available:
            raise SourceError(f"no manifests found under {self.root}")

        selected = list(component_names) or sorted(available)
        missing = [name for name in selected if name not in available]
        if missing:
            raise SourceError(f"unknown component(s): {', '.join(missing)}")

        objects: List[KubeObject] = []
        for name in selected:
            path = available[name]
            for index, doc in enumerate(self._load(path)):
                doc = _plain(doc)
                # kubectl-style List documents expand into their items
                items = doc.get("items") if isinstance(doc, dict) and doc.get("kind") == "List" else [doc]
                for item in items or []:
                    origin = f"{path.name}[{index}]"
                    obj = KubeObject(body=validate_manifest(item, origin))
                    obj.set_label(LABEL_COMPONENT, name)
                    objects.append(obj)
            logger.debug("Loaded component %s from %s", name, path)

        return objects
