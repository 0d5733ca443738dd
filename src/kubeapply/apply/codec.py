#!/usr/bin/env python3
"""
KUBEAPPLY ANNOTATION CODEC
--------------------------
Encodes a snapshot of an object into the value carried by the managed
annotation, and decodes it back:

    JSON (canonical)  ->  gzip stream  ->  base64

The annotation value itself is the JSON document {"pristine": "<base64>"}.
The codec knows nothing about resource kinds; it works on any JSON value.

Author: KubeApply Team
Date: 2026-10-18
"""

import base64
import binascii
import gzip
import io
import json
import zlib
from dataclasses import dataclass
from typing import Any, Dict

from kubeapply.core.errors import DecodingError, EncodingError
from kubeapply.core.models import (
    ANNOTATION_MANAGED,
    DEPLOY_MANAGER,
    LABEL_DEPLOY_MANAGER,
    KubeObject,
)


def encode_pristine(snapshot: Any) -> str:
    """Serialize, compress and base64-encode a snapshot."""
    try:
        payload = json.dumps(snapshot, sort_keys=True, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise EncodingError(f"serializing pristine snapshot: {e}") from e

    buffer = io.BytesIO()
    try:
        # mtime pinned to 0 so identical snapshots encode to identical bytes
        with gzip.GzipFile(fileobj=buffer, mode="wb", mtime=0) as stream:
            stream.write(payload)
    except (OSError, zlib.error) as e:
        raise EncodingError(f"compressing pristine snapshot: {e}") from e

    return base64.b64encode(buffer.getvalue()).decode("ascii")


def decode_pristine(pristine: str) -> Any:
    """Reverse of encode_pristine."""
    try:
        compressed = base64.b64decode(pristine, validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodingError(f"base64 decoding pristine annotation: {e}") from e

    try:
        with gzip.GzipFile(fileobj=io.BytesIO(compressed), mode="rb") as stream:
            payload = stream.read()
    except (OSError, EOFError, zlib.error) as e:
        raise DecodingError(f"decompressing pristine annotation: {e}") from e

    try:
        return json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise DecodingError(f"parsing pristine annotation: {e}") from e


@dataclass
class ManagedAnnotation:
    """Contents of the managed annotation."""
    pristine: str = ""

    @classmethod
    def from_snapshot(cls, snapshot: Any) -> "ManagedAnnotation":
        return cls(pristine=encode_pristine(snapshot))

    @classmethod
    def parse(cls, value: str) -> "ManagedAnnotation":
        try:
            data = json.loads(value)
        except ValueError as e:
            raise DecodingError(f"parsing managed annotation: {e}") from e
        if not isinstance(data, dict) or not isinstance(data.get("pristine", ""), str):
            raise DecodingError("managed annotation is not a {\"pristine\": <string>} document")
        return cls(pristine=data.get("pristine", ""))

    def marshal(self) -> str:
        return json.dumps({"pristine": self.pristine}, separators=(",", ":"))

    def snapshot(self) -> Any:
        return decode_pristine(self.pristine)


def tag_managed(obj: KubeObject):
    """
    Attaches the pristine snapshot of ``obj`` (as it is right now) to its own
    annotation map and marks it as deployed by kubeapply.
    """
    snapshot = obj.to_dict()
    # A snapshot never embeds a previous snapshot
    ((snapshot.get("metadata") or {}).get("annotations") or {}).pop(ANNOTATION_MANAGED, None)

    managed = ManagedAnnotation.from_snapshot(snapshot)
    obj.set_label(LABEL_DEPLOY_MANAGER, DEPLOY_MANAGER)
    obj.set_annotation(ANNOTATION_MANAGED, managed.marshal())


def original_configuration(live: KubeObject) -> Dict[str, Any]:
    """
    The snapshot this engine applied last time, read from a live object.
    Empty when the object was never annotated; DecodingError when the
    annotation is present but corrupt.
    """
    value = live.get_annotation(ANNOTATION_MANAGED)
    if not value:
        return {}
    managed = ManagedAnnotation.parse(value)
    if not managed.pristine:
        return {}
    snapshot = managed.snapshot()
    if not isinstance(snapshot, dict):
        raise DecodingError("pristine snapshot is not an object")
    return snapshot
