"""Human-readable descriptions of pending object changes."""

import dataclasses
from typing import Any

import yaml

from vitess_protocols import Object


def _merge_patch(cur: Any, new: Any) -> Any:
    """JSON merge patch that turns cur into new (None deletes a key)."""
    if not isinstance(cur, dict) or not isinstance(new, dict):
        return new
    patch = {}
    for key, value in new.items():
        if key not in cur:
            patch[key] = value
        elif cur[key] != value:
            patch[key] = _merge_patch(cur[key], value)
    for key in cur:
        if key not in new:
            patch[key] = None
    return patch


def _to_dict(obj: Object) -> dict[str, Any]:
    return _plain(dataclasses.asdict(obj))


def _plain(value: Any) -> Any:
    # Enums and other scalars render through str() so safe_dump accepts them.
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return str(value)


def describe_diff(cur: Object, new: Object) -> str:
    """
    Describe the difference between two versions of an object.

    The result is a YAML-rendered merge patch, suitable for an annotation
    value or a log line. Bookkeeping metadata that the store rewrites on
    every write is left out.
    """
    patch = _merge_patch(_to_dict(cur), _to_dict(new))
    metadata = patch.get("metadata")
    if isinstance(metadata, dict):
        metadata.pop("resource_version", None)
        metadata.pop("generation", None)
        if not metadata:
            patch.pop("metadata")
    if not patch:
        return ""
    return yaml.safe_dump(patch, default_flow_style=False, sort_keys=True)
