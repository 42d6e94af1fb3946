"""Data types for interacting with Kubernetes."""

from __future__ import annotations

from enum import Enum
from typing import Any

__all__ = [
    "PropagationPolicy",
    "format_label_selector",
    "object_key",
    "owner_reference",
]


class PropagationPolicy(Enum):
    """Possible values for the ``propagationPolicy`` parameter to delete."""

    FOREGROUND = "Foreground"
    BACKGROUND = "Background"
    ORPHAN = "Orphan"


def format_label_selector(selector: dict[str, str]) -> str | None:
    """Convert a mapping of labels to a label selector expression.

    Parameters
    ----------
    selector
        Labels and their required values.

    Returns
    -------
    str or None
        Equality-based selector expression, or `None` to match everything.
    """
    if not selector:
        return None
    return ",".join(f"{k}={v}" for k, v in sorted(selector.items()))


def object_key(obj: dict[str, Any]) -> tuple[str, str, str | None, str]:
    """Identity of a serialized Kubernetes object.

    Returns
    -------
    tuple
        API version, kind, namespace (`None` if cluster-scoped), and name.
    """
    metadata = obj.get("metadata", {})
    return (
        obj.get("apiVersion", ""),
        obj.get("kind", ""),
        metadata.get("namespace"),
        metadata.get("name", ""),
    )


def owner_reference(
    api_version: str, kind: str, name: str, uid: str
) -> dict[str, Any]:
    """Build an owner reference marking the owner as the controller.

    Parameters
    ----------
    api_version
        API version of the owner.
    kind
        Kind of the owner.
    name
        Name of the owner.
    uid
        Unique identifier of the owner.

    Returns
    -------
    dict
        Owner reference in serialized form.
    """
    return {
        "apiVersion": api_version,
        "kind": kind,
        "name": name,
        "uid": uid,
        "controller": True,
        "blockOwnerDeletion": True,
    }
