"""Template management.

Provides the Jinja environment used to render the manifest templates. The
templates produce YAML, so the environment does no HTML escaping, strips
whitespace around block tags, and fails on any undefined variable.
"""

from __future__ import annotations

import json
from dataclasses import fields, is_dataclass
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from jinja2 import Environment, FileSystemLoader, StrictUndefined
from pydantic import BaseModel

__all__ = [
    "create_environment",
    "to_plain",
]


def create_environment(manifest_dir: Path) -> Environment:
    """Create the Jinja environment for a directory of manifest templates.

    Parameters
    ----------
    manifest_dir
        Root directory of the templates.

    Returns
    -------
    jinja2.Environment
        Environment with the manifest filters registered.
    """
    environment = Environment(
        loader=FileSystemLoader(manifest_dir),
        undefined=StrictUndefined,
        autoescape=False,
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )
    environment.filters["yaml"] = _to_yaml
    environment.filters["deref"] = _deref
    environment.filters["quote"] = _quote
    return environment


def to_plain(value: Any) -> Any:
    """Convert template data to plain JSON-compatible data.

    Pydantic models and Kubernetes models are converted to their camel-case
    serialized form, omitting unset fields.

    Parameters
    ----------
    value
        Value to convert.

    Returns
    -------
    typing.Any
        Equivalent built from only dicts, lists, and scalars.
    """
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True, exclude_none=True)
    if hasattr(value, "openapi_types"):
        return {
            value.attribute_map[attr]: to_plain(getattr(value, attr))
            for attr in value.openapi_types
            if getattr(value, attr) is not None
        }
    if is_dataclass(value) and not isinstance(value, type):
        return {
            f.name: to_plain(getattr(value, f.name)) for f in fields(value)
        }
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, list | tuple):
        return [to_plain(v) for v in value]
    if isinstance(value, dict):
        return {str(k): to_plain(v) for k, v in value.items()}
    return value


def _deref(value: Any, default: Any = None) -> Any:
    """Return the value, or the default if the value is `None`."""
    return default if value is None else value


def _quote(value: Any) -> str:
    """Quote a scalar as a YAML double-quoted string."""
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, bool):
        value = "true" if value else "false"
    return json.dumps(str(value))


def _to_yaml(value: Any) -> str:
    """Serialize a value as block-style YAML without a trailing newline.

    Intended to be combined with the ``indent`` filter to nest the result
    inside a manifest.
    """
    result = yaml.safe_dump(
        to_plain(value), default_flow_style=False, sort_keys=True
    )
    return result.removesuffix("\n").removesuffix("...").rstrip("\n")
