"""Digests of install configurations and other objects.

Digests are used for change detection only, so a fast non-cryptographic hash
is sufficient. Objects are serialized to canonical JSON (sorted keys, no
whitespace) before hashing so that the digest does not depend on field or
key order.
"""

from __future__ import annotations

import json
from dataclasses import fields, is_dataclass
from typing import Any

from ..constants import (
    CONTAINER_DRIVER,
    CONTAINER_DRIVER_MANAGER,
    CONTAINER_GDRCOPY,
    CONTAINER_GDS,
    CONTAINER_PEERMEM,
    CONTAINER_TOOLKIT,
)
from ..models.domain.installconfig import (
    EnvVarConfig,
    InstallConfig,
    VolumeConfig,
    VolumeMountConfig,
)

__all__ = [
    "extract_install_config",
    "fnv1a_32",
    "object_hash",
    "object_hash_ignore_empty",
    "string_hash",
]

_FNV_OFFSET_BASIS = 0x811C9DC5
_FNV_PRIME = 0x01000193

_SAFE_ALPHABET = "bcdfghjklmnpqrstvwxz2456789"
"""Characters used by Kubernetes for generated name suffixes.

Vowels and easily-confused characters are omitted so that encoded strings
never form words.
"""


def fnv1a_32(data: bytes) -> int:
    """Compute the 32-bit FNV-1a hash of some data."""
    result = _FNV_OFFSET_BASIS
    for byte in data:
        result ^= byte
        result = (result * _FNV_PRIME) & 0xFFFFFFFF
    return result


def object_hash(obj: Any) -> str:
    """Compute the digest of an object including all of its fields.

    Parameters
    ----------
    obj
        Dataclass, or any data structure serializable as JSON.

    Returns
    -------
    str
        Decimal representation of the 32-bit digest.
    """
    return str(fnv1a_32(_canonical_json(_to_plain(obj))))


def object_hash_ignore_empty(obj: Any) -> str:
    """Compute the digest of only the non-empty fields of a dataclass.

    `None`, empty strings, zero, `False`, and empty lists and dicts are all
    treated as absent, so adding a new field with an empty default to the
    dataclass does not change existing digests. Fields whose metadata marks
    them as embedded are hashed as if the fields of the embedded dataclass
    were declared directly on the outer one.

    Parameters
    ----------
    obj
        Dataclass instance.

    Returns
    -------
    str
        Decimal representation of the 32-bit digest.
    """
    return str(fnv1a_32(_canonical_json(_prune(obj))))


def string_hash(string: str) -> str:
    """Compute a short digest of a string usable in object names.

    Parameters
    ----------
    string
        String to hash.

    Returns
    -------
    str
        Digest encoded with characters that are safe in any Kubernetes name
        and never form words.
    """
    digest = str(fnv1a_32(string.encode()))
    size = len(_SAFE_ALPHABET)
    return "".join(_SAFE_ALPHABET[ord(c) % size] for c in digest)


def extract_install_config(daemonset: dict[str, Any]) -> InstallConfig:
    """Project a driver DaemonSet down to its install configuration.

    Only the containers known to take part in the driver install are
    examined. Unknown containers are ignored, so a new add-on container must
    be added here as well as to the manifests for changes to it to trigger a
    reinstall.

    Parameters
    ----------
    daemonset
        DaemonSet in its serialized (camel-case) form, either freshly
        rendered or read from the cluster.

    Returns
    -------
    InstallConfig
        Install configuration with list fields sorted.
    """
    config = InstallConfig()
    pod_spec = daemonset.get("spec", {}).get("template", {}).get("spec", {})

    for container in pod_spec.get("initContainers") or []:
        if container.get("name") == CONTAINER_DRIVER_MANAGER:
            config.images.driver_manager_image = container.get("image", "")
            config.manager_env = _extract_env(container)

    for container in pod_spec.get("containers") or []:
        name = container.get("name")
        image = container.get("image", "")
        if name == CONTAINER_DRIVER:
            config.images.driver_image = image
            config.driver_command = list(container.get("command") or [])
            config.driver_args = list(container.get("args") or [])
            config.driver_env = _extract_env(container)
            for source in container.get("envFrom") or []:
                secret_ref = source.get("secretRef")
                if secret_ref:
                    config.secret_env_source = secret_ref.get("name", "")
            config.additional_volume_mounts = _extract_mounts(container)
        elif name == CONTAINER_PEERMEM:
            config.images.peermem_image = image
            config.toggles.gpu_direct_rdma_enabled = True
        elif name == CONTAINER_GDS:
            config.images.gds_image = image
            config.toggles.gds_enabled = True
            config.gds_env = _extract_env(container)
        elif name == CONTAINER_GDRCOPY:
            config.images.gdrcopy_image = image
            config.toggles.gdrcopy_enabled = True
            config.gdrcopy_env = _extract_env(container)
        elif name == CONTAINER_TOOLKIT:
            config.images.dtk_image = image
            config.openshift.dtk_enabled = True

    volumes = pod_spec.get("volumes") or []
    config.additional_volumes = _extract_volumes(volumes)
    for volume in volumes:
        host_path = volume.get("hostPath")
        if volume.get("name") == "host-root" and host_path:
            config.host_root = host_path.get("path", "")

    return config


def _canonical_json(data: Any) -> bytes:
    """Serialize data as canonical JSON."""
    return json.dumps(
        data, sort_keys=True, separators=(",", ":"), ensure_ascii=False
    ).encode()


def _extract_env(container: dict[str, Any]) -> list[EnvVarConfig]:
    """Extract literal environment variables, sorted by name."""
    env = [
        EnvVarConfig(name=e["name"], value=str(e.get("value") or ""))
        for e in container.get("env") or []
        if not e.get("valueFrom")
    ]
    return sorted(env, key=lambda e: e.name)


def _extract_mounts(container: dict[str, Any]) -> list[VolumeMountConfig]:
    """Extract volume mounts, sorted by name and then by mount path."""
    mounts = [
        VolumeMountConfig(
            name=m["name"],
            mount_path=m.get("mountPath", ""),
            sub_path=m.get("subPath") or "",
            read_only=bool(m.get("readOnly")),
        )
        for m in container.get("volumeMounts") or []
    ]
    return sorted(mounts, key=lambda m: (m.name, m.mount_path))


def _extract_volumes(volumes: list[dict[str, Any]]) -> list[VolumeConfig]:
    """Extract the identity of each volume, sorted by name."""
    result = []
    for volume in volumes:
        config = VolumeConfig(name=volume["name"])
        if config_map := volume.get("configMap"):
            config.config_map_name = config_map.get("name", "")
        if secret := volume.get("secret"):
            config.secret_name = secret.get("secretName", "")
        if host_path := volume.get("hostPath"):
            config.host_path = host_path.get("path", "")
        result.append(config)
    return sorted(result, key=lambda v: v.name)


def _is_empty(value: Any) -> bool:
    """Whether a value counts as unset for the purposes of a digest."""
    if value is None:
        return True
    if isinstance(value, str | list | tuple | dict | bool | int | float):
        return not value
    return False


def _prune(obj: Any) -> Any:
    """Convert to plain data, dropping empty fields and flattening embeds."""
    if is_dataclass(obj) and not isinstance(obj, type):
        result: dict[str, Any] = {}
        for f in fields(obj):
            value = getattr(obj, f.name)
            if f.metadata.get("embedded"):
                result.update(_prune(value))
                continue
            pruned = _prune(value)
            if not _is_empty(pruned):
                result[f.name] = pruned
        return result
    if isinstance(obj, list | tuple):
        return [_prune(v) for v in obj]
    if isinstance(obj, dict):
        pruned = {k: _prune(v) for k, v in obj.items()}
        return {k: v for k, v in pruned.items() if not _is_empty(v)}
    return obj


def _to_plain(obj: Any) -> Any:
    """Convert dataclasses and containers to JSON-compatible data."""
    if is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: _to_plain(getattr(obj, f.name)) for f in fields(obj)}
    if isinstance(obj, list | tuple):
        return [_to_plain(v) for v in obj]
    if isinstance(obj, dict):
        return {str(k): _to_plain(v) for k, v in obj.items()}
    return obj
