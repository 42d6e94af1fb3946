"""Install-relevant projection of a driver DaemonSet.

Only the fields whose change must force a driver reinstall are included.
Resource limits, probes, tolerations, security contexts, scheduling hints,
unknown side-car containers and environment variables taken from the
downward API are deliberately left out.

Groups of related fields are marked as embedded so that the digest treats
them as if their fields were declared directly on `InstallConfig`. New fields
may be added to any of these classes without changing the digest of existing
DaemonSets, provided their default is empty.
"""

from __future__ import annotations

from dataclasses import dataclass, field

__all__ = [
    "EMBEDDED",
    "ConfigNames",
    "EnvVarConfig",
    "FeatureToggles",
    "InstallConfig",
    "InstallImages",
    "OpenShiftConfig",
    "PrecompiledConfig",
    "ProxyConfig",
    "VolumeConfig",
    "VolumeMountConfig",
]

EMBEDDED = {"embedded": True}
"""Field metadata marking a group whose fields are flattened when hashed."""


@dataclass
class EnvVarConfig:
    """Environment variable with a literal value."""

    name: str
    value: str = ""


@dataclass
class VolumeConfig:
    """Identity of a pod volume."""

    name: str
    config_map_name: str = ""
    secret_name: str = ""
    host_path: str = ""


@dataclass
class VolumeMountConfig:
    """Identity of a volume mount in the driver container."""

    name: str
    mount_path: str
    sub_path: str = ""
    read_only: bool = False


@dataclass
class InstallImages:
    """Images of every container that takes part in the install."""

    driver_image: str = ""
    driver_manager_image: str = ""
    peermem_image: str = ""
    gds_image: str = ""
    gdrcopy_image: str = ""
    dtk_image: str = ""


@dataclass
class FeatureToggles:
    """Optional features of the install."""

    gpu_direct_rdma_enabled: bool = False
    use_host_mofed: bool = False
    gds_enabled: bool = False
    gdrcopy_enabled: bool = False


@dataclass
class ConfigNames:
    """Names of config maps referenced by the driver."""

    licensing_config_name: str = ""
    virtual_topology_config: str = ""
    kernel_module_config: str = ""
    repo_config: str = ""
    cert_config: str = ""


@dataclass
class PrecompiledConfig:
    use_precompiled: bool = False
    kernel_version: str = ""


@dataclass
class OpenShiftConfig:
    openshift_version: str = ""
    dtk_enabled: bool = False
    rhcos_version: str = ""


@dataclass
class ProxyConfig:
    http_proxy: str = ""
    https_proxy: str = ""
    no_proxy: str = ""
    trusted_ca_config_map_name: str = ""


@dataclass
class InstallConfig:
    """Everything about a driver DaemonSet that affects the install."""

    images: InstallImages = field(
        default_factory=InstallImages, metadata=EMBEDDED
    )

    driver_type: str = ""
    kernel_module_type: str = ""

    driver_command: list[str] = field(default_factory=list)
    driver_args: list[str] = field(default_factory=list)

    driver_env: list[EnvVarConfig] = field(default_factory=list)
    manager_env: list[EnvVarConfig] = field(default_factory=list)
    gds_env: list[EnvVarConfig] = field(default_factory=list)
    gdrcopy_env: list[EnvVarConfig] = field(default_factory=list)

    secret_env_source: str = ""

    toggles: FeatureToggles = field(
        default_factory=FeatureToggles, metadata=EMBEDDED
    )
    config_names: ConfigNames = field(
        default_factory=ConfigNames, metadata=EMBEDDED
    )
    precompiled: PrecompiledConfig = field(
        default_factory=PrecompiledConfig, metadata=EMBEDDED
    )
    openshift: OpenShiftConfig = field(
        default_factory=OpenShiftConfig, metadata=EMBEDDED
    )
    proxy: ProxyConfig = field(default_factory=ProxyConfig, metadata=EMBEDDED)

    additional_volumes: list[VolumeConfig] = field(default_factory=list)
    additional_volume_mounts: list[VolumeMountConfig] = field(
        default_factory=list
    )

    host_root: str = ""
