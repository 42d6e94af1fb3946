"""Data passed to the manifest templates for one node pool."""

from __future__ import annotations

from dataclasses import dataclass, field

from kubernetes_asyncio.client import V1Volume, V1VolumeMount

from .clusterinfo import ProxySpec
from .nodepool import NodePool
from .nvidiadriver import (
    GDRCopySpec,
    GPUDirectRDMASpec,
    GPUDirectStorageSpec,
    NVIDIADriverSpec,
)

__all__ = [
    "AdditionalConfigs",
    "DriverRenderData",
    "GDRCopyRenderData",
    "GDSRenderData",
    "OpenShiftRenderData",
    "PrecompiledRenderData",
    "RenderData",
    "RuntimeRenderData",
]


@dataclass
class DriverRenderData:
    """Settings of the driver container and its DaemonSet."""

    spec: NVIDIADriverSpec
    """Driver specification after per-pool adjustments."""

    name: str
    """Name of the per-driver objects (service account, roles)."""

    app_name: str
    """Name of the DaemonSet and value of its ``app`` label."""

    image_path: str
    """Full driver image reference."""

    manager_image_path: str
    """Full driver manager image reference."""

    os_version: str
    """Operating system of the pool, such as ``ubuntu22.04``."""


@dataclass
class GDSRenderData:
    """Settings of the GPUDirect Storage container."""

    spec: GPUDirectStorageSpec
    image_path: str


@dataclass
class GDRCopyRenderData:
    """Settings of the GDRCopy container."""

    spec: GDRCopySpec
    image_path: str


@dataclass
class RuntimeRenderData:
    """Facts about the cluster and the controller."""

    namespace: str
    """Namespace in which driver objects are created."""

    kubernetes_version: str
    """Version of the Kubernetes control plane."""

    openshift_version: str | None = None
    """OpenShift version, if running on OpenShift."""

    openshift_driver_toolkit_enabled: bool = False
    """Whether the driver toolkit side-car is used."""

    openshift_driver_toolkit_images: dict[str, str] = field(
        default_factory=dict
    )
    """Driver toolkit image for each RHCOS version."""

    openshift_proxy_spec: ProxySpec | None = None
    """Cluster-wide proxy configuration on OpenShift."""

    node_pools: list[NodePool] = field(default_factory=list)
    """All node pools of the driver, for manifests that need them."""


@dataclass
class OpenShiftRenderData:
    """Settings specific to the OpenShift driver toolkit."""

    toolkit_image: str | None
    """Driver toolkit image for the pool, if the image stream has one."""

    rhcos_version: str
    """RHCOS version of the pool."""


@dataclass
class PrecompiledRenderData:
    """Settings specific to precompiled drivers."""

    kernel_version: str
    sanitized_kernel_version: str


@dataclass
class AdditionalConfigs:
    """Volumes and mounts for configuration referenced by the driver.

    Mounts are added to the driver container and its add-on containers.
    """

    volumes: list[V1Volume] = field(default_factory=list)
    volume_mounts: list[V1VolumeMount] = field(default_factory=list)


@dataclass
class RenderData:
    """Everything the manifest templates need for one node pool.

    Each field is exposed to the templates as a top-level variable. Optional
    fields are `None` when the corresponding feature is disabled, and the
    templates then omit the corresponding containers.
    """

    driver: DriverRenderData
    runtime: RuntimeRenderData
    additional_configs: AdditionalConfigs
    host_root: str
    gds: GDSRenderData | None = None
    gdrcopy: GDRCopyRenderData | None = None
    gpu_direct_rdma: GPUDirectRDMASpec | None = None
    openshift: OpenShiftRenderData | None = None
    precompiled: PrecompiledRenderData | None = None
