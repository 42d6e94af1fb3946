"""Models for the ``NVIDIADriver`` custom resource."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

import semver
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ...constants import GPU_PRESENT_LABEL, MINIMUM_GDS_VERSION_FOR_OPEN_RM

__all__ = [
    "Condition",
    "ContainerProbeSpec",
    "DriverManagerSpec",
    "DriverState",
    "DriverType",
    "EnvVar",
    "GDRCopySpec",
    "GPUDirectRDMASpec",
    "GPUDirectStorageSpec",
    "ImageSpec",
    "KernelModuleType",
    "LicensingConfigSpec",
    "NVIDIADriver",
    "NVIDIADriverSpec",
    "NVIDIADriverStatus",
    "NamedConfigSpec",
    "ObjectMetadata",
    "ResourceRequirements",
]


class _CamelModel(BaseModel):
    """Base for resource models, which use camel-case keys."""

    model_config = ConfigDict(
        alias_generator=to_camel, extra="ignore", populate_by_name=True
    )


class DriverType(str, Enum):
    """Type of driver to install."""

    GPU = "gpu"
    VGPU = "vgpu"
    VGPU_HOST_MANAGER = "vgpu-host-manager"


class KernelModuleType(str, Enum):
    """Flavor of the NVIDIA kernel modules."""

    AUTO = "auto"
    OPEN = "open"
    PROPRIETARY = "proprietary"


class DriverState(str, Enum):
    """Overall state reported in the resource status."""

    READY = "ready"
    NOT_READY = "notReady"
    DISABLED = "disabled"


class EnvVar(_CamelModel):
    """Environment variable with a literal value."""

    name: str = Field(..., title="Variable name")

    value: str = Field("", title="Variable value")


class ContainerProbeSpec(_CamelModel):
    """Timing parameters of a container probe."""

    initial_delay_seconds: int | None = Field(
        None, title="Delay before the first probe"
    )

    timeout_seconds: int | None = Field(None, title="Timeout of one probe")

    period_seconds: int | None = Field(None, title="Interval between probes")

    success_threshold: int | None = Field(
        None, title="Successes after failure before the probe passes"
    )

    failure_threshold: int | None = Field(
        None, title="Failures before the probe fails"
    )


class ImageSpec(_CamelModel):
    """Coordinates of a container image."""

    repository: str = Field("", title="Image repository")

    image: str = Field("", title="Image name")

    version: str = Field(
        "",
        title="Image version",
        description="Either a tag or a digest starting with ``sha256:``",
    )

    image_pull_policy: str | None = Field(None, title="Image pull policy")

    image_pull_secrets: list[str] = Field(
        [], title="Names of image pull secrets"
    )


class DriverManagerSpec(ImageSpec):
    """Configuration of the ``k8s-driver-manager`` init container."""

    env: list[EnvVar] = Field([], title="Additional environment variables")


class GPUDirectRDMASpec(_CamelModel):
    """GPUDirect RDMA settings."""

    enabled: bool | None = Field(None, title="Whether RDMA is enabled")

    use_host_mofed: bool | None = Field(
        None,
        title="Use host MOFED",
        description="Whether the MOFED driver is installed on the host",
    )


class GPUDirectStorageSpec(ImageSpec):
    """GPUDirect Storage driver settings."""

    enabled: bool | None = Field(None, title="Whether GDS is enabled")

    args: list[str] = Field([], title="Additional arguments")

    env: list[EnvVar] = Field([], title="Additional environment variables")


class GDRCopySpec(ImageSpec):
    """GDRCopy driver settings."""

    enabled: bool | None = Field(None, title="Whether GDRCopy is enabled")

    args: list[str] = Field([], title="Additional arguments")

    env: list[EnvVar] = Field([], title="Additional environment variables")


class NamedConfigSpec(_CamelModel):
    """Reference by name to a config map in the operator namespace."""

    name: str = Field("", title="Name of config map")


class LicensingConfigSpec(NamedConfigSpec):
    """Reference to the vGPU licensing configuration."""

    nls_enabled: bool | None = Field(
        None,
        title="Whether NVIDIA License System is enabled",
        description="Defaults to enabled if not set",
    )

    @property
    def is_nls_enabled(self) -> bool:
        """Whether the NLS client token should be mounted."""
        return True if self.nls_enabled is None else self.nls_enabled


class ResourceRequirements(_CamelModel):
    """Resource limits and requests for the driver container."""

    limits: dict[str, Any] | None = Field(None, title="Resource limits")

    requests: dict[str, Any] | None = Field(None, title="Resource requests")


class NVIDIADriverSpec(ImageSpec):
    """Desired state of one ``NVIDIADriver`` instance."""

    driver_type: DriverType = Field(DriverType.GPU, title="Driver type")

    use_precompiled: bool | None = Field(
        None, title="Whether to use precompiled driver images"
    )

    kernel_module_type: KernelModuleType | None = Field(
        None, title="Kernel module flavor"
    )

    startup_probe: ContainerProbeSpec | None = Field(
        None, title="Startup probe of the driver container"
    )

    liveness_probe: ContainerProbeSpec | None = Field(
        None, title="Liveness probe of the driver container"
    )

    readiness_probe: ContainerProbeSpec | None = Field(
        None, title="Readiness probe of the driver container"
    )

    gpu_direct_rdma: GPUDirectRDMASpec | None = Field(
        None, alias="rdma", title="GPUDirect RDMA settings"
    )

    gpu_direct_storage: GPUDirectStorageSpec | None = Field(
        None, alias="gds", title="GPUDirect Storage settings"
    )

    gdrcopy: GDRCopySpec | None = Field(None, title="GDRCopy settings")

    manager: DriverManagerSpec = Field(
        DriverManagerSpec(), title="Driver manager settings"
    )

    resources: ResourceRequirements | None = Field(
        None, title="Resources of the driver container"
    )

    args: list[str] = Field([], title="Additional driver arguments")

    env: list[EnvVar] = Field([], title="Additional environment variables")

    secret_env: str | None = Field(
        None,
        title="Secret with environment variables",
        description=(
            "Name of a secret in the operator namespace whose keys are added"
            " to the driver container environment"
        ),
    )

    repo_config: NamedConfigSpec | None = Field(
        None, title="Custom package repository configuration"
    )

    cert_config: NamedConfigSpec | None = Field(
        None, title="Custom certificates"
    )

    licensing_config: LicensingConfigSpec | None = Field(
        None, title="vGPU licensing configuration"
    )

    virtual_topology_config: NamedConfigSpec | None = Field(
        None, title="Virtual topology daemon configuration"
    )

    kernel_module_config: NamedConfigSpec | None = Field(
        None, title="Kernel module parameters"
    )

    node_selector: dict[str, str] | None = Field(
        None, title="Node selector for driver pods"
    )

    node_affinity: dict[str, Any] | None = Field(
        None, title="Node affinity for driver pods"
    )

    labels: dict[str, str] = Field({}, title="Additional pod labels")

    annotations: dict[str, str] = Field(
        {}, title="Additional pod annotations"
    )

    tolerations: list[dict[str, Any]] = Field(
        [], title="Additional pod tolerations"
    )

    priority_class_name: str | None = Field(
        None, title="Priority class of driver pods"
    )

    @property
    def use_precompiled_drivers(self) -> bool:
        """Whether precompiled driver images are requested."""
        return bool(self.use_precompiled)

    @property
    def is_gds_enabled(self) -> bool:
        """Whether the GPUDirect Storage driver is enabled."""
        gds = self.gpu_direct_storage
        return bool(gds and gds.enabled)

    @property
    def is_gdrcopy_enabled(self) -> bool:
        """Whether the GDRCopy driver is enabled."""
        return bool(self.gdrcopy and self.gdrcopy.enabled)

    @property
    def is_open_kernel_modules_enabled(self) -> bool:
        """Whether open kernel modules are explicitly requested."""
        return self.kernel_module_type == KernelModuleType.OPEN

    @property
    def is_open_kernel_modules_required(self) -> bool:
        """Whether the configured GDS release needs open kernel modules.

        Digest versions cannot be compared and are assumed to be recent.
        Versions that are not valid semantic versions are assumed to be
        older releases.
        """
        if not self.is_gds_enabled or not self.gpu_direct_storage:
            return False
        version = self.gpu_direct_storage.version
        if version.startswith("sha256"):
            return True
        version = version.removeprefix("v")
        try:
            parsed = semver.Version.parse(
                version, optional_minor_and_patch=True
            )
        except ValueError:
            return False
        return parsed.compare(MINIMUM_GDS_VERSION_FOR_OPEN_RM) >= 0


class Condition(_CamelModel):
    """Status condition, in the format used by all Kubernetes objects."""

    type: str = Field(..., title="Condition type")

    status: str = Field(..., title="Condition status")

    reason: str = Field("", title="Machine-readable reason")

    message: str = Field("", title="Human-readable message")

    last_transition_time: datetime | None = Field(
        None, title="When the status last changed"
    )

    observed_generation: int | None = Field(
        None, title="Generation of the resource this condition reflects"
    )


class NVIDIADriverStatus(_CamelModel):
    """Observed state of one ``NVIDIADriver`` instance."""

    state: DriverState | None = Field(None, title="Overall state")

    namespace: str | None = Field(
        None, title="Namespace of the driver objects"
    )

    conditions: list[Condition] = Field([], title="Status conditions")


class ObjectMetadata(_CamelModel):
    """The parts of Kubernetes object metadata used by the controller."""

    name: str = Field(..., title="Name of the object")

    uid: str = Field("", title="Unique identifier of the object")

    generation: int | None = Field(None, title="Generation of the spec")

    resource_version: str | None = Field(
        None, title="Version for optimistic concurrency"
    )


class NVIDIADriver(_CamelModel):
    """An ``NVIDIADriver`` custom resource."""

    api_version: str = Field("nvidia.com/v1alpha1", title="API version")

    kind: str = Field("NVIDIADriver", title="Kind")

    metadata: ObjectMetadata = Field(..., title="Object metadata")

    spec: NVIDIADriverSpec = Field(
        NVIDIADriverSpec(), title="Desired state"
    )

    status: NVIDIADriverStatus = Field(
        NVIDIADriverStatus(), title="Observed state"
    )

    @property
    def name(self) -> str:
        """Name of the resource."""
        return self.metadata.name

    @property
    def node_selector_or_default(self) -> dict[str, str]:
        """Node selector of the resource, defaulting to all GPU nodes."""
        if self.spec.node_selector is None:
            return {GPU_PRESENT_LABEL: "true"}
        return self.spec.node_selector
