"""Assembly of the template data for one node pool."""

from __future__ import annotations

from structlog.stdlib import BoundLogger

from ...config import Config
from ...constants import APP_NAME_MAX_LENGTH, NAME_MAX_LENGTH
from ...exceptions import InvalidImageReferenceError
from ...models.domain.clusterinfo import ClusterInfo
from ...models.domain.image import DIGEST_PREFIX, ImageReference, image_path
from ...models.domain.nodepool import NodePool
from ...models.domain.nvidiadriver import (
    ContainerProbeSpec,
    DriverType,
    ImageSpec,
    NVIDIADriver,
    NVIDIADriverSpec,
)
from ...models.domain.renderdata import (
    DriverRenderData,
    GDRCopyRenderData,
    GDSRenderData,
    OpenShiftRenderData,
    PrecompiledRenderData,
    RenderData,
    RuntimeRenderData,
)
from ...timeout import Timeout
from ..digest import string_hash
from .volumes import AdditionalConfigBuilder

__all__ = [
    "RenderDataBuilder",
    "default_startup_check",
    "driver_app_name",
    "driver_image_path",
    "driver_name",
    "sanitize_labels",
    "suffixed_image_path",
]


def driver_name(driver: NVIDIADriver, os: str) -> str:
    """Name of the per-pool service account and RBAC objects.

    Parameters
    ----------
    driver
        Driver resource.
    os
        Operating system of the pool, such as ``ubuntu22.04``.

    Returns
    -------
    str
        Name, truncated to the maximum length of an object name.
    """
    if driver.spec.driver_type == DriverType.VGPU_HOST_MANAGER:
        name = f"nvidia-vgpu-manager-{driver.name}-{os}"
    else:
        driver_type = driver.spec.driver_type.value
        name = f"nvidia-{driver_type}-driver-{driver.name}-{os}"
    return name[:NAME_MAX_LENGTH]


def driver_app_name(driver: NVIDIADriver, pool: NodePool) -> str:
    """Name of the DaemonSet for a node pool.

    The name ends in a hash of the resource UID and, if set, the kernel or
    RHCOS version of the pool, so that it is unique per resource and pool.
    If the name is too long for a label value, the readable prefix is
    truncated and the hash is kept intact.

    Parameters
    ----------
    driver
        Driver resource.
    pool
        Node pool.

    Returns
    -------
    str
        Name of the DaemonSet, also used as its ``app`` label.
    """
    driver_type = driver.spec.driver_type.value
    prefix = f"nvidia-{driver_type}-driver-{pool.os}"
    key = driver.metadata.uid
    if pool.kernel_version:
        key += f"-{pool.kernel_version}"
    elif pool.rhcos_version:
        key += f"-{pool.rhcos_version}"
    digest = string_hash(key)
    name = f"{prefix}-{digest}"
    if len(name) > APP_NAME_MAX_LENGTH:
        prefix_length = APP_NAME_MAX_LENGTH - len(digest) - 1
        name = f"{prefix[:prefix_length]}-{digest}"
    return name


def default_startup_check(spec: NVIDIADriverSpec) -> ContainerProbeSpec:
    """Startup probe used when the resource does not specify one.

    Precompiled drivers are ready almost immediately, so the probe starts
    sooner.
    """
    return ContainerProbeSpec(
        initial_delay_seconds=5 if spec.use_precompiled_drivers else 60,
        timeout_seconds=60,
        period_seconds=10,
        success_threshold=1,
        failure_threshold=120,
    )


def sanitize_labels(labels: dict[str, str]) -> dict[str, str]:
    """Drop user labels that would change the DaemonSet pod selector.

    Pod selectors of a DaemonSet are immutable, so the ``app`` label and
    the ``app.kubernetes.io/`` labels can never be overridden.
    """
    return {
        k: v
        for k, v in labels.items()
        if k != "app" and not k.startswith("app.kubernetes.io/")
    }


def suffixed_image_path(spec: ImageSpec, os_tag: str) -> str:
    """Image path of a per-OS image with the operating system suffix.

    Parameters
    ----------
    spec
        Image coordinates.
    os_tag
        Operating system tag of the pool.

    Returns
    -------
    str
        Image path. The suffix is not added to digest references.

    Raises
    ------
    InvalidImageReferenceError
        Raised if no image was specified or the result is not a valid image
        reference.
    """
    path = image_path(spec.repository, spec.image, spec.version)
    if DIGEST_PREFIX not in path:
        path = f"{path}-{os_tag}"
    ImageReference.from_str(path)
    return path


def driver_image_path(spec: NVIDIADriverSpec, pool: NodePool) -> str:
    """Image path of the driver container for a node pool.

    Parameters
    ----------
    spec
        Specification of the driver resource.
    pool
        Node pool.

    Returns
    -------
    str
        Driver image path. Precompiled images are tagged with the sanitized
        kernel version as well as the operating system.

    Raises
    ------
    InvalidImageReferenceError
        Raised if no image was specified, a digest was given for
        precompiled drivers, or the result is not a valid image reference.
    """
    if not spec.use_precompiled_drivers:
        return suffixed_image_path(spec, pool.os_tag)
    path = image_path(spec.repository, spec.image, spec.version)
    if DIGEST_PREFIX in path:
        msg = "Image digests are not supported with precompiled drivers"
        raise InvalidImageReferenceError(msg)
    path = f"{path}-{pool.sanitized_kernel_version}-{pool.os_tag}"
    ImageReference.from_str(path)
    return path


class RenderDataBuilder:
    """Builds the data passed to the manifest templates for a node pool.

    Parameters
    ----------
    config
        Controller configuration.
    volume_builder
        Builder for the volumes of referenced configuration.
    logger
        Logger to use.
    """

    def __init__(
        self,
        config: Config,
        volume_builder: AdditionalConfigBuilder,
        logger: BoundLogger,
    ) -> None:
        self._config = config
        self._volumes = volume_builder
        self._logger = logger

    async def build(
        self,
        driver: NVIDIADriver,
        pool: NodePool,
        cluster_info: ClusterInfo,
        pools: list[NodePool],
        timeout: Timeout,
    ) -> RenderData:
        """Build the template data for one node pool.

        Parameters
        ----------
        driver
            Driver resource.
        pool
            Node pool being rendered.
        cluster_info
            Facts about the cluster.
        pools
            All node pools of the driver resource.
        timeout
            Timeout on the Kubernetes calls.

        Returns
        -------
        RenderData
            Template data.

        Raises
        ------
        InvalidImageReferenceError
            Raised if an image path could not be constructed.
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        MissingConfigMapError
            Raised if a referenced config map does not exist.
        UnsupportedDistributionError
            Raised if the pool does not support a requested configuration.
        """
        spec = driver.spec
        data = RenderData(
            driver=self.build_driver(driver, pool),
            runtime=self.build_runtime(cluster_info, pools),
            additional_configs=await self._volumes.build(
                spec, pool, cluster_info, timeout
            ),
            host_root=self._config.host_root,
            gpu_direct_rdma=spec.gpu_direct_rdma,
        )
        if spec.use_precompiled_drivers and pool.kernel_version:
            data.precompiled = PrecompiledRenderData(
                kernel_version=pool.kernel_version,
                sanitized_kernel_version=pool.sanitized_kernel_version or "",
            )
        if spec.is_gds_enabled and spec.gpu_direct_storage:
            gds = spec.gpu_direct_storage
            path = suffixed_image_path(gds, pool.os_tag)
            data.gds = GDSRenderData(spec=gds, image_path=path)
        if spec.is_gdrcopy_enabled and spec.gdrcopy:
            gdrcopy = spec.gdrcopy
            path = suffixed_image_path(gdrcopy, pool.os_tag)
            data.gdrcopy = GDRCopyRenderData(spec=gdrcopy, image_path=path)
        if not spec.use_precompiled_drivers and cluster_info.toolkit_enabled:
            rhcos_version = pool.rhcos_version or ""
            data.openshift = OpenShiftRenderData(
                toolkit_image=cluster_info.toolkit_images.get(rhcos_version),
                rhcos_version=rhcos_version,
            )
            if data.openshift.toolkit_image is None:
                self._logger.warning(
                    "No driver toolkit image for RHCOS version",
                    rhcos_version=rhcos_version,
                    node_pool=pool.name,
                )
        return data

    def build_driver(
        self, driver: NVIDIADriver, pool: NodePool
    ) -> DriverRenderData:
        """Build the driver settings for a node pool.

        The specification of the resource is copied, not modified, with the
        node selector of the pool, the default startup probe, and only the
        user labels that are safe to apply.

        Parameters
        ----------
        driver
            Driver resource.
        pool
            Node pool.

        Returns
        -------
        DriverRenderData
            Driver settings.

        Raises
        ------
        InvalidImageReferenceError
            Raised if an image path could not be constructed.
        """
        spec = driver.spec
        manager = spec.manager
        manager_image_path = image_path(
            manager.repository,
            manager.image,
            manager.version,
            self._config.driver_manager_image,
        )
        update = {
            "node_selector": dict(pool.node_selector),
            "labels": sanitize_labels(spec.labels),
            "startup_probe": (
                spec.startup_probe or default_startup_check(spec)
            ),
        }
        return DriverRenderData(
            spec=spec.model_copy(update=update, deep=True),
            name=driver_name(driver, pool.os),
            app_name=driver_app_name(driver, pool),
            image_path=driver_image_path(spec, pool),
            manager_image_path=manager_image_path,
            os_version=pool.os,
        )

    def build_runtime(
        self, cluster_info: ClusterInfo, pools: list[NodePool]
    ) -> RuntimeRenderData:
        """Build the cluster facts shared by every node pool."""
        return RuntimeRenderData(
            namespace=self._config.operator_namespace,
            kubernetes_version=cluster_info.kubernetes_version,
            openshift_version=cluster_info.openshift_version,
            openshift_driver_toolkit_enabled=cluster_info.toolkit_enabled,
            openshift_driver_toolkit_images=dict(cluster_info.toolkit_images),
            openshift_proxy_spec=cluster_info.proxy,
            node_pools=list(pools),
        )
