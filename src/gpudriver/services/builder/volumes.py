"""Volumes for configuration referenced by a driver resource."""

from __future__ import annotations

import posixpath

from kubernetes_asyncio.client import (
    V1ConfigMapVolumeSource,
    V1HostPathVolumeSource,
    V1KeyToPath,
    V1Volume,
    V1VolumeMount,
)
from structlog.stdlib import BoundLogger

from ...constants import (
    CERT_CONFIG_PATHS,
    KERNEL_MODULE_CONFIG_PATH,
    LICENSING_CONFIG_FILE,
    LICENSING_CONFIG_MOUNT_PATH,
    LICENSING_VOLUME_NAME,
    NLS_TOKEN_FILE,
    NLS_TOKEN_MOUNT_PATH,
    REPO_CONFIG_PATHS,
    SUBSCRIPTION_PATHS,
    TOPOLOGY_CONFIG_FILE,
    TOPOLOGY_CONFIG_MOUNT_PATH,
    TOPOLOGY_VOLUME_NAME,
)
from ...exceptions import MissingConfigMapError, UnsupportedDistributionError
from ...models.domain.clusterinfo import ClusterInfo, ContainerRuntime
from ...models.domain.nodepool import NodePool
from ...models.domain.nvidiadriver import NVIDIADriverSpec
from ...models.domain.renderdata import AdditionalConfigs
from ...storage.kubernetes.creator import ConfigMapStorage
from ...timeout import Timeout

__all__ = ["AdditionalConfigBuilder"]


class AdditionalConfigBuilder:
    """Builds the extra volumes and mounts of the driver container.

    Parameters
    ----------
    config_map_storage
        Storage for config maps, used to list the keys of referenced config
        maps.
    namespace
        Namespace in which referenced config maps live.
    logger
        Logger to use.
    """

    def __init__(
        self,
        config_map_storage: ConfigMapStorage,
        namespace: str,
        logger: BoundLogger,
    ) -> None:
        self._storage = config_map_storage
        self._namespace = namespace
        self._logger = logger

    async def build(
        self,
        spec: NVIDIADriverSpec,
        pool: NodePool,
        cluster_info: ClusterInfo,
        timeout: Timeout,
    ) -> AdditionalConfigs:
        """Build the volumes and mounts for one node pool.

        Parameters
        ----------
        spec
            Specification of the driver resource.
        pool
            Node pool being rendered.
        cluster_info
            Facts about the cluster.
        timeout
            Timeout on the Kubernetes calls.

        Returns
        -------
        AdditionalConfigs
            Volumes and mounts, in a deterministic order.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        MissingConfigMapError
            Raised if a referenced config map does not exist.
        UnsupportedDistributionError
            Raised if a configuration is requested for an operating system
            that does not support it.
        """
        result = AdditionalConfigs()
        os_release = pool.os_release

        if not spec.use_precompiled_drivers:
            if spec.repo_config and spec.repo_config.name:
                if os_release not in REPO_CONFIG_PATHS:
                    raise UnsupportedDistributionError(
                        os_release, "custom repository configuration"
                    )
                await self._add_config_map(
                    result,
                    spec.repo_config.name,
                    REPO_CONFIG_PATHS[os_release],
                    timeout,
                )
            if spec.cert_config and spec.cert_config.name:
                if os_release not in CERT_CONFIG_PATHS:
                    raise UnsupportedDistributionError(
                        os_release, "custom certificates"
                    )
                await self._add_config_map(
                    result,
                    spec.cert_config.name,
                    CERT_CONFIG_PATHS[os_release],
                    timeout,
                )
            if self._needs_subscriptions(pool, cluster_info):
                self._logger.info(
                    "Mounting subscriptions into the driver container",
                    os=pool.os,
                )
                self._add_subscriptions(result, os_release)

        kernel_module_config = spec.kernel_module_config
        if kernel_module_config and kernel_module_config.name:
            await self._add_config_map(
                result,
                kernel_module_config.name,
                KERNEL_MODULE_CONFIG_PATH,
                timeout,
            )

        licensing = spec.licensing_config
        if licensing and licensing.name:
            items = [
                V1KeyToPath(
                    key=LICENSING_CONFIG_FILE, path=LICENSING_CONFIG_FILE
                )
            ]
            result.volume_mounts.append(
                V1VolumeMount(
                    name=LICENSING_VOLUME_NAME,
                    read_only=True,
                    mount_path=LICENSING_CONFIG_MOUNT_PATH,
                    sub_path=LICENSING_CONFIG_FILE,
                )
            )
            if licensing.is_nls_enabled:
                items.append(
                    V1KeyToPath(key=NLS_TOKEN_FILE, path=NLS_TOKEN_FILE)
                )
                result.volume_mounts.append(
                    V1VolumeMount(
                        name=LICENSING_VOLUME_NAME,
                        read_only=True,
                        mount_path=NLS_TOKEN_MOUNT_PATH,
                        sub_path=NLS_TOKEN_FILE,
                    )
                )
            result.volumes.append(
                _config_map_volume(
                    LICENSING_VOLUME_NAME, licensing.name, items
                )
            )

        topology = spec.virtual_topology_config
        if topology and topology.name:
            result.volume_mounts.append(
                V1VolumeMount(
                    name=TOPOLOGY_VOLUME_NAME,
                    read_only=True,
                    mount_path=TOPOLOGY_CONFIG_MOUNT_PATH,
                    sub_path=TOPOLOGY_CONFIG_FILE,
                )
            )
            items = [
                V1KeyToPath(
                    key=TOPOLOGY_CONFIG_FILE, path=TOPOLOGY_CONFIG_FILE
                )
            ]
            result.volumes.append(
                _config_map_volume(TOPOLOGY_VOLUME_NAME, topology.name, items)
            )

        return result

    async def _add_config_map(
        self,
        result: AdditionalConfigs,
        name: str,
        directory: str,
        timeout: Timeout,
    ) -> None:
        """Mount every key of a config map as a file in a directory.

        There is one mount per key, in sorted key order, each using a
        ``subPath`` so that existing files in the directory are preserved.
        """
        config_map = await self._storage.read(name, self._namespace, timeout)
        if config_map is None:
            raise MissingConfigMapError(name, self._namespace)
        keys = sorted((config_map.get("data") or {}).keys())
        items = []
        for key in keys:
            result.volume_mounts.append(
                V1VolumeMount(
                    name=name,
                    read_only=True,
                    mount_path=posixpath.join(directory, key),
                    sub_path=key,
                )
            )
            items.append(V1KeyToPath(key=key, path=key))
        result.volumes.append(_config_map_volume(name, name, items))

    def _add_subscriptions(
        self, result: AdditionalConfigs, os_release: str
    ) -> None:
        """Mount the subscription entitlements of the host, if any."""
        if os_release not in SUBSCRIPTION_PATHS:
            raise UnsupportedDistributionError(
                os_release, "subscription entitlements"
            )
        paths = SUBSCRIPTION_PATHS[os_release]
        for i, mount_path in enumerate(sorted(paths)):
            host_path, path_type = paths[mount_path]
            name = f"subscription-config-{i}"
            result.volume_mounts.append(
                V1VolumeMount(name=name, mount_path=mount_path, read_only=True)
            )
            result.volumes.append(
                V1Volume(
                    name=name,
                    host_path=V1HostPathVolumeSource(
                        path=host_path, type=path_type
                    ),
                )
            )

    def _needs_subscriptions(
        self, pool: NodePool, cluster_info: ClusterInfo
    ) -> bool:
        """Whether the driver needs the subscription entitlements of the host.

        RHEL needs them only outside OpenShift and with a runtime other than
        CRI-O, which otherwise injects them itself.
        """
        if pool.os_release in ("sles", "sl-micro"):
            return True
        return (
            pool.os_release == "rhel"
            and not cluster_info.is_openshift
            and cluster_info.container_runtime != ContainerRuntime.CRIO
        )


def _config_map_volume(
    volume_name: str, config_map_name: str, items: list[V1KeyToPath]
) -> V1Volume:
    return V1Volume(
        name=volume_name,
        config_map=V1ConfigMapVolumeSource(name=config_map_name, items=items),
    )
