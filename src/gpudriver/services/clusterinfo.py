"""Gathering of cluster facts for a reconcile pass."""

from __future__ import annotations

from structlog.stdlib import BoundLogger

from ..constants import GPU_PRESENT_LABEL
from ..exceptions import UnknownClusterVersionError
from ..models.domain.clusterinfo import (
    ClusterInfo,
    ContainerRuntime,
    ProxySpec,
)
from ..storage.kubernetes.clusterinfo import ClusterInfoStorage
from ..storage.kubernetes.node import NodeStorage
from ..timeout import Timeout

__all__ = ["ClusterInfoService"]

_RUNTIME_PREFIXES = {
    "containerd": ContainerRuntime.CONTAINERD,
    "cri-o": ContainerRuntime.CRIO,
    "docker": ContainerRuntime.DOCKER,
}


class ClusterInfoService:
    """Collects the runtime facts about the cluster.

    Facts are fetched fresh on each call, since the cluster may be upgraded
    between passes.

    Parameters
    ----------
    storage
        Storage for cluster-wide objects.
    node_storage
        Storage for Kubernetes nodes.
    logger
        Logger to use.
    """

    def __init__(
        self,
        storage: ClusterInfoStorage,
        node_storage: NodeStorage,
        logger: BoundLogger,
    ) -> None:
        self._storage = storage
        self._node_storage = node_storage
        self._logger = logger

    async def get(self, timeout: Timeout, *, precompiled: bool) -> ClusterInfo:
        """Gather the facts needed to build the driver manifests.

        The proxy settings and driver toolkit images are only looked up on
        OpenShift when precompiled drivers are not in use, since only the
        driver toolkit side-car needs them.

        Parameters
        ----------
        timeout
            Timeout on the Kubernetes calls.
        precompiled
            Whether the driver resource uses precompiled drivers.

        Returns
        -------
        ClusterInfo
            Facts about the cluster.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        UnknownClusterVersionError
            Raised if the cluster is OpenShift but has no completed version.
        """
        kubernetes_version = await self._storage.get_kubernetes_version(
            timeout
        )
        openshift_version = await self.get_openshift_version(timeout)
        info = ClusterInfo(
            kubernetes_version=kubernetes_version,
            openshift_version=openshift_version,
        )
        if info.is_openshift:
            info.container_runtime = ContainerRuntime.CRIO
        else:
            info.container_runtime = await self._get_container_runtime(
                timeout
            )
        if info.is_openshift and not precompiled:
            proxy = await self._storage.get_proxy(timeout)
            if proxy:
                info.proxy = ProxySpec.from_dict(proxy.get("spec") or {})
            images = await self._storage.get_driver_toolkit_images(timeout)
            info.toolkit_images = images
        return info

    async def get_openshift_version(self, timeout: Timeout) -> str | None:
        """Determine the OpenShift version of the cluster.

        Parameters
        ----------
        timeout
            Timeout on the Kubernetes calls.

        Returns
        -------
        str or None
            ``major.minor`` version of the most recent completed update, or
            `None` if the cluster is not OpenShift.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        UnknownClusterVersionError
            Raised if no update of the cluster has completed.
        """
        version = await self._storage.get_cluster_version(timeout)
        if version is None:
            return None
        for entry in version.get("status", {}).get("history") or []:
            if entry.get("state") != "Completed":
                continue
            return ".".join(entry.get("version", "").split(".")[:2])
        raise UnknownClusterVersionError

    async def _get_container_runtime(
        self, timeout: Timeout
    ) -> ContainerRuntime:
        """Determine the container runtime from the GPU nodes.

        Containerd wins if any node runs it. Otherwise the runtime of the
        last recognized node is used, and containerd is assumed if no node
        reports a recognized runtime.
        """
        selector = {GPU_PRESENT_LABEL: "true"}
        nodes = await self._node_storage.list(selector, timeout)
        runtime = None
        for node in nodes:
            node_info = node.get("status", {}).get("nodeInfo") or {}
            version = node_info.get("containerRuntimeVersion") or ""
            for prefix, candidate in _RUNTIME_PREFIXES.items():
                if version.startswith(prefix):
                    runtime = candidate
                    break
            else:
                name = node.get("metadata", {}).get("name")
                self._logger.info(
                    "Unrecognized container runtime",
                    node=name,
                    runtime=version,
                )
            if runtime == ContainerRuntime.CONTAINERD:
                break
        if runtime is None:
            self._logger.info(
                "Unable to determine container runtime, assuming containerd"
            )
            return ContainerRuntime.CONTAINERD
        return runtime
