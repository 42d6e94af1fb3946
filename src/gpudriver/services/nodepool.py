"""Partitioning of GPU nodes into install-compatible pools."""

from __future__ import annotations

from typing import Any

from structlog.stdlib import BoundLogger

from ..constants import (
    GPU_PRESENT_LABEL,
    NFD_KERNEL_LABEL,
    NFD_OS_RELEASE_LABEL,
    NFD_OS_TREE_VERSION_LABEL,
    NFD_OS_VERSION_LABEL,
)
from ..models.domain.nodepool import NodePool, sanitize_kernel_version
from ..storage.kubernetes.node import NodeStorage
from ..timeout import Timeout

__all__ = ["NodePoolPartitioner"]


class NodePoolPartitioner:
    """Groups GPU nodes into pools that can share one driver DaemonSet.

    Every node in a pool has the same operating system and version. With
    precompiled drivers, nodes are further split by kernel version. On
    OpenShift without precompiled drivers, pools are keyed by the RHCOS
    image version instead, since the driver is built against that image.

    Parameters
    ----------
    node_storage
        Storage layer for Kubernetes nodes.
    logger
        Logger to use.
    """

    def __init__(self, node_storage: NodeStorage, logger: BoundLogger) -> None:
        self._storage = node_storage
        self._logger = logger

    async def get_node_pools(
        self,
        selector: dict[str, str],
        timeout: Timeout,
        *,
        precompiled: bool,
        openshift: bool,
    ) -> list[NodePool]:
        """List the nodes matching a selector and partition them.

        Parameters
        ----------
        selector
            Node selector of the driver resource.
        timeout
            Timeout on the Kubernetes call.
        precompiled
            Whether precompiled drivers are used.
        openshift
            Whether the cluster is an OpenShift cluster.

        Returns
        -------
        list of NodePool
            Node pools, sorted by name.

        Raises
        ------
        KubernetesError
            Raised if listing the nodes fails.
        """
        merged = {GPU_PRESENT_LABEL: "true", **selector}
        nodes = await self._storage.list(merged, timeout)
        return self.partition(
            nodes, selector, precompiled=precompiled, openshift=openshift
        )

    def partition(
        self,
        nodes: list[dict[str, Any]],
        selector: dict[str, str],
        *,
        precompiled: bool,
        openshift: bool,
    ) -> list[NodePool]:
        """Partition nodes into node pools.

        Nodes that do not match the selector are ignored, and nodes missing a
        required discovery label are skipped with a warning.

        Parameters
        ----------
        nodes
            Nodes in their serialized form.
        selector
            Node selector of the driver resource.
        precompiled
            Whether precompiled drivers are used.
        openshift
            Whether the cluster is an OpenShift cluster.

        Returns
        -------
        list of NodePool
            Node pools, sorted by name.
        """
        base = {GPU_PRESENT_LABEL: "true", **selector}
        pools: dict[str, NodePool] = {}
        for node in nodes:
            labels = node.get("metadata", {}).get("labels") or {}
            if any(labels.get(k) != v for k, v in base.items()):
                continue
            pool = self._build_pool(
                node,
                labels,
                base,
                precompiled=precompiled,
                openshift=openshift,
            )
            if pool and pool.name not in pools:
                pools[pool.name] = pool
        return [pools[n] for n in sorted(pools)]

    def _build_pool(
        self,
        node: dict[str, Any],
        labels: dict[str, str],
        base: dict[str, str],
        *,
        precompiled: bool,
        openshift: bool,
    ) -> NodePool | None:
        """Build the node pool of a single node, if it has the labels."""
        node_name = node.get("metadata", {}).get("name")
        node_selector = dict(base)
        required = [NFD_OS_RELEASE_LABEL, NFD_OS_VERSION_LABEL]
        if precompiled:
            required.append(NFD_KERNEL_LABEL)
        elif openshift:
            required.append(NFD_OS_TREE_VERSION_LABEL)
        for label in required:
            if label not in labels:
                msg = "Node missing required label, skipping"
                self._logger.warning(msg, node=node_name, label=label)
                return None
            node_selector[label] = labels[label]

        os_release = labels[NFD_OS_RELEASE_LABEL]
        os_version = labels[NFD_OS_VERSION_LABEL]
        name = f"{os_release}{os_version}"
        kernel_version = None
        rhcos_version = None
        if precompiled:
            kernel_version = labels[NFD_KERNEL_LABEL]
            name += "-" + sanitize_kernel_version(kernel_version)
        elif openshift:
            rhcos_version = labels[NFD_OS_TREE_VERSION_LABEL]
            name = rhcos_version
        return NodePool(
            name=name,
            os_release=os_release,
            os_version=os_version,
            node_selector=node_selector,
            kernel_version=kernel_version,
            rhcos_version=rhcos_version,
        )
