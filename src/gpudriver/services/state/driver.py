"""State unit managing the per-pool driver DaemonSets."""

from __future__ import annotations

import dataclasses
from typing import Any

from structlog.stdlib import BoundLogger

from ...config import Config
from ...constants import (
    CONTAINER_DRIVER_MANAGER,
    DRIVER_STATE_NAME,
    HASH_ANNOTATION,
    STATE_LABEL,
)
from ...exceptions import NoNodePoolsError
from ...models.domain.clusterinfo import ClusterInfo
from ...models.domain.nodepool import NodePool
from ...models.domain.nvidiadriver import NVIDIADriver
from ...models.domain.renderdata import RenderData
from ...models.domain.syncstate import StateResult, SyncState
from ...storage.kubernetes.deleter import DaemonSetStorage
from ...storage.kubernetes.node import NodeStorage
from ...timeout import Timeout
from ..builder.driver import RenderDataBuilder
from ..clusterinfo import ClusterInfoService
from ..nodepool import NodePoolPartitioner
from ..render import ManifestRenderer
from .base import ObjectApplier, StateUnit

__all__ = [
    "DriverState",
    "is_daemonset_ready",
]


def is_daemonset_ready(daemonset: dict[str, Any] | None) -> bool:
    """Whether a DaemonSet has finished rolling out.

    Every scheduled pod must be available and running the current pod
    template. A DaemonSet with no scheduled pods is not ready, since the
    driver is then installed nowhere.

    Parameters
    ----------
    daemonset
        Live DaemonSet, or `None` if it does not exist.

    Returns
    -------
    bool
        Whether the DaemonSet is ready.
    """
    if daemonset is None:
        return False
    status = daemonset.get("status") or {}
    desired = status.get("desiredNumberScheduled") or 0
    available = status.get("numberAvailable") or 0
    updated = status.get("updatedNumberScheduled") or 0
    return desired != 0 and available == desired and updated == available


def _find_daemonset(objects: list[dict[str, Any]]) -> dict[str, Any] | None:
    for obj in objects:
        if obj.get("kind") == "DaemonSet":
            return obj
    return None


def _init_container_image(
    daemonset: dict[str, Any], name: str
) -> str | None:
    pod_spec = daemonset.get("spec", {}).get("template", {}).get("spec", {})
    for container in pod_spec.get("initContainers") or []:
        if container.get("name") == name:
            return container.get("image")
    return None


class DriverState(StateUnit):
    """Installs the driver on every node pool of a driver resource.

    Each node pool gets its own DaemonSet, along with the service account,
    RBAC objects, and other objects the manifests produce for it.
    DaemonSets left behind by node pools that no longer exist are deleted.

    Parameters
    ----------
    config
        Controller configuration.
    cluster_info_service
        Service gathering facts about the cluster.
    partitioner
        Node pool partitioner.
    render_data_builder
        Builder of the template data for a node pool.
    renderer
        Manifest renderer.
    applier
        Applier of the rendered objects.
    daemon_set_storage
        Storage for DaemonSets.
    node_storage
        Storage for nodes.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        config: Config,
        cluster_info_service: ClusterInfoService,
        partitioner: NodePoolPartitioner,
        render_data_builder: RenderDataBuilder,
        renderer: ManifestRenderer,
        applier: ObjectApplier,
        daemon_set_storage: DaemonSetStorage,
        node_storage: NodeStorage,
        logger: BoundLogger,
    ) -> None:
        self._config = config
        self._cluster_info = cluster_info_service
        self._partitioner = partitioner
        self._builder = render_data_builder
        self._renderer = renderer
        self._applier = applier
        self._daemon_sets = daemon_set_storage
        self._nodes = node_storage
        self._logger = logger

    @property
    def name(self) -> str:
        return DRIVER_STATE_NAME

    async def sync(
        self, driver: NVIDIADriver, timeout: Timeout
    ) -> StateResult:
        """Install the driver on every node pool.

        Stale DaemonSets are deleted first. Then the objects of each pool are
        built, rendered, and applied in pool order, and the unit is ready
        once the DaemonSet of every pool has rolled out.

        Parameters
        ----------
        driver
            Driver resource being reconciled.
        timeout
            Timeout on the whole pass.

        Returns
        -------
        StateResult
            Ready if every DaemonSet is ready, otherwise not ready with the
            names of the DaemonSets still rolling out.

        Raises
        ------
        ControllerError
            Raised if any pool could not be built, rendered, or applied.
        ControllerTimeoutError
            Raised if the timeout expired.
        """
        logger = self._logger.bind(driver=driver.name)
        await self.cleanup_stale_daemonsets(driver, timeout)

        precompiled = driver.spec.use_precompiled_drivers
        cluster_info = await self._cluster_info.get(
            timeout, precompiled=precompiled
        )
        pools = await self._partitioner.get_node_pools(
            driver.node_selector_or_default,
            timeout,
            precompiled=precompiled,
            openshift=cluster_info.is_openshift,
        )
        if not pools:
            raise NoNodePoolsError(driver.name)

        not_ready = []
        for pool in pools:
            objects = await self.get_manifest_objects(
                driver, pool, cluster_info, pools, timeout
            )
            applied = await self._applier.apply(objects, driver, timeout)
            daemonset = _find_daemonset(applied)
            if daemonset is None:
                continue
            name = daemonset["metadata"]["name"]
            if is_daemonset_ready(daemonset):
                logger.debug("DaemonSet is ready", name=name, pool=pool.name)
            else:
                logger.debug("DaemonSet not ready", name=name, pool=pool.name)
                not_ready.append(f"DaemonSet {name} is not ready")

        if not_ready:
            return StateResult(
                state_name=self.name,
                status=SyncState.NOT_READY,
                details=not_ready,
            )
        return StateResult(state_name=self.name, status=SyncState.READY)

    async def cleanup_stale_daemonsets(
        self, driver: NVIDIADriver, timeout: Timeout
    ) -> list[str]:
        """Delete the DaemonSets of node pools that no longer exist.

        A DaemonSet is stale if it schedules no pods, misschedules no pods,
        and its node selector matches no node. A DaemonSet whose pods are
        blocked by, for example, a taint still matches its nodes and is left
        alone, since the node pool loop will update it.

        Parameters
        ----------
        driver
            Driver resource owning the DaemonSets.
        timeout
            Timeout on the whole pass.

        Returns
        -------
        list of str
            Names of the deleted DaemonSets.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        ControllerTimeoutError
            Raised if the timeout expired.
        """
        namespace = self._config.operator_namespace
        selector = f"{STATE_LABEL}={self.name}"
        daemonsets = await self._daemon_sets.list(
            namespace, timeout, label_selector=selector
        )
        deleted = []
        for daemonset in daemonsets:
            if not _is_owned_by(daemonset, driver):
                continue
            status = daemonset.get("status") or {}
            if status.get("desiredNumberScheduled"):
                continue
            if status.get("numberMisscheduled"):
                continue
            template = daemonset.get("spec", {}).get("template", {})
            node_selector = template.get("spec", {}).get("nodeSelector") or {}
            if await self._nodes.list(node_selector, timeout):
                continue
            name = daemonset["metadata"]["name"]
            self._logger.info(
                "Deleting stale DaemonSet",
                driver=driver.name,
                name=name,
                namespace=namespace,
            )
            await self._daemon_sets.delete(name, namespace, timeout)
            deleted.append(name)
        return deleted

    async def get_manifest_objects(
        self,
        driver: NVIDIADriver,
        pool: NodePool,
        cluster_info: ClusterInfo,
        pools: list[NodePool],
        timeout: Timeout,
    ) -> list[dict[str, Any]]:
        """Build and render the objects for one node pool.

        Parameters
        ----------
        driver
            Driver resource being reconciled.
        pool
            Node pool to render.
        cluster_info
            Facts about the cluster.
        pools
            All node pools of the driver resource.
        timeout
            Timeout on the whole pass.

        Returns
        -------
        list of dict
            Rendered objects, without the controller metadata.

        Raises
        ------
        ControllerError
            Raised if the template data could not be built or the manifests
            could not be rendered.
        ControllerTimeoutError
            Raised if the timeout expired.
        """
        data = await self._builder.build(
            driver, pool, cluster_info, pools, timeout
        )
        objects = self._renderer.render(data)
        if driver.spec.manager.image:
            return objects
        return await self._keep_deployed_manager_image(
            driver, data, objects, timeout
        )

    async def _keep_deployed_manager_image(
        self,
        driver: NVIDIADriver,
        data: RenderData,
        objects: list[dict[str, Any]],
        timeout: Timeout,
    ) -> list[dict[str, Any]]:
        """Avoid a rollout caused only by a new default manager image.

        If the driver resource does not choose a manager image, the default
        from the controller configuration is used, which changes whenever the
        controller is upgraded. Replacing the image would restart every
        driver pod, so if nothing else about the install changed, the image
        currently deployed is kept.

        Parameters
        ----------
        driver
            Driver resource being reconciled.
        data
            Template data used to render the objects.
        objects
            Objects rendered with the default manager image.
        timeout
            Timeout on the whole pass.

        Returns
        -------
        list of dict
            Objects rendered with the deployed image if the install
            configuration is otherwise unchanged, else the original objects.
        """
        desired = _find_daemonset(objects)
        if desired is None:
            return objects
        metadata = desired.get("metadata", {})
        name = metadata.get("name", "")
        namespace = metadata.get("namespace")
        live = await self._daemon_sets.read(name, namespace, timeout)
        if live is None:
            return objects
        image = _init_container_image(live, CONTAINER_DRIVER_MANAGER)
        if not image or image == data.driver.manager_image_path:
            return objects

        driver_data = dataclasses.replace(
            data.driver, manager_image_path=image
        )
        rerendered = self._renderer.render(
            dataclasses.replace(data, driver=driver_data)
        )
        candidate = _find_daemonset(rerendered)
        if candidate is None:
            return objects
        candidate = self._applier.prepare(candidate, driver)
        digest = candidate["metadata"]["annotations"][HASH_ANNOTATION]
        live_annotations = live.get("metadata", {}).get("annotations") or {}
        if live_annotations.get(HASH_ANNOTATION) == digest:
            self._logger.info(
                "Keeping deployed driver manager image",
                driver=driver.name,
                name=name,
                image=image,
                default_image=data.driver.manager_image_path,
            )
            return rerendered
        return objects


def _is_owned_by(obj: dict[str, Any], driver: NVIDIADriver) -> bool:
    """Whether an object is controlled by the given driver resource."""
    owners = obj.get("metadata", {}).get("ownerReferences") or []
    return any(
        o.get("controller") and o.get("uid") == driver.metadata.uid
        for o in owners
    )
