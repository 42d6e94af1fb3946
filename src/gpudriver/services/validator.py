"""Validation of driver resources before reconciling them."""

from __future__ import annotations

from structlog.stdlib import BoundLogger

from ..exceptions import (
    InvalidDriverSpecError,
    MissingSecretError,
    NodeSelectorConflictError,
)
from ..models.domain.nvidiadriver import (
    DriverType,
    KernelModuleType,
    NVIDIADriver,
)
from ..storage.kubernetes.creator import SecretStorage
from ..storage.kubernetes.node import NodeStorage
from ..timeout import Timeout

__all__ = ["DriverValidator"]


class DriverValidator:
    """Checks a driver resource for problems no reconcile pass can fix.

    Parameters
    ----------
    node_storage
        Storage for nodes, used to compare node selectors.
    secret_storage
        Storage for secrets referenced by the resource.
    namespace
        Namespace in which referenced secrets live.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        node_storage: NodeStorage,
        secret_storage: SecretStorage,
        namespace: str,
        logger: BoundLogger,
    ) -> None:
        self._nodes = node_storage
        self._secrets = secret_storage
        self._namespace = namespace
        self._logger = logger

    async def validate(
        self,
        driver: NVIDIADriver,
        drivers: list[NVIDIADriver],
        timeout: Timeout,
    ) -> None:
        """Validate a driver resource.

        Parameters
        ----------
        driver
            Driver resource to validate.
        drivers
            All driver resources in the cluster, which may include the one
            being validated.
        timeout
            Timeout on the Kubernetes calls.

        Raises
        ------
        InvalidDriverSpecError
            Raised if the resource requests an unsupported combination of
            features.
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        MissingSecretError
            Raised if a referenced secret does not exist.
        NodeSelectorConflictError
            Raised if a node is selected by more than one resource.
        """
        self.validate_spec(driver)
        await self.validate_node_selector(driver, drivers, timeout)
        await self.validate_secrets(driver, timeout)

    def validate_spec(self, driver: NVIDIADriver) -> None:
        """Reject unsupported feature combinations.

        Raises
        ------
        InvalidDriverSpecError
            Raised if the resource requests an unsupported combination of
            features.
        """
        spec = driver.spec
        if spec.use_precompiled_drivers:
            if spec.driver_type == DriverType.VGPU_HOST_MANAGER:
                msg = "Precompiled drivers are not supported for vGPU manager"
                raise InvalidDriverSpecError(msg)
            if spec.is_gds_enabled:
                msg = "GPUDirect Storage is not supported with precompiled"
                raise InvalidDriverSpecError(f"{msg} drivers")
            if spec.is_gdrcopy_enabled:
                msg = "GDRCopy is not supported with precompiled drivers"
                raise InvalidDriverSpecError(msg)
        if (
            spec.is_open_kernel_modules_required
            and spec.kernel_module_type == KernelModuleType.PROPRIETARY
        ):
            msg = (
                "GPUDirect Storage version requires open kernel modules but"
                " proprietary kernel modules were requested"
            )
            raise InvalidDriverSpecError(msg)

    async def validate_node_selector(
        self,
        driver: NVIDIADriver,
        drivers: list[NVIDIADriver],
        timeout: Timeout,
    ) -> None:
        """Ensure no node is claimed by two driver resources.

        Only one resource may omit its node selector, since that selects
        every GPU node.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        NodeSelectorConflictError
            Raised if the node selector conflicts with another resource.
        """
        others = [d for d in drivers if d.metadata.uid != driver.metadata.uid]
        if not others:
            return
        if not driver.spec.node_selector:
            for other in others:
                if not other.spec.node_selector:
                    msg = (
                        f"Only one NVIDIADriver may have an empty node"
                        f" selector, but {other.name} also does"
                    )
                    raise NodeSelectorConflictError(msg)

        selector = driver.node_selector_or_default
        nodes = await self._nodes.list(selector, timeout)
        names = {n.get("metadata", {}).get("name") for n in nodes}
        if not names:
            return
        for other in others:
            other_nodes = await self._nodes.list(
                other.node_selector_or_default, timeout
            )
            for node in other_nodes:
                node_name = node.get("metadata", {}).get("name")
                if node_name in names:
                    msg = (
                        f"Node {node_name} is selected by both {driver.name}"
                        f" and {other.name}"
                    )
                    raise NodeSelectorConflictError(msg)

    async def validate_secrets(
        self, driver: NVIDIADriver, timeout: Timeout
    ) -> None:
        """Ensure the secret providing environment variables exists.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        MissingSecretError
            Raised if the secret does not exist.
        """
        name = driver.spec.secret_env
        if not name:
            return
        secret = await self._secrets.read(name, self._namespace, timeout)
        if secret is None:
            raise MissingSecretError(name, self._namespace)
