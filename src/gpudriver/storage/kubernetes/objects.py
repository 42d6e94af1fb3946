"""Dispatch of rendered objects to the storage for their kind."""

from __future__ import annotations

from kubernetes_asyncio.client import ApiClient
from structlog.stdlib import BoundLogger

from ...exceptions import UnknownObjectKindError
from .creator import (
    ClusterRoleBindingStorage,
    ClusterRoleStorage,
    ConfigMapStorage,
    KubernetesObjectCreator,
    RoleBindingStorage,
    RoleStorage,
    SecretStorage,
    ServiceAccountStorage,
)
from .custom import SecurityContextConstraintsStorage
from .deleter import DaemonSetStorage

__all__ = ["ObjectStorageRegistry"]


class ObjectStorageRegistry:
    """Storage for every object kind the manifests may produce.

    Each supported kind maps to one storage object, keyed by API version and
    kind, so that rendered objects can be applied without knowing in advance
    what the manifests contain.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        self.config_map = ConfigMapStorage(api_client, logger)
        self.daemon_set = DaemonSetStorage(api_client, logger)
        self.secret = SecretStorage(api_client, logger)
        self.service_account = ServiceAccountStorage(api_client, logger)
        rbac = "rbac.authorization.k8s.io/v1"
        self._storage: dict[tuple[str, str], KubernetesObjectCreator] = {
            ("v1", "ConfigMap"): self.config_map,
            ("v1", "Secret"): self.secret,
            ("v1", "ServiceAccount"): self.service_account,
            ("apps/v1", "DaemonSet"): self.daemon_set,
            (rbac, "Role"): RoleStorage(api_client, logger),
            (rbac, "RoleBinding"): RoleBindingStorage(api_client, logger),
            (rbac, "ClusterRole"): ClusterRoleStorage(api_client, logger),
            (rbac, "ClusterRoleBinding"): ClusterRoleBindingStorage(
                api_client, logger
            ),
            (
                "security.openshift.io/v1",
                "SecurityContextConstraints",
            ): SecurityContextConstraintsStorage(api_client, logger),
        }

    def get(self, api_version: str, kind: str) -> KubernetesObjectCreator:
        """Get the storage for an object kind.

        Parameters
        ----------
        api_version
            API version of the object, such as ``apps/v1``.
        kind
            Kind of the object.

        Returns
        -------
        KubernetesObjectCreator
            Storage for objects of that kind.

        Raises
        ------
        UnknownObjectKindError
            Raised if the kind is not supported.
        """
        storage = self._storage.get((api_version, kind))
        if storage is None:
            raise UnknownObjectKindError(api_version, kind)
        return storage
