"""Generic Kubernetes object storage supporting create, read, and replace.

Provides a generic Kubernetes object management class and instantiations of
that class for the Kubernetes object types that the driver manifests create
and that never have to be listed or deleted by the controller. Kubernetes
garbage collection removes them through their owner reference when the
driver resource is deleted.

For object types that need list and delete support, see
`~gpudriver.storage.kubernetes.deleter.KubernetesObjectDeleter`, which
subclasses `KubernetesObjectCreator`.

Objects are passed in and returned in their serialized (camel-case
dictionary) form, which is the form produced by rendering the manifest
templates.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient, ApiException
from structlog.stdlib import BoundLogger

from ...exceptions import KubernetesError
from ...timeout import Timeout

__all__ = [
    "ClusterRoleBindingStorage",
    "ClusterRoleStorage",
    "ConfigMapStorage",
    "KubernetesObjectCreator",
    "RoleBindingStorage",
    "RoleStorage",
    "SecretStorage",
    "ServiceAccountStorage",
]


class KubernetesObjectCreator:
    """Generic Kubernetes object storage supporting create, read and replace.

    This class provides a wrapper around any Kubernetes object type that
    implements create, read and replace operations with logging and exception
    conversion.

    This class is not meant to be used directly by code outside of the
    Kubernetes storage layer. Use one of the kind-specific storage classes
    built on top of it instead.

    Parameters
    ----------
    api_client
        Kubernetes API client, used to serialize returned objects.
    create_method
        Method to create this type of object.
    read_method
        Method to read this type of object.
    replace_method
        Method to replace this type of object.
    kind
        Kubernetes kind of object being acted on.
    namespaced
        Whether objects of this kind live in a namespace. The namespace
        argument of every method is ignored for cluster-scoped kinds.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        api_client: ApiClient,
        create_method: Callable[..., Awaitable[Any]],
        read_method: Callable[..., Awaitable[Any]],
        replace_method: Callable[..., Awaitable[Any]],
        kind: str,
        namespaced: bool = True,
        logger: BoundLogger,
    ) -> None:
        self._api_client = api_client
        self._create = create_method
        self._read = read_method
        self._replace = replace_method
        self._kind = kind
        self._namespaced = namespaced
        self._logger = logger

    @property
    def kind(self) -> str:
        """Kubernetes kind of the objects managed by this storage."""
        return self._kind

    async def create(
        self, namespace: str | None, body: dict[str, Any], timeout: Timeout
    ) -> dict[str, Any]:
        """Create a new Kubernetes object.

        Parameters
        ----------
        namespace
            Namespace of the object.
        body
            New object.
        timeout
            Timeout on operation.

        Returns
        -------
        dict
            Object as created by the API server.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        ControllerTimeoutError
            Raised if the timeout expired.
        """
        name = body["metadata"]["name"]
        msg = f"Creating {self._kind}"
        self._logger.debug(msg, name=name, namespace=namespace)
        args = (namespace, body) if self._namespaced else (body,)
        try:
            return await self._call(self._create, *args, timeout=timeout)
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error creating object",
                e,
                kind=self._kind,
                namespace=namespace,
                name=name,
            ) from e

    async def read(
        self, name: str, namespace: str | None, timeout: Timeout
    ) -> dict[str, Any] | None:
        """Read a Kubernetes object.

        Parameters
        ----------
        name
            Name of the object.
        namespace
            Namespace of the object.
        timeout
            Timeout on operation.

        Returns
        -------
        dict or None
            Kubernetes object, or `None` if it does not exist.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        ControllerTimeoutError
            Raised if the timeout expired.
        """
        args = (name, namespace) if self._namespaced else (name,)
        try:
            return await self._call(self._read, *args, timeout=timeout)
        except ApiException as e:
            if e.status == 404:
                return None
            raise KubernetesError.from_exception(
                "Error reading object",
                e,
                kind=self._kind,
                namespace=namespace,
                name=name,
            ) from e

    async def replace(
        self, namespace: str | None, body: dict[str, Any], timeout: Timeout
    ) -> dict[str, Any]:
        """Replace an existing Kubernetes object.

        The body must carry the resource version of the object being
        replaced. If the object changed in the meantime, the API server
        rejects the replacement with a conflict.

        Parameters
        ----------
        namespace
            Namespace of the object.
        body
            Replacement object.
        timeout
            Timeout on operation.

        Returns
        -------
        dict
            Object as stored by the API server.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server, including
            conflicts.
        ControllerTimeoutError
            Raised if the timeout expired.
        """
        name = body["metadata"]["name"]
        msg = f"Updating {self._kind}"
        self._logger.debug(msg, name=name, namespace=namespace)
        if self._namespaced:
            args: tuple[Any, ...] = (name, namespace, body)
        else:
            args = (name, body)
        try:
            return await self._call(self._replace, *args, timeout=timeout)
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error updating object",
                e,
                kind=self._kind,
                namespace=namespace,
                name=name,
            ) from e

    async def _call(
        self,
        method: Callable[..., Awaitable[Any]],
        *args: Any,
        timeout: Timeout,
        **kwargs: Any,
    ) -> Any:
        """Call a Kubernetes API method and serialize the result.

        Typed APIs return Kubernetes models, which are converted to their
        camel-case form. Custom object APIs already return that form.

        Parameters
        ----------
        method
            Kubernetes API method.
        *args
            Positional arguments to the method.
        timeout
            Timeout on the call.
        **kwargs
            Keyword arguments to the method.

        Returns
        -------
        typing.Any
            Result of the method converted to plain data.
        """
        result = await method(*args, _request_timeout=timeout.left(), **kwargs)
        if isinstance(result, dict):
            return result
        return self._api_client.sanitize_for_serialization(result)


class ConfigMapStorage(KubernetesObjectCreator):
    """Storage layer for ``ConfigMap`` objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        api = client.CoreV1Api(api_client)
        super().__init__(
            api_client=api_client,
            create_method=api.create_namespaced_config_map,
            read_method=api.read_namespaced_config_map,
            replace_method=api.replace_namespaced_config_map,
            kind="ConfigMap",
            logger=logger,
        )


class SecretStorage(KubernetesObjectCreator):
    """Storage layer for ``Secret`` objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        api = client.CoreV1Api(api_client)
        super().__init__(
            api_client=api_client,
            create_method=api.create_namespaced_secret,
            read_method=api.read_namespaced_secret,
            replace_method=api.replace_namespaced_secret,
            kind="Secret",
            logger=logger,
        )


class ServiceAccountStorage(KubernetesObjectCreator):
    """Storage layer for ``ServiceAccount`` objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        api = client.CoreV1Api(api_client)
        super().__init__(
            api_client=api_client,
            create_method=api.create_namespaced_service_account,
            read_method=api.read_namespaced_service_account,
            replace_method=api.replace_namespaced_service_account,
            kind="ServiceAccount",
            logger=logger,
        )


class RoleStorage(KubernetesObjectCreator):
    """Storage layer for ``Role`` objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        api = client.RbacAuthorizationV1Api(api_client)
        super().__init__(
            api_client=api_client,
            create_method=api.create_namespaced_role,
            read_method=api.read_namespaced_role,
            replace_method=api.replace_namespaced_role,
            kind="Role",
            logger=logger,
        )


class RoleBindingStorage(KubernetesObjectCreator):
    """Storage layer for ``RoleBinding`` objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        api = client.RbacAuthorizationV1Api(api_client)
        super().__init__(
            api_client=api_client,
            create_method=api.create_namespaced_role_binding,
            read_method=api.read_namespaced_role_binding,
            replace_method=api.replace_namespaced_role_binding,
            kind="RoleBinding",
            logger=logger,
        )


class ClusterRoleStorage(KubernetesObjectCreator):
    """Storage layer for ``ClusterRole`` objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        api = client.RbacAuthorizationV1Api(api_client)
        super().__init__(
            api_client=api_client,
            create_method=api.create_cluster_role,
            read_method=api.read_cluster_role,
            replace_method=api.replace_cluster_role,
            kind="ClusterRole",
            namespaced=False,
            logger=logger,
        )


class ClusterRoleBindingStorage(KubernetesObjectCreator):
    """Storage layer for ``ClusterRoleBinding`` objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        api = client.RbacAuthorizationV1Api(api_client)
        super().__init__(
            api_client=api_client,
            create_method=api.create_cluster_role_binding,
            read_method=api.read_cluster_role_binding,
            replace_method=api.replace_cluster_role_binding,
            kind="ClusterRoleBinding",
            namespaced=False,
            logger=logger,
        )
