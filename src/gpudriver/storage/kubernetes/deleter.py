"""Generic Kubernetes object storage including list and delete.

Provides a generic Kubernetes object management class and instantiations of
that class for Kubernetes object types that support list and delete (as well
as create, read and replace, provided by the superclass).
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient, ApiException
from structlog.stdlib import BoundLogger

from ...exceptions import KubernetesError
from ...models.domain.kubernetes import PropagationPolicy
from ...timeout import Timeout
from .creator import KubernetesObjectCreator

__all__ = [
    "DaemonSetStorage",
    "KubernetesObjectDeleter",
]


class KubernetesObjectDeleter(KubernetesObjectCreator):
    """Generic Kubernetes object storage supporting list and delete.

    This class is separate from
    `~gpudriver.storage.kubernetes.creator.KubernetesObjectCreator` primarily
    to avoid having to implement the list and delete methods in the mock for
    every object type we manage, even if we never call list and delete.

    Parameters
    ----------
    api_client
        Kubernetes API client, used to serialize returned objects.
    create_method
        Method to create this type of object.
    delete_method
        Method to delete this type of object.
    list_method
        Method to list all of this type of object.
    read_method
        Method to read this type of object.
    replace_method
        Method to replace this type of object.
    kind
        Kubernetes kind of object being acted on.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        api_client: ApiClient,
        create_method: Callable[..., Awaitable[Any]],
        delete_method: Callable[..., Awaitable[Any]],
        list_method: Callable[..., Awaitable[Any]],
        read_method: Callable[..., Awaitable[Any]],
        replace_method: Callable[..., Awaitable[Any]],
        kind: str,
        logger: BoundLogger,
    ) -> None:
        super().__init__(
            api_client=api_client,
            create_method=create_method,
            read_method=read_method,
            replace_method=replace_method,
            kind=kind,
            logger=logger,
        )
        self._delete = delete_method
        self._list = list_method

    async def delete(
        self,
        name: str,
        namespace: str,
        timeout: Timeout,
        *,
        propagation_policy: PropagationPolicy | None = None,
    ) -> None:
        """Delete a Kubernetes object.

        If the object does not exist, this is silently treated as success.

        Parameters
        ----------
        name
            Name of the object.
        namespace
            Namespace of the object.
        timeout
            Timeout on operation.
        propagation_policy
            Propagation policy for the object deletion.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        ControllerTimeoutError
            Raised if the timeout expired.
        """
        extra_args: dict[str, str] = {}
        if propagation_policy:
            extra_args["propagation_policy"] = propagation_policy.value
        self._logger.debug(
            f"Deleting {self._kind}",
            name=name,
            namespace=namespace,
            options=extra_args,
        )
        try:
            await self._call(
                self._delete, name, namespace, timeout=timeout, **extra_args
            )
        except ApiException as e:
            if e.status == 404:
                return
            raise KubernetesError.from_exception(
                "Error deleting object",
                e,
                kind=self._kind,
                namespace=namespace,
                name=name,
            ) from e

    async def list(
        self,
        namespace: str,
        timeout: Timeout,
        *,
        label_selector: str | None = None,
    ) -> list[dict[str, Any]]:
        """List all objects of the appropriate kind in the namespace.

        Parameters
        ----------
        namespace
            Namespace to list.
        timeout
            Timeout on operation.
        label_selector
            Filter the returned list by the given label selector expression.

        Returns
        -------
        list of dict
            List of objects found.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        ControllerTimeoutError
            Raised if the timeout expired.
        """
        extra_args = {}
        if label_selector:
            extra_args["label_selector"] = label_selector
        try:
            objs = await self._call(
                self._list, namespace, timeout=timeout, **extra_args
            )
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error listing objects",
                e,
                kind=self._kind,
                namespace=namespace,
            ) from e
        return objs.get("items") or []


class DaemonSetStorage(KubernetesObjectDeleter):
    """Storage layer for ``DaemonSet`` objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        api = client.AppsV1Api(api_client)
        super().__init__(
            api_client=api_client,
            create_method=api.create_namespaced_daemon_set,
            delete_method=api.delete_namespaced_daemon_set,
            list_method=api.list_namespaced_daemon_set,
            read_method=api.read_namespaced_daemon_set,
            replace_method=api.replace_namespaced_daemon_set,
            kind="DaemonSet",
            logger=logger,
        )
