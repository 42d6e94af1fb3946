"""Storage layer for Kubernetes custom objects."""

from __future__ import annotations

from typing import Any

from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient, ApiException
from structlog.stdlib import BoundLogger

from ...exceptions import KubernetesError
from ...models.domain.nvidiadriver import NVIDIADriver
from ...timeout import Timeout
from .creator import KubernetesObjectCreator

__all__ = [
    "CustomStorage",
    "NVIDIADriverStorage",
    "SecurityContextConstraintsStorage",
]


class CustomStorage(KubernetesObjectCreator):
    """Storage layer for Kubernetes custom objects.

    Normally, this class should be subclassed to specialize it for a specific
    custom object type, which provides a slightly nicer API, but it can be
    used as-is if desired.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    group
        API group for the custom objects to handle.
    version
        API version for the custom objects to handle.
    plural
        API plural under which those custom objects are managed.
    kind
        Name of the custom object kind, used for error reporting.
    namespaced
        Whether the custom objects live in a namespace.
    logger
        Logger to use.
    """

    def __init__(
        self,
        *,
        api_client: ApiClient,
        group: str,
        version: str,
        plural: str,
        kind: str,
        namespaced: bool = True,
        logger: BoundLogger,
    ) -> None:
        self._api = client.CustomObjectsApi(api_client)
        self._group = group
        self._version = version
        self._plural = plural
        super().__init__(
            api_client=api_client,
            create_method=self._create_object,
            read_method=self._read_object,
            replace_method=self._replace_object,
            kind=kind,
            namespaced=namespaced,
            logger=logger,
        )

    async def list(
        self, namespace: str | None, timeout: Timeout
    ) -> list[dict[str, Any]]:
        """List the custom objects, in a namespace if they are namespaced.

        Parameters
        ----------
        namespace
            Namespace in which to list custom objects.
        timeout
            Timeout on operation.

        Returns
        -------
        list of dict
            List of custom objects found.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        ControllerTimeoutError
            Raised if the timeout expired.
        """
        try:
            objs = await self._call(
                self._list_objects, namespace, timeout=timeout
            )
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error listing objects",
                e,
                kind=self._kind,
                namespace=namespace,
            ) from e
        return objs.get("items") or []

    def _create_object(self, *args: Any, **kwargs: Any) -> Any:
        if self._namespaced:
            namespace, body = args
            return self._api.create_namespaced_custom_object(
                self._group,
                self._version,
                namespace,
                self._plural,
                body,
                **kwargs,
            )
        (body,) = args
        return self._api.create_cluster_custom_object(
            self._group, self._version, self._plural, body, **kwargs
        )

    def _list_objects(self, namespace: str | None, **kwargs: Any) -> Any:
        if self._namespaced:
            return self._api.list_namespaced_custom_object(
                self._group, self._version, namespace, self._plural, **kwargs
            )
        return self._api.list_cluster_custom_object(
            self._group, self._version, self._plural, **kwargs
        )

    def _read_object(self, *args: Any, **kwargs: Any) -> Any:
        if self._namespaced:
            name, namespace = args
            return self._api.get_namespaced_custom_object(
                self._group,
                self._version,
                namespace,
                self._plural,
                name,
                **kwargs,
            )
        (name,) = args
        return self._api.get_cluster_custom_object(
            self._group, self._version, self._plural, name, **kwargs
        )

    def _replace_object(self, *args: Any, **kwargs: Any) -> Any:
        if self._namespaced:
            name, namespace, body = args
            return self._api.replace_namespaced_custom_object(
                self._group,
                self._version,
                namespace,
                self._plural,
                name,
                body,
                **kwargs,
            )
        name, body = args
        return self._api.replace_cluster_custom_object(
            self._group, self._version, self._plural, name, body, **kwargs
        )


class SecurityContextConstraintsStorage(CustomStorage):
    """Storage for OpenShift ``SecurityContextConstraints`` objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        super().__init__(
            api_client=api_client,
            group="security.openshift.io",
            version="v1",
            plural="securitycontextconstraints",
            kind="SecurityContextConstraints",
            namespaced=False,
            logger=logger,
        )


class NVIDIADriverStorage(CustomStorage):
    """Storage for the cluster-scoped ``NVIDIADriver`` custom resource.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        super().__init__(
            api_client=api_client,
            group="nvidia.com",
            version="v1alpha1",
            plural="nvidiadrivers",
            kind="NVIDIADriver",
            namespaced=False,
            logger=logger,
        )

    async def get(self, name: str, timeout: Timeout) -> NVIDIADriver | None:
        """Read a driver resource.

        Parameters
        ----------
        name
            Name of the driver resource.
        timeout
            Timeout on operation.

        Returns
        -------
        NVIDIADriver or None
            Parsed resource, or `None` if it does not exist.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        pydantic.ValidationError
            Raised if the resource could not be parsed.
        """
        obj = await self.read(name, None, timeout)
        if obj is None:
            return None
        return NVIDIADriver.model_validate(obj)

    async def list_drivers(self, timeout: Timeout) -> list[NVIDIADriver]:
        """List all driver resources.

        Parameters
        ----------
        timeout
            Timeout on operation.

        Returns
        -------
        list of NVIDIADriver
            All driver resources in the cluster.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        objs = await self.list(None, timeout)
        return [NVIDIADriver.model_validate(o) for o in objs]

    async def replace_status(
        self, driver: NVIDIADriver, timeout: Timeout
    ) -> NVIDIADriver:
        """Replace the status of a driver resource.

        Parameters
        ----------
        driver
            Driver resource with the new status and the resource version it
            was read at.
        timeout
            Timeout on operation.

        Returns
        -------
        NVIDIADriver
            Resource as stored by the API server.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server, including
            conflicts if the resource changed since it was read.
        """
        body = {
            "apiVersion": driver.api_version,
            "kind": driver.kind,
            "metadata": {
                "name": driver.name,
                "resourceVersion": driver.metadata.resource_version,
            },
            "status": driver.status.model_dump(
                mode="json", by_alias=True, exclude_none=True
            ),
        }
        self._logger.debug("Updating NVIDIADriver status", name=driver.name)
        try:
            obj = await self._call(
                self._api.replace_cluster_custom_object_status,
                self._group,
                self._version,
                self._plural,
                driver.name,
                body,
                timeout=timeout,
            )
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error updating object status",
                e,
                kind=self._kind,
                name=driver.name,
            ) from e
        return NVIDIADriver.model_validate(obj)
