"""Storage layer for cluster-wide facts."""

from __future__ import annotations

from typing import Any

from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient, ApiException
from structlog.stdlib import BoundLogger

from ...exceptions import KubernetesError
from ...timeout import Timeout

__all__ = ["ClusterInfoStorage"]


class ClusterInfoStorage:
    """Reads the objects describing the cluster as a whole.

    The OpenShift objects read here do not exist on other Kubernetes
    distributions, so a missing object is reported as `None` rather than as
    an error.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        self._api_client = api_client
        self._custom_api = client.CustomObjectsApi(api_client)
        self._version_api = client.VersionApi(api_client)
        self._logger = logger

    async def get_kubernetes_version(self, timeout: Timeout) -> str:
        """Get the version of the Kubernetes control plane.

        Parameters
        ----------
        timeout
            Timeout on operation.

        Returns
        -------
        str
            Git version of the API server, such as ``v1.30.2``.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        try:
            info = await self._version_api.get_code(
                _request_timeout=timeout.left()
            )
        except ApiException as e:
            msg = "Error reading Kubernetes version"
            raise KubernetesError.from_exception(msg, e) from e
        return info.git_version

    async def get_cluster_version(
        self, timeout: Timeout
    ) -> dict[str, Any] | None:
        """Read the OpenShift ``ClusterVersion`` named ``version``.

        Returns
        -------
        dict or None
            Cluster version object, or `None` if not running on OpenShift.
        """
        return await self._get_cluster_object(
            "config.openshift.io",
            "v1",
            "clusterversions",
            "version",
            kind="ClusterVersion",
            timeout=timeout,
        )

    async def get_proxy(self, timeout: Timeout) -> dict[str, Any] | None:
        """Read the OpenShift ``Proxy`` named ``cluster``.

        Returns
        -------
        dict or None
            Proxy object, or `None` if it does not exist.
        """
        return await self._get_cluster_object(
            "config.openshift.io",
            "v1",
            "proxies",
            "cluster",
            kind="Proxy",
            timeout=timeout,
        )

    async def get_driver_toolkit_images(
        self, timeout: Timeout
    ) -> dict[str, str]:
        """Get the driver toolkit image for each RHCOS version.

        The images are published by OpenShift as tags of the
        ``driver-toolkit`` image stream in the ``openshift`` namespace.

        Parameters
        ----------
        timeout
            Timeout on operation.

        Returns
        -------
        dict of str
            Mapping of RHCOS version to image. Empty if the image stream
            does not exist.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        """
        try:
            stream = await self._custom_api.get_namespaced_custom_object(
                "image.openshift.io",
                "v1",
                "openshift",
                "imagestreams",
                "driver-toolkit",
                _request_timeout=timeout.left(),
            )
        except ApiException as e:
            if e.status == 404:
                self._logger.info("Driver toolkit image stream not found")
                return {}
            raise KubernetesError.from_exception(
                "Error reading image stream",
                e,
                kind="ImageStream",
                namespace="openshift",
                name="driver-toolkit",
            ) from e
        images = {}
        for tag in stream.get("spec", {}).get("tags") or []:
            name = tag.get("name")
            source = tag.get("from") or {}
            if not name or name == "latest" or not source.get("name"):
                continue
            images[name] = source["name"]
        return images

    async def _get_cluster_object(
        self,
        group: str,
        version: str,
        plural: str,
        name: str,
        *,
        kind: str,
        timeout: Timeout,
    ) -> dict[str, Any] | None:
        try:
            return await self._custom_api.get_cluster_custom_object(
                group,
                version,
                plural,
                name,
                _request_timeout=timeout.left(),
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise KubernetesError.from_exception(
                "Error reading object", e, kind=kind, name=name
            ) from e
