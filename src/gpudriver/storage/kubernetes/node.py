"""Storage layer for Kubernetes node objects."""

from __future__ import annotations

from typing import Any

from kubernetes_asyncio import client
from kubernetes_asyncio.client import ApiClient, ApiException
from structlog.stdlib import BoundLogger

from ...exceptions import KubernetesError
from ...models.domain.kubernetes import format_label_selector
from ...timeout import Timeout

__all__ = ["NodeStorage"]


class NodeStorage:
    """Storage layer for Kubernetes node objects.

    Parameters
    ----------
    api_client
        Kubernetes API client.
    logger
        Logger to use.
    """

    def __init__(self, api_client: ApiClient, logger: BoundLogger) -> None:
        self._api_client = api_client
        self._api = client.CoreV1Api(api_client)
        self._logger = logger

    async def list(
        self, node_selector: dict[str, str], timeout: Timeout
    ) -> list[dict[str, Any]]:
        """Get data about Kubernetes nodes.

        Parameters
        ----------
        node_selector
            Node selector rules to restrict the list of nodes of interest.
        timeout
            Timeout for call.

        Returns
        -------
        list of dict
            Serialized nodes matching the selector.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        ControllerTimeoutError
            Raised if the timeout expired.
        """
        self._logger.debug("Getting node data", node_selector=node_selector)
        selector = format_label_selector(node_selector)
        try:
            nodes = await self._api.list_node(
                label_selector=selector, _request_timeout=timeout.left()
            )
        except ApiException as e:
            raise KubernetesError.from_exception(
                "Error reading node information", e, kind="Node"
            ) from e
        if not isinstance(nodes, dict):
            nodes = self._api_client.sanitize_for_serialization(nodes)
        return nodes.get("items") or []
