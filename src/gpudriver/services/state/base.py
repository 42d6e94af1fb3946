"""Base class for state units and the shared apply logic."""

from __future__ import annotations

import copy
from abc import ABCMeta, abstractmethod
from typing import Any

from structlog.stdlib import BoundLogger

from ...constants import HASH_ANNOTATION, STATE_LABEL
from ...exceptions import KubernetesError
from ...models.domain.kubernetes import object_key, owner_reference
from ...models.domain.nvidiadriver import NVIDIADriver
from ...models.domain.syncstate import StateResult
from ...storage.kubernetes.creator import KubernetesObjectCreator
from ...storage.kubernetes.objects import ObjectStorageRegistry
from ...timeout import Timeout
from ..digest import extract_install_config, object_hash_ignore_empty

__all__ = [
    "ObjectApplier",
    "StateUnit",
]


class StateUnit(metaclass=ABCMeta):
    """One step of the pipeline run for each driver resource.

    A state unit owns a group of Kubernetes objects, brings them to their
    desired state, and reports how far they have converged.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Name of the unit, used as the value of the state label."""

    @abstractmethod
    async def sync(
        self, driver: NVIDIADriver, timeout: Timeout
    ) -> StateResult:
        """Bring the objects of this unit to their desired state.

        Parameters
        ----------
        driver
            Driver resource being reconciled.
        timeout
            Timeout on the whole pass.

        Returns
        -------
        StateResult
            Convergence status of the unit.

        Raises
        ------
        ControllerError
            Raised if the unit could not be synchronized. The caller maps
            the exception to a status.
        ControllerTimeoutError
            Raised if the timeout expired.
        """


class ObjectApplier:
    """Creates or updates rendered objects on behalf of a state unit.

    Parameters
    ----------
    storage
        Storage for every supported object kind.
    state_name
        Name of the state unit owning the objects.
    logger
        Logger to use.
    """

    def __init__(
        self,
        storage: ObjectStorageRegistry,
        state_name: str,
        logger: BoundLogger,
    ) -> None:
        self._storage = storage
        self._state_name = state_name
        self._logger = logger

    def prepare(
        self, obj: dict[str, Any], driver: NVIDIADriver
    ) -> dict[str, Any]:
        """Add the controller metadata to a rendered object.

        The object is copied, not modified. The copy is owned by the driver
        resource, so that it is garbage-collected along with it, and carries
        the state label. DaemonSets also get the digest of their install
        configuration.

        Parameters
        ----------
        obj
            Rendered object.
        driver
            Driver resource that owns the object.

        Returns
        -------
        dict
            Object ready to be applied.
        """
        result = copy.deepcopy(obj)
        metadata = result.setdefault("metadata", {})
        owner = owner_reference(
            driver.api_version, driver.kind, driver.name, driver.metadata.uid
        )
        metadata["ownerReferences"] = [owner]
        labels = metadata.get("labels") or {}
        labels[STATE_LABEL] = self._state_name
        metadata["labels"] = labels
        if result.get("kind") == "DaemonSet":
            config = extract_install_config(result)
            annotations = metadata.get("annotations") or {}
            annotations[HASH_ANNOTATION] = object_hash_ignore_empty(config)
            metadata["annotations"] = annotations
        return result

    async def apply(
        self,
        objects: list[dict[str, Any]],
        driver: NVIDIADriver,
        timeout: Timeout,
    ) -> list[dict[str, Any]]:
        """Create or update each object in order.

        Parameters
        ----------
        objects
            Rendered objects.
        driver
            Driver resource that owns the objects.
        timeout
            Timeout on the whole pass.

        Returns
        -------
        list of dict
            Objects as stored by the API server, in the same order.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server, including
            conflicts with concurrent changes.
        ControllerTimeoutError
            Raised if the timeout expired.
        UnknownObjectKindError
            Raised if an object is of an unsupported kind. No object is
            applied in that case.
        """
        storages = [
            self._storage.get(o.get("apiVersion", ""), o.get("kind", ""))
            for o in objects
        ]
        results = []
        for obj, storage in zip(objects, storages, strict=True):
            body = self.prepare(obj, driver)
            results.append(await self.create_or_update(storage, body, timeout))
        return results

    async def create_or_update(
        self,
        storage: KubernetesObjectCreator,
        body: dict[str, Any],
        timeout: Timeout,
    ) -> dict[str, Any]:
        """Create an object, replacing it if it already exists.

        The replacement carries the resource version of the live object, so
        a concurrent change is reported as a conflict rather than being
        silently overwritten. Fields that other controllers manage on the
        live object are preserved.

        Parameters
        ----------
        storage
            Storage for the kind of the object.
        body
            Object to apply.
        timeout
            Timeout on the whole pass.

        Returns
        -------
        dict
            Object as stored by the API server.

        Raises
        ------
        KubernetesError
            Raised for exceptions from the Kubernetes API server.
        ControllerTimeoutError
            Raised if the timeout expired.
        """
        _, kind, namespace, name = object_key(body)
        try:
            return await storage.create(namespace, body, timeout)
        except KubernetesError as e:
            if not e.is_conflict:
                raise
        live = await storage.read(name, namespace, timeout)
        if live is None:
            # Deleted between the create and the read. Let the next pass
            # create it again.
            raise KubernetesError(
                "Object disappeared during update",
                kind=kind,
                namespace=namespace,
                name=name,
                status=409,
            )
        body = _merge_live_fields(body, live)
        self._logger.debug(
            "Updating existing object",
            kind=kind,
            name=name,
            namespace=namespace,
        )
        return await storage.replace(namespace, body, timeout)


def _merge_live_fields(
    body: dict[str, Any], live: dict[str, Any]
) -> dict[str, Any]:
    """Copy into the desired object the fields the controller does not own.

    Service account token secrets and pull secrets are added by the
    cluster, and the data of the trusted CA config map is injected by
    OpenShift.
    """
    live_metadata = live.get("metadata") or {}
    body["metadata"]["resourceVersion"] = live_metadata.get("resourceVersion")
    kind = body.get("kind")
    if kind == "ServiceAccount":
        for key in ("secrets", "imagePullSecrets"):
            if key in live:
                body[key] = live[key]
    elif kind == "ConfigMap" and "data" not in body and "data" in live:
        body["data"] = live["data"]
    return body
