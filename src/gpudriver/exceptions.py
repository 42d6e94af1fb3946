"""Exceptions for the GPU driver controller."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Self

from fastapi import status
from kubernetes_asyncio.client import ApiException
from safir.fastapi import ClientRequestError
from typing_extensions import override

__all__ = [
    "ControllerError",
    "ControllerTimeoutError",
    "InvalidDriverSpecError",
    "InvalidImageReferenceError",
    "KubernetesError",
    "MissingConfigMapError",
    "MissingObjectError",
    "MissingSecretError",
    "NoNodePoolsError",
    "NodeSelectorConflictError",
    "RenderError",
    "UnknownClusterVersionError",
    "UnknownDriverError",
    "UnknownObjectKindError",
    "UnsupportedDistributionError",
]


class UnknownDriverError(ClientRequestError):
    """No reconcile result exists for the requested driver resource."""

    error = "unknown_driver"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, name: str) -> None:
        msg = f"No NVIDIADriver named {name} has been reconciled"
        super().__init__(msg)


class ControllerError(Exception):
    """Base class for errors raised while reconciling a driver resource.

    The string form of these exceptions is shown to users in the conditions
    of the resource status, so it should be a complete sentence fragment
    without trailing punctuation.
    """


class ControllerTimeoutError(ControllerError):
    """Wraps `TimeoutError` with additional context.

    Parameters
    ----------
    operation
        Operation that timed out.
    driver
        Name of the driver resource associated with the operation, if any.
    started_at
        Start time of the operation.
    failed_at
        Time at which the operation timed out.
    """

    def __init__(
        self,
        operation: str,
        driver: str | None = None,
        *,
        started_at: datetime,
        failed_at: datetime,
    ) -> None:
        self.driver = driver
        self.started_at = started_at
        self.failed_at = failed_at
        elapsed = failed_at - started_at
        if driver:
            operation = f"{operation} of {driver}"
        msg = f"{operation} timed out after {elapsed.total_seconds()}s"
        super().__init__(msg)


class InvalidDriverSpecError(ControllerError):
    """The driver resource requests an unsupported combination of features."""


class InvalidImageReferenceError(ControllerError, ValueError):
    """An image reference could not be constructed or parsed.

    Also a `ValueError` so that it can be raised from Pydantic validators.
    """


class NoNodePoolsError(ControllerError):
    """No node matched the node selector of a driver resource."""

    def __init__(self, driver: str) -> None:
        msg = f"No nodes matching the given node selector for {driver}"
        super().__init__(msg)


class NodeSelectorConflictError(ControllerError):
    """The node selector of a driver resource conflicts with another one."""


class RenderError(ControllerError):
    """A manifest template could not be read, rendered, or decoded.

    Parameters
    ----------
    path
        Template that failed.
    message
        Description of the failure.
    """

    def __init__(self, path: Path, message: str) -> None:
        self.path = path
        super().__init__(f"Failed to render {path}: {message}")


class UnsupportedDistributionError(ControllerError):
    """A node pool runs an operating system a feature does not support."""

    def __init__(self, distribution: str, feature: str) -> None:
        self.distribution = distribution
        msg = f"Distribution {distribution} not supported for {feature}"
        super().__init__(msg)


class KubernetesError(ControllerError):
    """An API call to Kubernetes failed.

    Parameters
    ----------
    message
        Summary of error.
    namespace
        Namespace of object being acted on.
    name
        Name of object being acted on.
    kind
        Kind of object being acted on.
    status
        Status code of failure, if any.
    body
        Body of failure message, if any.
    """

    @classmethod
    def from_exception(
        cls,
        message: str,
        exc: ApiException,
        *,
        kind: str | None = None,
        namespace: str | None = None,
        name: str | None = None,
    ) -> Self:
        """Create an exception from a Kubernetes API exception.

        Parameters
        ----------
        message
            Brief explanation of what was being attempted.
        exc
            Kubernetes API exception.
        kind
            Kind of object being acted on.
        namespace
            Namespace of object being acted on.
        name
            Name of object being acted on.

        Returns
        -------
        KubernetesError
            Newly-created exception.
        """
        return cls(
            message,
            kind=kind,
            namespace=namespace,
            name=name,
            status=exc.status,
            body=exc.body if exc.body else exc.reason,
        )

    def __init__(
        self,
        message: str,
        *,
        kind: str | None = None,
        namespace: str | None = None,
        name: str | None = None,
        status: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.namespace = namespace
        self.name = name
        self.status = status
        self.body = body

    @property
    def is_conflict(self) -> bool:
        """Whether this was an optimistic concurrency conflict."""
        return self.status == 409

    @override
    def __str__(self) -> str:
        result = self._summary()
        if self.body:
            result += f": {self.body}"
        return result

    def _summary(self) -> str:
        """Summarize the exception as a single line."""
        result = self.message
        if self.name or self.kind or self.status:
            result += " ("
            if self.name:
                kind = f"{self.kind} " if self.kind else ""
                if self.namespace:
                    result += f"{kind}{self.namespace}/{self.name}"
                else:
                    result += f"{kind}{self.name}"
                if self.status:
                    result += ", "
            elif self.kind:
                result += self.kind
                if self.status:
                    result += ", "
            if self.status:
                result += f"status {self.status}"
            result += ")"
        return result


class MissingObjectError(ControllerError):
    """An expected Kubernetes object is missing.

    Parameters
    ----------
    message
        Summary of error.
    kind
        Kind of Kubernetes object that is missing.
    namespace
        Namespace of object being acted on.
    name
        Name of object being acted on.
    """

    def __init__(
        self,
        message: str,
        *,
        kind: str,
        namespace: str | None = None,
        name: str | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.namespace = namespace
        self.name = name


class MissingConfigMapError(MissingObjectError):
    """A config map referenced by a driver resource does not exist.

    Parameters
    ----------
    name
        Name of config map.
    namespace
        Namespace of config map.
    """

    def __init__(self, name: str, namespace: str) -> None:
        message = f"ConfigMap {namespace}/{name} does not exist"
        super().__init__(
            message, kind="ConfigMap", namespace=namespace, name=name
        )


class MissingSecretError(MissingObjectError):
    """A secret referenced by a driver resource does not exist.

    Parameters
    ----------
    name
        Name of secret.
    namespace
        Namespace of secret.
    """

    def __init__(self, name: str, namespace: str) -> None:
        message = f"Secret {namespace}/{name} does not exist"
        super().__init__(
            message, kind="Secret", namespace=namespace, name=name
        )


class UnknownClusterVersionError(ControllerError):
    """The OpenShift cluster version has no completed update."""

    def __init__(self) -> None:
        super().__init__("Failed to find completed OpenShift cluster version")


class UnknownObjectKindError(ControllerError):
    """A rendered manifest has a kind the controller cannot manage.

    Parameters
    ----------
    api_version
        API version of the object.
    kind
        Kind of the object.
    """

    def __init__(self, api_version: str, kind: str) -> None:
        self.api_version = api_version
        self.kind = kind
        super().__init__(f"Unsupported object kind {api_version} {kind}")
