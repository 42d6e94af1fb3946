"""Facts about the cluster gathered at the start of a reconcile pass."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Self

__all__ = [
    "ClusterInfo",
    "ContainerRuntime",
    "ProxySpec",
]


class ContainerRuntime(str, Enum):
    """Container runtime used by the cluster nodes."""

    CONTAINERD = "containerd"
    CRIO = "crio"
    DOCKER = "docker"


@dataclass
class ProxySpec:
    """Cluster-wide proxy settings configured on OpenShift."""

    http_proxy: str | None = None
    https_proxy: str | None = None
    no_proxy: str | None = None

    trusted_ca: str | None = None
    """Name of the config map holding the additional trusted CA bundle."""

    @classmethod
    def from_dict(cls, spec: dict[str, Any]) -> Self:
        """Build from the ``spec`` of the ``cluster`` proxy object.

        Parameters
        ----------
        spec
            Specification of the OpenShift proxy configuration.

        Returns
        -------
        ProxySpec
            Corresponding proxy settings.
        """
        trusted_ca = spec.get("trustedCA") or {}
        return cls(
            http_proxy=spec.get("httpProxy") or None,
            https_proxy=spec.get("httpsProxy") or None,
            no_proxy=spec.get("noProxy") or None,
            trusted_ca=trusted_ca.get("name") or None,
        )


@dataclass
class ClusterInfo:
    """Runtime facts about the cluster.

    These are collected once per reconcile pass and shared by every node
    pool of the driver being reconciled.
    """

    kubernetes_version: str
    """Version of the Kubernetes control plane, such as ``v1.30.2``."""

    container_runtime: ContainerRuntime = ContainerRuntime.CONTAINERD
    """Container runtime of the GPU nodes."""

    openshift_version: str | None = None
    """OpenShift ``major.minor`` version, or `None` if not on OpenShift."""

    toolkit_images: dict[str, str] = field(default_factory=dict)
    """Driver toolkit image for each RHCOS version, on OpenShift only."""

    proxy: ProxySpec | None = None
    """Cluster-wide proxy settings, on OpenShift only."""

    @property
    def is_openshift(self) -> bool:
        """Whether the cluster is an OpenShift cluster."""
        return self.openshift_version is not None

    @property
    def toolkit_enabled(self) -> bool:
        """Whether the OpenShift driver toolkit side-car should be used."""
        return bool(self.toolkit_images)
