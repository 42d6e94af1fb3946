"""Domain model for groups of install-compatible nodes."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from ...exceptions import InvalidImageReferenceError

__all__ = [
    "NodePool",
    "sanitize_kernel_version",
]

_ARCH_REGEX = re.compile(r"x86_64(?:_64k)?|aarch64(?:_64k)?")


def sanitize_kernel_version(kernel_version: str) -> str:
    """Convert a kernel version into a valid object name component.

    Architecture suffixes are removed, since the driver images are
    multi-architecture, and the result is made to satisfy the constraints on
    Kubernetes object names.

    Parameters
    ----------
    kernel_version
        Full kernel version as reported by node feature discovery.

    Returns
    -------
    str
        Lowercase kernel version without architecture, underscores, or a
        trailing period.
    """
    sanitized = _ARCH_REGEX.sub("", kernel_version).replace("_", ".")
    return sanitized.removesuffix(".").lower()


@dataclass(frozen=True)
class NodePool:
    """A set of nodes that can share one driver DaemonSet.

    Pools are recomputed from node labels on every reconcile pass and never
    stored.
    """

    name: str
    """Identity of the pool, used to build object names."""

    os_release: str
    """Operating system identifier, such as ``ubuntu`` or ``rhel``."""

    os_version: str
    """Operating system version, such as ``22.04``."""

    node_selector: dict[str, str] = field(hash=False)
    """Labels selecting exactly the nodes of this pool."""

    kernel_version: str | None = None
    """Full kernel version, set only when using precompiled drivers."""

    rhcos_version: str | None = None
    """OS image version, set only on OpenShift without precompiled drivers."""

    @property
    def os(self) -> str:
        """Operating system identifier and version, such as ``ubuntu22.04``."""
        return f"{self.os_release}{self.os_version}"

    @property
    def os_tag(self) -> str:
        """Operating system suffix used in driver image tags.

        Rocky Linux and RHEL 10 and later publish images tagged with only the
        major version.

        Raises
        ------
        InvalidImageReferenceError
            Raised if the major version is needed but is not a number. This
            is also a `ValueError`.
        """
        if self.os_release not in ("rocky", "rhel"):
            return self.os
        major_str = self.os_version.split(".", 1)[0]
        try:
            major = int(major_str)
        except ValueError as e:
            msg = f"Failed to parse OS version {self.os_version}"
            raise InvalidImageReferenceError(msg) from e
        if self.os_release == "rocky" or major >= 10:
            return f"{self.os_release}{major}"
        return self.os

    @property
    def sanitized_kernel_version(self) -> str | None:
        """Kernel version usable in object names, if set."""
        if self.kernel_version is None:
            return None
        return sanitize_kernel_version(self.kernel_version)
