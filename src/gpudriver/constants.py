"""Global constants."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

__all__ = [
    "APP_COMPONENT_LABEL",
    "APP_NAME_MAX_LENGTH",
    "CERT_CONFIG_PATHS",
    "CONFIGURATION_PATH",
    "CONTAINER_DRIVER",
    "CONTAINER_DRIVER_MANAGER",
    "CONTAINER_GDRCOPY",
    "CONTAINER_GDS",
    "CONTAINER_PEERMEM",
    "CONTAINER_TOOLKIT",
    "DEFAULT_REQUEUE_DELAY",
    "DEFAULT_RESYNC_INTERVAL",
    "DRIVER_STATE_NAME",
    "GPU_PRESENT_LABEL",
    "HASH_ANNOTATION",
    "KERNEL_MODULE_CONFIG_PATH",
    "KUBERNETES_REQUEST_TIMEOUT",
    "LICENSING_CONFIG_FILE",
    "LICENSING_CONFIG_MOUNT_PATH",
    "LICENSING_VOLUME_NAME",
    "MANIFEST_DIR",
    "MANIFEST_SUFFIXES",
    "MINIMUM_GDS_VERSION_FOR_OPEN_RM",
    "NAME_MAX_LENGTH",
    "NFD_KERNEL_LABEL",
    "NFD_OS_RELEASE_LABEL",
    "NFD_OS_TREE_VERSION_LABEL",
    "NFD_OS_VERSION_LABEL",
    "NLS_TOKEN_FILE",
    "NLS_TOKEN_MOUNT_PATH",
    "REPO_CONFIG_PATHS",
    "STATE_LABEL",
    "STATUS_UPDATE_ATTEMPTS",
    "SUBSCRIPTION_PATHS",
    "TOPOLOGY_CONFIG_FILE",
    "TOPOLOGY_CONFIG_MOUNT_PATH",
    "TOPOLOGY_VOLUME_NAME",
]

CONFIGURATION_PATH = Path("/etc/gpu-driver-controller/config.yaml")
"""Default path to controller configuration."""

MANIFEST_DIR = Path(__file__).parent / "manifests" / "state-driver"
"""Manifest templates for the driver state shipped with the package."""

MANIFEST_SUFFIXES = (".yaml", ".yml", ".json")
"""File suffixes treated as manifest templates."""

DEFAULT_REQUEUE_DELAY = timedelta(seconds=5)
"""Delay before re-running a pass that did not converge."""

DEFAULT_RESYNC_INTERVAL = timedelta(minutes=10)
"""How frequently to reconcile every driver instance regardless of triggers."""

KUBERNETES_REQUEST_TIMEOUT = timedelta(seconds=60)
"""Upper bound on the Kubernetes calls made by one reconcile pass."""

STATUS_UPDATE_ATTEMPTS = 3
"""How many times to retry a status update that hit a conflict."""

DRIVER_STATE_NAME = "state-driver"
"""Name of the state unit that manages driver DaemonSets."""

# Labels and annotations.

GPU_PRESENT_LABEL = "nvidia.com/gpu.present"
"""Node label set by feature discovery on nodes with an NVIDIA GPU."""

NFD_OS_RELEASE_LABEL = "feature.node.kubernetes.io/system-os_release.ID"
"""Node label holding the operating system identifier."""

NFD_OS_VERSION_LABEL = (
    "feature.node.kubernetes.io/system-os_release.VERSION_ID"
)
"""Node label holding the operating system version."""

NFD_KERNEL_LABEL = "feature.node.kubernetes.io/kernel-version.full"
"""Node label holding the full kernel version."""

NFD_OS_TREE_VERSION_LABEL = (
    "feature.node.kubernetes.io/system-os_release.OSTREE_VERSION"
)
"""Node label holding the OS image version on OpenShift (RHCOS)."""

STATE_LABEL = "nvidia.com/gpu-operator.state"
"""Label added to every managed object naming the state that owns it."""

HASH_ANNOTATION = "nvidia.com/last-applied-hash"
"""Annotation holding the install configuration digest of a DaemonSet.

This key must never change, since digests stored by earlier versions are
compared against newly computed ones.
"""

APP_COMPONENT_LABEL = "app.kubernetes.io/component"
"""Label distinguishing driver DaemonSets from other operands."""

# Name limits.

NAME_MAX_LENGTH = 253
"""Maximum length of a Kubernetes DNS subdomain name."""

APP_NAME_MAX_LENGTH = 63
"""Maximum length of a Kubernetes DNS label (and label value)."""

# Container names known to the install configuration digest. Any new add-on
# container in the manifests must be added here and in the digest.

CONTAINER_DRIVER = "nvidia-driver-ctr"
CONTAINER_DRIVER_MANAGER = "k8s-driver-manager"
CONTAINER_PEERMEM = "nvidia-peermem-ctr"
CONTAINER_GDS = "nvidia-fs-ctr"
CONTAINER_GDRCOPY = "nvidia-gdrcopy-ctr"
CONTAINER_TOOLKIT = "openshift-driver-toolkit-ctr"

MINIMUM_GDS_VERSION_FOR_OPEN_RM = "2.17.5"
"""First GPUDirect Storage release that requires open kernel modules."""

# Additional configuration mounts.

REPO_CONFIG_PATHS = {
    "centos": "/etc/yum.repos.d",
    "rhcos": "/etc/yum.repos.d",
    "rhel": "/etc/yum.repos.d",
    "ubuntu": "/etc/apt/sources.list.d",
}
"""Package repository configuration directory per distribution."""

CERT_CONFIG_PATHS = {
    "centos": "/etc/pki/ca-trust/extracted/pem",
    "rhcos": "/etc/pki/ca-trust/extracted/pem",
    "rhel": "/etc/pki/ca-trust/extracted/pem",
    "ubuntu": "/usr/local/share/ca-certificates",
}
"""Certificate directory per distribution."""

_RHEL_SUBSCRIPTIONS = {
    "/run/secrets/etc-pki-entitlement": ("/etc/pki/entitlement", "Directory"),
    "/run/secrets/redhat.repo": ("/etc/yum.repos.d/redhat.repo", "File"),
    "/run/secrets/rhsm": ("/etc/rhsm", "Directory"),
}
_SUSE_SUBSCRIPTIONS = {
    "/etc/zypp/credentials.d": ("/etc/zypp/credentials.d", "Directory"),
    "/etc/SUSEConnect": ("/etc/SUSEConnect", "FileOrCreate"),
}

SUBSCRIPTION_PATHS = {
    "rhel": _RHEL_SUBSCRIPTIONS,
    "rhcos": _RHEL_SUBSCRIPTIONS,
    "sles": _SUSE_SUBSCRIPTIONS,
    "sl-micro": _SUSE_SUBSCRIPTIONS,
}
"""Host paths with subscription entitlements, keyed by mount path.

Values are the host path and its ``hostPath`` type.
"""

KERNEL_MODULE_CONFIG_PATH = "/drivers"
"""Directory in the driver container for kernel module parameters."""

LICENSING_VOLUME_NAME = "licensing-config"
LICENSING_CONFIG_FILE = "gridd.conf"
LICENSING_CONFIG_MOUNT_PATH = "/drivers/gridd.conf"
NLS_TOKEN_FILE = "client_configuration_token.tok"
NLS_TOKEN_MOUNT_PATH = (
    "/drivers/ClientConfigToken/client_configuration_token.tok"
)

TOPOLOGY_VOLUME_NAME = "topology-config"
TOPOLOGY_CONFIG_FILE = "nvidia-topologyd.conf"
TOPOLOGY_CONFIG_MOUNT_PATH = "/etc/nvidia/nvidia-topologyd.conf"
