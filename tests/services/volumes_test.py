"""Tests for the volumes of configuration referenced by a driver."""

from __future__ import annotations

from datetime import timedelta

import pytest
import structlog
from kubernetes_asyncio.client import ApiClient

from gpudriver.config import Config
from gpudriver.exceptions import (
    MissingConfigMapError,
    UnsupportedDistributionError,
)
from gpudriver.models.domain.clusterinfo import ClusterInfo, ContainerRuntime
from gpudriver.models.domain.nodepool import NodePool
from gpudriver.models.domain.nvidiadriver import (
    LicensingConfigSpec,
    NamedConfigSpec,
    NVIDIADriverSpec,
)
from gpudriver.services.builder.volumes import AdditionalConfigBuilder
from gpudriver.storage.kubernetes.creator import ConfigMapStorage
from gpudriver.timeout import Timeout

from ..support.kubernetes import MockDriverKubernetesApi

CLUSTER_INFO = ClusterInfo(kubernetes_version="v1.30.2")


def build_pool(os_release: str, os_version: str) -> NodePool:
    return NodePool(
        name=f"{os_release}{os_version}",
        os_release=os_release,
        os_version=os_version,
        node_selector={},
    )


def build_volume_builder(config: Config) -> AdditionalConfigBuilder:
    logger = structlog.get_logger(__name__)
    storage = ConfigMapStorage(ApiClient(), logger)
    return AdditionalConfigBuilder(storage, config.operator_namespace, logger)


async def create_config_map(
    mock: MockDriverKubernetesApi, namespace: str, name: str, keys: list[str]
) -> None:
    body = {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": name},
        "data": {k: f"contents of {k}" for k in keys},
    }
    await mock.create_namespaced_config_map(namespace, body)


@pytest.mark.asyncio
async def test_repo_config(
    config: Config, mock_kubernetes: MockDriverKubernetesApi
) -> None:
    namespace = config.operator_namespace
    await create_config_map(
        mock_kubernetes, namespace, "repo-config", ["b.list", "a.list"]
    )
    builder = build_volume_builder(config)
    spec = NVIDIADriverSpec(repo_config=NamedConfigSpec(name="repo-config"))
    pool = build_pool("ubuntu", "22.04")
    timeout = Timeout(timedelta(seconds=10))

    result = await builder.build(spec, pool, CLUSTER_INFO, timeout)
    assert [(m.mount_path, m.sub_path) for m in result.volume_mounts] == [
        ("/etc/apt/sources.list.d/a.list", "a.list"),
        ("/etc/apt/sources.list.d/b.list", "b.list"),
    ]
    assert all(m.read_only for m in result.volume_mounts)
    assert len(result.volumes) == 1
    volume = result.volumes[0]
    assert volume.name == "repo-config"
    assert volume.config_map.name == "repo-config"
    assert [i.key for i in volume.config_map.items] == ["a.list", "b.list"]

    # Custom repositories are not used with precompiled drivers.
    spec.use_precompiled = True
    result = await builder.build(spec, pool, CLUSTER_INFO, timeout)
    assert result.volumes == []
    assert result.volume_mounts == []


@pytest.mark.asyncio
async def test_cert_config(
    config: Config, mock_kubernetes: MockDriverKubernetesApi
) -> None:
    namespace = config.operator_namespace
    await create_config_map(mock_kubernetes, namespace, "certs", ["ca.pem"])
    builder = build_volume_builder(config)
    spec = NVIDIADriverSpec(cert_config=NamedConfigSpec(name="certs"))
    pool = build_pool("rhel", "9.4")
    timeout = Timeout(timedelta(seconds=10))

    cluster_info = ClusterInfo(
        kubernetes_version="v1.30.2",
        container_runtime=ContainerRuntime.CRIO,
    )
    result = await builder.build(spec, pool, cluster_info, timeout)
    assert [m.mount_path for m in result.volume_mounts] == [
        "/etc/pki/ca-trust/extracted/pem/ca.pem"
    ]


@pytest.mark.asyncio
async def test_missing_config_map(
    config: Config, mock_kubernetes: MockDriverKubernetesApi
) -> None:
    builder = build_volume_builder(config)
    spec = NVIDIADriverSpec(repo_config=NamedConfigSpec(name="missing"))
    pool = build_pool("ubuntu", "22.04")
    timeout = Timeout(timedelta(seconds=10))

    with pytest.raises(MissingConfigMapError, match="missing"):
        await builder.build(spec, pool, CLUSTER_INFO, timeout)


@pytest.mark.asyncio
async def test_unsupported_distribution(
    config: Config, mock_kubernetes: MockDriverKubernetesApi
) -> None:
    namespace = config.operator_namespace
    await create_config_map(
        mock_kubernetes, namespace, "repo-config", ["a.repo"]
    )
    builder = build_volume_builder(config)
    spec = NVIDIADriverSpec(repo_config=NamedConfigSpec(name="repo-config"))
    pool = build_pool("sles", "15.5")
    timeout = Timeout(timedelta(seconds=10))

    with pytest.raises(UnsupportedDistributionError):
        await builder.build(spec, pool, CLUSTER_INFO, timeout)


@pytest.mark.asyncio
async def test_subscriptions(
    config: Config, mock_kubernetes: MockDriverKubernetesApi
) -> None:
    builder = build_volume_builder(config)
    spec = NVIDIADriverSpec()
    pool = build_pool("rhel", "8.8")
    timeout = Timeout(timedelta(seconds=10))

    result = await builder.build(spec, pool, CLUSTER_INFO, timeout)
    assert [m.mount_path for m in result.volume_mounts] == [
        "/run/secrets/etc-pki-entitlement",
        "/run/secrets/redhat.repo",
        "/run/secrets/rhsm",
    ]
    assert [v.host_path.path for v in result.volumes] == [
        "/etc/pki/entitlement",
        "/etc/yum.repos.d/redhat.repo",
        "/etc/rhsm",
    ]

    # CRI-O and OpenShift inject the entitlements themselves.
    cluster_info = ClusterInfo(
        kubernetes_version="v1.30.2",
        container_runtime=ContainerRuntime.CRIO,
    )
    result = await builder.build(spec, pool, cluster_info, timeout)
    assert result.volumes == []
    cluster_info = ClusterInfo(
        kubernetes_version="v1.27.10", openshift_version="4.14"
    )
    result = await builder.build(spec, pool, cluster_info, timeout)
    assert result.volumes == []

    # SUSE always needs its credentials.
    pool = build_pool("sles", "15.5")
    result = await builder.build(spec, pool, cluster_info, timeout)
    assert [v.host_path.type for v in result.volumes] == [
        "FileOrCreate",
        "Directory",
    ]


@pytest.mark.asyncio
async def test_licensing(
    config: Config, mock_kubernetes: MockDriverKubernetesApi
) -> None:
    builder = build_volume_builder(config)
    spec = NVIDIADriverSpec(
        licensing_config=LicensingConfigSpec(name="licensing")
    )
    pool = build_pool("ubuntu", "22.04")
    timeout = Timeout(timedelta(seconds=10))

    result = await builder.build(spec, pool, CLUSTER_INFO, timeout)
    assert [m.mount_path for m in result.volume_mounts] == [
        "/drivers/gridd.conf",
        "/drivers/ClientConfigToken/client_configuration_token.tok",
    ]
    assert len(result.volumes) == 1
    volume = result.volumes[0]
    assert volume.name == "licensing-config"
    assert volume.config_map.name == "licensing"
    assert [i.key for i in volume.config_map.items] == [
        "gridd.conf",
        "client_configuration_token.tok",
    ]

    spec.licensing_config = LicensingConfigSpec(
        name="licensing", nls_enabled=False
    )
    result = await builder.build(spec, pool, CLUSTER_INFO, timeout)
    assert [m.sub_path for m in result.volume_mounts] == ["gridd.conf"]


@pytest.mark.asyncio
async def test_topology_and_kernel_modules(
    config: Config, mock_kubernetes: MockDriverKubernetesApi
) -> None:
    namespace = config.operator_namespace
    await create_config_map(
        mock_kubernetes, namespace, "kernel-modules", ["nvidia.conf"]
    )
    builder = build_volume_builder(config)
    spec = NVIDIADriverSpec(
        kernel_module_config=NamedConfigSpec(name="kernel-modules"),
        virtual_topology_config=NamedConfigSpec(name="topology"),
    )
    pool = build_pool("ubuntu", "22.04")
    timeout = Timeout(timedelta(seconds=10))

    result = await builder.build(spec, pool, CLUSTER_INFO, timeout)
    assert [m.mount_path for m in result.volume_mounts] == [
        "/drivers/nvidia.conf",
        "/etc/nvidia/nvidia-topologyd.conf",
    ]
    assert [v.name for v in result.volumes] == [
        "kernel-modules",
        "topology-config",
    ]
