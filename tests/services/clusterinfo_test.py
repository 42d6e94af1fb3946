"""Tests for gathering facts about the cluster."""

from __future__ import annotations

from datetime import timedelta
from typing import Any

import pytest
import structlog
from kubernetes_asyncio.client import ApiClient, ApiException

from gpudriver.exceptions import KubernetesError, UnknownClusterVersionError
from gpudriver.models.domain.clusterinfo import ContainerRuntime, ProxySpec
from gpudriver.services.clusterinfo import ClusterInfoService
from gpudriver.storage.kubernetes.clusterinfo import ClusterInfoStorage
from gpudriver.storage.kubernetes.node import NodeStorage
from gpudriver.timeout import Timeout

from ..support.data import read_input_nodes
from ..support.kubernetes import MockDriverKubernetesApi

TOOLKIT_IMAGE = "quay.io/openshift-release-dev/ocp-v4.0-art-dev@sha256:" + (
    "a" * 64
)


def build_service() -> ClusterInfoService:
    logger = structlog.get_logger(__name__)
    api_client = ApiClient()
    return ClusterInfoService(
        ClusterInfoStorage(api_client, logger),
        NodeStorage(api_client, logger),
        logger,
    )


async def create_openshift_objects(
    mock: MockDriverKubernetesApi, history: list[dict[str, Any]]
) -> None:
    await mock.create_cluster_custom_object(
        "config.openshift.io",
        "v1",
        "clusterversions",
        {
            "apiVersion": "config.openshift.io/v1",
            "kind": "ClusterVersion",
            "metadata": {"name": "version"},
            "status": {"history": history},
        },
    )
    await mock.create_cluster_custom_object(
        "config.openshift.io",
        "v1",
        "proxies",
        {
            "apiVersion": "config.openshift.io/v1",
            "kind": "Proxy",
            "metadata": {"name": "cluster"},
            "spec": {
                "httpProxy": "http://proxy.example.com:3128",
                "noProxy": ".cluster.local",
                "trustedCA": {"name": "user-ca-bundle"},
            },
        },
    )
    await mock.create_namespaced_custom_object(
        "image.openshift.io",
        "v1",
        "openshift",
        "imagestreams",
        {
            "apiVersion": "image.openshift.io/v1",
            "kind": "ImageStream",
            "metadata": {"name": "driver-toolkit"},
            "spec": {
                "tags": [
                    {
                        "name": "414.92.202402130420-0",
                        "from": {"kind": "DockerImage", "name": TOOLKIT_IMAGE},
                    },
                    {
                        "name": "latest",
                        "from": {"kind": "DockerImage", "name": TOOLKIT_IMAGE},
                    },
                    {"name": "empty"},
                ]
            },
        },
    )


@pytest.mark.asyncio
async def test_get(mock_kubernetes: MockDriverKubernetesApi) -> None:
    mock_kubernetes.set_nodes_for_test(read_input_nodes("ubuntu"))
    service = build_service()
    timeout = Timeout(timedelta(seconds=10))

    info = await service.get(timeout, precompiled=False)
    assert info.kubernetes_version == "v1.30.2"
    assert info.openshift_version is None
    assert not info.is_openshift
    assert info.container_runtime == ContainerRuntime.CONTAINERD
    assert info.proxy is None
    assert info.toolkit_images == {}
    assert not info.toolkit_enabled


@pytest.mark.asyncio
async def test_container_runtime(
    mock_kubernetes: MockDriverKubernetesApi,
) -> None:
    nodes = read_input_nodes("ubuntu")
    for node in nodes:
        node["status"]["nodeInfo"]["containerRuntimeVersion"] = "cri-o://1.29"
    mock_kubernetes.set_nodes_for_test(nodes)
    service = build_service()
    timeout = Timeout(timedelta(seconds=10))

    info = await service.get(timeout, precompiled=False)
    assert info.container_runtime == ContainerRuntime.CRIO

    # Containerd wins if any node runs it.
    nodes[1]["status"]["nodeInfo"]["containerRuntimeVersion"] = (
        "containerd://1.7.13"
    )
    mock_kubernetes.set_nodes_for_test(nodes)
    info = await service.get(timeout, precompiled=False)
    assert info.container_runtime == ContainerRuntime.CONTAINERD

    # Unrecognized runtimes fall back to containerd.
    for node in nodes:
        node["status"]["nodeInfo"]["containerRuntimeVersion"] = "rkt://1.0"
    mock_kubernetes.set_nodes_for_test(nodes)
    info = await service.get(timeout, precompiled=False)
    assert info.container_runtime == ContainerRuntime.CONTAINERD


@pytest.mark.asyncio
async def test_openshift(mock_kubernetes: MockDriverKubernetesApi) -> None:
    mock_kubernetes.kubernetes_version = "v1.27.10+28ed2d7"
    mock_kubernetes.set_nodes_for_test(read_input_nodes("openshift"))
    history = [
        {"state": "Partial", "version": "4.15.2"},
        {"state": "Completed", "version": "4.14.12"},
    ]
    await create_openshift_objects(mock_kubernetes, history)
    service = build_service()
    timeout = Timeout(timedelta(seconds=10))

    info = await service.get(timeout, precompiled=False)
    assert info.kubernetes_version == "v1.27.10+28ed2d7"
    assert info.openshift_version == "4.14"
    assert info.is_openshift
    assert info.container_runtime == ContainerRuntime.CRIO
    assert info.proxy == ProxySpec(
        http_proxy="http://proxy.example.com:3128",
        no_proxy=".cluster.local",
        trusted_ca="user-ca-bundle",
    )
    assert info.toolkit_images == {"414.92.202402130420-0": TOOLKIT_IMAGE}
    assert info.toolkit_enabled

    # Precompiled drivers do not use the driver toolkit.
    info = await service.get(timeout, precompiled=True)
    assert info.openshift_version == "4.14"
    assert info.proxy is None
    assert not info.toolkit_enabled


@pytest.mark.asyncio
async def test_openshift_no_completed_version(
    mock_kubernetes: MockDriverKubernetesApi,
) -> None:
    await create_openshift_objects(
        mock_kubernetes, [{"state": "Partial", "version": "4.15.2"}]
    )
    service = build_service()
    timeout = Timeout(timedelta(seconds=10))

    with pytest.raises(UnknownClusterVersionError):
        await service.get_openshift_version(timeout)


@pytest.mark.asyncio
async def test_errors(mock_kubernetes: MockDriverKubernetesApi) -> None:
    def callback(method: str, *args: Any) -> None:
        if method == "get_cluster_custom_object":
            raise ApiException(status=500, reason="Internal error")

    mock_kubernetes.error_callback = callback
    service = build_service()
    timeout = Timeout(timedelta(seconds=10))

    with pytest.raises(KubernetesError) as excinfo:
        await service.get(timeout, precompiled=False)
    assert excinfo.value.status == 500
    assert excinfo.value.name == "version"
