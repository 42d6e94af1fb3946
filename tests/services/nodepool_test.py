"""Tests for partitioning nodes into node pools."""

from __future__ import annotations

from datetime import timedelta

import pytest
import structlog
from kubernetes_asyncio.client import ApiClient

from gpudriver.constants import GPU_PRESENT_LABEL, NFD_OS_VERSION_LABEL
from gpudriver.services.nodepool import NodePoolPartitioner
from gpudriver.storage.kubernetes.node import NodeStorage
from gpudriver.timeout import Timeout

from ..support.data import read_input_nodes
from ..support.kubernetes import MockDriverKubernetesApi

DEFAULT_SELECTOR = {GPU_PRESENT_LABEL: "true"}


def build_partitioner() -> NodePoolPartitioner:
    logger = structlog.get_logger(__name__)
    return NodePoolPartitioner(NodeStorage(ApiClient(), logger), logger)


@pytest.mark.asyncio
async def test_partition(mock_kubernetes: MockDriverKubernetesApi) -> None:
    partitioner = build_partitioner()
    nodes = read_input_nodes("ubuntu")

    pools = partitioner.partition(
        nodes, DEFAULT_SELECTOR, precompiled=False, openshift=False
    )
    assert [p.name for p in pools] == ["ubuntu20.04", "ubuntu22.04"]
    assert pools[1].node_selector == {
        GPU_PRESENT_LABEL: "true",
        "feature.node.kubernetes.io/system-os_release.ID": "ubuntu",
        NFD_OS_VERSION_LABEL: "22.04",
    }
    assert pools[1].kernel_version is None
    assert pools[1].rhcos_version is None


@pytest.mark.asyncio
async def test_partition_precompiled(
    mock_kubernetes: MockDriverKubernetesApi,
) -> None:
    partitioner = build_partitioner()
    nodes = read_input_nodes("ubuntu")

    pools = partitioner.partition(
        nodes, DEFAULT_SELECTOR, precompiled=True, openshift=False
    )
    assert [p.name for p in pools] == [
        "ubuntu20.04-5.4.0-150-generic",
        "ubuntu22.04-5.15.0-91-generic",
        "ubuntu22.04-5.4.0-150-generic",
    ]
    pool = pools[1]
    assert pool.kernel_version == "5.15.0-91-generic"
    kernel_label = "feature.node.kubernetes.io/kernel-version.full"
    assert pool.node_selector[kernel_label] == "5.15.0-91-generic"


@pytest.mark.asyncio
async def test_partition_openshift(mock_kubernetes: MockDriverKubernetesApi) -> None:
    partitioner = build_partitioner()
    nodes = read_input_nodes("openshift")

    pools = partitioner.partition(
        nodes, DEFAULT_SELECTOR, precompiled=False, openshift=True
    )
    assert [p.name for p in pools] == ["414.92.202402130420-0"]
    assert pools[0].rhcos_version == "414.92.202402130420-0"
    assert pools[0].os_release == "rhcos"

    # Precompiled drivers take precedence over the RHCOS version.
    pools = partitioner.partition(
        nodes, DEFAULT_SELECTOR, precompiled=True, openshift=True
    )
    assert [p.name for p in pools] == ["rhcos4.14-5.14.0-284.52.1.el9.2"]


@pytest.mark.asyncio
async def test_partition_selector(mock_kubernetes: MockDriverKubernetesApi) -> None:
    partitioner = build_partitioner()
    nodes = read_input_nodes("ubuntu")

    selector = {NFD_OS_VERSION_LABEL: "20.04"}
    pools = partitioner.partition(
        nodes, selector, precompiled=False, openshift=False
    )
    assert [p.name for p in pools] == ["ubuntu20.04"]

    selector = {NFD_OS_VERSION_LABEL: "24.04"}
    pools = partitioner.partition(
        nodes, selector, precompiled=False, openshift=False
    )
    assert pools == []


@pytest.mark.asyncio
async def test_partition_missing_label(
    mock_kubernetes: MockDriverKubernetesApi,
) -> None:
    partitioner = build_partitioner()
    nodes = read_input_nodes("ubuntu")
    del nodes[2]["metadata"]["labels"][NFD_OS_VERSION_LABEL]

    pools = partitioner.partition(
        nodes, DEFAULT_SELECTOR, precompiled=False, openshift=False
    )
    assert [p.name for p in pools] == ["ubuntu22.04"]


@pytest.mark.asyncio
async def test_get_node_pools(
    mock_kubernetes: MockDriverKubernetesApi,
) -> None:
    mock_kubernetes.set_nodes_for_test(read_input_nodes("ubuntu"))
    partitioner = build_partitioner()
    timeout = Timeout(timedelta(seconds=10))

    pools = await partitioner.get_node_pools(
        {NFD_OS_VERSION_LABEL: "22.04"},
        timeout,
        precompiled=True,
        openshift=False,
    )
    assert [p.name for p in pools] == [
        "ubuntu22.04-5.15.0-91-generic",
        "ubuntu22.04-5.4.0-150-generic",
    ]
