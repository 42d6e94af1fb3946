"""Tests for the Kubernetes storage layer."""

from __future__ import annotations

from datetime import timedelta
from typing import Any

import pytest
import structlog
from kubernetes_asyncio.client import ApiClient, ApiException

from gpudriver.constants import GPU_PRESENT_LABEL
from gpudriver.exceptions import KubernetesError
from gpudriver.models.domain.nvidiadriver import DriverState
from gpudriver.storage.kubernetes.custom import NVIDIADriverStorage
from gpudriver.storage.kubernetes.deleter import DaemonSetStorage
from gpudriver.storage.kubernetes.node import NodeStorage
from gpudriver.timeout import Timeout

from ..support.data import read_input_nodes
from ..support.drivers import create_driver, get_driver
from ..support.kubernetes import MockDriverKubernetesApi


def build_daemonset(name: str, labels: dict[str, str]) -> dict[str, Any]:
    return {
        "apiVersion": "apps/v1",
        "kind": "DaemonSet",
        "metadata": {"name": name, "labels": labels},
        "spec": {"selector": {"matchLabels": {"app": name}}},
    }


@pytest.mark.asyncio
async def test_driver_storage(
    mock_kubernetes: MockDriverKubernetesApi,
) -> None:
    logger = structlog.get_logger(__name__)
    storage = NVIDIADriverStorage(ApiClient(), logger)
    timeout = Timeout(timedelta(seconds=10))

    assert await storage.get("default", timeout) is None
    assert await storage.list_drivers(timeout) == []

    await create_driver(mock_kubernetes, "default")
    await create_driver(mock_kubernetes, "gds")
    driver = await storage.get("default", timeout)
    assert driver
    assert driver.name == "default"
    assert driver.spec.version == "550.54.15"
    drivers = await storage.list_drivers(timeout)
    assert sorted(d.name for d in drivers) == ["default", "gds"]


@pytest.mark.asyncio
async def test_replace_status(
    mock_kubernetes: MockDriverKubernetesApi,
) -> None:
    logger = structlog.get_logger(__name__)
    storage = NVIDIADriverStorage(ApiClient(), logger)
    timeout = Timeout(timedelta(seconds=10))
    await create_driver(mock_kubernetes, "default")

    driver = await storage.get("default", timeout)
    assert driver
    driver.status.state = DriverState.READY
    driver.status.namespace = "gpu-operator"
    stored = await storage.replace_status(driver, timeout)
    assert stored.status.state == DriverState.READY
    assert get_driver(mock_kubernetes, "default").status.namespace == (
        "gpu-operator"
    )

    # The original copy is now stale and conflicts.
    driver.status.state = DriverState.NOT_READY
    with pytest.raises(KubernetesError) as excinfo:
        await storage.replace_status(driver, timeout)
    assert excinfo.value.is_conflict
    stored = get_driver(mock_kubernetes, "default")
    assert stored.status.state == DriverState.READY


@pytest.mark.asyncio
async def test_driver_storage_error(
    mock_kubernetes: MockDriverKubernetesApi,
) -> None:
    logger = structlog.get_logger(__name__)
    storage = NVIDIADriverStorage(ApiClient(), logger)
    timeout = Timeout(timedelta(seconds=10))

    def callback(method: str, *args: Any) -> None:
        if method == "list_cluster_custom_object":
            raise ApiException(status=403, reason="Forbidden")

    mock_kubernetes.error_callback = callback
    with pytest.raises(KubernetesError, match="status 403"):
        await storage.list_drivers(timeout)


@pytest.mark.asyncio
async def test_daemonset_storage(
    mock_kubernetes: MockDriverKubernetesApi,
) -> None:
    logger = structlog.get_logger(__name__)
    storage = DaemonSetStorage(ApiClient(), logger)
    timeout = Timeout(timedelta(seconds=10))

    for name, component in (("one", "driver"), ("two", "toolkit")):
        labels = {"app.kubernetes.io/component": component}
        body = build_daemonset(name, labels)
        await storage.create("gpu-operator", body, timeout)
    body = build_daemonset("three", {"app.kubernetes.io/component": "driver"})
    await storage.create("other", body, timeout)

    daemonsets = await storage.list("gpu-operator", timeout)
    assert sorted(d["metadata"]["name"] for d in daemonsets) == ["one", "two"]
    selector = "app.kubernetes.io/component=driver"
    daemonsets = await storage.list(
        "gpu-operator", timeout, label_selector=selector
    )
    assert [d["metadata"]["name"] for d in daemonsets] == ["one"]

    await storage.delete("one", "gpu-operator", timeout)
    obj = mock_kubernetes.get_object_for_test(
        "DaemonSet", "gpu-operator", "one"
    )
    assert obj is None

    # Deleting an object that does not exist is not an error.
    await storage.delete("one", "gpu-operator", timeout)


@pytest.mark.asyncio
async def test_node_storage(mock_kubernetes: MockDriverKubernetesApi) -> None:
    logger = structlog.get_logger(__name__)
    storage = NodeStorage(ApiClient(), logger)
    timeout = Timeout(timedelta(seconds=10))
    mock_kubernetes.set_nodes_for_test(read_input_nodes("ubuntu"))

    nodes = await storage.list({}, timeout)
    assert len(nodes) == 4
    nodes = await storage.list({GPU_PRESENT_LABEL: "true"}, timeout)
    names = sorted(n["metadata"]["name"] for n in nodes)
    assert names == ["gpu-1", "gpu-2", "gpu-3"]

    def callback(method: str, *args: Any) -> None:
        if method == "list_node":
            raise ApiException(status=500, reason="Internal error")

    mock_kubernetes.error_callback = callback
    with pytest.raises(KubernetesError) as excinfo:
        await storage.list({}, timeout)
    assert excinfo.value.status == 500
