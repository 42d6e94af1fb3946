"""Tests for rendering the manifest templates."""

from __future__ import annotations

import dataclasses
from datetime import timedelta
from pathlib import Path
from typing import Any

import pytest
import structlog
from kubernetes_asyncio.client import ApiClient

from gpudriver.config import Config
from gpudriver.constants import GPU_PRESENT_LABEL, MANIFEST_DIR
from gpudriver.exceptions import RenderError
from gpudriver.models.domain.clusterinfo import ClusterInfo, ProxySpec
from gpudriver.models.domain.nodepool import NodePool
from gpudriver.models.domain.nvidiadriver import NVIDIADriver
from gpudriver.models.domain.renderdata import RenderData
from gpudriver.services.builder.driver import RenderDataBuilder
from gpudriver.services.builder.volumes import AdditionalConfigBuilder
from gpudriver.services.render import ManifestRenderer, get_manifest_files
from gpudriver.storage.kubernetes.creator import ConfigMapStorage
from gpudriver.timeout import Timeout

from ..support.data import read_input_driver
from ..support.kubernetes import MockDriverKubernetesApi

UBUNTU_POOL = NodePool(
    name="ubuntu22.04",
    os_release="ubuntu",
    os_version="22.04",
    node_selector={
        GPU_PRESENT_LABEL: "true",
        "feature.node.kubernetes.io/system-os_release.ID": "ubuntu",
        "feature.node.kubernetes.io/system-os_release.VERSION_ID": "22.04",
    },
)

RHCOS_POOL = NodePool(
    name="414.92.202402130420-0",
    os_release="rhcos",
    os_version="4.14",
    node_selector={
        GPU_PRESENT_LABEL: "true",
        "feature.node.kubernetes.io/system-os_release.ID": "rhcos",
        "feature.node.kubernetes.io/system-os_release.VERSION_ID": "4.14",
        "feature.node.kubernetes.io/system-os_release.OSTREE_VERSION": (
            "414.92.202402130420-0"
        ),
    },
    rhcos_version="414.92.202402130420-0",
)


async def build_data(
    config: Config,
    name: str,
    pool: NodePool = UBUNTU_POOL,
    cluster_info: ClusterInfo | None = None,
) -> RenderData:
    driver = NVIDIADriver.model_validate(read_input_driver(name))
    driver.metadata.uid = "0f5b4c4e-8e53-4d5c-a2a4-0d0b0b9e5e11"
    if not cluster_info:
        cluster_info = ClusterInfo(kubernetes_version="v1.30.2")
    logger = structlog.get_logger(__name__)
    storage = ConfigMapStorage(ApiClient(), logger)
    volumes = AdditionalConfigBuilder(
        storage, config.operator_namespace, logger
    )
    builder = RenderDataBuilder(config, volumes, logger)
    timeout = Timeout(timedelta(seconds=10))
    return await builder.build(driver, pool, cluster_info, [pool], timeout)


def find(objects: list[dict[str, Any]], kind: str) -> dict[str, Any]:
    matches = [o for o in objects if o["kind"] == kind]
    assert len(matches) == 1, f"Expected one {kind}"
    return matches[0]


def get_env(container: dict[str, Any]) -> dict[str, str]:
    return {
        e["name"]: e["value"] for e in container.get("env", []) if "value" in e
    }


def test_get_manifest_files(tmp_path: Path) -> None:
    (tmp_path / "sub").mkdir()
    (tmp_path / "0200_b.yaml").write_text("")
    (tmp_path / "0100_a.yml").write_text("")
    (tmp_path / "sub" / "0050_c.json").write_text("")
    (tmp_path / "README.md").write_text("")

    files = get_manifest_files(tmp_path)
    assert [p.relative_to(tmp_path).as_posix() for p in files] == [
        "0100_a.yml",
        "0200_b.yaml",
        "sub/0050_c.json",
    ]

    with pytest.raises(RenderError):
        get_manifest_files(tmp_path / "missing")


@pytest.mark.asyncio
async def test_render(
    config: Config, mock_kubernetes: MockDriverKubernetesApi
) -> None:
    data = await build_data(config, "default")
    renderer = ManifestRenderer(MANIFEST_DIR, structlog.get_logger(__name__))

    objects = renderer.render(data)
    assert [o["kind"] for o in objects] == [
        "ServiceAccount",
        "Role",
        "ClusterRole",
        "RoleBinding",
        "ClusterRoleBinding",
        "DaemonSet",
    ]
    for obj in objects[:-1]:
        assert obj["metadata"]["name"] == data.driver.name

    daemonset = find(objects, "DaemonSet")
    metadata = daemonset["metadata"]
    assert metadata["name"] == data.driver.app_name
    assert metadata["namespace"] == "gpu-operator"
    assert metadata["labels"]["app"] == data.driver.app_name
    assert metadata["labels"]["nvidia.com/precompiled"] == "false"
    assert (
        metadata["labels"]["app.kubernetes.io/component"] == "nvidia-driver"
    )

    spec = daemonset["spec"]
    assert spec["selector"]["matchLabels"] == {"app": data.driver.app_name}
    assert spec["updateStrategy"] == {"type": "OnDelete"}
    pod_spec = spec["template"]["spec"]
    assert pod_spec["nodeSelector"] == {
        "nvidia.com/gpu.deploy.driver": "true",
        **UBUNTU_POOL.node_selector,
    }
    assert [t["key"] for t in pod_spec["tolerations"]] == [
        "nvidia.com/gpu",
        "dedicated",
    ]
    assert pod_spec["imagePullSecrets"] == [{"name": "ngc-secret"}]
    assert pod_spec["serviceAccountName"] == data.driver.name
    assert pod_spec["priorityClassName"] == "system-node-critical"

    manager = pod_spec["initContainers"][0]
    assert manager["name"] == "k8s-driver-manager"
    assert manager["image"] == config.driver_manager_image
    assert get_env(manager)["ENABLE_AUTO_DRAIN"] == "true"

    assert [c["name"] for c in pod_spec["containers"]] == [
        "nvidia-driver-ctr"
    ]
    container = pod_spec["containers"][0]
    assert container["image"] == (
        "nvcr.io/nvidia/driver:550.54.15-ubuntu22.04"
    )
    assert container["args"] == ["init"]
    assert get_env(container)["DRIVER_LOG_LEVEL"] == "debug"
    assert "KERNEL_MODULE_TYPE" not in get_env(container)
    assert container["startupProbe"]["initialDelaySeconds"] == 60

    volumes = {v["name"]: v for v in pod_spec["volumes"]}
    assert volumes["host-root"]["hostPath"]["path"] == "/"


@pytest.mark.asyncio
async def test_render_deterministic(
    config: Config, mock_kubernetes: MockDriverKubernetesApi
) -> None:
    data = await build_data(config, "gds")
    renderer = ManifestRenderer(MANIFEST_DIR, structlog.get_logger(__name__))
    assert renderer.render(data) == renderer.render(data)


@pytest.mark.asyncio
async def test_render_host_root(
    config: Config, mock_kubernetes: MockDriverKubernetesApi
) -> None:
    data = await build_data(config, "default")
    data = dataclasses.replace(data, host_root="/host-root")
    renderer = ManifestRenderer(MANIFEST_DIR, structlog.get_logger(__name__))

    daemonset = find(renderer.render(data), "DaemonSet")
    volumes = daemonset["spec"]["template"]["spec"]["volumes"]
    host_root = next(v for v in volumes if v["name"] == "host-root")
    assert host_root["hostPath"]["path"] == "/host-root"


@pytest.mark.asyncio
async def test_render_addons(
    config: Config, mock_kubernetes: MockDriverKubernetesApi
) -> None:
    data = await build_data(config, "gds")
    renderer = ManifestRenderer(MANIFEST_DIR, structlog.get_logger(__name__))

    daemonset = find(renderer.render(data), "DaemonSet")
    pod_spec = daemonset["spec"]["template"]["spec"]
    assert [c["name"] for c in pod_spec["containers"]] == [
        "nvidia-driver-ctr",
        "nvidia-peermem-ctr",
        "nvidia-fs-ctr",
        "nvidia-gdrcopy-ctr",
    ]
    driver_env = get_env(pod_spec["containers"][0])
    assert driver_env["KERNEL_MODULE_TYPE"] == "open"
    assert driver_env["GPU_DIRECT_RDMA_ENABLED"] == "true"
    assert driver_env["USE_HOST_MOFED"] == "true"
    assert pod_spec["containers"][2]["image"] == (
        "nvcr.io/nvidia/cloud-native/nvidia-fs:2.17.5-ubuntu22.04"
    )
    volumes = {v["name"]: v for v in pod_spec["volumes"]}
    assert volumes["mlnx-ofed-usr-src"]["hostPath"]["path"] == "/usr/src"


@pytest.mark.asyncio
async def test_render_openshift(
    config: Config, mock_kubernetes: MockDriverKubernetesApi
) -> None:
    toolkit = "quay.io/openshift-release-dev/ocp-v4.0-art-dev@sha256:" + (
        "f" * 64
    )
    cluster_info = ClusterInfo(
        kubernetes_version="v1.27.10",
        openshift_version="4.14",
        toolkit_images={"414.92.202402130420-0": toolkit},
        proxy=ProxySpec(
            https_proxy="http://proxy.example.com:3128",
            trusted_ca="user-ca-bundle",
        ),
    )
    data = await build_data(config, "default", RHCOS_POOL, cluster_info)
    renderer = ManifestRenderer(MANIFEST_DIR, structlog.get_logger(__name__))

    objects = renderer.render(data)
    assert [o["kind"] for o in objects] == [
        "ServiceAccount",
        "Role",
        "ClusterRole",
        "RoleBinding",
        "ClusterRoleBinding",
        "ConfigMap",
        "SecurityContextConstraints",
        "DaemonSet",
    ]
    scc = find(objects, "SecurityContextConstraints")
    assert scc["users"] == [
        f"system:serviceaccount:gpu-operator:{data.driver.name}"
    ]

    daemonset = find(objects, "DaemonSet")
    labels = daemonset["metadata"]["labels"]
    assert labels["openshift.driver-toolkit"] == "true"
    assert labels["openshift.driver-toolkit.rhcos"] == (
        "414.92.202402130420-0"
    )
    pod_spec = daemonset["spec"]["template"]["spec"]
    assert [c["name"] for c in pod_spec["containers"]] == [
        "nvidia-driver-ctr",
        "openshift-driver-toolkit-ctr",
    ]
    driver, toolkit_container = pod_spec["containers"]
    assert driver["command"] == ["ocp_dtk_entrypoint"]
    assert get_env(driver)["OPENSHIFT_VERSION"] == "4.14"
    assert get_env(driver)["HTTPS_PROXY"] == "http://proxy.example.com:3128"
    assert "HTTP_PROXY" not in get_env(driver)
    assert toolkit_container["image"] == toolkit
    volumes = {v["name"] for v in pod_spec["volumes"]}
    assert "shared-nvidia-driver-toolkit" in volumes
    assert "gpu-operator-trusted-ca" in volumes


@pytest.mark.asyncio
async def test_render_errors(
    config: Config, mock_kubernetes: MockDriverKubernetesApi, tmp_path: Path
) -> None:
    data = await build_data(config, "default")
    logger = structlog.get_logger(__name__)

    (tmp_path / "0100_undefined.yaml").write_text(
        "kind: ConfigMap\nmetadata:\n  name: {{ unknown.name }}\n"
    )
    with pytest.raises(RenderError, match="0100_undefined.yaml"):
        ManifestRenderer(tmp_path, logger).render(data)

    (tmp_path / "0100_undefined.yaml").write_text("- kind: ConfigMap\n")
    with pytest.raises(RenderError, match="not a mapping"):
        ManifestRenderer(tmp_path, logger).render(data)

    (tmp_path / "0100_undefined.yaml").write_text("kind: [unclosed\n")
    with pytest.raises(RenderError):
        ManifestRenderer(tmp_path, logger).render(data)

    with pytest.raises(RenderError):
        ManifestRenderer(tmp_path / "missing", logger).render(data)


@pytest.mark.asyncio
async def test_render_skips_empty(
    config: Config, mock_kubernetes: MockDriverKubernetesApi, tmp_path: Path
) -> None:
    data = await build_data(config, "default")
    logger = structlog.get_logger(__name__)
    (tmp_path / "0100_disabled.yaml").write_text(
        "{% if runtime.openshift_version %}\nkind: Secret\n{% endif %}\n"
    )
    (tmp_path / "0200_multiple.yaml").write_text(
        "---\nmetadata: {}\n---\nkind: ConfigMap\nmetadata:\n"
        "  name: {{ driver.name }}\n---\n"
    )

    objects = ManifestRenderer(tmp_path, logger).render(data)
    assert objects == [
        {"kind": "ConfigMap", "metadata": {"name": data.driver.name}}
    ]
