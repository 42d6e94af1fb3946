"""Tests for the Jinja environment used for manifest templates."""

from __future__ import annotations

from pathlib import Path

import yaml

from gpudriver.models.domain.nodepool import NodePool
from gpudriver.models.domain.nvidiadriver import DriverType
from gpudriver.templates import create_environment, to_plain


def test_to_plain() -> None:
    pool = NodePool(
        name="ubuntu22.04",
        os_release="ubuntu",
        os_version="22.04",
        node_selector={"nvidia.com/gpu.present": "true"},
    )
    assert to_plain({"pools": (pool,), "type": DriverType.GPU}) == {
        "pools": [
            {
                "name": "ubuntu22.04",
                "os_release": "ubuntu",
                "os_version": "22.04",
                "node_selector": {"nvidia.com/gpu.present": "true"},
                "kernel_version": None,
                "rhcos_version": None,
            }
        ],
        "type": "gpu",
    }


def test_filters(tmp_path: Path) -> None:
    template = (
        "metadata:\n"
        "  labels:\n"
        "    {{ labels | yaml | indent(4) }}\n"
        "spec:\n"
        "  enabled: {{ enabled | quote }}\n"
        "  version: {{ version | quote }}\n"
        "  replicas: {{ replicas | deref(1) }}\n"
    )
    (tmp_path / "object.yaml").write_text(template)
    environment = create_environment(tmp_path)
    output = environment.get_template("object.yaml").render(
        labels={"b": "2", "a": "1"},
        enabled=True,
        version=535,
        replicas=None,
    )
    assert yaml.safe_load(output) == {
        "metadata": {"labels": {"a": "1", "b": "2"}},
        "spec": {"enabled": "true", "version": "535", "replicas": 1},
    }
