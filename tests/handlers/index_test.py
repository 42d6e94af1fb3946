"""Tests for the application metadata routes."""

from __future__ import annotations

import pytest
from httpx import AsyncClient

from gpudriver.config import Config


@pytest.mark.asyncio
async def test_get_index(client: AsyncClient, config: Config) -> None:
    r = await client.get(config.path_prefix)
    assert r.status_code == 200
    data = r.json()
    metadata = data["metadata"]
    assert metadata["name"] == config.name
    assert isinstance(metadata["version"], str)
    assert isinstance(metadata["description"], str)
    assert metadata["repository_url"] == (
        "https://github.com/example/gpu-driver-controller"
    )


@pytest.mark.asyncio
async def test_get_internal_index(
    client: AsyncClient, config: Config
) -> None:
    r = await client.get("/")
    assert r.status_code == 200
    data = r.json()
    assert data["name"] == config.name
    assert isinstance(data["version"], str)
