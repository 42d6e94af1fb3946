"""Test fixtures for GPU driver controller tests."""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterator

import pytest
import pytest_asyncio
from asgi_lifespan import LifespanManager
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from gpudriver.config import Config
from gpudriver.factory import Factory
from gpudriver.main import create_app

from .support.config import configure
from .support.data import read_input_nodes
from .support.kubernetes import MockDriverKubernetesApi, patch_kubernetes


@pytest_asyncio.fixture
async def config() -> Config:
    """Construct default configuration for tests."""
    return await configure("standard")


@pytest_asyncio.fixture
async def app(
    config: Config, mock_kubernetes: MockDriverKubernetesApi
) -> AsyncIterator[FastAPI]:
    """Return a configured test application.

    Wraps the application in a lifespan manager so that startup and shutdown
    events are sent during test execution.
    """
    mock_kubernetes.set_nodes_for_test(read_input_nodes("ubuntu"))
    app = create_app()
    async with LifespanManager(app):
        yield app


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    """Return an ``httpx.AsyncClient`` configured to talk to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="https://example.com/"
    ) as client:
        yield client


@pytest_asyncio.fixture
async def factory(
    config: Config, mock_kubernetes: MockDriverKubernetesApi
) -> AsyncIterator[Factory]:
    """Create a component factory for tests."""
    mock_kubernetes.set_nodes_for_test(read_input_nodes("ubuntu"))
    async with Factory.standalone(config) as factory:
        yield factory


@pytest.fixture
def mock_kubernetes() -> Iterator[MockDriverKubernetesApi]:
    yield from patch_kubernetes()
