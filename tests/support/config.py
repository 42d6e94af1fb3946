"""Build test configurations for the GPU driver controller."""

from __future__ import annotations

from pathlib import Path

from gpudriver.config import Config
from gpudriver.dependencies.config import config_dependency
from gpudriver.dependencies.context import context_dependency

__all__ = ["configure"]


async def configure(name: str) -> Config:
    """Configure or reconfigure with a test configuration.

    If the global process context was already initialized, stop the
    background processes and restart them with the new configuration.

    Parameters
    ----------
    name
        Name of the configuration file under ``tests/data/config``, without
        the ``.yaml`` suffix.

    Returns
    -------
    Config
        New configuration.
    """
    config_path = Path(__file__).parent.parent / "data" / "config"
    config_dependency.set_path(config_path / f"{name}.yaml")
    config = config_dependency.config

    # If the process context was initialized, meaning that we already have
    # running background jobs with the old configuration, stop and restart
    # them with the new configuration.
    if context_dependency.is_initialized:
        await context_dependency.aclose()
        await context_dependency.initialize(config)

    return config
