"""Config dependency."""

from __future__ import annotations

from pathlib import Path

from ..config import Config
from ..constants import CONFIGURATION_PATH

__all__ = [
    "ConfigDependency",
    "config_dependency",
]


class ConfigDependency:
    """Dependency to manage a cached GPU driver controller configuration.

    The configuration is read on first use, cached, and returned to all
    dependency callers unless `set_path` is called to change it. If the
    configuration file does not exist, settings come from the environment
    alone.

    Parameters
    ----------
    path
        Path to the controller configuration.
    """

    def __init__(self, path: Path = CONFIGURATION_PATH) -> None:
        self._path = path
        self._config: Config | None = None

    async def __call__(self) -> Config:
        return self.config

    @property
    def config(self) -> Config:
        """Load configuration if needed and return it.

        Returns
        -------
        Config
            Controller configuration.

        Raises
        ------
        pydantic.ValidationError
            Raised if the configuration is invalid, including when the
            operator namespace is not set.
        """
        if self._config is None:
            self._config = self._load(self._path)
        return self._config

    def set_path(self, path: Path) -> None:
        """Change the configuration path and reload.

        Parameters
        ----------
        path
            New configuration path.
        """
        self._path = path
        self._config = self._load(path)

    def _load(self, path: Path) -> Config:
        if path.exists():
            return Config.from_file(path)
        return Config()


config_dependency = ConfigDependency()
"""The dependency that will return the controller configuration."""
