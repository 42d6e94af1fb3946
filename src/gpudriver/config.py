"""Global configuration parsing."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Self

import yaml
from pydantic import AliasChoices, Field, field_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict
from safir.logging import LogLevel, Profile
from safir.pydantic import HumanTimedelta

from .constants import (
    DEFAULT_REQUEUE_DELAY,
    DEFAULT_RESYNC_INTERVAL,
    KUBERNETES_REQUEST_TIMEOUT,
    MANIFEST_DIR,
)

__all__ = ["Config"]


class Config(BaseSettings):
    """GPU driver controller configuration."""

    model_config = SettingsConfigDict(
        alias_generator=to_camel, extra="forbid", populate_by_name=True
    )

    name: Annotated[
        str,
        Field(
            title="Name of application",
            description="Reported in application metadata and logs",
        ),
    ] = "gpu-driver-controller"

    path_prefix: Annotated[
        str,
        Field(
            title="URL prefix for controller API",
            description="Prefix for all routes except the internal index",
        ),
    ] = "/gpu-driver"

    log_level: Annotated[
        LogLevel,
        Field(
            title="Log level",
            description="Python logging level",
            examples=[LogLevel.INFO],
        ),
    ] = LogLevel.INFO

    profile: Annotated[
        Profile,
        Field(
            title="Application logging profile",
            description=(
                "``production`` uses JSON logging. ``development`` uses"
                " logging that may be easier for humans to read but that"
                " cannot be easily parsed by computers."
            ),
            examples=[Profile.development],
        ),
    ] = Profile.production

    operator_namespace: Annotated[
        str,
        Field(
            title="Operator namespace",
            description=(
                "Namespace in which driver DaemonSets are created and in"
                " which config maps and secrets referenced by driver"
                " resources are looked up. Normally injected with the"
                " downward API."
            ),
            validation_alias=AliasChoices(
                "OPERATOR_NAMESPACE", "operatorNamespace"
            ),
            min_length=1,
        ),
    ]

    driver_manager_image: Annotated[
        str | None,
        Field(
            title="Default driver manager image",
            description=(
                "Image for the ``k8s-driver-manager`` init container used"
                " when a driver resource does not specify one"
            ),
            validation_alias=AliasChoices(
                "DRIVER_MANAGER_IMAGE", "driverManagerImage"
            ),
        ),
    ] = None

    manifest_dir: Annotated[
        Path,
        Field(
            title="Manifest template directory",
            description=(
                "Directory of Jinja templates rendered for each node pool."
                " Walked recursively."
            ),
        ),
    ] = MANIFEST_DIR

    host_root: Annotated[
        str,
        Field(
            title="Host root path",
            description="Root filesystem of the host mounted into the driver",
        ),
    ] = "/"

    reconcile_timeout: Annotated[
        HumanTimedelta,
        Field(
            title="Reconcile timeout",
            description=(
                "Upper bound on the Kubernetes calls made by one reconcile"
                " pass for one driver resource"
            ),
        ),
    ] = KUBERNETES_REQUEST_TIMEOUT

    requeue_delay: Annotated[
        HumanTimedelta,
        Field(
            title="Requeue delay",
            description=(
                "Delay before running another pass for a driver resource"
                " that is not yet ready or whose pass failed"
            ),
        ),
    ] = DEFAULT_REQUEUE_DELAY

    resync_interval: Annotated[
        HumanTimedelta,
        Field(
            title="Resync interval",
            description=(
                "How often every driver resource is reconciled even in the"
                " absence of triggers"
            ),
        ),
    ] = DEFAULT_RESYNC_INTERVAL

    @field_validator("path_prefix")
    @classmethod
    def _validate_path_prefix(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError("pathPrefix must start with /")
        return v.rstrip("/")

    @classmethod
    def from_file(cls, path: Path) -> Self:
        """Load the controller configuration from a YAML file.

        Settings not present in the file are taken from the environment, so
        that the operator namespace can be injected with the downward API.

        Parameters
        ----------
        path
            Path to the configuration file.
        """
        with path.open("r") as f:
            return cls(**(yaml.safe_load(f) or {}))
