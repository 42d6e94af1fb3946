"""Component factory and global and per-request context management."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import aclosing, asynccontextmanager
from dataclasses import dataclass
from typing import Self

import structlog
from kubernetes_asyncio.client import ApiClient
from structlog.stdlib import BoundLogger

from .background import BackgroundTaskManager
from .config import Config
from .constants import DRIVER_STATE_NAME
from .services.builder.driver import RenderDataBuilder
from .services.builder.volumes import AdditionalConfigBuilder
from .services.clusterinfo import ClusterInfoService
from .services.nodepool import NodePoolPartitioner
from .services.queue import ReconcileQueue
from .services.reconciler import DriverReconciler
from .services.render import ManifestRenderer
from .services.state.base import ObjectApplier
from .services.state.driver import DriverState
from .services.state.manager import StateManager
from .services.validator import DriverValidator
from .storage.kubernetes.clusterinfo import ClusterInfoStorage
from .storage.kubernetes.custom import NVIDIADriverStorage
from .storage.kubernetes.node import NodeStorage
from .storage.kubernetes.objects import ObjectStorageRegistry

__all__ = [
    "Factory",
    "ProcessContext",
]


@dataclass(frozen=True, slots=True)
class ProcessContext:
    """Per-process global application state.

    This object holds all of the per-process singletons and is managed by
    `~gpudriver.dependencies.context.ContextDependency`. It is used by the
    `Factory` class as a source of dependencies to inject into created
    service and storage objects, and by the context dependency as a source of
    singletons that should also be exposed to route handlers via the request
    context.
    """

    config: Config
    """GPU driver controller configuration."""

    kubernetes_client: ApiClient
    """Shared Kubernetes client."""

    queue: ReconcileQueue
    """Queue of reconcile triggers."""

    background: BackgroundTaskManager
    """Manager for background tasks."""

    @classmethod
    async def from_config(cls, config: Config) -> Self:
        """Create a new process context from the controller configuration.

        The Kubernetes client configuration must already have been loaded.

        Parameters
        ----------
        config
            GPU driver controller configuration.

        Returns
        -------
        ProcessContext
            Shared context for a controller process.
        """
        kubernetes_client = ApiClient()

        # This logger is used only by process-global singletons. Everything
        # else uses a per-request logger with more context.
        logger = structlog.get_logger(__name__)

        reconciler = _build_reconciler(config, kubernetes_client, logger)
        queue = ReconcileQueue(reconciler, logger)
        background = BackgroundTaskManager(
            config=config,
            queue=queue,
            driver_storage=NVIDIADriverStorage(kubernetes_client, logger),
            logger=logger,
        )
        return cls(
            config=config,
            kubernetes_client=kubernetes_client,
            queue=queue,
            background=background,
        )

    async def aclose(self) -> None:
        """Free allocated resources."""
        await self.kubernetes_client.close()

    async def start(self) -> None:
        """Start the background tasks running."""
        await self.background.start()

    async def stop(self) -> None:
        """Clean up a process context.

        Called during shutdown, or before recreating the process context using
        a different configuration.
        """
        await self.background.stop()


class Factory:
    """Build GPU driver controller components.

    Uses the contents of a `ProcessContext` to construct the components of the
    application on demand.

    Parameters
    ----------
    context
        Shared process context.
    logger
        Logger to use for messages.
    """

    @classmethod
    @asynccontextmanager
    async def standalone(cls, config: Config) -> AsyncIterator[Self]:
        """Async context manager for controller components.

        Intended for background jobs or the test suite.

        Parameters
        ----------
        config
            GPU driver controller configuration.

        Yields
        ------
        Factory
            Newly-created factory. Must be used as a context manager.
        """
        logger = structlog.get_logger(__name__)
        context = await ProcessContext.from_config(config)
        factory = cls(context, logger)
        async with aclosing(factory):
            yield factory

    def __init__(self, context: ProcessContext, logger: BoundLogger) -> None:
        self._context = context
        self._logger = logger
        self._background_services_started = False

    @property
    def queue(self) -> ReconcileQueue:
        """Global reconcile queue, from the `ProcessContext`.

        Only used by tests; handlers have access to the queue via the request
        context.
        """
        return self._context.queue

    async def aclose(self) -> None:
        """Shut down the factory.

        After this method is called, the factory object is no longer valid and
        must not be used.
        """
        if self._background_services_started:
            await self._context.stop()
        await self._context.aclose()

    def create_driver_state(self) -> DriverState:
        """Create the state unit managing driver DaemonSets.

        Returns
        -------
        DriverState
            Newly-created state unit.
        """
        return _build_driver_state(
            self._context.config,
            self._context.kubernetes_client,
            self._logger,
        )

    def create_driver_storage(self) -> NVIDIADriverStorage:
        """Create Kubernetes storage for driver resources.

        Returns
        -------
        NVIDIADriverStorage
            Newly-created driver storage.
        """
        return NVIDIADriverStorage(
            self._context.kubernetes_client, self._logger
        )

    def create_reconciler(self) -> DriverReconciler:
        """Create the reconciler for driver resources.

        Returns
        -------
        DriverReconciler
            Newly-created reconciler.
        """
        return _build_reconciler(
            self._context.config,
            self._context.kubernetes_client,
            self._logger,
        )

    def set_logger(self, logger: BoundLogger) -> None:
        """Replace the internal logger.

        Used by the context dependency to update the logger for all
        newly-created components when it's rebound with additional context.

        Parameters
        ----------
        logger
            New logger.
        """
        self._logger = logger

    async def start_background_services(self) -> None:
        """Start global background services managed by the process context.

        These are normally started by the context dependency when running as a
        FastAPI app, but the test suite may want the background processes
        running while testing with only a factory.

        Only used by the test suite.
        """
        await self._context.start()
        self._background_services_started = True


def _build_driver_state(
    config: Config, kubernetes_client: ApiClient, logger: BoundLogger
) -> DriverState:
    """Wire together the state unit managing driver DaemonSets."""
    storage = ObjectStorageRegistry(kubernetes_client, logger)
    node_storage = NodeStorage(kubernetes_client, logger)
    volume_builder = AdditionalConfigBuilder(
        storage.config_map, config.operator_namespace, logger
    )
    return DriverState(
        config=config,
        cluster_info_service=ClusterInfoService(
            ClusterInfoStorage(kubernetes_client, logger),
            node_storage,
            logger,
        ),
        partitioner=NodePoolPartitioner(node_storage, logger),
        render_data_builder=RenderDataBuilder(config, volume_builder, logger),
        renderer=ManifestRenderer(config.manifest_dir, logger),
        applier=ObjectApplier(storage, DRIVER_STATE_NAME, logger),
        daemon_set_storage=storage.daemon_set,
        node_storage=node_storage,
        logger=logger,
    )


def _build_reconciler(
    config: Config, kubernetes_client: ApiClient, logger: BoundLogger
) -> DriverReconciler:
    """Wire together the reconciler and the pipeline of state units."""
    storage = ObjectStorageRegistry(kubernetes_client, logger)
    validator = DriverValidator(
        node_storage=NodeStorage(kubernetes_client, logger),
        secret_storage=storage.secret,
        namespace=config.operator_namespace,
        logger=logger,
    )
    state_manager = StateManager(
        [_build_driver_state(config, kubernetes_client, logger)], logger
    )
    return DriverReconciler(
        config=config,
        driver_storage=NVIDIADriverStorage(kubernetes_client, logger),
        validator=validator,
        state_manager=state_manager,
        logger=logger,
    )
