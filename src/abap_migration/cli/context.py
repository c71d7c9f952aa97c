"""
CLI context manager for ABAP Bridge.

This module provides the context object that is passed to all CLI commands,
containing configuration, the state store and the migration services.
"""

from dataclasses import dataclass, field
from pathlib import Path

from abap_migration.client.agent_client import HttpMigrationAgent, HttpOrderingAdvisor
from abap_migration.client.exceptions import ConfigurationError
from abap_migration.client.registry import SystemRegistry
from abap_migration.config import MigrationConfig, load_config_from_yaml
from abap_migration.migration.events import EventBroker
from abap_migration.migration.orchestrator import MigrationOrchestrator
from abap_migration.migration.store import MigrationStore
from abap_migration.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class MigrationContext:
    """
    Context object for CLI commands.

    Holds configuration and the services shared across CLI commands. It is
    passed via Click's context mechanism and builds each service on first use.

    Attributes:
        config_path: Path to configuration file
        log_level: Logging level
        log_file: Optional log file path
    """

    config_path: Path | None = None
    log_level: str = "WARNING"
    log_file: Path | None = None

    # Lazy-loaded attributes
    _config: MigrationConfig | None = field(default=None, init=False, repr=False)
    _store: MigrationStore | None = field(default=None, init=False, repr=False)
    _broker: EventBroker | None = field(default=None, init=False, repr=False)
    _registry: SystemRegistry | None = field(default=None, init=False, repr=False)
    _agent: HttpMigrationAgent | None = field(default=None, init=False, repr=False)
    _advisor: HttpOrderingAdvisor | None = field(default=None, init=False, repr=False)

    @property
    def config(self) -> MigrationConfig:
        """Get or load migration configuration."""
        if self._config is None:
            if self.config_path is None:
                raise ConfigurationError(
                    "Configuration file path not provided. "
                    "Use --config option or set ABAP_BRIDGE_CONFIG environment variable."
                )

            logger.debug("loading_configuration", config_path=str(self.config_path))
            self._config = load_config_from_yaml(self.config_path)

        return self._config

    @property
    def store(self) -> MigrationStore:
        """Get or open the migration state store."""
        if self._store is None:
            logger.debug("opening_state_store", db_path=self.config.state.db_path)
            self._store = MigrationStore.from_config(self.config.state)
        return self._store

    @property
    def broker(self) -> EventBroker:
        if self._broker is None:
            self._broker = EventBroker(self.config.events.subscriber_queue_size)
        return self._broker

    @property
    def registry(self) -> SystemRegistry:
        if self._registry is None:
            self._registry = SystemRegistry(self.config)
        return self._registry

    @property
    def agent(self) -> HttpMigrationAgent:
        """Get or create the migration agent client."""
        if self._agent is None:
            if self.config.agent is None:
                raise ConfigurationError("No migration agent service configured (agent.url)")
            self._agent = HttpMigrationAgent(self.config.agent, self.config.logging)
        return self._agent

    @property
    def advisor(self) -> HttpOrderingAdvisor | None:
        """Get or create the ordering advisor client, if one is configured."""
        if self._advisor is None and self.config.advisor is not None:
            self._advisor = HttpOrderingAdvisor(self.config.advisor, self.config.logging)
        return self._advisor

    def orchestrator(self) -> MigrationOrchestrator:
        return MigrationOrchestrator(
            self.store,
            self.broker,
            self.registry,
            self.agent,
            self.advisor,
            self.config,
        )

    async def aclose(self) -> None:
        """Close the HTTP clients created during the command."""
        logger.debug("closing_context_clients")
        if self._registry is not None:
            await self._registry.close()
            self._registry = None
        if self._agent is not None:
            await self._agent.close()
            self._agent = None
        if self._advisor is not None:
            await self._advisor.close()
            self._advisor = None
