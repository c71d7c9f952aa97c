"""Lookup of configured ABAP systems by reference name."""

from typing import Any

from abap_migration.client.adt_client import AdtSystemClient
from abap_migration.client.exceptions import ConfigurationError
from abap_migration.client.gateway import ToolGatewayClient
from abap_migration.config import MigrationConfig
from abap_migration.utils.logging import get_logger

logger = get_logger(__name__)


class SystemRegistry:
    """
    Creates and caches one AdtSystemClient per configured system.

    Usage:
        async with SystemRegistry(config) as registry:
            source = registry.get(project.source_system)
    """

    def __init__(self, config: MigrationConfig):
        self.config = config
        self._clients: dict[str, AdtSystemClient] = {}

    def names(self) -> list[str]:
        return sorted(self.config.systems)

    def get(self, name: str) -> AdtSystemClient:
        """
        Get the client for a system.

        Raises:
            ConfigurationError: If the system is not configured
        """
        key = name.upper()
        if key not in self._clients:
            system = self.config.systems.get(key)
            if system is None:
                raise ConfigurationError(f"Unknown system reference: {name}")
            gateway = ToolGatewayClient(key, system, self.config.logging)
            self._clients[key] = AdtSystemClient(gateway, self.config.discovery)
            logger.info("system_client_created", system=key, url=system.url)
        return self._clients[key]

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()
        self._clients.clear()

    async def __aenter__(self) -> "SystemRegistry":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
