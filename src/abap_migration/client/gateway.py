"""Client for a system's remote tool gateway.

Each configured ABAP system is reached through a gateway that exposes the
ADT tools (sap_search_object, sap_get_source, sap_write_and_check, ...) as
named calls taking JSON arguments and returning text.
"""

from typing import Any

from abap_migration.client.base_client import BaseAPIClient
from abap_migration.client.exceptions import ToolExecutionError
from abap_migration.config import LoggingConfig, SystemConfig
from abap_migration.utils.logging import get_logger

logger = get_logger(__name__)

TOOL_CALL_ENDPOINT = "tools/call"


class ToolGatewayClient(BaseAPIClient):
    """Invokes named tools on one system's gateway."""

    def __init__(
        self,
        name: str,
        config: SystemConfig,
        logging_config: LoggingConfig | None = None,
        **kwargs: Any,
    ):
        logging_config = logging_config or LoggingConfig()
        super().__init__(
            base_url=config.url,
            token=config.token,
            verify_ssl=config.verify_ssl,
            timeout=config.timeout,
            rate_limit=config.rate_limit,
            retry_attempts=config.retry_attempts,
            log_payloads=logging_config.log_payloads,
            max_payload_size=logging_config.max_payload_size,
            **kwargs,
        )
        self.name = name

    async def call_tool(self, tool: str, arguments: dict[str, Any]) -> str:
        """Call a tool and return its text output.

        Args:
            tool: Tool name
            arguments: Tool arguments; None values are dropped

        Returns:
            The tool's text output

        Raises:
            ToolExecutionError: If the tool reports a failure
            NetworkError, APIError: If the gateway cannot be reached
        """
        payload = {
            "tool": tool,
            "arguments": {key: value for key, value in arguments.items() if value is not None},
        }
        data = await self.post(TOOL_CALL_ENDPOINT, json_data=payload)

        content = data.get("content", "")
        if isinstance(content, list):
            content = "\n".join(
                part.get("text", "") if isinstance(part, dict) else str(part) for part in content
            )
        content = str(content)

        if data.get("isError") or data.get("is_error"):
            logger.warning("tool_reported_error", system=self.name, tool=tool)
            raise ToolExecutionError(content or f"Tool {tool} failed", tool=tool)

        logger.debug("tool_called", system=self.name, tool=tool, output_chars=len(content))
        return content
