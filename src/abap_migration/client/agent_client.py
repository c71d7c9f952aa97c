"""HTTP adapters for the text-generation services.

HttpMigrationAgent drives the per-unit tool loop and HttpOrderingAdvisor
ranks sub-objects when parsing cannot order them. Both talk to a service
endpoint that accepts a system prompt plus messages and replies with JSON.
"""

from typing import Any

from pydantic import ValidationError as PydanticValidationError

from abap_migration.client.base_client import BaseAPIClient
from abap_migration.client.exceptions import AgentError
from abap_migration.config import LoggingConfig, ServiceConfig
from abap_migration.migration.tools import AgentTurn
from abap_migration.utils.logging import get_logger

logger = get_logger(__name__)

AGENT_ENDPOINT = "v1/agent/turn"
COMPLETION_ENDPOINT = "v1/complete"


class _ServiceClient(BaseAPIClient):
    def __init__(
        self, config: ServiceConfig, logging_config: LoggingConfig | None = None, **kwargs: Any
    ):
        logging_config = logging_config or LoggingConfig()
        super().__init__(
            base_url=config.url,
            token=config.token,
            timeout=config.timeout,
            rate_limit=0,
            retry_attempts=config.retry_attempts,
            log_payloads=logging_config.log_payloads,
            max_payload_size=logging_config.max_payload_size,
            **kwargs,
        )
        self.model = config.model
        self.max_output_tokens = config.max_output_tokens


class HttpMigrationAgent(_ServiceClient):
    """Migration agent backed by a remote text-generation service."""

    async def complete(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
    ) -> AgentTurn:
        """Request the agent's next turn.

        Raises:
            AgentError: If the reply is not a valid agent turn
        """
        data = await self.post(
            AGENT_ENDPOINT,
            json_data={
                "model": self.model,
                "system": system_prompt,
                "messages": messages,
                "tools": tools,
                "max_output_tokens": self.max_output_tokens,
            },
        )
        try:
            turn = AgentTurn.model_validate(data)
        except PydanticValidationError as e:
            raise AgentError(f"Invalid agent reply: {e.error_count()} validation error(s)") from e

        logger.debug("agent_turn", tool_calls=len(turn.tool_calls), text_chars=len(turn.text))
        return turn


class HttpOrderingAdvisor(_ServiceClient):
    """Ordering advisor backed by a remote text-generation service."""

    async def rank(self, system_prompt: str, prompt: str) -> str:
        """Return the service's raw ranking reply.

        Raises:
            AgentError: If the reply carries no text
        """
        data = await self.post(
            COMPLETION_ENDPOINT,
            json_data={
                "model": self.model,
                "system": system_prompt,
                "prompt": prompt,
                "max_output_tokens": self.max_output_tokens,
            },
        )
        text = data.get("text")
        if not isinstance(text, str):
            raise AgentError("Advisor reply has no text")
        return text
