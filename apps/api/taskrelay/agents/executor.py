"""
Work-bot executor: runs one simulated unit of work through the reasoning collaborator.
"""

import logging
from datetime import datetime, timezone

from ..errors import ReasoningError
from ..models import BotResult
from ..reasoning import ReasoningClient


logger = logging.getLogger(__name__)


class WorkBotExecutor:
    """Executes a single work bot. No retries happen at this layer."""

    def __init__(self, reasoning: ReasoningClient):
        self.reasoning = reasoning

    async def run(self, bot_type: str, description: str, agent_name: str) -> BotResult:
        """
        Run one work bot.

        Args:
            bot_type: The bot's type (research, code-generation, ...)
            description: What the bot should do
            agent_name: Display name of the owning agent

        Returns:
            BotResult with success=True and the output text, or success=False
            and the error message
        """
        logger.debug(f"Executing {bot_type} work bot for {agent_name}")
        try:
            output = await self.reasoning.execute(bot_type, description, agent_name)
        except ReasoningError as e:
            return BotResult(success=False, error=str(e))

        return BotResult(
            success=True,
            output=output,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
