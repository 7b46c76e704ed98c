"""Text generation via the Claude Agent SDK (single turn, no tools)."""

from __future__ import annotations

import logging
from typing import Protocol

from claude_agent_sdk import (
    AssistantMessage,
    CLIConnectionError,
    CLIJSONDecodeError,
    CLINotFoundError,
    ClaudeAgentOptions,
    ProcessError,
    ResultMessage,
    TextBlock,
    query,
)

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """\
You are a financial analysis assistant for a personal finance and business \
dashboard. Answer using the document excerpts supplied in each request. \
When the excerpts do not cover the question, say so plainly instead of guessing.
"""


class GenerationError(Exception):
    """Raised when text generation fails."""

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(message)


class TextGenerator(Protocol):
    async def generate(self, prompt: str) -> str: ...


class ClaudeTextGenerator:
    """Send a prompt to Claude and return the final text."""

    def __init__(self, model: str, system_prompt: str = SYSTEM_PROMPT) -> None:
        self.model = model
        self.system_prompt = system_prompt

    def _options(self) -> ClaudeAgentOptions:
        return ClaudeAgentOptions(
            system_prompt=self.system_prompt,
            model=self.model,
            allowed_tools=[],
            max_turns=1,
            permission_mode="bypassPermissions",
        )

    async def generate(self, prompt: str) -> str:
        logger.info("Generating: model=%s prompt=%d chars", self.model, len(prompt))
        text_parts: list[str] = []
        result: str | None = None
        try:
            async for message in query(prompt=prompt, options=self._options()):
                if isinstance(message, AssistantMessage):
                    for block in message.content:
                        if isinstance(block, TextBlock):
                            text_parts.append(block.text)
                elif isinstance(message, ResultMessage):
                    logger.info(
                        "ResultMessage: num_turns=%d duration=%dms cost=$%.4f is_error=%s",
                        message.num_turns,
                        message.duration_ms,
                        message.total_cost_usd or 0,
                        message.is_error,
                    )
                    if message.is_error:
                        raise GenerationError(
                            code="AGENT_ERROR",
                            message=message.result or "Agent returned an error",
                        )
                    result = message.result
        except GenerationError:
            raise
        except CLINotFoundError:
            raise GenerationError(
                code="CLI_NOT_FOUND",
                message="Claude Code CLI not found. Ensure it is installed.",
            )
        except CLIConnectionError as e:
            raise GenerationError(
                code="CLI_CONNECTION_ERROR",
                message=f"Failed to connect to Claude CLI: {e}",
            )
        except ProcessError as e:
            raise GenerationError(
                code="PROCESS_ERROR",
                message=f"Agent process failed: {e}",
            )
        except CLIJSONDecodeError as e:
            raise GenerationError(
                code="JSON_DECODE_ERROR",
                message=f"Failed to parse agent response: {e}",
            )

        text = result if result else "".join(text_parts)
        if not text:
            raise GenerationError(
                code="NO_RESULT",
                message="Agent did not return any text",
            )
        logger.info("Generated %d chars", len(text))
        return text
