"""The ``ai_chat`` tool: one DashScope chat turn per call."""

from __future__ import annotations

import logging
from typing import Any

from dashscope_mcp.errors import RemoteAPIError, ToolExecutionError
from dashscope_mcp.providers.base import ChatProvider, build_messages
from dashscope_mcp.server.schema import AIChatArguments, ToolDefinition, validate_arguments

logger = logging.getLogger(__name__)

AI_CHAT_MAX_TOKENS = 2000

AI_CHAT_TOOL = ToolDefinition(
    name="ai_chat",
    description="Chat with an Alibaba Cloud DashScope (Qwen) large language model",
    input_schema={
        "type": "object",
        "properties": {
            "message": {
                "type": "string",
                "description": "User message",
            },
            "system_prompt": {
                "type": "string",
                "description": "System prompt (optional)",
            },
            "model": {
                "type": "string",
                "description": "Model to use (optional, default qwen-turbo)",
                "default": "qwen-turbo",
            },
            "temperature": {
                "type": "number",
                "description": "Sampling temperature (0-1, optional, default 0.7)",
                "default": 0.7,
                "minimum": 0,
                "maximum": 1,
            },
        },
        "required": ["message"],
    },
)


def execute_ai_chat(arguments: Any, provider: ChatProvider) -> str:
    """
    Validate ``arguments`` and run one chat turn.

    Returns a human-readable reply that embeds the model name and the
    input/output/total token counters.

    Raises:
        ValidationError: if ``arguments`` does not match the tool schema.
        ToolExecutionError: if the provider call fails.
    """
    args = validate_arguments(AIChatArguments, arguments)
    messages = build_messages(args.message, args.system_prompt)

    try:
        completion = provider.chat_completion(
            model=args.model,
            messages=messages,
            temperature=args.temperature,
            max_tokens=AI_CHAT_MAX_TOKENS,
        )
    except RemoteAPIError as exc:
        raise ToolExecutionError(f"AI call failed: {exc}") from exc

    usage = completion.usage
    logger.info(
        "ai_chat model=%s tokens in=%d out=%d total=%d",
        args.model,
        usage.input_tokens,
        usage.output_tokens,
        usage.total_tokens,
    )
    return (
        f"AI reply (model: {args.model}):\n\n"
        f"{completion.content}\n\n"
        "---\n"
        f"Token usage: input {usage.input_tokens}, "
        f"output {usage.output_tokens}, total {usage.total_tokens}"
    )
