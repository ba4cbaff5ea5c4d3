"""
dashscope-mcp Provider - Client for the DashScope text-generation API.

This module defines the chat provider interface and the DashScope client
that implements it: one blocking HTTP POST per chat turn, with the
heterogeneous upstream response normalized into a ChatCompletion.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, Optional, Sequence, TypedDict

import httpx

from dashscope_mcp.errors import RemoteAPIError
from dashscope_mcp.validation.config import DEFAULT_MODEL, DashScopeConfig

logger = logging.getLogger(__name__)

GENERATION_PATH = "/services/aigc/text-generation/generation"


class ChatMessage(TypedDict):
    """One turn of a conversation."""

    role: Literal["system", "user", "assistant"]
    content: str


@dataclass
class Usage:
    """Token counters reported by the provider."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0


@dataclass
class ChatCompletion:
    """Normalized response from a chat provider."""

    content: str
    finish_reason: str = "stop"
    usage: Usage = field(default_factory=Usage)
    request_id: str = ""
    model: str = ""


class ChatProvider(ABC):
    """
    Abstract base class for chat providers.

    Example:
        >>> class EchoProvider(ChatProvider):
        ...     def chat_completion(self, model, messages, **kwargs):
        ...         return ChatCompletion(content=messages[-1]["content"], model=model)
        ...     def validate_connection(self):
        ...         return True
    """

    @abstractmethod
    def chat_completion(
        self,
        model: str,
        messages: Sequence[ChatMessage],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        top_p: Optional[float] = None,
    ) -> ChatCompletion:
        """
        Run one chat turn.

        Args:
            model: The model identifier.
            messages: The conversation so far, oldest first.
            temperature: Sampling temperature.
            max_tokens: Upper bound on generated tokens.
            top_p: Nucleus sampling threshold.

        Returns:
            ChatCompletion with the reply and usage counters.
        """

    @abstractmethod
    def validate_connection(self) -> bool:
        """Return True if the provider looks usable."""

    def chat_completion_stream(
        self,
        model: str,
        messages: Sequence[ChatMessage],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        top_p: Optional[float] = None,
        on_chunk: Optional[Callable[[str], None]] = None,
    ) -> ChatCompletion:
        """Streaming entry point. Performs the same single blocking call."""
        completion = self.chat_completion(
            model, messages, temperature=temperature, max_tokens=max_tokens, top_p=top_p
        )
        if on_chunk is not None and completion.content:
            on_chunk(completion.content)
        return completion


class DashScopeClient(ChatProvider):
    """DashScope (Alibaba Cloud Model Studio) text-generation client."""

    def __init__(
        self,
        api_key: str,
        config: Optional[DashScopeConfig] = None,
        http_client: Optional[httpx.Client] = None,
    ):
        self.api_key = api_key
        self.config = config or DashScopeConfig()
        self._http = http_client or httpx.Client(timeout=self.config.timeout)

    @property
    def url(self) -> str:
        return self.config.base_url.rstrip("/") + GENERATION_PATH

    def build_payload(
        self,
        model: str,
        messages: Sequence[ChatMessage],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        top_p: Optional[float] = None,
    ) -> Dict[str, Any]:
        return {
            "model": model or DEFAULT_MODEL,
            "input": {
                "messages": [
                    {"role": msg["role"], "content": msg["content"]} for msg in messages
                ],
            },
            "parameters": {
                "temperature": self.config.temperature if temperature is None else temperature,
                "max_tokens": self.config.max_tokens if max_tokens is None else max_tokens,
                "top_p": self.config.top_p if top_p is None else top_p,
            },
        }

    def chat_completion(
        self,
        model: str,
        messages: Sequence[ChatMessage],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        top_p: Optional[float] = None,
    ) -> ChatCompletion:
        """Generate a completion using the DashScope generation endpoint."""
        payload = self.build_payload(
            model, messages, temperature=temperature, max_tokens=max_tokens, top_p=top_p
        )
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "X-DashScope-SSE": "disable",
        }

        logger.debug("POST %s model=%s messages=%d", self.url, payload["model"], len(messages))
        try:
            response = self._http.post(self.url, json=payload, headers=headers)
        except httpx.RequestError as exc:
            raise RemoteAPIError(None, str(exc)) from exc

        if not response.is_success:
            raise RemoteAPIError(response.status_code, response.text)

        try:
            data = response.json()
        except ValueError as exc:
            raise RemoteAPIError(response.status_code, f"invalid JSON body: {response.text[:200]}") from exc

        return self.parse_response(data, model=payload["model"], status_code=response.status_code)

    @staticmethod
    def parse_response(
        data: Any, model: str = "", status_code: Optional[int] = 200
    ) -> ChatCompletion:
        """
        Normalize both DashScope response shapes (``output.text`` and ``output.choices``).

        Raises:
            RemoteAPIError: if the body does not have the documented shape.
        """

        def unexpected(what: str) -> RemoteAPIError:
            return RemoteAPIError(status_code, f"unexpected response shape: {what}")

        if not isinstance(data, dict):
            raise unexpected("body is not an object")

        output = data.get("output") or {}
        if not isinstance(output, dict):
            raise unexpected("'output' is not an object")
        choices = output.get("choices") or []
        if not isinstance(choices, list):
            raise unexpected("'output.choices' is not a list")
        first_choice = choices[0] if choices and isinstance(choices[0], dict) else {}
        message = first_choice.get("message") or {}
        if not isinstance(message, dict):
            raise unexpected("'message' is not an object")

        content = output.get("text") or message.get("content") or ""
        if not isinstance(content, str):
            raise unexpected("reply text is not a string")
        finish_reason = output.get("finish_reason") or first_choice.get("finish_reason") or "stop"

        raw_usage = data.get("usage") or {}
        if not isinstance(raw_usage, dict):
            raise unexpected("'usage' is not an object")

        def counter(key: str) -> Optional[int]:
            value = raw_usage.get(key)
            if value is None:
                return None
            if isinstance(value, bool):
                raise unexpected(f"'usage.{key}' is not a number")
            try:
                return int(value)
            except (TypeError, ValueError, OverflowError):
                raise unexpected(f"'usage.{key}' is not a number")

        input_tokens = counter("input_tokens") or 0
        output_tokens = counter("output_tokens") or 0
        total_tokens = counter("total_tokens")
        if total_tokens is None:
            total_tokens = input_tokens + output_tokens

        return ChatCompletion(
            content=content,
            finish_reason=str(finish_reason),
            usage=Usage(
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                total_tokens=total_tokens,
            ),
            request_id=str(data.get("request_id") or ""),
            model=model,
        )

    def validate_connection(self) -> bool:
        return bool(self.api_key)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "DashScopeClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def build_messages(message: str, system_prompt: Optional[str] = None) -> List[ChatMessage]:
    """Compose an optional system message followed by the user message."""
    messages: List[ChatMessage] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": message})
    return messages
