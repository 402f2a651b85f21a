# core/endpoints.py
"""Model capability table and the two request shapes accepted by the service.

Chat-style requests carry a ``messages`` list and may stream. Response-style
requests carry a flattened ``input`` list and are the only shape that may ask
for structured JSON output; the chat shape rejects that parameter, so it is
never forwarded there.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from config import settings

from core.errors import MalformedUpstreamResponseError
from core.requests import GenerationRequest


class EndpointChoice(Enum):
    """Remote protocol shape used for a model."""

    CHAT = "chat"
    RESPONSES = "responses"


@dataclass(frozen=True)
class ModelInfo:
    name: str
    family: str
    preferred_api: EndpointChoice


MODEL_CATALOG: dict[str, ModelInfo] = {
    "gpt-5-pro": ModelInfo("GPT-5 Pro", "gpt-5", EndpointChoice.RESPONSES),
    "gpt-5": ModelInfo("GPT-5", "gpt-5", EndpointChoice.RESPONSES),
    "gpt-5-mini": ModelInfo("GPT-5 mini", "gpt-5", EndpointChoice.RESPONSES),
    "gpt-5-nano": ModelInfo("GPT-5 nano", "gpt-5", EndpointChoice.RESPONSES),
    "gpt-4o-mini": ModelInfo("GPT-4o mini", "gpt-4o", EndpointChoice.CHAT),
    "gpt-4o": ModelInfo("GPT-4o", "gpt-4o", EndpointChoice.CHAT),
    "o4-mini": ModelInfo("o4-mini", "o", EndpointChoice.RESPONSES),
    # Legacy
    "gpt-4-turbo": ModelInfo("GPT-4 Turbo", "gpt-4", EndpointChoice.CHAT),
    "gpt-4": ModelInfo("GPT-4", "gpt-4", EndpointChoice.CHAT),
    "gpt-3.5-turbo": ModelInfo("GPT-3.5 Turbo", "gpt-3.5", EndpointChoice.CHAT),
}


def endpoint_choice(model: str) -> EndpointChoice:
    """Return the endpoint a model prefers; unknown models use the chat shape."""
    info = MODEL_CATALOG.get(model)
    if info is None:
        return EndpointChoice.CHAT
    return info.preferred_api


def supports_streaming(model: str) -> bool:
    return endpoint_choice(model) is EndpointChoice.CHAT


class ChatEndpoint:
    """Builds chat-completions payloads and reads their responses."""

    choice = EndpointChoice.CHAT

    @property
    def url(self) -> str:
        return f"{settings.OPENAI_API_BASE}{settings.CHAT_COMPLETIONS_PATH}"

    def build_payload(self, request: GenerationRequest) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": request.model,
            "messages": request.messages(),
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
            "stream": request.stream,
        }
        if request.seed is not None:
            payload["seed"] = request.seed
        return payload

    def extract_text(self, data: Any) -> str:
        if not isinstance(data, dict):
            raise MalformedUpstreamResponseError(
                f"Unexpected chat completion body: {str(data)[:200]}"
            )
        choices = data.get("choices")
        if choices is None:
            return ""
        if not isinstance(choices, list):
            raise MalformedUpstreamResponseError(
                f"Unexpected 'choices' in chat completion: {str(choices)[:200]}"
            )
        if not choices:
            return ""
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        if message is None:
            return ""
        if not isinstance(message, dict):
            raise MalformedUpstreamResponseError(
                f"Unexpected 'message' in chat completion: {str(message)[:200]}"
            )
        content = message.get("content")
        return content if isinstance(content, str) else ""


class ResponsesEndpoint:
    """Builds responses-API payloads and reads their responses."""

    choice = EndpointChoice.RESPONSES

    @property
    def url(self) -> str:
        return f"{settings.OPENAI_API_BASE}{settings.RESPONSES_PATH}"

    def build_payload(self, request: GenerationRequest) -> dict[str, Any]:
        if request.stream:
            raise ValueError("The responses endpoint is never streamed.")
        payload: dict[str, Any] = {
            "model": request.model,
            "input": request.messages(),
            "temperature": request.temperature,
            "max_output_tokens": request.max_tokens,
        }
        if request.seed is not None:
            payload["seed"] = request.seed
        if request.json_mode:
            payload["text"] = {"format": {"type": "json_object"}}
        return payload

    def extract_text(self, data: Any) -> str:
        if not isinstance(data, dict):
            raise MalformedUpstreamResponseError(
                f"Unexpected responses body: {str(data)[:200]}"
            )
        output_text = data.get("output_text")
        if isinstance(output_text, str) and output_text:
            return output_text

        text = _first_text_block(data.get("content"))
        if text:
            return text

        output = data.get("output")
        if output is not None and not isinstance(output, list):
            raise MalformedUpstreamResponseError(
                f"Unexpected 'output' in responses body: {str(output)[:200]}"
            )
        for item in output or []:
            if isinstance(item, dict):
                text = _first_text_block(item.get("content"))
                if text:
                    return text

        # Older deployments answer in the chat shape
        return ChatEndpoint().extract_text(data)


def _first_text_block(blocks: Any) -> str:
    if not isinstance(blocks, list):
        return ""
    for block in blocks:
        if isinstance(block, dict) and isinstance(block.get("text"), str):
            return block["text"]
    return ""


ENDPOINTS: dict[EndpointChoice, ChatEndpoint | ResponsesEndpoint] = {
    EndpointChoice.CHAT: ChatEndpoint(),
    EndpointChoice.RESPONSES: ResponsesEndpoint(),
}
