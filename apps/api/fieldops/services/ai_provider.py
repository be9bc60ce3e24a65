"""AI Provider abstraction layer.

Draft generation only needs one capability: ask a model for a JSON object
that matches a strict schema. OpenAI's Responses API is the implementation.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

from fieldops.core.config import settings
from fieldops.services.ai_response_validation import parse_json_object

logger = logging.getLogger(__name__)


@dataclass
class ChatMessage:
    """A single message in a conversation."""

    role: str  # 'system', 'user'
    content: str


@dataclass
class JsonResponse:
    """Parsed JSON object returned by a provider."""

    data: dict
    model: str
    output_text: str


class GenerationError(Exception):
    """A generation call failed. ``retryable`` tells the caller whether to try later."""

    def __init__(self, code: str, retryable: bool, detail: str | None = None):
        super().__init__(code if detail is None else f"{code}: {detail}")
        self.code = code
        self.retryable = retryable
        self.detail = detail


def supports_reasoning_effort(model: str) -> bool:
    return model.startswith("gpt-5") or model.startswith("o")


class AIProvider(ABC):
    """Abstract base class for AI providers."""

    @abstractmethod
    async def generate_json(
        self,
        messages: list[ChatMessage],
        *,
        model: str,
        schema_name: str,
        schema: dict[str, Any],
        max_output_tokens: int,
        reasoning_effort: str | None = None,
    ) -> JsonResponse:
        """Request a JSON object matching ``schema``. Raises GenerationError."""
        pass


class OpenAIProvider(AIProvider):
    """OpenAI Responses API provider (structured outputs)."""

    def __init__(
        self,
        api_key: str,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.base_url = (base_url or settings.OPENAI_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.AI_REQUEST_TIMEOUT_SECONDS
        self._transport = transport

    def build_payload(
        self,
        messages: list[ChatMessage],
        *,
        model: str,
        schema_name: str,
        schema: dict[str, Any],
        max_output_tokens: int,
        reasoning_effort: str | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model,
            "input": [{"role": m.role, "content": m.content} for m in messages],
            "max_output_tokens": max_output_tokens,
            "text": {
                "verbosity": "medium",
                "format": {
                    "type": "json_schema",
                    "name": schema_name,
                    "strict": True,
                    "schema": schema,
                },
            },
        }
        if reasoning_effort and supports_reasoning_effort(model):
            payload["reasoning"] = {"effort": reasoning_effort}
        return payload

    async def generate_json(
        self,
        messages: list[ChatMessage],
        *,
        model: str,
        schema_name: str,
        schema: dict[str, Any],
        max_output_tokens: int,
        reasoning_effort: str | None = None,
    ) -> JsonResponse:
        payload = self.build_payload(
            messages,
            model=model,
            schema_name=schema_name,
            schema=schema,
            max_output_tokens=max_output_tokens,
            reasoning_effort=reasoning_effort,
        )
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    f"{self.base_url}/responses",
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json=payload,
                )
        except httpx.TimeoutException as exc:
            raise GenerationError("openai_timeout", retryable=True) from exc
        except httpx.HTTPError as exc:
            raise GenerationError(
                "openai_request_failed", retryable=True, detail=type(exc).__name__
            ) from exc

        if response.status_code >= 400:
            retryable = response.status_code == 429 or response.status_code >= 500
            logger.warning(
                "OpenAI request failed: model=%s status=%s", model, response.status_code
            )
            raise GenerationError(
                "openai_request_failed",
                retryable=retryable,
                detail=f"status {response.status_code}",
            )

        try:
            data = response.json()
        except json.JSONDecodeError as exc:
            raise GenerationError("openai_invalid_response", retryable=False) from exc

        text = extract_output_text(data)
        if not text:
            raise GenerationError("openai_empty_response", retryable=False)

        parsed = parse_json_object(text)
        if parsed is None:
            raise GenerationError("openai_invalid_json", retryable=False)

        return JsonResponse(data=parsed, model=model, output_text=text)


def extract_output_text(data: Any) -> str | None:
    """Responses API text: ``output_text`` when present, else the first text content chunk."""
    if not isinstance(data, dict):
        return None
    output_text = data.get("output_text")
    if isinstance(output_text, str) and output_text.strip():
        return output_text
    for item in data.get("output") or []:
        if not isinstance(item, dict):
            continue
        for chunk in item.get("content") or []:
            if isinstance(chunk, dict) and isinstance(chunk.get("text"), str) and chunk["text"].strip():
                return chunk["text"]
    return None


def get_provider() -> AIProvider | None:
    """Configured provider, or None when draft generation is switched off."""
    if not settings.openai_configured:
        return None
    return OpenAIProvider(settings.OPENAI_API_KEY)
