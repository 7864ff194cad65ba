from __future__ import annotations

import os
import logging
from typing import Any, Dict, List, Literal, Optional, Protocol, Sequence

import httpx
from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError

from ..errors import CompletionError, ConfigurationError

logger = logging.getLogger(__name__)

OPENROUTER_API_URL = "https://openrouter.ai/api/v1/chat/completions"
DEFAULT_MODEL = "x-ai/grok-4.1-fast"


class ChatMessage(BaseModel):
    role: Literal["assistant", "user", "system"]
    content: str


class CompletionChoice(BaseModel):
    index: int = 0
    message: ChatMessage
    finish_reason: Optional[str] = None


class CompletionUsage(BaseModel):
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


class CompletionResponse(BaseModel):
    id: Optional[str] = None
    model: Optional[str] = None
    choices: List[CompletionChoice]
    usage: Optional[CompletionUsage] = None

    @property
    def content(self) -> str:
        return self.choices[0].message.content if self.choices else ""


class CompletionClient(Protocol):
    async def complete(
        self,
        messages: Sequence[Dict[str, str]],
        *,
        model: str = DEFAULT_MODEL,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        response_format: Optional[str] = None,
    ) -> CompletionResponse:
        ...


class OpenRouterClient:
    """
    Thin request/response wrapper around the OpenRouter chat completions API.

    Validates the wire shape of the response (choices / message / usage) but
    never looks inside ``message.content``; prompt construction and payload
    parsing belong to the caller.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        site_url: Optional[str] = None,
        site_name: str = "Municipal Scanner",
        timeout: float = 120.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        try:
            load_dotenv()
        except Exception:
            pass

        api_key = api_key or os.getenv("OPENROUTER_API_KEY")
        if not api_key:
            raise ConfigurationError("OPENROUTER_API_KEY is required")
        self.api_key = api_key
        self.site_url = site_url or os.getenv("MSCAN_SITE_URL") or "http://localhost:3000"
        self.site_name = site_name
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout))

    async def complete(
        self,
        messages: Sequence[Dict[str, str]],
        *,
        model: str = DEFAULT_MODEL,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        response_format: Optional[str] = None,
    ) -> CompletionResponse:
        """
        Send one chat completion request.

        Args:
            messages: list of {role, content}
            response_format: "json_object" to request JSON mode, else None

        Raises:
            CompletionError: transport failure, non-2xx status, or a response
                body that does not match the completion schema
        """
        payload: Dict[str, Any] = {
            "model": model,
            "messages": list(messages),
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if response_format == "json_object":
            payload["response_format"] = {"type": "json_object"}

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "HTTP-Referer": self.site_url,
            "X-Title": self.site_name,
            "Content-Type": "application/json",
        }

        logger.debug("llm.call_start: model=%s messages=%d", model, len(payload["messages"]))
        try:
            r = await self._client.post(OPENROUTER_API_URL, headers=headers, json=payload)
        except httpx.HTTPError as e:
            raise CompletionError(f"OpenRouter request failed: {e}") from e

        if r.status_code >= 400:
            try:
                body: Any = r.json()
            except ValueError:
                body = r.text
            logger.error("llm.api_error: %s %s", r.status_code, str(body)[:300])
            raise CompletionError(
                f"OpenRouter API error: {r.status_code} {r.reason_phrase}",
                status_code=r.status_code,
                response_body=body,
            )

        try:
            data = r.json()
        except ValueError as e:
            raise CompletionError("OpenRouter returned a non-JSON body", status_code=r.status_code, response_body=r.text) from e

        try:
            parsed = CompletionResponse.model_validate(data)
        except ValidationError as e:
            raise CompletionError("Invalid response from OpenRouter API", status_code=r.status_code, response_body=data) from e

        if parsed.usage:
            logger.debug(
                "llm.call_success: prompt_tokens=%d completion_tokens=%d",
                parsed.usage.prompt_tokens, parsed.usage.completion_tokens,
            )
        return parsed

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "OpenRouterClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
