"""
repo-agent — chat-completion HTTP client

File: src/repo_agent/llm/client.py
Last updated: 2026-10-19

Purpose
- Send one non-streaming chat completion request with tool schemas and return the
  first choice's content and tool calls.

Functional requirements
- An empty API key fails before any request is attempted.
- 429, 5xx, connection failures, and timeouts are retried within the backoff budget;
  401, other 4xx, and undecodable bodies are not.
- The HTTP transport, sleep, and clock are injectable for tests.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Mapping, Sequence

import httpx
import structlog

from repo_agent.config.settings import LlmSettings
from repo_agent.constants import DEFAULT_API_KEY_ENV, LLM_REQUEST_TIMEOUT_SECONDS
from repo_agent.llm.base import (
    ApiStatusError,
    BackoffConfig,
    ChatMessage,
    ClockFn,
    HttpTransportError,
    InvalidResponseError,
    LlmError,
    LlmResponse,
    MissingApiKeyError,
    RateLimitedError,
    SleepFn,
    ToolCall,
    run_with_retries,
)

logger = structlog.get_logger(__name__)


class ChatClient:
    """OpenAI-compatible ``/chat/completions`` client."""

    def __init__(
        self,
        settings: LlmSettings,
        *,
        timeout_seconds: float = LLM_REQUEST_TIMEOUT_SECONDS,
        backoff: BackoffConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: SleepFn = asyncio.sleep,
        clock: ClockFn = time.monotonic,
        api_key_env: str = DEFAULT_API_KEY_ENV,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self._settings = settings
        self._timeout_seconds = timeout_seconds
        self._backoff = backoff if backoff is not None else BackoffConfig()
        self._transport = transport
        self._sleep = sleep
        self._clock = clock
        self._api_key_env = api_key_env

    @property
    def settings(self) -> LlmSettings:
        return self._settings

    async def chat(
        self,
        messages: Sequence[ChatMessage],
        tools: Sequence[Mapping[str, object]] = (),
    ) -> LlmResponse:
        if not self._settings.has_api_key:
            raise MissingApiKeyError(self._api_key_env)

        body = self.build_request_body(messages, tools)
        headers = self._headers()
        url = self._settings.chat_completions_url

        async with httpx.AsyncClient(
            timeout=self._timeout_seconds, transport=self._transport
        ) as client:

            async def _attempt() -> dict[str, object]:
                return await self._post(client, url, headers, body)

            payload = await run_with_retries(
                _attempt,
                map_exception=_map_exception,
                backoff=self._backoff,
                sleep=self._sleep,
                clock=self._clock,
                on_retry=_log_retry,
            )

        return parse_chat_response(payload)

    def build_request_body(
        self,
        messages: Sequence[ChatMessage],
        tools: Sequence[Mapping[str, object]],
    ) -> dict[str, object]:
        body: dict[str, object] = {
            "model": self._settings.model,
            "messages": [message.to_payload() for message in messages],
            "temperature": self._settings.temperature,
            "max_tokens": self._settings.max_tokens,
            "stream": False,
        }
        if tools:
            body["tools"] = [dict(tool) for tool in tools]
        return body

    def _headers(self) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._settings.api_key}",
            "Content-Type": "application/json",
        }
        headers.update(self._settings.extra_headers)
        return headers

    async def _post(
        self,
        client: httpx.AsyncClient,
        url: str,
        headers: Mapping[str, str],
        body: Mapping[str, object],
    ) -> dict[str, object]:
        try:
            response = await client.post(url, headers=dict(headers), json=body)
        except httpx.TimeoutException as exc:
            raise HttpTransportError(f"request timed out: {exc}") from exc
        except httpx.RequestError as exc:
            raise HttpTransportError(str(exc)) from exc

        status = response.status_code
        if response.is_success:
            try:
                decoded = response.json()
            except ValueError as exc:
                raise InvalidResponseError(f"body is not JSON: {exc}") from exc
            if not isinstance(decoded, dict):
                raise InvalidResponseError("body is not a JSON object")
            return decoded

        if status == 429:
            raise RateLimitedError(response.text)
        if status == 401:
            raise ApiStatusError(401, "Invalid API key")
        raise ApiStatusError(status, response.text)


def parse_chat_response(payload: Mapping[str, object]) -> LlmResponse:
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        raise InvalidResponseError("No choices in response")
    first = choices[0]
    if not isinstance(first, Mapping):
        raise InvalidResponseError("choice is not an object")
    message = first.get("message")
    if not isinstance(message, Mapping):
        raise InvalidResponseError("choice has no message")

    content = message.get("content")
    if content is not None and not isinstance(content, str):
        raise InvalidResponseError("message content must be a string")

    raw_calls = message.get("tool_calls") or []
    if not isinstance(raw_calls, list):
        raise InvalidResponseError("tool_calls must be a list")
    tool_calls = tuple(
        ToolCall.from_payload(call) for call in raw_calls if isinstance(call, Mapping)
    )
    return LlmResponse(content=content, tool_calls=tool_calls)


def _map_exception(exc: Exception) -> LlmError:
    if isinstance(exc, httpx.TimeoutException):
        return HttpTransportError(f"request timed out: {exc}")
    if isinstance(exc, httpx.HTTPError):
        return HttpTransportError(str(exc))
    return InvalidResponseError(f"{type(exc).__name__}: {exc}")


def _log_retry(retry_number: int, error: LlmError, delay_seconds: float) -> None:
    logger.warning(
        "llm_retry",
        retry=retry_number,
        code=error.code,
        http_status=error.http_status,
        delay_seconds=delay_seconds,
    )


__all__ = ["ChatClient", "parse_chat_response"]
