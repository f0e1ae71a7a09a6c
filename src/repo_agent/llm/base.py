"""
repo-agent — chat-completion message types, error taxonomy, and retry policy

File: src/repo_agent/llm/base.py
Last updated: 2026-10-19

Purpose
- Wire-level message and tool-call shapes for OpenAI-style chat completion APIs.
- Normalized transport errors with machine-readable retryability.
- Bounded exponential backoff with a total elapsed-time budget.

Functional requirements
- Serialized messages omit absent tool fields; ``content`` is always present (possibly null).
- Once the next delay would exceed the elapsed budget, the last error is raised as-is.
"""

from __future__ import annotations

import asyncio
import json
import random as random_module
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Final, Literal, Protocol, TypeAlias, TypeVar, runtime_checkable

from repo_agent.constants import (
    DEFAULT_API_KEY_ENV,
    LLM_BACKOFF_INITIAL_SECONDS,
    LLM_BACKOFF_MAX_DELAY_SECONDS,
    LLM_BACKOFF_MAX_ELAPSED_SECONDS,
)

Role: TypeAlias = Literal["system", "user", "assistant", "tool"]
SleepFn: TypeAlias = Callable[[float], Awaitable[None]]
ClockFn: TypeAlias = Callable[[], float]
RandomFn: TypeAlias = Callable[[], float]

_ROLES: Final[frozenset[str]] = frozenset({"system", "user", "assistant", "tool"})


@dataclass(frozen=True, slots=True)
class ToolCall:
    """A function call requested by the model; ``arguments`` is the raw JSON string."""

    id: str
    name: str
    arguments: str = "{}"
    type: str = "function"

    def to_payload(self) -> dict[str, object]:
        return {
            "id": self.id,
            "type": self.type,
            "function": {"name": self.name, "arguments": self.arguments},
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, object]) -> ToolCall:
        function = payload.get("function")
        if not isinstance(function, Mapping):
            raise InvalidResponseError("tool call is missing 'function'")
        call_id = payload.get("id")
        name = function.get("name")
        if not isinstance(call_id, str) or not isinstance(name, str):
            raise InvalidResponseError("tool call requires string 'id' and 'function.name'")
        arguments = function.get("arguments", "{}")
        if isinstance(arguments, Mapping):
            arguments = json.dumps(dict(arguments))
        if arguments is None:
            arguments = "{}"
        if not isinstance(arguments, str):
            raise InvalidResponseError(f"tool call {name}: arguments must be a JSON string")
        call_type = payload.get("type", "function")
        return cls(
            id=call_id,
            name=name,
            arguments=arguments,
            type=call_type if isinstance(call_type, str) else "function",
        )


@dataclass(frozen=True, slots=True)
class ChatMessage:
    role: Role
    content: str | None = None
    tool_calls: tuple[ToolCall, ...] | None = None
    tool_call_id: str | None = None

    def __post_init__(self) -> None:
        if self.role not in _ROLES:
            raise ValueError(f"invalid chat role: {self.role!r}")
        if self.tool_calls is not None:
            object.__setattr__(self, "tool_calls", tuple(self.tool_calls))

    @classmethod
    def system(cls, content: str) -> ChatMessage:
        return cls(role="system", content=content)

    @classmethod
    def user(cls, content: str) -> ChatMessage:
        return cls(role="user", content=content)

    @classmethod
    def assistant(
        cls, content: str | None, tool_calls: Sequence[ToolCall] | None = None
    ) -> ChatMessage:
        return cls(
            role="assistant",
            content=content,
            tool_calls=tuple(tool_calls) if tool_calls else None,
        )

    @classmethod
    def tool(cls, tool_call_id: str, content: str) -> ChatMessage:
        return cls(role="tool", content=content, tool_call_id=tool_call_id)

    @property
    def content_length(self) -> int:
        return len(self.content) if self.content is not None else 0

    def to_payload(self) -> dict[str, object]:
        payload: dict[str, object] = {"role": self.role, "content": self.content}
        if self.tool_calls is not None:
            payload["tool_calls"] = [call.to_payload() for call in self.tool_calls]
        if self.tool_call_id is not None:
            payload["tool_call_id"] = self.tool_call_id
        return payload


@dataclass(frozen=True, slots=True)
class LlmResponse:
    content: str | None = None
    tool_calls: tuple[ToolCall, ...] = field(default_factory=tuple)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


@runtime_checkable
class ChatProvider(Protocol):
    """Anything that can answer one chat-completion turn."""

    async def chat(
        self,
        messages: Sequence[ChatMessage],
        tools: Sequence[Mapping[str, object]] = (),
    ) -> LlmResponse: ...


class LlmError(RuntimeError):
    """Base normalized transport error with machine-readable fields."""

    def __init__(
        self,
        message: str,
        *,
        code: str,
        detail: str = "",
        retryable: bool = False,
        http_status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.detail = detail
        self.retryable = retryable
        self.http_status = http_status


class MissingApiKeyError(LlmError):
    def __init__(self, env_var: str = DEFAULT_API_KEY_ENV) -> None:
        super().__init__(
            f"Missing API key. Set {env_var} environment variable.",
            code="missing_api_key",
        )


class HttpTransportError(LlmError):
    """Connection failures and socket timeouts (retryable)."""

    def __init__(self, detail: str) -> None:
        super().__init__(f"HTTP error: {detail}", code="http", detail=detail, retryable=True)


class RateLimitedError(LlmError):
    def __init__(self, detail: str = "") -> None:
        super().__init__(
            "Rate limited", code="rate_limited", detail=detail, retryable=True, http_status=429
        )


class ApiStatusError(LlmError):
    """Non-2xx response; retryable only for server-side (5xx) failures."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(
            f"API error {status}: {message}",
            code="api_status",
            detail=message,
            retryable=status >= 500,
            http_status=status,
        )


class InvalidResponseError(LlmError):
    def __init__(self, detail: str) -> None:
        super().__init__(f"Invalid response: {detail}", code="invalid_response", detail=detail)


@dataclass(frozen=True, slots=True)
class BackoffConfig:
    """Exponential backoff between LLM attempts.

    Delays grow ``initial * multiplier**(n-1)`` and stop growing at ``max_delay_seconds``.
    Retrying ends when ``max_retries`` is reached (``None``: no count limit) or when
    the next sleep would push total elapsed time past ``max_elapsed_seconds``.
    """

    initial_delay_seconds: float = LLM_BACKOFF_INITIAL_SECONDS
    multiplier: float = 2.0
    max_delay_seconds: float = LLM_BACKOFF_MAX_DELAY_SECONDS
    max_elapsed_seconds: float = LLM_BACKOFF_MAX_ELAPSED_SECONDS
    jitter_ratio: float = 0.0
    max_retries: int | None = None

    def __post_init__(self) -> None:
        problems = [
            message
            for failed, message in (
                (self.max_retries is not None and self.max_retries < 0, "max_retries < 0"),
                (self.initial_delay_seconds < 0, "initial_delay_seconds < 0"),
                (self.multiplier < 1.0, "multiplier < 1.0"),
                (self.max_delay_seconds < self.initial_delay_seconds, "max_delay < initial"),
                (self.max_elapsed_seconds < 0, "max_elapsed_seconds < 0"),
                (not 0.0 <= self.jitter_ratio <= 1.0, "jitter_ratio outside [0, 1]"),
            )
            if failed
        ]
        if problems:
            raise ValueError(f"invalid backoff config: {', '.join(problems)}")

    def allows_retry(self, retries_done: int) -> bool:
        return self.max_retries is None or retries_done < self.max_retries

    def delay_for(self, retry_number: int, random_fn: RandomFn = random_module.random) -> float:
        """Seconds to wait before the ``retry_number``-th retry (1-based)."""

        if retry_number < 1:
            raise ValueError("retry_number starts at 1")
        capped = min(
            self.initial_delay_seconds * self.multiplier ** (retry_number - 1),
            self.max_delay_seconds,
        )
        if not self.jitter_ratio:
            return capped
        sample = random_fn()
        if sample < 0.0 or sample > 1.0:
            raise ValueError(f"random_fn returned {sample!r}, expected [0, 1]")
        # Symmetric jitter: sample 0 -> -ratio, 0.5 -> none, 1 -> +ratio.
        jittered = capped * (1.0 + self.jitter_ratio * (2.0 * sample - 1.0))
        return min(max(jittered, 0.0), self.max_delay_seconds)


def compute_backoff_delay(
    *,
    retry_number: int,
    config: BackoffConfig,
    random_fn: RandomFn = random_module.random,
) -> float:
    return config.delay_for(retry_number, random_fn)


_ResultT = TypeVar("_ResultT")
RetryCallback: TypeAlias = Callable[[int, LlmError, float], None]


async def run_with_retries(
    operation: Callable[[], Awaitable[_ResultT]],
    *,
    map_exception: Callable[[Exception], LlmError],
    backoff: BackoffConfig,
    sleep: SleepFn = asyncio.sleep,
    clock: ClockFn = time.monotonic,
    random_fn: RandomFn = random_module.random,
    on_retry: RetryCallback | None = None,
) -> _ResultT:
    """Await ``operation`` until it succeeds or a non-retryable/out-of-budget error occurs.

    Foreign exceptions go through ``map_exception``; the raised error is always an
    ``LlmError`` chained to the original.
    """

    deadline = clock() + backoff.max_elapsed_seconds
    retries = 0
    original: Exception | None
    while True:
        try:
            return await operation()
        except LlmError as exc:
            error, original = exc, None
        except Exception as exc:  # noqa: BLE001 - mapped below
            error, original = map_exception(exc), exc
            if not isinstance(error, LlmError):
                raise TypeError("map_exception must return LlmError") from exc

        delay = backoff.delay_for(retries + 1, random_fn) if error.retryable else 0.0
        if (
            not error.retryable
            or not backoff.allows_retry(retries)
            or clock() + delay > deadline
        ):
            if original is None:
                raise error
            raise error from original

        retries += 1
        if on_retry is not None:
            on_retry(retries, error, delay)
        await sleep(delay)


def parse_tool_arguments(arguments: str | None) -> dict[str, object]:
    """Decode a tool call's JSON argument string into an object.

    Raises ``ValueError`` with a ``Failed to parse tool args`` message.
    """

    if arguments is None or not arguments.strip():
        return {}
    try:
        parsed = json.loads(arguments)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Failed to parse tool args: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ValueError("Failed to parse tool args: expected a JSON object")
    return parsed


__all__ = [
    "ApiStatusError",
    "BackoffConfig",
    "ChatMessage",
    "ChatProvider",
    "ClockFn",
    "HttpTransportError",
    "InvalidResponseError",
    "LlmError",
    "LlmResponse",
    "MissingApiKeyError",
    "RandomFn",
    "RateLimitedError",
    "Role",
    "SleepFn",
    "ToolCall",
    "compute_backoff_delay",
    "parse_tool_arguments",
    "run_with_retries",
]
