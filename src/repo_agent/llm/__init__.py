"""Chat-completion transport: message types, errors, retry policy, and the HTTP client."""

from repo_agent.llm.base import (
    ApiStatusError,
    BackoffConfig,
    ChatMessage,
    ChatProvider,
    HttpTransportError,
    InvalidResponseError,
    LlmError,
    LlmResponse,
    MissingApiKeyError,
    RateLimitedError,
    ToolCall,
    parse_tool_arguments,
)
from repo_agent.llm.client import ChatClient

__all__ = [
    "ApiStatusError",
    "BackoffConfig",
    "ChatClient",
    "ChatMessage",
    "ChatProvider",
    "HttpTransportError",
    "InvalidResponseError",
    "LlmError",
    "LlmResponse",
    "MissingApiKeyError",
    "RateLimitedError",
    "ToolCall",
    "parse_tool_arguments",
]
