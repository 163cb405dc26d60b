"""Streaming adapters over the vendor SDKs."""

from .anthropic import AnthropicSDK
from .openai import OpenAISDK
from .types import StreamChunk, ToolCall

__all__ = ["AnthropicSDK", "OpenAISDK", "StreamChunk", "ToolCall"]
