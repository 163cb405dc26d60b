"""LLM request preparation.

Turns a model, a conversation and the agent's sampling settings into the
keyword arguments of ``LanguageClient.stream``.
"""

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional

from ..provider.models import ModelInfo
from ..provider.provider import LanguageClient
from ..provider.sdk.types import StreamChunk
from ..provider.transform import ProviderTransform
from ..util.log import Log

log = Log.create({"service": "llm"})


@dataclass
class StreamInput:
    """Input for one streaming model call."""
    session_id: str
    model: ModelInfo
    messages: List[Dict[str, Any]]
    system: List[str] = field(default_factory=list)
    tools: List[Dict[str, Any]] = field(default_factory=list)
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    thinking: Optional[str] = None
    options: Dict[str, Any] = field(default_factory=dict)


class LLM:
    """Builds and starts provider streams."""

    @staticmethod
    def request(stream_input: StreamInput) -> Dict[str, Any]:
        model = stream_input.model
        options = dict(stream_input.options)
        options.update(ProviderTransform.thinking_options(model, stream_input.thinking))

        temperature = stream_input.temperature if model.capabilities.temperature else None
        system = "\n\n".join(s for s in stream_input.system if s) or None

        return {
            "messages": stream_input.messages,
            "system": system,
            "tools": stream_input.tools or None,
            "max_tokens": ProviderTransform.max_output_tokens(model),
            "temperature": temperature,
            "top_p": stream_input.top_p,
            "options": options,
        }

    @classmethod
    def stream(cls, client: LanguageClient, stream_input: StreamInput) -> AsyncIterator[StreamChunk]:
        log.info("stream", {
            "session_id": stream_input.session_id,
            "provider_id": stream_input.model.provider_id,
            "model_id": stream_input.model.id,
            "tools": len(stream_input.tools),
            "thinking": stream_input.thinking,
        })
        return client.stream(**cls.request(stream_input))
