"""Model definitions and the bundled model catalog."""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_CONTEXT_LIMIT = 128000
DEFAULT_OUTPUT_LIMIT = 32000


class ModelCost(BaseModel):
    """USD per million tokens."""
    input: float = 0
    output: float = 0
    cache_read: float = 0
    cache_write: float = 0


class ModelLimit(BaseModel):
    """Model token limits."""
    context: int = DEFAULT_CONTEXT_LIMIT
    output: int = DEFAULT_OUTPUT_LIMIT


class ModelCapabilities(BaseModel):
    reasoning: bool = False
    tool_call: bool = True
    attachment: bool = False
    temperature: bool = True


class ModelInfo(BaseModel):
    """A callable model on one provider."""
    id: str
    provider_id: str
    name: str
    api_id: str
    api_type: Literal["openai", "anthropic"] = "openai"
    base_url: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    limit: ModelLimit = Field(default_factory=ModelLimit)
    capabilities: ModelCapabilities = Field(default_factory=ModelCapabilities)
    cost: ModelCost = Field(default_factory=ModelCost)
    options: Dict[str, Any] = Field(default_factory=dict)
    status: Literal["alpha", "beta", "deprecated", "active"] = "active"

    model_config = ConfigDict(extra="allow")


class ProviderInfo(BaseModel):
    """Provider information."""
    id: str
    name: str
    source: Literal["env", "config", "custom", "auth"] = "env"
    env: List[str] = Field(default_factory=list)
    key: Optional[str] = None
    options: Dict[str, Any] = Field(default_factory=dict)
    models: Dict[str, ModelInfo] = Field(default_factory=dict)

    model_config = ConfigDict(extra="allow")


def _model(
    provider_id: str,
    model_id: str,
    name: str,
    context: int,
    output: int,
    cost: tuple,
    *,
    reasoning: bool = False,
    attachment: bool = True,
    api_id: Optional[str] = None,
    status: str = "active",
) -> ModelInfo:
    return ModelInfo(
        id=model_id,
        provider_id=provider_id,
        name=name,
        api_id=api_id or model_id,
        api_type="anthropic" if provider_id == "anthropic" else "openai",
        limit=ModelLimit(context=context, output=output),
        capabilities=ModelCapabilities(reasoning=reasoning, attachment=attachment, temperature=not reasoning),
        cost=ModelCost(input=cost[0], output=cost[1], cache_read=cost[2], cache_write=cost[3]),
        status=status,
    )


def catalog() -> Dict[str, ProviderInfo]:
    """A fresh copy of the bundled provider catalog."""
    openai_models = [
        _model("openai", "gpt-5", "GPT-5", 400000, 128000, (1.25, 10, 0.125, 0), reasoning=True),
        _model("openai", "gpt-5-mini", "GPT-5 mini", 400000, 128000, (0.25, 2, 0.025, 0), reasoning=True),
        _model("openai", "gpt-4.1", "GPT-4.1", 1047576, 32768, (2, 8, 0.5, 0)),
        _model("openai", "gpt-4.1-mini", "GPT-4.1 mini", 1047576, 32768, (0.4, 1.6, 0.1, 0)),
        _model("openai", "gpt-4o", "GPT-4o", 128000, 16384, (2.5, 10, 1.25, 0)),
        _model("openai", "gpt-4o-mini", "GPT-4o mini", 128000, 16384, (0.15, 0.6, 0.075, 0)),
        _model("openai", "o3", "o3", 200000, 100000, (2, 8, 0.5, 0), reasoning=True),
        _model("openai", "o4-mini", "o4-mini", 200000, 100000, (1.1, 4.4, 0.275, 0), reasoning=True),
    ]
    anthropic_models = [
        _model("anthropic", "claude-sonnet-4-5", "Claude Sonnet 4.5", 200000, 64000, (3, 15, 0.3, 3.75), reasoning=True),
        _model("anthropic", "claude-opus-4-1", "Claude Opus 4.1", 200000, 32000, (15, 75, 1.5, 18.75), reasoning=True),
        _model("anthropic", "claude-haiku-4-5", "Claude Haiku 4.5", 200000, 64000, (1, 5, 0.1, 1.25), reasoning=True),
        _model(
            "anthropic", "claude-3-5-haiku", "Claude Haiku 3.5", 200000, 8192, (0.8, 4, 0.08, 1),
            api_id="claude-3-5-haiku-latest",
        ),
    ]
    return {
        "openai": ProviderInfo(
            id="openai",
            name="OpenAI",
            env=["OPENAI_API_KEY"],
            models={m.id: m for m in openai_models},
        ),
        "anthropic": ProviderInfo(
            id="anthropic",
            name="Anthropic",
            env=["ANTHROPIC_API_KEY"],
            models={m.id: m for m in anthropic_models},
        ),
    }
