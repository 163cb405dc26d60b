"""Configuration schema: pydantic models for moltcore config files."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class McpServerConfig(BaseModel):
    """One external tool server.

    ``stdio`` servers need ``command``; ``sse`` and ``http`` servers need ``url``.
    """

    type: Literal["stdio", "sse", "http"] = "stdio"
    command: Optional[str] = None
    args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)
    url: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    enabled: Optional[bool] = None
    timeout: Optional[float] = None

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _check_transport(self) -> "McpServerConfig":
        if self.type == "stdio" and not self.command:
            raise ValueError("stdio MCP servers require 'command'")
        if self.type in ("sse", "http") and not self.url:
            raise ValueError(f"{self.type} MCP servers require 'url'")
        return self


class AgentConfig(BaseModel):
    """Agent overrides and custom agents."""

    model: Optional[str] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    prompt: Optional[str] = None
    disable: Optional[bool] = None
    description: Optional[str] = None
    mode: Optional[Literal["subagent", "primary", "all"]] = None
    steps: Optional[int] = None
    thinking: Optional[Literal["off", "minimal", "low", "medium", "high"]] = None
    permission: Optional[Union[str, Dict[str, Any], List[Dict[str, Any]]]] = None
    options: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class CustomModelConfig(BaseModel):
    """Model entry declared under a provider."""

    name: Optional[str] = None
    api_id: Optional[str] = None
    limit: Optional[Dict[str, int]] = None
    reasoning: Optional[bool] = None
    options: Optional[Dict[str, Any]] = None
    headers: Optional[Dict[str, str]] = None

    model_config = ConfigDict(extra="allow")


class ProviderConfig(BaseModel):
    """Provider entry: overrides a bundled provider or declares a custom one."""

    type: Optional[Literal["openai", "anthropic"]] = None
    name: Optional[str] = None
    api_key: Optional[str] = Field(None, alias="apiKey")
    base_url: Optional[str] = Field(None, alias="baseURL")
    env: Optional[List[str]] = None
    headers: Optional[Dict[str, str]] = None
    models: Optional[Dict[str, CustomModelConfig]] = None
    options: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class AuthConfig(BaseModel):
    """Auth profile rotation settings."""

    order: Dict[str, List[str]] = Field(default_factory=dict)
    profile: Dict[str, str] = Field(default_factory=dict)
    cooldown_ms: int = 60_000


class SessionConfig(BaseModel):
    """Turn loop policy."""

    doom_loop_threshold: int = Field(3, ge=1)
    retry_attempts: int = Field(3, ge=0)
    retry_base_ms: int = Field(1000, ge=0)
    retry_max_ms: int = Field(30_000, ge=0)


class ToolOutputConfig(BaseModel):
    """Limits applied to tool output before it reaches the model."""

    max_lines: int = Field(2000, ge=1)
    max_bytes: int = Field(50 * 1024, ge=1)
    retention_days: int = Field(7, ge=0)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Optional[str] = None
    format: Optional[Literal["kv", "json", "pretty"]] = None
    console: Optional[bool] = None
    file: Optional[bool] = None
    dev_file: Optional[bool] = Field(None, alias="devFile")

    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class Config(BaseModel):
    """Main configuration schema."""

    schema_: Optional[str] = Field(None, alias="$schema")
    logging: Optional[LoggingConfig] = None

    model: Optional[str] = None
    small_model: Optional[str] = None
    default_agent: Optional[str] = None
    model_fallbacks: List[str] = Field(default_factory=list)

    provider: Dict[str, ProviderConfig] = Field(default_factory=dict)
    disabled_providers: List[str] = Field(default_factory=list)

    agent: Dict[str, AgentConfig] = Field(default_factory=dict)
    mcp: Dict[str, McpServerConfig] = Field(default_factory=dict)
    permission: Optional[Union[str, Dict[str, Any], List[Dict[str, Any]]]] = None

    auth: AuthConfig = Field(default_factory=AuthConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    tool_output: ToolOutputConfig = Field(default_factory=ToolOutputConfig)

    model_config = ConfigDict(extra="forbid", populate_by_name=True)
