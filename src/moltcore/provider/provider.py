"""Provider registry and model loading.

Providers come from the bundled catalog, enabled by an environment key, a
config entry or stored auth profiles, plus custom OpenAI- or
Anthropic-compatible providers declared in config.
"""

import difflib
import os
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional, Tuple

from ..core.config_schema import Config, ProviderConfig
from ..util.log import Log
from .auth import AuthProfileStore
from .errors import ModelNotFoundError
from .models import ModelCapabilities, ModelInfo, ModelLimit, ProviderInfo, catalog
from .sdk.anthropic import AnthropicSDK
from .sdk.openai import OpenAISDK
from .sdk.types import StreamChunk

log = Log.create({"service": "provider"})

# factory(model, api_key) -> object with an async ``stream(...)`` generator
ClientFactory = Callable[[ModelInfo, str], Any]


def _openai_client(model: ModelInfo, api_key: str) -> OpenAISDK:
    return OpenAISDK(api_key=api_key, base_url=model.base_url, headers=model.headers)


def _anthropic_client(model: ModelInfo, api_key: str) -> AnthropicSDK:
    return AnthropicSDK(api_key=api_key, base_url=model.base_url, headers=model.headers)


DEFAULT_CLIENT_FACTORIES: Dict[str, ClientFactory] = {
    "openai": _openai_client,
    "anthropic": _anthropic_client,
}


@dataclass
class LanguageClient:
    """A streaming client bound to one model and credential."""

    model: ModelInfo
    sdk: Any
    profile_id: Optional[str] = None

    def stream(
        self,
        messages: List[Dict[str, Any]],
        system: Optional[str] = None,
        tools: Optional[List[Dict[str, Any]]] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> AsyncIterator[StreamChunk]:
        return self.sdk.stream(
            model=self.model.api_id,
            messages=messages,
            system=system,
            tools=tools,
            max_tokens=max_tokens,
            temperature=temperature,
            top_p=top_p,
            options={**self.model.options, **(options or {})},
        )


def _resolve_key(env_vars: List[str], config: Optional[ProviderConfig], env: Mapping[str, str]) -> Optional[str]:
    if config is not None and config.api_key:
        return config.api_key
    extra = (config.env or []) if config is not None else []
    for name in [*extra, *env_vars]:
        value = env.get(name)
        if value:
            return value
    return None


def _custom_model(provider_id: str, model_id: str, api_type: str, cfg: Any) -> ModelInfo:
    limit = cfg.limit or {}
    return ModelInfo(
        id=model_id,
        provider_id=provider_id,
        name=cfg.name or model_id,
        api_id=cfg.api_id or model_id,
        api_type=api_type,
        headers=dict(cfg.headers or {}),
        limit=ModelLimit(**{k: v for k, v in limit.items() if k in ("context", "output")}),
        capabilities=ModelCapabilities(reasoning=bool(cfg.reasoning)),
        options=dict(cfg.options or {}),
    )


def _apply_config(provider: ProviderInfo, config: ProviderConfig) -> None:
    api_type = config.type or next(
        (m.api_type for m in provider.models.values()), "anthropic" if provider.id == "anthropic" else "openai"
    )
    for model_id, model_cfg in (config.models or {}).items():
        existing = provider.models.get(model_id)
        if existing is None:
            provider.models[model_id] = _custom_model(provider.id, model_id, api_type, model_cfg)
            continue
        if model_cfg.name:
            existing.name = model_cfg.name
        if model_cfg.api_id:
            existing.api_id = model_cfg.api_id
        if model_cfg.options:
            existing.options.update(model_cfg.options)
        if model_cfg.headers:
            existing.headers.update(model_cfg.headers)
    if config.name:
        provider.name = config.name
    if config.options:
        provider.options.update(config.options)
    for model in provider.models.values():
        if config.base_url:
            model.base_url = config.base_url
        if config.headers:
            model.headers = {**config.headers, **model.headers}


class Provider:
    """Provider registry.

    Holds the enabled providers, resolves models and builds cached streaming
    clients through an explicit factory registry keyed by API type.
    """

    def __init__(
        self,
        *,
        auth: AuthProfileStore,
        client_factories: Optional[Dict[str, ClientFactory]] = None,
    ) -> None:
        self.auth = auth
        self._factories: Dict[str, ClientFactory] = dict(DEFAULT_CLIENT_FACTORIES)
        self._factories.update(client_factories or {})
        self._providers: Dict[str, ProviderInfo] = {}
        self._clients: Dict[str, LanguageClient] = {}
        self._config: Config = Config()

    async def init(self, config: Config, env: Optional[Mapping[str, str]] = None) -> Dict[str, ProviderInfo]:
        """Load providers from the catalog, config, environment and auth store."""
        env = os.environ if env is None else env
        self._config = config
        self._clients.clear()
        disabled = set(config.disabled_providers)
        providers: Dict[str, ProviderInfo] = {}

        for provider_id, provider in catalog().items():
            if provider_id in disabled:
                continue
            provider_cfg = config.provider.get(provider_id)
            if provider_cfg is not None:
                _apply_config(provider, provider_cfg)
                provider.source = "config"
            provider.key = _resolve_key(provider.env, provider_cfg, env)
            if provider_cfg is None and not provider.key:
                if not self.auth.for_provider(provider_id):
                    continue
                provider.source = "auth"
            providers[provider_id] = provider

        for provider_id, provider_cfg in config.provider.items():
            if provider_id in providers or provider_id in disabled:
                continue
            if not provider_cfg.models:
                log.warn("ignoring provider config without models", {"provider_id": provider_id})
                continue
            provider = ProviderInfo(
                id=provider_id,
                name=provider_cfg.name or provider_id,
                source="custom",
                env=list(provider_cfg.env or []),
            )
            _apply_config(provider, provider_cfg)
            provider.key = _resolve_key([], provider_cfg, env)
            providers[provider_id] = provider
            log.info("added custom provider", {"provider_id": provider_id})

        for provider in providers.values():
            for model_id in [m for m, info in provider.models.items() if info.status == "deprecated"]:
                del provider.models[model_id]

        self._providers = {pid: p for pid, p in providers.items() if p.models}
        for provider_id in self._providers:
            log.info("found provider", {"provider_id": provider_id})
        return self._providers

    def list(self) -> Dict[str, ProviderInfo]:
        return dict(self._providers)

    def get_provider(self, provider_id: str) -> Optional[ProviderInfo]:
        return self._providers.get(provider_id)

    def get_model(self, provider_id: str, model_id: str) -> ModelInfo:
        """Look up a model.

        Raises:
            ModelNotFoundError: The provider or model is unknown; carries up
                to three close matches.
        """
        provider = self._providers.get(provider_id)
        if provider is None:
            suggestions = difflib.get_close_matches(provider_id, list(self._providers), n=3)
            raise ModelNotFoundError(provider_id, model_id, suggestions)
        model = provider.models.get(model_id)
        if model is None:
            suggestions = difflib.get_close_matches(model_id, list(provider.models), n=3)
            raise ModelNotFoundError(provider_id, model_id, suggestions)
        return model

    def register_client_factory(self, api_type: str, factory: ClientFactory) -> None:
        self._factories[api_type] = factory
        self._clients = {k: c for k, c in self._clients.items() if c.model.api_type != api_type}

    def get_language_client(
        self,
        model: ModelInfo,
        api_key: Optional[str] = None,
        profile_id: Optional[str] = None,
    ) -> LanguageClient:
        """A cached streaming client for ``model``.

        Clients are cached per ``provider/model`` and, when a profile
        credential is used, per profile.
        """
        cache_key = f"{model.provider_id}/{model.id}"
        if profile_id:
            cache_key += f"/{profile_id}"
        cached = self._clients.get(cache_key)
        if cached is not None:
            return cached

        key = api_key
        if key is None:
            provider = self._providers.get(model.provider_id)
            key = provider.key if provider else None
        if not key:
            raise ValueError(f"No API key for provider {model.provider_id}")
        factory = self._factories.get(model.api_type)
        if factory is None:
            raise ValueError(f"No client factory registered for API type {model.api_type!r}")

        client = LanguageClient(model=model, sdk=factory(model, key), profile_id=profile_id)
        self._clients[cache_key] = client
        return client

    @staticmethod
    def parse_model(ref: str) -> Tuple[str, str]:
        """Split ``provider/model``. A bare id is treated as provider and model."""
        provider_id, sep, model_id = ref.partition("/")
        if not sep:
            return provider_id, provider_id
        return provider_id, model_id

    def default_model(self, config: Optional[Config] = None) -> Tuple[str, str]:
        config = config or self._config
        if config.model:
            return self.parse_model(config.model)
        if not self._providers:
            raise RuntimeError("No providers available")
        priority = ["claude-sonnet", "gpt-5", "gpt-4"]
        for prio in priority:
            for provider in self._providers.values():
                for model_id in provider.models:
                    if model_id.startswith(prio):
                        return provider.id, model_id
        provider = next(iter(self._providers.values()))
        return provider.id, next(iter(provider.models))

    def small_model(self, provider_id: str) -> Optional[ModelInfo]:
        if self._config.small_model:
            pid, mid = self.parse_model(self._config.small_model)
            try:
                return self.get_model(pid, mid)
            except ModelNotFoundError:
                log.warn("configured small_model not found", {"model": self._config.small_model})
        provider = self._providers.get(provider_id)
        if provider is None:
            return None
        for prio in ("haiku", "mini", "nano", "flash", "small"):
            for model_id, model in provider.models.items():
                if prio in model_id.lower():
                    return model
        return None
