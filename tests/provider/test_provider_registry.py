from pathlib import Path
from typing import Any, List, Tuple

import pytest

from moltcore.core.config_schema import Config
from moltcore.provider import AuthProfile, AuthProfileStore, ModelNotFoundError, Provider


def _provider(tmp_path: Path, calls: List[Tuple[str, str]]) -> Provider:
    def factory(model: Any, key: str) -> object:
        calls.append((model.id, key))
        return object()

    return Provider(
        auth=AuthProfileStore(tmp_path / "auth.json"),
        client_factories={"openai": factory, "anthropic": factory},
    )


@pytest.mark.anyio
async def test_catalog_providers_need_a_key(tmp_path: Path) -> None:
    provider = _provider(tmp_path, [])

    providers = await provider.init(Config(), env={"ANTHROPIC_API_KEY": "sk-ant"})

    assert list(providers) == ["anthropic"]
    assert providers["anthropic"].key == "sk-ant"
    assert providers["anthropic"].source == "env"
    assert provider.get_model("anthropic", "claude-sonnet-4-5").api_type == "anthropic"


@pytest.mark.anyio
async def test_stored_profiles_enable_a_provider(tmp_path: Path) -> None:
    provider = _provider(tmp_path, [])
    provider.auth.upsert(AuthProfile(id="work", provider="openai", key="sk-work"))

    providers = await provider.init(Config(), env={})

    assert providers["openai"].source == "auth"
    assert providers["openai"].key is None


@pytest.mark.anyio
async def test_config_overrides_and_custom_providers(tmp_path: Path) -> None:
    provider = _provider(tmp_path, [])
    config = Config.model_validate({
        "provider": {
            "openai": {
                "apiKey": "sk-config",
                "baseURL": "https://proxy.example/v1",
                "models": {"gpt-4o": {"options": {"store": False}}},
            },
            "local": {
                "type": "openai",
                "env": ["LOCAL_KEY"],
                "models": {"llama": {"name": "Llama", "api_id": "llama-3.1-8b", "limit": {"context": 8192}}},
            },
            "empty": {"type": "openai"},
        },
        "disabled_providers": ["anthropic"],
    })

    providers = await provider.init(config, env={"ANTHROPIC_API_KEY": "sk-ant", "LOCAL_KEY": "sk-local"})

    assert set(providers) == {"openai", "local"}
    gpt = provider.get_model("openai", "gpt-4o")
    assert gpt.base_url == "https://proxy.example/v1"
    assert gpt.options == {"store": False}
    assert providers["openai"].key == "sk-config"

    llama = provider.get_model("local", "llama")
    assert llama.api_id == "llama-3.1-8b"
    assert llama.limit.context == 8192
    assert providers["local"].key == "sk-local"
    assert providers["local"].source == "custom"


@pytest.mark.anyio
async def test_unknown_model_suggests_close_matches(tmp_path: Path) -> None:
    provider = _provider(tmp_path, [])
    await provider.init(Config(), env={"OPENAI_API_KEY": "sk"})

    with pytest.raises(ModelNotFoundError) as exc:
        provider.get_model("openai", "gpt-4.0")
    assert "gpt-4o" in exc.value.suggestions
    assert "Did you mean" in str(exc.value)

    with pytest.raises(ModelNotFoundError):
        provider.get_model("openia", "gpt-4o")


@pytest.mark.anyio
async def test_language_clients_are_cached_per_profile(tmp_path: Path) -> None:
    calls: List[Tuple[str, str]] = []
    provider = _provider(tmp_path, calls)
    await provider.init(Config(), env={"OPENAI_API_KEY": "sk-env"})
    model = provider.get_model("openai", "gpt-4o")

    first = provider.get_language_client(model)
    assert provider.get_language_client(model) is first
    second = provider.get_language_client(model, "sk-profile", profile_id="work")
    assert second is not first

    assert calls == [("gpt-4o", "sk-env"), ("gpt-4o", "sk-profile")]


def test_parse_model_reference() -> None:
    assert Provider.parse_model("anthropic/claude-sonnet-4-5") == ("anthropic", "claude-sonnet-4-5")
    assert Provider.parse_model("openrouter/meta/llama") == ("openrouter", "meta/llama")
    assert Provider.parse_model("gpt-4o") == ("gpt-4o", "gpt-4o")


@pytest.mark.anyio
async def test_default_and_small_model(tmp_path: Path) -> None:
    provider = _provider(tmp_path, [])
    await provider.init(Config(), env={"OPENAI_API_KEY": "sk", "ANTHROPIC_API_KEY": "sk"})

    assert provider.default_model() == ("anthropic", "claude-sonnet-4-5")
    assert provider.default_model(Config(model="openai/gpt-4o")) == ("openai", "gpt-4o")
    small = provider.small_model("anthropic")
    assert small is not None
    assert small.id == "claude-haiku-4-5"


@pytest.mark.anyio
async def test_language_client_passes_api_id_and_merged_options(tmp_path: Path) -> None:
    seen: dict = {}

    class RecordingSDK:
        def stream(self, **kwargs: Any) -> Any:
            seen.update(kwargs)
            return iter(())

    provider = Provider(
        auth=AuthProfileStore(tmp_path / "auth.json"),
        client_factories={"anthropic": lambda _m, _k: RecordingSDK()},
    )
    await provider.init(Config(), env={"ANTHROPIC_API_KEY": "sk"})
    model = provider.get_model("anthropic", "claude-3-5-haiku")
    model.options["metadata"] = {"user": "u1"}

    provider.get_language_client(model).stream(messages=[], options={"thinking": {"type": "enabled"}})

    assert seen["model"] == "claude-3-5-haiku-latest"
    assert seen["options"] == {"metadata": {"user": "u1"}, "thinking": {"type": "enabled"}}
