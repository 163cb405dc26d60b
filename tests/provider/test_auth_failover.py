import os
import stat
import sys
from pathlib import Path
from typing import List

import pytest

from moltcore.provider import (
    AuthProfile,
    AuthProfileStore,
    AuthRotation,
    AuthUnavailableError,
    FailoverError,
    ProviderInfo,
)
from moltcore.runtime import AppRuntime
from tests.helpers import QUIET_ENV, FakeSDK, fake_config, reply


def _store(tmp_path: Path, *ids: str) -> AuthProfileStore:
    store = AuthProfileStore(tmp_path / "auth-profiles.json", cooldown_ms=1000)
    for profile_id in ids:
        store.upsert(AuthProfile(id=profile_id, provider="openai", key=f"key-{profile_id}"))
    return store


def _provider(key: str | None = None) -> ProviderInfo:
    return ProviderInfo(id="openai", name="OpenAI", key=key)


def test_profiles_persist_with_private_mode(tmp_path: Path) -> None:
    store = _store(tmp_path, "a", "b")

    reloaded = AuthProfileStore(tmp_path / "auth-profiles.json")
    assert {p.id for p in reloaded.all()} == {"a", "b"}
    assert reloaded.get("a").key == "key-a"
    if sys.platform != "win32":
        assert stat.S_IMODE(os.stat(store.path).st_mode) == 0o600

    store.remove("a")
    assert [p.id for p in AuthProfileStore(store.path).all()] == ["b"]


def test_resolve_order_puts_locked_first_and_skips_cooldown(tmp_path: Path) -> None:
    store = _store(tmp_path, "a", "b", "c")

    assert store.resolve_order("openai", order=["b", "a"]) == ["b", "a", "c"]
    assert store.resolve_order("openai", order=["b", "a"], locked="c") == ["c", "b", "a"]

    store.mark_failure("b", "rate_limit")
    assert store.resolve_order("openai", order=["b", "a"]) == ["a", "c"]
    assert store.resolve_order("anthropic") == []


def test_cooldown_grows_with_consecutive_failures(tmp_path: Path) -> None:
    store = _store(tmp_path, "a")

    store.mark_failure("a", "auth")
    first = store.get("a").cooldown_until
    store.mark_failure("a", "auth")
    profile = store.get("a")

    assert profile.failure_count == 2
    assert profile.last_failure_reason == "auth"
    assert profile.cooldown_until - first >= 3000
    assert store.in_cooldown("a")

    store.mark_good("a")
    assert not store.in_cooldown("a")
    assert store.get("a").failure_count == 0


def test_rotation_walks_profiles(tmp_path: Path) -> None:
    store = _store(tmp_path, "a", "b")
    rotation = AuthRotation(store, _provider(), "gpt-4o", order=["a", "b"])

    assert rotation.current().key == "key-a"
    rotation.mark_failure("auth")
    assert rotation.advance() is True
    assert rotation.current().profile_id == "b"
    assert rotation.advance() is False

    rotation.mark_good()
    assert store.get("b").last_used is not None


def test_locked_profile_never_rotates(tmp_path: Path) -> None:
    store = _store(tmp_path, "a", "b")
    rotation = AuthRotation(store, _provider(), "gpt-4o", locked="b")

    assert rotation.current().profile_id == "b"
    assert rotation.advance() is False


def test_provider_key_is_used_without_profiles(tmp_path: Path) -> None:
    rotation = AuthRotation(_store(tmp_path), _provider("sk-env"), "gpt-4o")

    credential = rotation.current()
    assert credential.key == "sk-env"
    assert credential.profile_id is None


def test_exhausted_profiles_fail_over_only_when_configured(tmp_path: Path) -> None:
    store = _store(tmp_path, "a")
    store.mark_failure("a", "billing")

    with pytest.raises(AuthUnavailableError):
        AuthRotation(store, _provider("sk-env"), "gpt-4o").current()

    with pytest.raises(FailoverError) as exc:
        AuthRotation(store, _provider(), "gpt-4o", fallback_configured=True).current()
    assert exc.value.reason == "auth"


@pytest.mark.anyio
async def test_turn_rotates_to_next_profile_after_auth_error(tmp_path: Path) -> None:
    sdk = FakeSDK([[RuntimeError("401 Unauthorized: invalid api key")], reply("rotated")])
    keys: List[str] = []

    def factory(_model, key):  # type: ignore[no-untyped-def]
        keys.append(key)
        return sdk

    config = fake_config(auth={"order": {"fake": ["first", "second"]}})
    runtime = AppRuntime(
        str(tmp_path),
        config=config,
        storage_root=tmp_path / "storage",
        auth_path=tmp_path / "auth-profiles.json",
        client_factories={"openai": factory},
        env=QUIET_ENV,
    )
    runtime.auth.upsert(AuthProfile(id="first", provider="fake", key="key-first"))
    runtime.auth.upsert(AuthProfile(id="second", provider="fake", key="key-second"))

    async with runtime:
        result = await runtime.sessions.chat("ses_rotate", "hi")

    assert result.text == "rotated"
    assert keys == ["key-first", "key-second"]
    assert runtime.auth.in_cooldown("first")
    assert runtime.auth.get("first").last_failure_reason == "auth"
    assert runtime.auth.get("second").last_used is not None
