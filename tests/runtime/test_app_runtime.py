import json
from pathlib import Path

import pytest

from moltcore.core.config_schema import McpServerConfig
from moltcore.runtime import AppRuntime
from moltcore.session import SessionCreated
from tests.helpers import QUIET_ENV, FakeSDK, fake_config, make_runtime, reply


class IdleClient:
    def __init__(self, name: str, config: McpServerConfig, _on_changed) -> None:  # type: ignore[no-untyped-def]
        self.name = name
        self.closed = False

    async def connect(self) -> None:
        return None

    async def list_tools(self) -> list:
        return []

    async def close(self) -> None:
        self.closed = True


@pytest.mark.anyio
async def test_start_applies_config_to_components(tmp_path: Path) -> None:
    config = fake_config(
        tool_output={"max_lines": 40, "max_bytes": 4096, "retention_days": 2},
        auth={"cooldown_ms": 5},
        agent={"build": {"steps": 3}},
    )
    runtime = make_runtime(tmp_path, FakeSDK(), config=config)

    await runtime.start()
    try:
        assert runtime.started is True
        assert runtime.truncate.max_lines == 40
        assert runtime.truncate.max_bytes == 4096
        assert runtime.truncate.retention_ms == 2 * 24 * 60 * 60 * 1000
        assert runtime.auth.cooldown_ms == 5
        assert runtime.agents.get("build").steps == 3
        assert "fake" in runtime.provider.list()
        assert runtime.sessions.config is runtime.config
    finally:
        await runtime.shutdown()
    assert runtime.started is False


@pytest.mark.anyio
async def test_runtimes_do_not_share_state(tmp_path: Path) -> None:
    first = make_runtime(tmp_path / "a", FakeSDK([reply("one")]))
    second = make_runtime(tmp_path / "b", FakeSDK())
    created: list[str] = []
    second.bus.subscribe(SessionCreated, lambda p: created.append(p.properties["info"]["id"]))

    async with first, second:
        await first.sessions.chat("ses_a", "hi")
        assert await second.sessions.list() == []

    assert created == []
    assert first.permission is not second.permission


@pytest.mark.anyio
async def test_config_is_loaded_from_project_files(tmp_path: Path) -> None:
    project = tmp_path / "project"
    project.mkdir()
    (project / "moltcore.json").write_text(json.dumps(fake_config().model_dump(mode="json", by_alias=True, exclude_none=True)))

    runtime = AppRuntime(
        str(project),
        global_config_dir=str(tmp_path / "global"),
        storage_root=tmp_path / "storage",
        auth_path=tmp_path / "auth.json",
        client_factories={"openai": lambda _m, _k: FakeSDK([reply("from file")])},
        env=QUIET_ENV,
    )
    async with runtime:
        assert runtime.config.model == "fake/fake-model"
        result = await runtime.sessions.chat("ses_file", "hi")

    assert result.text == "from file"


@pytest.mark.anyio
async def test_shutdown_closes_mcp_and_rejects_permissions(tmp_path: Path) -> None:
    clients: list[IdleClient] = []

    def factory(name, config, on_changed):  # type: ignore[no-untyped-def]
        client = IdleClient(name, config, on_changed)
        clients.append(client)
        return client

    config = fake_config(mcp={"docs": {"command": "docs-server"}})
    runtime = make_runtime(tmp_path, FakeSDK(), config=config, mcp_client_factory=factory)

    async with runtime:
        assert runtime.mcp.status()["docs"].status == "connected"

    assert [c.closed for c in clients] == [True]
    assert await runtime.permission.list_pending() == []
