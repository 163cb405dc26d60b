from collections.abc import Iterator
from pathlib import Path

import pytest

from moltcore.util.log import Log


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def test_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("MOLTCORE_TEST_HOME", str(home))
    for name in ("OPENAI_API_KEY", "ANTHROPIC_API_KEY", "MOLTCORE_CONFIG_CONTENT"):
        monkeypatch.delenv(name, raising=False)
    return home


@pytest.fixture(autouse=True)
def _log_teardown() -> Iterator[None]:
    yield
    Log.reset()
