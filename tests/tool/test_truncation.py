import time
from pathlib import Path

import pytest

from moltcore.tool import Truncate
from moltcore.tool.truncation import DAY_MS


def _lines(count: int, width: int = 0) -> str:
    return "\n".join(f"line {i}".ljust(width, "x") for i in range(count))


@pytest.mark.anyio
async def test_small_output_is_returned_unchanged(tmp_path: Path) -> None:
    out = tmp_path / "out"
    truncate = Truncate(out)
    result = await truncate.output("short output")

    assert result.truncated is False
    assert result.content == "short output"
    assert result.output_path is None
    assert not out.exists()


@pytest.mark.anyio
async def test_line_limit_keeps_head_and_saves_full_text(tmp_path: Path) -> None:
    text = _lines(100)
    result = await Truncate(tmp_path, max_lines=10).output(text)

    assert result.truncated is True
    assert result.content.startswith("line 0\n")
    assert "lines truncated..." in result.content
    assert len(result.content.split("\n")) <= 10
    assert result.output_path is not None
    assert result.output_path in result.content
    assert Path(result.output_path).read_text(encoding="utf-8") == text


@pytest.mark.anyio
async def test_tail_direction_keeps_last_lines(tmp_path: Path) -> None:
    result = await Truncate(tmp_path).output(_lines(100), {"max_lines": 10, "direction": "tail"})

    assert result.truncated is True
    assert result.content.startswith("...")
    assert result.content.endswith("line 99")
    assert len(result.content.split("\n")) <= 10


@pytest.mark.anyio
async def test_byte_limit_counts_bytes(tmp_path: Path) -> None:
    text = _lines(50, width=100)
    result = await Truncate(tmp_path, max_bytes=2000).output(text)

    assert result.truncated is True
    assert "bytes truncated..." in result.content
    assert len(result.content.encode("utf-8")) <= 2000


@pytest.mark.anyio
async def test_task_tool_changes_hint(tmp_path: Path) -> None:
    result = await Truncate(tmp_path, max_lines=10).output(_lines(100), has_task_tool=True)
    assert "Task tool" in result.content


@pytest.mark.anyio
async def test_cleanup_removes_expired_outputs(tmp_path: Path) -> None:
    truncate = Truncate(tmp_path, max_lines=10, retention_days=7)
    fresh = await truncate.output(_lines(100))
    old_ms = int(time.time() * 1000) - 8 * DAY_MS
    stale = tmp_path / f"tool_{old_ms * 0x1000 + 1:014x}abcdefghijkl"
    stale.write_text("old", encoding="utf-8")
    unrelated = tmp_path / "notes.txt"
    unrelated.write_text("keep", encoding="utf-8")

    removed = await truncate.cleanup()

    assert removed == 1
    assert not stale.exists()
    assert Path(fresh.output_path or "").exists()
    assert unrelated.exists()


@pytest.mark.anyio
async def test_background_cleanup_starts_and_stops(tmp_path: Path) -> None:
    truncate = Truncate(tmp_path)
    truncate.start_cleanup()
    await truncate.stop_cleanup()
    await truncate.stop_cleanup()
