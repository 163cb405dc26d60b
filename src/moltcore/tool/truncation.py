"""Truncation of oversized tool output.

Output over the line or byte limit is saved in full under the output
directory and replaced with a head or tail preview plus a notice pointing at
the saved file. The preview and notice together stay within both limits.
"""

import asyncio
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Literal, Optional, TypedDict

from ..core.global_paths import GlobalPath
from ..core.id import Identifier
from ..util.log import Log

log = Log.create({"service": "truncation"})

MAX_LINES = 2000
MAX_BYTES = 50 * 1024
RETENTION_DAYS = 7
DAY_MS = 24 * 60 * 60 * 1000
CLEANUP_INTERVAL_S = 60 * 60

Direction = Literal["head", "tail"]


class TruncateOptions(TypedDict, total=False):
    max_lines: int
    max_bytes: int
    direction: Direction


@dataclass
class TruncateResult:
    content: str
    truncated: bool
    output_path: Optional[str] = None


def _size(text: str) -> int:
    return len(text.encode("utf-8"))


def _take(lines: List[str], max_lines: int, max_bytes: int, direction: Direction) -> tuple[List[str], int, bool]:
    """Collect whole lines from one end within both budgets."""
    out: List[str] = []
    used = 0
    hit_bytes = False
    ordered = lines if direction == "head" else list(reversed(lines))
    for line in ordered:
        if len(out) >= max_lines:
            break
        cost = _size(line) + (1 if out else 0)
        if used + cost > max_bytes:
            hit_bytes = True
            break
        out.append(line)
        used += cost
    if direction == "tail":
        out.reverse()
    return out, used, hit_bytes


class Truncate:
    """Tool output truncation bound to one output directory."""

    MAX_LINES = MAX_LINES
    MAX_BYTES = MAX_BYTES

    def __init__(
        self,
        output_dir: Optional[Path] = None,
        *,
        max_lines: int = MAX_LINES,
        max_bytes: int = MAX_BYTES,
        retention_days: int = RETENTION_DAYS,
    ) -> None:
        self._output_dir = Path(output_dir) if output_dir is not None else None
        self.max_lines = max_lines
        self.max_bytes = max_bytes
        self.retention_ms = retention_days * DAY_MS
        self._cleanup_task: Optional[asyncio.Task] = None

    @property
    def output_dir(self) -> Path:
        if self._output_dir is None:
            self._output_dir = Path(GlobalPath.tool_output())
        return self._output_dir

    def _hint(self, path: Path, has_task_tool: bool) -> str:
        head = f"The tool call succeeded but the output was truncated. Full output saved to: {path}\n"
        if has_task_tool:
            return head + (
                "Use the Task tool to have explore agent process this file with Grep and Read "
                "(with offset/limit). Do NOT read the full file yourself - delegate to save context."
            )
        return head + "Use Grep to search the full content or Read with offset/limit to view specific sections."

    async def output(
        self,
        text: str,
        options: Optional[TruncateOptions] = None,
        has_task_tool: bool = False,
    ) -> TruncateResult:
        """Truncate ``text`` if it exceeds the line or byte limit.

        Args:
            text: Tool output.
            options: Per-call ``max_lines``, ``max_bytes`` and ``direction``.
            has_task_tool: Whether the agent can delegate to a Task tool,
                which changes the hint wording.
        """
        options = options or {}
        max_lines = options.get("max_lines", self.max_lines)
        max_bytes = options.get("max_bytes", self.max_bytes)
        direction: Direction = options.get("direction", "head")

        lines = text.split("\n")
        total_bytes = _size(text)
        if len(lines) <= max_lines and total_bytes <= max_bytes:
            return TruncateResult(content=text, truncated=False)

        path = self.output_dir / Identifier.ascending("tool")
        hint = self._hint(path, has_task_tool)

        # Reserve room for the notice, sized with the largest possible count.
        widest = f"...{max(total_bytes, len(lines))} bytes truncated...\n\n{hint}"
        line_budget = max_lines - (widest.count("\n") + 1) - 1
        byte_budget = max_bytes - _size(widest) - 2

        out: List[str] = []
        used = 0
        hit_bytes = False
        if line_budget > 0 and byte_budget > 0:
            out, used, hit_bytes = _take(lines, line_budget, byte_budget, direction)
        else:
            hit_bytes = byte_budget <= 0

        if hit_bytes:
            removed, unit = total_bytes - used, "bytes"
        else:
            removed, unit = len(lines) - len(out), "lines"
        notice = f"...{removed} {unit} truncated...\n\n{hint}"

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(text.encode("utf-8"))

        preview = "\n".join(out)
        if not out:
            message = notice
        elif direction == "head":
            message = f"{preview}\n\n{notice}"
        else:
            message = f"{notice}\n\n{preview}"

        log.info("truncated output", {"path": str(path), "removed": removed, "unit": unit})
        return TruncateResult(content=message, truncated=True, output_path=str(path))

    async def cleanup(self) -> int:
        """Delete saved outputs older than the retention period."""
        output_dir = self.output_dir
        if not output_dir.is_dir():
            return 0

        cutoff = time.time() * 1000 - self.retention_ms
        removed = 0
        for entry in output_dir.iterdir():
            if not entry.is_file() or not entry.name.startswith("tool_"):
                continue
            try:
                created = Identifier.timestamp(entry.name)
            except ValueError:
                continue
            if created < cutoff:
                entry.unlink(missing_ok=True)
                removed += 1
        if removed:
            log.info("cleaned up old output", {"count": removed})
        return removed

    async def _periodic_cleanup(self) -> None:
        while True:
            try:
                await self.cleanup()
            except OSError as e:
                log.error("cleanup failed", {"error": str(e)})
            await asyncio.sleep(CLEANUP_INTERVAL_S)

    def start_cleanup(self) -> None:
        """Run ``cleanup`` now and then hourly in the background."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._periodic_cleanup())

    async def stop_cleanup(self) -> None:
        task, self._cleanup_task = self._cleanup_task, None
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
