"""Bash tool: run a shell command with streamed output."""

import asyncio
import codecs
import os
import shlex
import shutil
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field

from ..util.log import Log
from .tool import Tool, ToolContext, ToolResult
from .truncation import MAX_BYTES, MAX_LINES

log = Log.create({"service": "bash"})

MAX_METADATA_LENGTH = 30_000
DEFAULT_TIMEOUT_MS = 2 * 60 * 1000
READ_CHUNK = 4096

DESCRIPTION = f"""Executes a shell command and returns its combined stdout and stderr.

- Commands run in the session working directory unless workdir is given.
- The default timeout is {DEFAULT_TIMEOUT_MS} ms; pass timeout (ms) to change it.
- Output over {MAX_LINES} lines or {MAX_BYTES} bytes is truncated and saved to a file.
- Prefer dedicated tools (read) over cat/head/tail."""

# Shell constructs that make a prefix-based "always" pattern misleading.
_OPAQUE_MARKERS = ("$(", "`", "<(", ">(", "<<")


class BashParams(BaseModel):
    command: str = Field(..., description="The command to execute")
    timeout: Optional[int] = Field(None, description="Optional timeout in milliseconds")
    workdir: Optional[str] = Field(None, description="Working directory for the command")
    description: str = Field("", description="Short description of what the command does")


def _shell() -> List[str]:
    if sys.platform == "win32":
        for candidate in ("pwsh", "powershell"):
            found = shutil.which(candidate)
            if found:
                return [found, "-Command"]
        return ["cmd.exe", "/c"]
    shell = os.environ.get("SHELL", "/bin/sh")
    return [shell if shutil.which(shell) else "/bin/sh", "-c"]


def _always_patterns(command: str) -> List[str]:
    """``"<program> *"`` approvals for each simple command in a pipeline."""
    if any(marker in command for marker in _OPAQUE_MARKERS):
        return []
    patterns: List[str] = []
    for segment in command.replace("&&", ";").replace("||", ";").replace("|", ";").split(";"):
        try:
            tokens = shlex.split(segment)
        except ValueError:
            return []
        if tokens and tokens[0] != "cd":
            pattern = f"{tokens[0]} *"
            if pattern not in patterns:
                patterns.append(pattern)
    return patterns


async def _pump(stream: asyncio.StreamReader, sink: bytearray, ctx: ToolContext, description: str) -> None:
    # Multi-byte characters may straddle reads.
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    preview = ""
    while True:
        chunk = await stream.read(READ_CHUNK)
        if not chunk:
            return
        sink.extend(chunk)
        if len(preview) > MAX_METADATA_LENGTH:
            continue
        preview += decoder.decode(chunk)
        if len(preview) > MAX_METADATA_LENGTH:
            preview = preview[:MAX_METADATA_LENGTH] + "\n\n..."
        ctx.metadata(metadata={"output": preview, "description": description})


async def _terminate(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    try:
        proc.kill()
    except ProcessLookupError:
        return
    await proc.wait()


async def bash_execute(params: BashParams, ctx: ToolContext) -> ToolResult:
    if params.timeout is not None and params.timeout < 0:
        raise ValueError(f"Invalid timeout value: {params.timeout}. Timeout must be a positive number.")

    base = Path(str(ctx.extra.get("cwd") or Path.cwd()))
    cwd = Path(params.workdir) if params.workdir else base
    if not cwd.is_absolute():
        cwd = base / cwd

    await ctx.ask(
        permission="bash",
        patterns=[params.command.strip()],
        always=_always_patterns(params.command),
        metadata={"command": params.command, "description": params.description},
    )

    timeout_ms = params.timeout or DEFAULT_TIMEOUT_MS
    log.info("executing command", {"command": params.command, "cwd": str(cwd)})
    ctx.metadata(metadata={"output": "", "description": params.description})

    proc = await asyncio.create_subprocess_exec(
        *_shell(),
        params.command,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
        cwd=str(cwd),
    )

    raw = bytearray()
    notes: List[str] = []
    try:
        assert proc.stdout is not None
        await asyncio.wait_for(_pump(proc.stdout, raw, ctx, params.description), timeout=timeout_ms / 1000)
        await proc.wait()
    except asyncio.TimeoutError:
        notes.append(f"bash tool terminated command after exceeding timeout {timeout_ms} ms")
        await _terminate(proc)
    except asyncio.CancelledError:
        await _terminate(proc)
        raise

    output = raw.decode("utf-8", errors="replace")
    if notes:
        output += "\n\n<bash_metadata>\n" + "\n".join(notes) + "\n</bash_metadata>"

    display = output if len(output) <= MAX_METADATA_LENGTH else output[:MAX_METADATA_LENGTH] + "\n\n..."
    return ToolResult(
        title=params.description or params.command,
        output=output,
        metadata={"output": display, "exit": proc.returncode, "description": params.description},
    )


BashTool = Tool.define(
    tool_id="bash",
    description=DESCRIPTION,
    parameters_type=BashParams,
    execute_fn=bash_execute,
    auto_truncate=True,
)
