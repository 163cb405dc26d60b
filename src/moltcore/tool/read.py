"""Read tool: paginated file and directory reads."""

from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..util.log import Log
from .tool import Tool, ToolContext, ToolResult

log = Log.create({"service": "read"})

DEFAULT_READ_LIMIT = 2000
MAX_LINE_LENGTH = 2000
MAX_BYTES = 50 * 1024

BINARY_EXTENSIONS = {
    ".zip", ".tar", ".gz", ".exe", ".dll", ".so", ".class", ".jar", ".7z",
    ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".bin", ".dat",
    ".o", ".a", ".lib", ".wasm", ".pyc", ".pyo", ".png", ".jpg", ".jpeg",
    ".gif", ".webp", ".pdf",
}

DESCRIPTION = f"""Reads a file or directory from the local filesystem.

- file_path may be absolute or relative to the session working directory.
- By default up to {DEFAULT_READ_LIMIT} lines are returned, starting at the first line.
- Use offset (1-based) and limit to page through long files.
- Lines longer than {MAX_LINE_LENGTH} characters are cut.
- Output lines are prefixed with their line number.
- Reading a directory lists its entries."""


class ReadParams(BaseModel):
    file_path: str = Field(..., alias="filePath", description="Path of the file or directory to read")
    offset: Optional[int] = Field(None, description="Line number to start reading from (1-based)")
    limit: Optional[int] = Field(None, description="Number of lines to read (defaults to 2000)")

    model_config = ConfigDict(populate_by_name=True)


def _is_binary(path: Path) -> bool:
    if path.suffix.lower() in BINARY_EXTENSIONS:
        return True
    with open(path, "rb") as file:
        chunk = file.read(4096)
    if not chunk:
        return False
    if b"\x00" in chunk:
        return True
    non_printable = sum(1 for b in chunk if b < 9 or 13 < b < 32)
    return non_printable / len(chunk) > 0.3


def _resolve(params: ReadParams, ctx: ToolContext) -> Path:
    cwd = Path(str(ctx.extra.get("cwd") or Path.cwd()))
    path = Path(params.file_path).expanduser()
    if not path.is_absolute():
        path = cwd / path
    return path


def _not_found(path: Path) -> FileNotFoundError:
    suggestions = []
    if path.parent.is_dir():
        base = path.name.lower()
        for entry in sorted(path.parent.iterdir()):
            name = entry.name.lower()
            if base in name or name in base:
                suggestions.append(str(entry))
            if len(suggestions) >= 3:
                break
    if suggestions:
        return FileNotFoundError(
            f"File not found: {path}\n\nDid you mean one of these?\n" + "\n".join(suggestions)
        )
    return FileNotFoundError(f"File not found: {path}")


def _read_directory(path: Path, offset: int, limit: int) -> ToolResult:
    entries = [
        child.name + ("/" if child.is_dir() else "")
        for child in sorted(path.iterdir(), key=lambda p: p.name.lower())
    ]
    start = offset - 1
    sliced = entries[start:start + limit]
    truncated = start + len(sliced) < len(entries)
    if truncated:
        footer = (
            f"(Showing {len(sliced)} of {len(entries)} entries. "
            f"Use 'offset' parameter to read beyond entry {offset + len(sliced)})"
        )
    else:
        footer = f"({len(entries)} entries)"
    output = "\n".join([f"<path>{path}</path>", "<type>directory</type>", "<entries>", *sliced, footer, "</entries>"])
    return ToolResult(
        title=path.name or str(path),
        output=output,
        metadata={"preview": "\n".join(sliced[:20]), "truncated": truncated},
    )


async def read_execute(params: ReadParams, ctx: ToolContext) -> ToolResult:
    path = _resolve(params, ctx)
    await ctx.ask(permission="read", patterns=[str(path)], always=["*"], metadata={"path": str(path)})

    if not path.exists():
        raise _not_found(path)

    offset = params.offset or 1
    limit = params.limit or DEFAULT_READ_LIMIT
    if offset < 1:
        raise ValueError("offset must be greater than or equal to 1")

    if path.is_dir():
        return _read_directory(path, offset, limit)

    if _is_binary(path):
        raise ValueError(f"Cannot read binary file: {path}")

    lines = path.read_text(encoding="utf-8", errors="replace").split("\n")
    start = offset - 1
    if start >= len(lines):
        raise ValueError(f"Offset {offset} is out of range for this file ({len(lines)} lines)")

    raw: list[str] = []
    used = 0
    truncated_by_bytes = False
    for line in lines[start:start + limit]:
        if len(line) > MAX_LINE_LENGTH:
            line = line[:MAX_LINE_LENGTH] + "..."
        cost = len(line.encode("utf-8")) + (1 if raw else 0)
        if used + cost > MAX_BYTES:
            truncated_by_bytes = True
            break
        raw.append(line)
        used += cost

    last_line = offset + len(raw) - 1
    has_more = len(lines) > last_line
    body = "\n".join(f"{offset + i}: {line}" for i, line in enumerate(raw))

    if truncated_by_bytes:
        footer = f"(Output truncated at {MAX_BYTES} bytes. Use 'offset' parameter to read beyond line {last_line})"
    elif has_more:
        footer = f"(File has more lines. Use 'offset' parameter to read beyond line {last_line})"
    else:
        footer = f"(End of file - total {len(lines)} lines)"

    log.debug("read file", {"path": str(path), "offset": offset, "lines": len(raw)})
    return ToolResult(
        title=path.name,
        output=f"<path>{path}</path>\n<type>file</type>\n<content>\n{body}\n\n{footer}\n</content>",
        metadata={
            "preview": "\n".join(raw[:20]),
            "truncated": has_more or truncated_by_bytes,
        },
    )


ReadTool = Tool.define(
    tool_id="read",
    description=DESCRIPTION,
    parameters_type=ReadParams,
    execute_fn=read_execute,
    auto_truncate=False,
)
