"""Hierarchical JSON file storage.

Keys like ``["message", session_id, message_id]`` map to
``<root>/message/<session_id>/<message_id>.json``. Writes replace files
atomically and are serialized per key; reads take no lock and always see a
complete document.
"""

import json
import os
import uuid
from pathlib import Path
from typing import Any, Callable, List, Optional

from ..core.global_paths import GlobalPath
from ..util.log import Log
from .lock import KeyedLock

log = Log.create({"service": "storage"})


class NotFoundError(Exception):
    """Raised when a storage resource is not found."""

    def __init__(self, key: List[str]):
        self.key = key
        super().__init__(f"Resource not found: {'/'.join(key)}")


class Storage:
    """JSON document store rooted at one directory."""

    def __init__(self, root: Optional[Path] = None) -> None:
        self._root = Path(root) if root is not None else None
        self._locks = KeyedLock()

    @property
    def root(self) -> Path:
        if self._root is None:
            self._root = Path(GlobalPath.storage())
        return self._root

    def _path(self, key: List[str]) -> Path:
        if not key or any(not part or "/" in part or "\\" in part or part in (".", "..") for part in key):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self.root.joinpath(*key[:-1], key[-1] + ".json")

    @staticmethod
    def _write_bytes(target: Path, body: bytes) -> None:
        parent = target.parent
        parent.mkdir(parents=True, exist_ok=True)
        tmp = parent / f".{target.name}.{os.getpid()}.{uuid.uuid4().hex}.tmp"
        try:
            with open(tmp, "wb") as file:
                file.write(body)
            os.replace(tmp, target)
        finally:
            tmp.unlink(missing_ok=True)

    @staticmethod
    def _encode(content: Any) -> bytes:
        return json.dumps(content, indent=2, ensure_ascii=False).encode("utf-8")

    async def read(self, key: List[str]) -> Any:
        """Read a JSON resource.

        Raises:
            NotFoundError: If the resource does not exist.
        """
        target = self._path(key)
        try:
            with open(target, "r", encoding="utf-8") as file:
                return json.load(file)
        except FileNotFoundError:
            raise NotFoundError(key) from None

    async def write(self, key: List[str], content: Any) -> None:
        """Write a JSON resource, creating parent directories as needed."""
        target = self._path(key)
        async with self._locks.write(str(target)):
            self._write_bytes(target, self._encode(content))

    async def update(self, key: List[str], fn: Callable[[Any], Any]) -> Any:
        """Read-modify-write under the key's exclusive lock.

        ``fn`` may mutate the document in place or return a replacement.

        Raises:
            NotFoundError: If the resource does not exist.
        """
        target = self._path(key)
        async with self._locks.write(str(target)):
            try:
                with open(target, "r", encoding="utf-8") as file:
                    data = json.load(file)
            except FileNotFoundError:
                raise NotFoundError(key) from None

            result = fn(data)
            if result is not None:
                data = result
            self._write_bytes(target, self._encode(data))
            return data

    async def remove(self, key: List[str]) -> None:
        """Delete a resource. Missing resources are ignored."""
        target = self._path(key)
        async with self._locks.write(str(target)):
            target.unlink(missing_ok=True)

    async def remove_tree(self, prefix: List[str]) -> None:
        """Delete every resource under ``prefix``."""
        for key in await self.list(prefix):
            await self.remove(key)

    async def list(self, prefix: List[str]) -> List[List[str]]:
        """Sorted keys of every resource under ``prefix``."""
        base = self.root.joinpath(*prefix)
        if not base.is_dir():
            return []

        result: List[List[str]] = []
        for path in base.rglob("*.json"):
            if path.name.startswith("."):
                continue
            rel = path.relative_to(self.root).with_suffix("")
            result.append(list(rel.parts))
        result.sort()
        return result
