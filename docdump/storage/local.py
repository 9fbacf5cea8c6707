"""
Filesystem blob store for single-host deployments and local development.

Objects live under <root>/<owner_id>/<uuid>-<name>; source_ref is a
file:// URI. File I/O runs in the default thread executor.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from docdump.storage.base import BlobNotFoundError, BlobStore, safe_object_name

logger = logging.getLogger(__name__)


class LocalBlobStore(BlobStore):

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).resolve()

    def _path_for(self, source_ref: str) -> Path:
        if not source_ref.startswith("file://"):
            raise ValueError(f"Not a local reference: {source_ref!r}")
        path = Path(source_ref[len("file://"):]).resolve()
        if self._root not in path.parents:
            raise ValueError(f"Reference outside storage root: {source_ref!r}")
        return path

    async def store(
        self,
        data: bytes,
        owner_id: str,
        suggested_name: str,
        content_type: str,
    ) -> str:
        owner_dir = self._root / owner_id.replace("/", "_").replace("..", "_")
        path = owner_dir / safe_object_name(suggested_name)

        def _write() -> None:
            owner_dir.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        await asyncio.to_thread(_write)
        logger.info("Local upload ok | owner=%s path=%s size=%d", owner_id, path, len(data))
        return f"file://{path.as_posix()}"

    async def fetch(self, source_ref: str) -> bytes:
        path = self._path_for(source_ref)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as exc:
            raise BlobNotFoundError(f"Object not found: {path.name}") from exc

    async def delete(self, source_ref: str) -> bool:
        try:
            path = self._path_for(source_ref)
            await asyncio.to_thread(path.unlink)
        except (ValueError, OSError) as exc:
            logger.warning("Local delete failed | ref=%s error=%s", source_ref, exc)
            return False
        return True
