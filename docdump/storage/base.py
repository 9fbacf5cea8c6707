"""
Blob store contract.

    store(data, owner_id, suggested_name, content_type) → source_ref
    fetch(source_ref)  → bytes
    delete(source_ref) → True on success, False otherwise (never raises)

source_ref is opaque to everything except the store that produced it.
"""

from __future__ import annotations

import re
import uuid
from abc import ABC, abstractmethod


class BlobNotFoundError(FileNotFoundError):
    """The referenced object does not exist in the store."""


def safe_object_name(suggested_name: str) -> str:
    """
    Build a unique, path-safe object name from a client file name.
    Directory components are dropped; the uuid prefix prevents collisions.
    """
    basename = suggested_name.replace("\\", "/").rsplit("/", 1)[-1]
    safe = re.sub(r"[^a-zA-Z0-9._\-]", "_", basename)[:200] or "upload"
    return f"{uuid.uuid4()}-{safe}"


class BlobStore(ABC):

    @abstractmethod
    async def store(
        self,
        data: bytes,
        owner_id: str,
        suggested_name: str,
        content_type: str,
    ) -> str:
        ...

    @abstractmethod
    async def fetch(self, source_ref: str) -> bytes:
        ...

    @abstractmethod
    async def delete(self, source_ref: str) -> bool:
        ...
