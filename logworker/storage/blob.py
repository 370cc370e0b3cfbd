"""Blob storage collaborators that hold uploaded log files."""

import asyncio
import os
from abc import ABC, abstractmethod
from typing import Any

from supabase import Client


class BlobStorage(ABC):
    """Abstract source of uploaded files (Supabase Storage or a local dir)."""

    @abstractmethod
    async def download(self, locator: str) -> Any:
        """Fetch the object at ``locator``. Returns bytes or raises."""
        ...


class SupabaseBlobStorage(BlobStorage):
    """Reads from a Supabase Storage bucket using the service-role client."""

    def __init__(self, client: Client, bucket: str = "log-files"):
        self._client = client
        self._bucket = bucket

    async def download(self, locator: str) -> Any:
        # storage3's sync client blocks; keep the event loop free
        return await asyncio.to_thread(
            self._client.storage.from_(self._bucket).download, locator
        )


class LocalBlobStorage(BlobStorage):
    """Serves files from a directory. For local development and tests."""

    def __init__(self, base_dir: str):
        self._base_dir = os.path.abspath(base_dir)

    def _resolve(self, locator: str) -> str:
        path = os.path.abspath(os.path.join(self._base_dir, locator))
        if os.path.commonpath([path, self._base_dir]) != self._base_dir:
            raise ValueError(f"Locator escapes storage root: {locator}")
        return path

    async def download(self, locator: str) -> bytes:
        path = self._resolve(locator)
        return await asyncio.to_thread(_read_bytes, path)


def _read_bytes(path: str) -> bytes:
    with open(path, "rb") as fh:
        return fh.read()
