"""
File system storage for the cached not-found page
"""
import logging
import secrets
from pathlib import Path
from typing import Callable, Optional

import aiofiles
import aiofiles.os

from .exceptions import CacheWriteError

logger = logging.getLogger(__name__)


class CacheWriter:
    """
    Persists the validated not-found page to its canonical file.

    Intent:
    The file at ``path`` is the whole cache record: its existence is the
    cache hit signal for the live handler and the precondition for
    installing server rules, and its bytes are what both serve.

    Key design decisions:
    - Content passes through an optional transform before it is written,
      so hosts can rewrite relative asset URLs and similar without this
      class knowing about it
    - Writes go to a temporary file in the same directory which is then
      renamed over the target, so a concurrent reader sees either the old
      document or the new one, never a truncated one
    - The file is never deleted here; removal is an operator action
    """

    def __init__(
        self,
        path: Path,
        content_filter: Optional[Callable[[bytes], bytes]] = None,
    ):
        """
        Args:
            path: Canonical cache file location
            content_filter: Transform applied to the body before writing.
                            Identity when omitted.
        """
        self._path = path
        self.content_filter = content_filter

    @property
    def path(self) -> Path:
        return self._path

    def _apply_filter(self, body: bytes) -> bytes:
        if self.content_filter is None:
            return body

        try:
            filtered = self.content_filter(body)
        except Exception as e:
            raise CacheWriteError(f"Content filter failed: {e}") from e

        if isinstance(filtered, str):
            filtered = filtered.encode("utf-8")
        if not isinstance(filtered, (bytes, bytearray)):
            raise CacheWriteError(
                f"Content filter must return bytes, got {type(filtered).__name__}"
            )
        return bytes(filtered)

    async def write(self, body: bytes) -> Path:
        """
        Replace the cached document with ``body``.

        Intent:
        Full replacement, never append. The parent directory is created on
        demand since upload directories may not exist on a fresh site.

        Args:
            body: Raw not-found page as fetched

        Returns:
            Path of the written file

        Raises:
            CacheWriteError: If filtering, writing or renaming fails
        """
        contents = self._apply_filter(body)
        temp_path = self._path.with_name(f".{self._path.name}.{secrets.token_hex(8)}.tmp")

        try:
            await aiofiles.os.makedirs(self._path.parent, exist_ok=True)

            async with aiofiles.open(temp_path, "wb") as f:
                await f.write(contents)

            await aiofiles.os.replace(temp_path, self._path)
        except OSError as e:
            await self._discard(temp_path)
            raise CacheWriteError(f"Unable to write cache file {self._path}: {e}") from e

        logger.info("Wrote %d bytes to %s", len(contents), self._path)
        return self._path

    async def _discard(self, temp_path: Path) -> None:
        try:
            await aiofiles.os.remove(temp_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Could not remove temporary file %s: %s", temp_path, e)

    async def read(self) -> Optional[bytes]:
        """
        Read the cached document.

        Returns:
            File contents, or None if the file does not exist (it may vanish
            between an existence check and the read)
        """
        try:
            async with aiofiles.open(self._path, "rb") as f:
                return await f.read()
        except FileNotFoundError:
            return None

    async def exists(self) -> bool:
        return await aiofiles.os.path.isfile(self._path)

    async def get_size(self) -> int:
        """Size of the cached document in bytes, 0 if not cached."""
        if not await self.exists():
            return 0
        stat = await aiofiles.os.stat(self._path)
        return stat.st_size
