"""Per-object metadata side-files."""

import json
import logging
from email.utils import formatdate
from pathlib import Path
from typing import Dict, Any

import aiofiles
import aiofiles.os

from .errors import AccessDenied, InternalError, NoSuchKey

logger = logging.getLogger(__name__)

METADATA_SUFFIX = ".meta"


def http_date() -> str:
    """Current time as an RFC 1123 date, e.g. 'Sun, 18 Oct 2026 13:00:00 GMT'."""
    return formatdate(usegmt=True)


def metadata_path(path: Path) -> Path:
    return path.with_name(path.name + METADATA_SUFFIX)


class MetadataStore:
    """
    Reads and writes the JSON header map kept next to each data file.

    The stored `date` is the write time. On read it is reported as
    `last-modified` and `date` becomes the time of the read.
    """

    async def write(self, path: Path, headers: Dict[str, Any], key: str = None):
        meta = {str(k).lower(): v for k, v in headers.items()}
        try:
            async with aiofiles.open(metadata_path(path), "w", encoding="utf-8") as f:
                await f.write(json.dumps(meta))
        except OSError as e:
            raise AccessDenied(str(e), key=key) from e

    async def read(self, path: Path, key: str = None) -> Dict[str, Any]:
        try:
            async with aiofiles.open(metadata_path(path), "r", encoding="utf-8") as f:
                raw = await f.read()
        except (FileNotFoundError, NotADirectoryError) as e:
            raise NoSuchKey(key=key) from e
        except OSError as e:
            raise InternalError(str(e), key=key) from e

        try:
            meta = json.loads(raw)
        except ValueError as e:
            raise InternalError(f"Corrupt metadata for {key or path}: {e}", key=key) from e
        if not isinstance(meta, dict):
            raise InternalError(f"Corrupt metadata for {key or path}", key=key)

        headers = {str(k).lower(): v for k, v in meta.items()}
        if "date" in headers:
            headers["last-modified"] = headers["date"]
        headers["date"] = http_date()
        return headers

    async def remove(self, path: Path) -> bool:
        """Delete the side-file. Returns False when there was none."""
        try:
            await aiofiles.os.remove(metadata_path(path))
        except (FileNotFoundError, NotADirectoryError):
            return False
        logger.debug(f"Removed metadata {metadata_path(path)}")
        return True
