"""Object key → filesystem path mapping."""

import logging
from pathlib import Path
from typing import List
from urllib.parse import quote, unquote

import aiofiles.os

from .metadata import METADATA_SUFFIX

logger = logging.getLogger(__name__)

# Stands in for an empty segment ("a//b", "a/"). quote() never emits a bare "%".
EMPTY_SEGMENT = "%"


def encode_segment(segment: str) -> str:
    """
    Percent-encode one key segment.

    quote(safe="") behaves like encodeURIComponent with ! ' ( ) * escaped too,
    leaving only letters, digits and - _ . ~ unescaped.
    """
    if segment == "":
        return EMPTY_SEGMENT
    if segment in (".", ".."):
        return "%2E" * len(segment)

    encoded = quote(segment, safe="")
    # keep data files disjoint from metadata side-files
    if encoded.endswith(METADATA_SUFFIX):
        encoded = encoded[: -len(METADATA_SUFFIX)] + "%2E" + METADATA_SUFFIX[1:]
    return encoded


def decode_segment(segment: str) -> str:
    if segment == EMPTY_SEGMENT:
        return ""
    return unquote(segment)


def encode_key(key: str) -> List[str]:
    """Split a key on "/" and encode every segment; a leading "/" is dropped."""
    segments = key.split("/")
    if len(segments) > 1 and segments[0] == "":
        segments = segments[1:]
    return [encode_segment(s) for s in segments]


def decode_path(relative_path: str) -> str:
    """Rebuild the key stored at a bucket-relative path."""
    return "/".join(decode_segment(s) for s in Path(relative_path).parts)


class KeyEncoder:
    """Resolves object keys to paths under one bucket directory."""

    def __init__(self, bucket_path: str):
        self.bucket_path = Path(bucket_path)

    async def resolve(self, key: str, for_write: bool = False) -> Path:
        """
        Map `key` to its data file path.

        With `for_write`, every missing intermediate directory is created.
        Directories that already exist (or appear concurrently) are fine; any
        other mkdir failure propagates as OSError.
        """
        if not key:
            raise ValueError("object key must be a non-empty string")

        file_path = self.bucket_path.joinpath(*encode_key(key))
        if for_write:
            await self._create_parents(file_path)
        return file_path

    async def _create_parents(self, file_path: Path):
        missing = []
        parent = file_path.parent
        while parent != self.bucket_path and not await aiofiles.os.path.isdir(parent):
            missing.append(parent)
            parent = parent.parent

        for directory in reversed(missing):
            try:
                await aiofiles.os.mkdir(directory)
                logger.debug(f"Created directory {directory}")
            except FileExistsError:
                pass
