"""
Event-driven local S3 client.

put/get/head/delete return a Request straight away and do the filesystem
work in a task on the running event loop. The task always ends by emitting
exactly one response on that request, unless the caller aborts it first.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import aiofiles
import aiofiles.os

from config.models.core_models import RequestState
from config.settings import StorageConfig, get_storage_config

from .channels import FileReadChannel, FileWriteChannel, NullWriteChannel, WriteChannel
from .errors import AccessDenied, InternalError, StorageError
from .keys import KeyEncoder
from .metadata import MetadataStore, http_date
from .protocol import Request, emit_error, emit_response

logger = logging.getLogger(__name__)


class LocalS3Client:
    """Serves one bucket from `<prefix>/<bucket>` on the local filesystem."""

    def __init__(
        self,
        bucket: str,
        prefix: Optional[str] = None,
        server_name: Optional[str] = None,
        chunk_size: Optional[int] = None,
    ):
        if not bucket:
            raise ValueError('"bucket" required')
        if bucket in (".", "..") or "/" in bucket or "\\" in bucket:
            raise ValueError(f"Invalid bucket name: {bucket!r}")

        config = get_storage_config()
        self.bucket = bucket
        self.prefix = Path(prefix or config.prefix)
        self.server_name = server_name or config.server_name
        self.chunk_size = chunk_size or config.chunk_size

        # create storage root and bucket dir if they don't exist
        self.prefix.mkdir(parents=True, exist_ok=True)
        self.bucket_path = self.prefix / bucket
        self.bucket_path.mkdir(exist_ok=True)

        self.keys = KeyEncoder(self.bucket_path)
        self.metadata = MetadataStore()

        logger.info(f"LocalS3Client serving bucket '{bucket}' from {self.bucket_path}")

    # ================================================================
    # PUBLIC OPERATIONS
    # ================================================================

    def put(self, key: str, headers: Optional[Dict[str, Any]] = None) -> Request:
        """Store an object. Write the body once `continue` fires, then end()."""
        channel = FileWriteChannel()
        request = self._start("PUT", key, channel)
        request.task = self._schedule(request, self._put, channel, dict(headers or {}))
        return request

    def get(self, key: str) -> Request:
        """Fetch an object; the 200 response streams its body."""
        request = self._start("GET", key, NullWriteChannel())
        request.task = self._schedule(request, self._get)
        return request

    def head(self, key: str) -> Request:
        """Fetch object headers only."""
        request = self._start("HEAD", key, NullWriteChannel())
        request.task = self._schedule(request, self._head)
        return request

    def delete(self, key: str) -> Request:
        """Remove an object. Missing objects also answer 204."""
        request = self._start("DELETE", key, NullWriteChannel())
        request.task = self._schedule(request, self._delete)
        return request

    # ================================================================
    # HANDLERS
    # ================================================================

    async def _put(self, request: Request, channel: FileWriteChannel, headers: Dict[str, Any]):
        key = request.key
        try:
            path = await self.keys.resolve(key, for_write=True)
            # old metadata must not outlive the data it describes
            await self.metadata.remove(path)
            await channel.open(path)
            await channel.pump()
        except OSError as e:
            emit_error(request, AccessDenied(str(e), key=key))
            return

        meta = {str(k).lower(): v for k, v in headers.items()}
        meta["content-length"] = str(channel.length)
        meta["date"] = http_date()
        meta["etag"] = channel.etag

        try:
            await self.metadata.write(path, meta, key=key)
        except StorageError as e:
            emit_error(request, e)
            return

        emit_response(request, 200, {
            "etag": meta["etag"],
            "date": meta["date"],
            "content-length": "0",
        })

    async def _get(self, request: Request):
        key = request.key
        path = await self.keys.resolve(key)
        try:
            headers = await self.metadata.read(path, key=key)
        except StorageError as e:
            emit_error(request, e)
            return

        try:
            file = await aiofiles.open(path, "rb")
        except OSError as e:
            emit_error(request, InternalError(str(e), key=key))
            return

        body = FileReadChannel(file, self.chunk_size)
        if emit_response(request, 200, headers, body=body) is None:
            await file.close()

    async def _head(self, request: Request):
        key = request.key
        path = await self.keys.resolve(key)
        try:
            headers = await self.metadata.read(path, key=key)
        except StorageError as e:
            emit_error(request, e)
            return

        emit_response(request, 200, headers)

    async def _delete(self, request: Request):
        key = request.key
        path = await self.keys.resolve(key)
        try:
            await self._unlink(path)
            await self.metadata.remove(path)
        except OSError as e:
            emit_error(request, InternalError(str(e), key=key))
            return

        emit_response(request, 204, {"content-length": "0", "connection": "close"})

    # ================================================================
    # HELPERS
    # ================================================================

    def _start(self, method: str, key: str, channel: WriteChannel) -> Request:
        if not isinstance(key, str) or not key:
            raise ValueError("object key must be a non-empty string")
        logger.debug(f"{method} {self.bucket}/{key}")
        return Request(method, key, channel, server_name=self.server_name)

    def _schedule(self, request: Request, handler, *args) -> asyncio.Task:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            raise RuntimeError(f"{request.method} {request.key}: no running event loop") from None
        return loop.create_task(self._run(request, handler, *args))

    async def _run(self, request: Request, handler, *args):
        """Last-resort guard: an unexpected failure still settles the request."""
        try:
            await handler(request, *args)
        except Exception as e:
            logger.exception(f"{request.method} {request.key} failed: {e}")
            if request.state is RequestState.PENDING:
                emit_error(request, InternalError(str(e), key=request.key))

    async def _unlink(self, path: Path) -> bool:
        try:
            await aiofiles.os.remove(path)
        except (FileNotFoundError, NotADirectoryError, IsADirectoryError):
            return False
        return True


def create_client(config: Optional[StorageConfig] = None) -> LocalS3Client:
    """Build a client from a StorageConfig (defaults to the environment)."""
    config = config or get_storage_config()
    return LocalS3Client(
        bucket=config.bucket,
        prefix=config.prefix,
        server_name=config.server_name,
        chunk_size=config.chunk_size,
    )
