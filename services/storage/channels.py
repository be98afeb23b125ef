"""
Data channel adapters.

Write channels stand in for the outbound request body (PUT), read channels
for the inbound response body (GET and error documents). Each comes as a
pass-through over an aiofiles handle plus a null/buffer variant for the
branches that never touch a file.
"""

import asyncio
import hashlib
import logging
from pathlib import Path
from typing import Optional, Union

import aiofiles

from .events import EventSource

logger = logging.getLogger(__name__)

Chunk = Union[bytes, bytearray, memoryview, str]

_END = object()


def _to_bytes(chunk: Chunk) -> bytes:
    if isinstance(chunk, str):
        return chunk.encode("utf-8")
    return bytes(chunk)


# ----------------------------------------------------------------------
# READ CHANNELS (response bodies)
# ----------------------------------------------------------------------

class ReadChannel(EventSource):
    """
    Readable body: emits `data`, then `end` (or `error`), then `close`.

    Data starts flowing once a `data` listener is attached or resume() is
    called, unless the channel was explicitly paused first.
    """

    def __init__(self):
        super().__init__()
        self.readable = True
        self.ended = False
        self.paused = False
        self.flowing = False

    def on(self, event, listener):
        super().on(event, listener)
        if event == "data" and not self.paused:
            self.resume()
        return self

    def pause(self):
        self.paused = True
        self.flowing = False
        self._on_pause()

    def resume(self):
        self.paused = False
        if self.readable and not self.flowing:
            self.flowing = True
            self._on_resume()

    def destroy(self):
        """Tear the body down early; no `end` follows and no error is raised."""
        if not self.readable:
            return
        self.readable = False
        self.flowing = False
        self._on_destroy()

    def finish(self):
        """Emit end-of-stream and close right away."""
        if not self.readable:
            return
        self.readable = False
        self.ended = True
        self.emit("end")
        self.emit("close")

    async def read(self) -> bytes:
        """Collect the rest of the body. Data already emitted is not replayed."""
        if not self.readable:
            return b""

        done = asyncio.get_running_loop().create_future()
        chunks = []
        collect = chunks.append

        def on_end():
            if not done.done():
                done.set_result(b"".join(chunks))

        def on_error(exc):
            if not done.done():
                done.set_exception(exc)

        self.once("end", on_end)
        self.once("error", on_error)
        self.once("close", on_end)
        self.on("data", collect)
        try:
            return await done
        finally:
            self.off("data", collect)
            self.off("end", on_end)
            self.off("error", on_error)
            self.off("close", on_end)

    def _on_resume(self):
        pass

    def _on_pause(self):
        pass

    def _on_destroy(self):
        self.emit("close")


class EmptyReadChannel(ReadChannel):
    """Body of a response that carries none; ended by the emitter."""


class BufferReadChannel(ReadChannel):
    """Fixed in-memory payload, delivered as one chunk once flowing."""

    def __init__(self, payload: bytes):
        super().__init__()
        self.payload = payload
        self._scheduled = False

    def _on_resume(self):
        if not self._scheduled:
            self._scheduled = True
            asyncio.get_running_loop().call_soon(self._flush)

    def _flush(self):
        self._scheduled = False
        if not self.readable or not self.flowing:
            return
        self.emit("data", self.payload)
        self.finish()


class FileReadChannel(ReadChannel):
    """Pass-through over an open aiofiles read handle."""

    def __init__(self, file, chunk_size: int = 64 * 1024):
        super().__init__()
        self._file = file
        self.chunk_size = chunk_size
        self._resumed = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    def _on_resume(self):
        self._resumed.set()
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._pump())

    def _on_pause(self):
        self._resumed.clear()

    def _on_destroy(self):
        if self._task is not None:
            self._task.cancel()
        else:
            asyncio.get_running_loop().create_task(self._file.close())
            self.emit("close")

    async def _pump(self):
        try:
            while True:
                await self._resumed.wait()
                chunk = await self._file.read(self.chunk_size)
                # a chunk read before pause() is held until resume()
                await self._resumed.wait()
                if not chunk:
                    break
                if not self.readable:
                    return
                self.emit("data", chunk)
        except OSError as e:
            logger.error(f"Read failed mid-stream: {e}")
            self.readable = False
            self.emit("error", e)
        else:
            if self.readable:
                self.readable = False
                self.ended = True
                self.emit("end")
        finally:
            await self._file.close()
            self.emit("close")


# ----------------------------------------------------------------------
# WRITE CHANNELS (request bodies)
# ----------------------------------------------------------------------

class WriteChannel(EventSource):
    """Writable sink behind a request handle."""

    def __init__(self):
        super().__init__()
        self.writable = True

    def write(self, chunk: Chunk) -> bool:
        return self.writable

    def end(self, chunk: Optional[Chunk] = None) -> bool:
        if not self.writable:
            return False
        if chunk:
            self.write(chunk)
        self.writable = False
        return True

    def destroy(self):
        if self.writable:
            self.writable = False
        self.emit("close")


class NullWriteChannel(WriteChannel):
    """Accepts and discards; GET, HEAD and DELETE have no body to send."""


class FileWriteChannel(WriteChannel):
    """
    Pass-through to a file opened for writing.

    write() counts and hashes every chunk before queueing it for the file;
    `open` is emitted once the file is ready and `finish` once every queued
    chunk is on disk and the file is closed.
    """

    def __init__(self):
        super().__init__()
        self.length = 0
        self._md5 = hashlib.md5()
        self._queue: asyncio.Queue = asyncio.Queue()
        self._file = None

    @property
    def etag(self) -> str:
        return f'"{self._md5.hexdigest()}"'

    def write(self, chunk: Chunk) -> bool:
        if not self.writable:
            return False
        data = _to_bytes(chunk)
        if data:
            self.length += len(data)
            self._md5.update(data)
            self._queue.put_nowait(data)
        return True

    def end(self, chunk: Optional[Chunk] = None) -> bool:
        if not super().end(chunk):
            return False
        self._queue.put_nowait(_END)
        return True

    async def open(self, path: Path):
        self._file = await aiofiles.open(path, "wb")
        try:
            self.emit("open")
        except BaseException:
            await self._close()
            raise

    async def pump(self):
        """Write queued chunks until end(); raises OSError on disk failure."""
        try:
            while True:
                chunk = await self._queue.get()
                if chunk is _END:
                    break
                await self._file.write(chunk)
        except OSError:
            self.writable = False
            raise
        finally:
            await self._close()
        self.emit("finish")

    async def _close(self):
        file, self._file = self._file, None
        if file is not None:
            await file.close()
