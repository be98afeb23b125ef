"""
Request handles, responses and the single-response emission protocol.

Every request settles exactly once: with a response (success or error
document) or by being aborted by the caller. emit_response() is the only
place a request moves out of PENDING towards RESPONDED.
"""

import asyncio
import logging
import uuid
from typing import Any, Dict, Optional

from config.models.core_models import ErrorInfo, RequestState
from config.settings import get_storage_config

from .channels import BufferReadChannel, EmptyReadChannel, ReadChannel, WriteChannel
from .errors import StorageError, render_error_xml
from .events import EventSource
from .metadata import http_date

logger = logging.getLogger(__name__)


class Response:
    """Synthetic HTTP response; the body channel is exposed through delegation."""

    http_version = "1.1"

    def __init__(self, status_code: int, headers: Dict[str, Any], body: ReadChannel):
        self.status_code = status_code
        self.headers = headers
        self.body = body

    def __repr__(self):
        return f"<Response [{self.status_code}]>"

    @property
    def readable(self) -> bool:
        return self.body.readable

    def on(self, event, listener):
        self.body.on(event, listener)
        return self

    def once(self, event, listener):
        self.body.once(event, listener)
        return self

    def off(self, event, listener):
        self.body.off(event, listener)
        return self

    def pause(self):
        self.body.pause()

    def resume(self):
        self.body.resume()

    def destroy(self):
        self.body.destroy()

    async def read(self) -> bytes:
        return await self.body.read()


class Request(EventSource):
    """
    Handle for one in-flight operation.

    Events: `continue` (PUT only, file ready for body bytes), `response`,
    `error`, `abort`, and `close` forwarded from the write channel.
    """

    def __init__(self, method: str, key: str, channel: WriteChannel, server_name: Optional[str] = None):
        super().__init__()
        self.method = method
        self.key = key
        self.server_name = server_name or get_storage_config().server_name
        self.request_id = uuid.uuid4().hex.upper()
        self.state = RequestState.PENDING
        self.response: Optional[Response] = None
        self.task: Optional[asyncio.Task] = None
        self._channel = channel

        channel.on("open", lambda: self.emit("continue"))
        channel.on("close", lambda: self.emit("close"))

    def __repr__(self):
        return f"<Request {self.method} {self.key!r} {self.state.value}>"

    @property
    def writable(self) -> bool:
        return self.state is RequestState.PENDING and self._channel.writable

    def write(self, chunk) -> bool:
        if not self.writable:
            logger.warning(f"{self.method} {self.key}: write rejected, request is {self.state.value}")
            return False
        return self._channel.write(chunk)

    def end(self, chunk=None) -> bool:
        if not self.writable:
            logger.warning(f"{self.method} {self.key}: end rejected, request is {self.state.value}")
            return False
        return self._channel.end(chunk)

    def abort(self):
        """Cancel a pending request. No response follows; no-op once settled."""
        if self.state is not RequestState.PENDING:
            return
        self.state = RequestState.ABORTED
        logger.debug(f"{self.method} {self.key}: aborted")
        if self.task is not None:
            self.task.cancel()
        self._channel.destroy()
        self.emit("abort")

    async def wait_response(self) -> Response:
        """Wait for the terminal response; a request-level `error` is raised."""
        if self.response is not None:
            return self.response
        if self.state is RequestState.ABORTED:
            raise asyncio.CancelledError(f"{self.method} {self.key} was aborted")

        done = asyncio.get_running_loop().create_future()

        def on_response(response):
            if not done.done():
                done.set_result(response)

        def on_error(exc):
            if not done.done():
                done.set_exception(exc)

        def on_abort():
            if not done.done():
                done.cancel()

        self.once("response", on_response)
        self.once("error", on_error)
        self.once("abort", on_abort)
        try:
            return await done
        finally:
            self.off("response", on_response)
            self.off("error", on_error)
            self.off("abort", on_abort)

    def _settle(self, response: Response):
        self.state = RequestState.RESPONDED
        self.response = response
        self._channel.writable = False


def emit_response(
    request: Request,
    status_code: int,
    headers: Optional[Dict[str, Any]] = None,
    body: Optional[ReadChannel] = None,
    error: Optional[ErrorInfo] = None,
) -> Optional[Response]:
    """
    Build the terminal response for `request` and emit it.

    Every response is stamped with `date`, `server` and the request id. An
    `error` replaces any body with the XML error document. Without a body
    `end` and `close` follow the `response` event synchronously.
    Returns None, emitting nothing, when the request is no longer pending.
    """
    if request.state is not RequestState.PENDING:
        logger.error(
            f"{request.method} {request.key}: response {status_code} dropped, request already {request.state.value}"
        )
        return None

    out = {str(k).lower(): v for k, v in (headers or {}).items()}

    if error is not None:
        if not 400 <= status_code <= 599:
            raise ValueError(f"error responses need a 4xx/5xx status, got {status_code}")
        payload = render_error_xml(error, request.request_id)
        out["content-type"] = "application/xml"
        out["content-length"] = str(len(payload))
        body = BufferReadChannel(payload)

    out["date"] = http_date()
    out["server"] = request.server_name
    out["x-amz-request-id"] = request.request_id

    response = Response(status_code, out, body or EmptyReadChannel())
    request._settle(response)
    logger.debug(f"{request.method} {request.key}: {status_code}")

    request.emit("response", response)
    if body is None:
        response.body.finish()
    return response


def emit_error(request: Request, exc: StorageError) -> Optional[Response]:
    """Emit the error response matching a translated storage failure."""
    return emit_response(request, exc.status_code, error=exc.to_info())
