import asyncio
import io
import logging
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Optional

from botocore.exceptions import ClientError

from .client import LocalS3Client
from .errors import parse_error_xml
from .protocol import Response

logger = logging.getLogger(__name__)

META_PREFIX = "x-amz-meta-"


class LocalS3Backend:
    """Filesystem-based replacement for the boto3 S3 client.

    Calls go through the same request/response protocol as LocalS3Client and
    come back as boto3-shaped dicts; error responses raise ClientError. Each
    call runs its own event loop, so this must not be used from async code.
    """

    def __init__(self, base_dir: Optional[str] = None):
        self.base_dir = base_dir
        self._clients: Dict[str, LocalS3Client] = {}

    def _client(self, bucket: str) -> LocalS3Client:
        if bucket not in self._clients:
            self._clients[bucket] = LocalS3Client(bucket, prefix=self.base_dir)
        return self._clients[bucket]

    def put_object(self, Bucket: str, Key: str, Body: Any = b"", ContentType: Optional[str] = None,
                   Metadata: Optional[Dict[str, str]] = None, **kwargs):
        if hasattr(Body, "read"):
            Body = Body.read()
        if isinstance(Body, str):
            Body = Body.encode("utf-8")

        headers = {"content-type": ContentType or "binary/octet-stream"}
        for name, value in (Metadata or {}).items():
            headers[META_PREFIX + name.lower()] = value

        async def run():
            request = self._client(Bucket).put(Key, headers)
            request.once("continue", lambda: request.end(Body))
            response = await request.wait_response()
            return response, await response.read()

        response, body = asyncio.run(run())
        self._raise_for_error(response, "PutObject", body)
        return {
            "ETag": response.headers.get("etag"),
            "ResponseMetadata": self._response_metadata(response),
        }

    def get_object(self, Bucket: str, Key: str, **kwargs):
        async def run():
            response = await self._client(Bucket).get(Key).wait_response()
            return response, await response.read()

        response, body = asyncio.run(run())
        self._raise_for_error(response, "GetObject", body)
        result = self._object_headers(response)
        result["Body"] = io.BytesIO(body)
        return result

    def head_object(self, Bucket: str, Key: str, **kwargs):
        async def run():
            return await self._client(Bucket).head(Key).wait_response()

        response = asyncio.run(run())
        self._raise_for_error(response, "HeadObject", b"")
        return self._object_headers(response)

    def delete_object(self, Bucket: str, Key: str, **kwargs):
        async def run():
            response = await self._client(Bucket).delete(Key).wait_response()
            return response, await response.read()

        response, body = asyncio.run(run())
        self._raise_for_error(response, "DeleteObject", body)
        return {"ResponseMetadata": self._response_metadata(response)}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _raise_for_error(self, response: Response, operation: str, body: bytes):
        if response.status_code < 300:
            return

        code, message = str(response.status_code), ""
        if body:
            code, message = parse_error_xml(body, code)
        elif response.status_code == 404:
            # HEAD carries no error document
            code, message = "404", "Not Found"

        logger.debug(f"{operation} failed: {response.status_code} {code}")
        raise ClientError(
            {
                "Error": {"Code": code, "Message": message},
                "ResponseMetadata": self._response_metadata(response),
            },
            operation,
        )

    def _response_metadata(self, response: Response) -> Dict[str, Any]:
        return {
            "RequestId": response.headers.get("x-amz-request-id"),
            "HTTPStatusCode": response.status_code,
            "HTTPHeaders": dict(response.headers),
            "RetryAttempts": 0,
        }

    def _object_headers(self, response: Response) -> Dict[str, Any]:
        headers = response.headers
        result = {
            "ContentLength": int(headers.get("content-length", 0)),
            "ContentType": headers.get("content-type", "binary/octet-stream"),
            "ETag": headers.get("etag"),
            "Metadata": {
                k[len(META_PREFIX):]: v for k, v in headers.items() if k.startswith(META_PREFIX)
            },
            "ResponseMetadata": self._response_metadata(response),
        }
        if headers.get("last-modified"):
            result["LastModified"] = parsedate_to_datetime(headers["last-modified"])
        return result
