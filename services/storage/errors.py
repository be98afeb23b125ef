"""
Error vocabulary of the emulated service.

Filesystem failures are translated into one of these where they happen, so
only NoSuchKey / AccessDenied / InternalError ever reach a response.
"""

import xml.etree.ElementTree as ET
from typing import Optional, Tuple

from config.models.core_models import ErrorCode, ErrorInfo


class StorageError(Exception):
    """Base class for failures surfaced to the caller as an error response."""

    status_code = 500
    code = ErrorCode.INTERNAL_ERROR
    default_message = "We encountered an internal error. Please try again."

    def __init__(self, message: Optional[str] = None, key: Optional[str] = None):
        self.message = message or self.default_message
        self.key = key
        super().__init__(self.message)

    def to_info(self) -> ErrorInfo:
        return ErrorInfo(
            status_code=self.status_code,
            code=self.code,
            message=self.message,
            key=self.key,
        )


class NoSuchKey(StorageError):
    status_code = 404
    code = ErrorCode.NO_SUCH_KEY
    default_message = "The specified key does not exist."


class AccessDenied(StorageError):
    status_code = 403
    code = ErrorCode.ACCESS_DENIED
    default_message = "Access Denied"


class InternalError(StorageError):
    pass


def render_error_xml(info: ErrorInfo, request_id: Optional[str] = None) -> bytes:
    """Serialize an error into the S3-style XML error document."""
    root = ET.Element("Error")
    ET.SubElement(root, "Code").text = info.code.value
    ET.SubElement(root, "Message").text = info.message
    if info.key is not None:
        ET.SubElement(root, "Key").text = info.key
    if request_id:
        ET.SubElement(root, "RequestId").text = request_id

    return b'<?xml version="1.0" encoding="UTF-8"?>\n' + ET.tostring(root, encoding="utf-8", xml_declaration=False)


def parse_error_xml(body: bytes, default_code: str = "") -> Tuple[str, str]:
    """Return (code, message) from an error document; unparsable bodies become the message."""
    try:
        root = ET.fromstring(body)
    except ET.ParseError:
        return default_code, body.decode("utf-8", "replace")
    return root.findtext("Code", default_code), root.findtext("Message", "")
