"""Data models for the local S3 stand-in."""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


# ----------------------------------------------------------------------
# ENUMERATIONS
# ----------------------------------------------------------------------

class RequestState(str, Enum):
    """Lifecycle of a single request handle."""
    PENDING = "pending"
    RESPONDED = "responded"
    ABORTED = "aborted"


class ErrorCode(str, Enum):
    """Symbolic error codes of the emulated service."""
    NO_SUCH_KEY = "NoSuchKey"
    ACCESS_DENIED = "AccessDenied"
    INTERNAL_ERROR = "InternalError"


# ----------------------------------------------------------------------
# ERROR MODELS
# ----------------------------------------------------------------------

class ErrorInfo(BaseModel):
    """Structured error carried by a failed response."""
    status_code: int = Field(..., ge=400, le=599)
    code: ErrorCode
    message: str
    key: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "status_code": 404,
                "code": "NoSuchKey",
                "message": "The specified key does not exist.",
                "key": "a/b.txt",
            }
        }
