from .core_models import (
    RequestState,
    ErrorCode,
    ErrorInfo,
)

__all__ = [
    "RequestState",
    "ErrorCode",
    "ErrorInfo",
]
