"""Request dispatch and progress reporting."""

from .progress import ProgressCallback, ProgressRegistry, UploadProgress
from .provider import NetworkProvider, Validator, WillRedirect, WillSend

__all__ = [
    "NetworkProvider",
    "ProgressCallback",
    "ProgressRegistry",
    "UploadProgress",
    "Validator",
    "WillRedirect",
    "WillSend",
]
