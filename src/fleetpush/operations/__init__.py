from .authorized_key import KeyPushOperation
from .base import Operation
from .rsync import FileSyncOperation

__all__ = [
    "Operation",
    "KeyPushOperation",
    "FileSyncOperation",
]
