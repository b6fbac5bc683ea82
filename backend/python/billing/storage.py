"""
Object storage for payment proof files.

The billing engine only needs put/get/delete by key. ``LocalObjectStorage``
keeps objects on the filesystem; other backends implement ObjectStorage.
"""

import logging
import os
import re
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Union

from .exceptions import StorageError


logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r'[^A-Za-z0-9._-]+')


def payment_proof_key(booking_id: int, filename: str, now: datetime = None,
                      prefix: str = 'booking-payments') -> str:
    """
    Storage key for a payment proof.

    Example:
        >>> payment_proof_key(7, 'receipt 01.png', datetime(2024, 3, 1, 9, 30))
        'booking-payments/7/20240301T093000/receipt_01.png'
    """
    now = now or datetime.utcnow()
    safe_name = _UNSAFE_CHARS.sub('_', os.path.basename(filename or 'proof')).strip('_') or 'proof'
    return f"{prefix}/{booking_id}/{now.strftime('%Y%m%dT%H%M%S')}/{safe_name}"


class ObjectStorage(ABC):
    """Abstract object store."""

    @abstractmethod
    def put_object(self, key: str, data: bytes) -> str:
        """Store ``data`` under ``key`` and return a reference to it."""
        pass

    @abstractmethod
    def get_object(self, ref: str) -> bytes:
        pass

    @abstractmethod
    def delete_object(self, ref: str) -> None:
        pass


class LocalObjectStorage(ObjectStorage):
    """Filesystem-backed object store rooted at a directory."""

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).resolve()

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root not in path.parents:
            raise StorageError(f"Storage key escapes the storage root: {key}")
        return path

    def put_object(self, key: str, data: bytes) -> str:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            logger.error(f"Failed to store object {key}: {e}")
            raise StorageError(f"Failed to store object {key}: {e}") from e
        logger.debug(f"Stored object {key} ({len(data)} bytes)")
        return key

    def get_object(self, ref: str) -> bytes:
        try:
            return self._path(ref).read_bytes()
        except OSError as e:
            raise StorageError(f"Failed to read object {ref}: {e}") from e

    def delete_object(self, ref: str) -> None:
        try:
            self._path(ref).unlink()
        except FileNotFoundError:
            logger.debug(f"Object {ref} already absent")
        except OSError as e:
            raise StorageError(f"Failed to delete object {ref}: {e}") from e
