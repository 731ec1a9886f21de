"""
Streaming handle returned to callers.

The handle owns the temporary file store the payload was copied into;
closing it closes the payload stream and then removes the store.
"""
from __future__ import annotations

import io
from typing import BinaryIO

from .models import Descriptor
from .store import TemporaryFileStore

__all__ = ["StreamingHandle"]


class StreamingHandle(io.RawIOBase):
    """
    Read-only byte stream over a fetched payload.

    Reads go straight to the underlying file. close() propagates errors from
    closing the stream, but store removal failures are only logged. Closing
    twice is a no-op. Reading after close is not supported.
    """

    def __init__(self, stream: BinaryIO, store: TemporaryFileStore, descriptor: Descriptor):
        super().__init__()
        self._stream = stream
        self._store = store
        self.descriptor = descriptor

    @property
    def store_path(self) -> str:
        return str(self._store.path)

    def readable(self) -> bool:
        return True

    def read(self, size: int = -1) -> bytes:
        return self._stream.read(size)

    def readinto(self, b) -> int:
        return self._stream.readinto(b)

    def close(self) -> None:
        if self.closed:
            return
        try:
            self._stream.close()
        finally:
            self._store.release()
            super().close()
