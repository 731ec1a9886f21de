"""
Local content-addressable storage for a single fetch.

A TemporaryFileStore is a uniquely named directory under the configured base
path. It owns a LocalContentStore laid out as blobs/<algorithm>/<hex>, and is
removed exactly once through release().
"""
from __future__ import annotations

import hashlib
import logging
import os
import shutil
import tempfile
import threading
import uuid
from pathlib import Path
from typing import BinaryIO, Dict, Iterable, List, Optional

from .deadline import Deadline
from .errors import ArtifactNotFoundError, CleanupError, DigestMismatchError
from .models import Descriptor, parse_digest, successors

__all__ = ["STORE_PREFIX", "LocalContentStore", "TemporaryFileStore"]

logger = logging.getLogger(__name__)

STORE_PREFIX = "artifact-file-store-"


class LocalContentStore:
    """
    Verified blob storage on local disk.

    Every write is hashed and size checked against its descriptor before
    it becomes visible; partial writes never appear under blobs/.
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self._ingest = self.root / "ingest"
        self._tags: Dict[str, Descriptor] = {}

    def _blob_path(self, desc: Descriptor) -> Path:
        algorithm, hex_part = parse_digest(desc.digest)
        return self.root / "blobs" / algorithm / hex_part

    def exists(self, desc: Descriptor) -> bool:
        return self._blob_path(desc).is_file()

    def push(self, desc: Descriptor, chunks: Iterable[bytes], *, deadline: Optional[Deadline] = None) -> None:
        """
        Write content for desc from an iterable of chunks.

        Raises:
            DigestMismatchError: If content does not match desc
            FetchTimeoutError: If deadline expires while writing
            OSError: For local I/O errors
        """
        target = self._blob_path(desc)
        algorithm, expected_hex = parse_digest(desc.digest)
        hash_obj = hashlib.new(algorithm)
        written = 0

        self._ingest.mkdir(parents=True, exist_ok=True)
        temp_path = self._ingest / uuid.uuid4().hex
        try:
            with open(temp_path, "wb") as out:
                for chunk in chunks:
                    if deadline is not None:
                        deadline.check(f"writing {desc.digest}")
                    written += len(chunk)
                    if written > desc.size:
                        raise DigestMismatchError(
                            f"{desc.digest}: more than the declared {desc.size} bytes",
                            expected=desc.digest,
                        )
                    hash_obj.update(chunk)
                    out.write(chunk)

            if written != desc.size:
                raise DigestMismatchError(
                    f"{desc.digest}: size mismatch, expected {desc.size} got {written}",
                    expected=desc.digest,
                )
            actual = f"{algorithm}:{hash_obj.hexdigest()}"
            if hash_obj.hexdigest() != expected_hex:
                raise DigestMismatchError(f"{desc.digest}: digest mismatch", expected=desc.digest, actual=actual)

            target.parent.mkdir(parents=True, exist_ok=True)
            os.replace(temp_path, target)
        except BaseException:
            try:
                temp_path.unlink()
            except FileNotFoundError:
                pass
            raise

    def push_bytes(self, desc: Descriptor, data: bytes) -> None:
        self.push(desc, [data])

    def fetch(self, desc: Descriptor) -> BinaryIO:
        """
        Open stored content for reading.

        Raises:
            ArtifactNotFoundError: If desc is not in the store
        """
        try:
            return open(self._blob_path(desc), "rb")
        except FileNotFoundError as e:
            raise ArtifactNotFoundError(f"{desc.digest} not in local store") from e

    def fetch_bytes(self, desc: Descriptor) -> bytes:
        with self.fetch(desc) as f:
            return f.read()

    def successors(self, desc: Descriptor) -> List[Descriptor]:
        """Successor descriptors of a stored node, in manifest order."""
        return successors(desc, self.fetch_bytes(desc))

    def tag(self, desc: Descriptor, ref: str) -> None:
        if not self.exists(desc):
            raise ArtifactNotFoundError(f"cannot tag {ref}: {desc.digest} not in local store")
        self._tags[ref] = desc

    def resolve(self, ref: str) -> Descriptor:
        try:
            return self._tags[ref]
        except KeyError:
            raise ArtifactNotFoundError(f"tag {ref} not in local store") from None


class TemporaryFileStore:
    """
    Ephemeral directory owning one LocalContentStore.

    release() removes the directory tree; only the first call does any work.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.content = LocalContentStore(self.path)
        self._lock = threading.Lock()
        self._released = False

    @classmethod
    def create(cls, base_path: str) -> "TemporaryFileStore":
        """
        Create a uniquely named store directory under base_path.

        Raises:
            OSError: If the directory cannot be created
        """
        path = tempfile.mkdtemp(prefix=STORE_PREFIX, dir=base_path)
        logger.debug(f"Created temporary file store {path}")
        return cls(Path(path))

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> bool:
        """
        Remove the store's directory tree.

        Failures are logged, never raised.

        Returns:
            True if this call removed the store, False if it was already released
            or removal failed
        """
        with self._lock:
            if self._released:
                return False
            self._released = True

        logger.debug(f"Cleaning up temporary file store {self.path}")
        try:
            self._remove_tree()
        except CleanupError as e:
            logger.error(f"Failed to remove temporary file store {self.path}: {e}")
            return False
        return True

    def _remove_tree(self) -> None:
        try:
            shutil.rmtree(self.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise CleanupError(e.errno, f"removing {self.path}: {e.strerror or e}") from e
