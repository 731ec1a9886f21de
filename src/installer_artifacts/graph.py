"""
Copy a remote content graph into a local store.

Resolves a tag, then walks the graph depth first, storing every node after
its successors so a node present locally always has its full subgraph.
"""
from __future__ import annotations

import logging
from typing import Optional, Set

from .deadline import Deadline
from .errors import TransientFetchError
from .media_types import is_manifest
from .models import Descriptor, successors
from .registry import Repository
from .store import LocalContentStore

__all__ = ["copy_graph"]

logger = logging.getLogger(__name__)


def copy_graph(src: Repository, ref: str, dst: LocalContentStore, *, deadline: Deadline) -> Descriptor:
    """
    Copy the graph tagged `ref` in src into dst and tag it there.

    Args:
        src: Remote repository
        ref: Tag to copy
        dst: Local content store
        deadline: Bound for the whole copy

    Returns:
        Root descriptor of the copied graph

    Raises:
        ArtifactError: For registry, auth, digest or timeout failures
        OSError: For local I/O errors
    """
    root, manifest = src.resolve(ref, deadline=deadline)
    logger.debug(f"Resolved {src.name}:{ref} to {root.digest} ({root.media_type})")

    _copy_node(src, root, dst, deadline, visited=set(), content=manifest)
    dst.tag(root, ref)
    return root


def _copy_node(src: Repository, desc: Descriptor, dst: LocalContentStore, deadline: Deadline,
               *, visited: Set[str], content: Optional[bytes] = None) -> None:
    if desc.digest in visited or dst.exists(desc):
        return
    visited.add(desc.digest)
    deadline.check(f"copying {src.name}@{desc.digest}")

    if is_manifest(desc.media_type):
        if content is None:
            content = src.fetch_manifest(desc, deadline=deadline)
        try:
            children = successors(desc, content)
        except ValueError as e:
            raise TransientFetchError(f"{src.name}: {e}") from e
        for child in children:
            _copy_node(src, child, dst, deadline, visited=visited)

    if content is not None:
        dst.push_bytes(desc, content)
        return

    with src.open_blob(desc, deadline=deadline) as chunks:
        dst.push(desc, chunks, deadline=deadline)
