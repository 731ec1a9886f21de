"""
Payload selection.

Picks the single node of a copied content graph that holds the artifact bytes.
"""
from __future__ import annotations

from typing import List, Optional

from .media_types import OCI_IMAGE_LAYER
from .models import Descriptor
from .store import LocalContentStore

__all__ = ["select_payload", "select_from_successors"]


def select_from_successors(nodes: List[Descriptor]) -> Optional[Descriptor]:
    """
    Choose the payload among a root's successors.

    A lone successor is the payload whatever its media type. Otherwise the
    first node, in manifest order, with the plain OCI image layer media type
    wins. None if there is no such node.
    """
    if len(nodes) == 1:
        return nodes[0]
    for node in nodes:
        if node.media_type == OCI_IMAGE_LAYER:
            return node
    return None


def select_payload(root: Descriptor, store: LocalContentStore) -> Optional[Descriptor]:
    """Select the payload node of the graph rooted at `root` in a local store."""
    return select_from_successors(store.successors(root))
