from typing import Dict, List, Optional
import re

import structlog

from actionflow.domain.models.action_state import NodeInfo

logger = structlog.get_logger(__name__)


def normalize_name(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "", value.lower())


def collection_variants(collection: str) -> List[str]:
    """Singular and plural spellings of a collection name"""

    base = normalize_name(collection)
    variants = [base]
    if base.endswith("ies"):
        variants.append(base[:-3] + "y")
    elif base.endswith("es"):
        variants.extend([base[:-2], base[:-1]])
    elif base.endswith("s"):
        variants.append(base[:-1])
    if base.endswith("y"):
        variants.append(base[:-1] + "ies")
    variants.append(base + "s")
    return list(dict.fromkeys(v for v in variants if v))


class NodeRegistry:
    """Known federated nodes and the collections each one owns"""

    def __init__(self, local_slug: str, nodes: Optional[List[NodeInfo]] = None, ownership: Optional[Dict[str, str]] = None):
        self.local_slug = local_slug
        self.nodes: Dict[str, NodeInfo] = {}
        self.ownership: Dict[str, str] = {}
        for node in nodes or []:
            self.register(node)
        for collection, slug in (ownership or {}).items():
            self.ownership[normalize_name(collection)] = slug

    def register(self, node: NodeInfo):
        """Register a node and index the collections it owns"""

        self.nodes[node.slug] = node
        for collection in node.collections:
            self.ownership[normalize_name(collection)] = node.slug

    def get_node(self, slug: str) -> Optional[NodeInfo]:
        node = self.nodes.get(slug)
        if node is None or not node.is_active:
            return None
        return node

    def find_node(self, identifier: str) -> Optional[NodeInfo]:
        """Resolve a node by slug, then by normalized name"""

        node = self.get_node(identifier)
        if node:
            return node

        wanted = normalize_name(identifier)
        for candidate in self.active_nodes():
            if normalize_name(candidate.name) == wanted or normalize_name(candidate.slug) == wanted:
                return candidate
        return None

    def active_nodes(self, include_local: bool = False) -> List[NodeInfo]:
        return [
            node for node in self.nodes.values()
            if node.is_active and (include_local or node.slug != self.local_slug)
        ]

    def find_node_for_collection(self, collection: str) -> Optional[str]:
        """Owner slug of a collection, tolerant of case and plurals"""

        for variant in collection_variants(collection):
            if variant in self.ownership:
                return self.ownership[variant]
        return None

    def is_local(self, slug: Optional[str]) -> bool:
        return slug is None or slug == self.local_slug
