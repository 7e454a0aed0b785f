from typing import Dict, Any, Optional, Tuple

import structlog

from actionflow.domain.models.action_state import ExecutionRequest, RemoteRoute
from actionflow.domain.node.node_registry import NodeRegistry
from actionflow.domain.context.memory.cache_memory_store import KeyValueStore

logger = structlog.get_logger(__name__)

ROUTING_PARAMS = ("node", "node_slug", "source_node")


def split_entity_class(entity_class: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Split "nodeSlug:EntityClass" into its parts"""

    if not entity_class:
        return None, entity_class
    if ":" in entity_class:
        slug, name = entity_class.split(":", 1)
        return slug.strip() or None, name.strip()
    return None, entity_class


class NodeRouter:
    """Decides where an action runs and pins sessions to nodes"""

    def __init__(self, registry: NodeRegistry, store: KeyValueStore, session_pin_ttl: int = 3600):
        self.registry = registry
        self.store = store
        self.session_pin_ttl = session_pin_ttl

    def should_route_remote(self, request: ExecutionRequest) -> Optional[RemoteRoute]:
        """Pick the remote node for a request, or None to run locally

        Signals in priority order: explicit node designation, the entity's
        source_node annotation, a "slug:Class" entity identifier, then
        collection ownership. A request that already arrived from a peer is
        never forwarded again.
        """

        if request.forwarded:
            logger.debug("Forwarded request stays local", executor=request.executor)
            return None

        params = request.params or {}
        prefix_slug, entity_class = split_entity_class(request.entity_class)

        signals = [
            ("explicit", request.node or params.get("node") or params.get("node_slug")),
            ("source_node", params.get("source_node")),
            ("composite_class", prefix_slug),
            ("ownership", self.registry.find_node_for_collection(entity_class) if entity_class else None),
        ]

        for reason, candidate in signals:
            if not candidate:
                continue
            if self.registry.is_local(candidate):
                return None

            node = self.registry.find_node(candidate)
            if node is None:
                logger.warning("Routing signal names unknown node", reason=reason, node=candidate)
                continue

            return RemoteRoute(
                node_slug=node.slug,
                entity_class=entity_class,
                params=strip_routing_params(params),
                reason=reason
            )

        return None

    async def pin_session(self, session_id: str, node_slug: str):
        await self.store.set(self._pin_key(session_id), node_slug, ttl=self.session_pin_ttl)
        logger.info("Session pinned", session_id=session_id, node=node_slug)

    async def get_pinned_node(self, session_id: str) -> Optional[str]:
        return await self.store.get(self._pin_key(session_id))

    async def unpin_session(self, session_id: str) -> bool:
        removed = await self.store.delete(self._pin_key(session_id))
        if removed:
            logger.info("Session unpinned", session_id=session_id)
        return removed

    def _pin_key(self, session_id: str) -> str:
        return f"session_node:{session_id}"


def strip_routing_params(params: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in params.items() if key not in ROUTING_PARAMS}
