from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional, Set
import asyncio
import re

import structlog

from actionflow.domain.models.action_state import (
    ActionDefinition, FieldSchema, FieldType, RelationshipConfig
)
from actionflow.domain.entity.capability import EntityRegistry
from actionflow.domain.entity.repository import EntityRepository
from actionflow.domain.extraction.field_satisfaction import has_value, relationship_base
from actionflow.domain.node.node_registry import NodeRegistry
from actionflow.domain.node.node_router import split_entity_class

logger = structlog.get_logger(__name__)

DEFERRED_KEY = "_deferred_relationships"

_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_NAME_LIKE = ("name", "title", "label")


def is_numeric_id(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, str) and value.strip().isdigit()


def looks_like_email(value: str) -> bool:
    return bool(_EMAIL.match(value.strip()))


class SemanticSearch(ABC):
    """Similarity search over an entity collection"""

    @abstractmethod
    async def find_similar(self, entity: str, text: str, user_id: Optional[str] = None, limit: int = 3) -> List[Dict[str, Any]]:
        """Records carrying a "relevance" score in [0, 1], best first"""
        pass


class RelationshipResolver:
    """Turns relationship values given as names into record identifiers"""

    def __init__(
        self,
        repository: EntityRepository,
        entity_registry: EntityRegistry,
        node_registry: Optional[NodeRegistry] = None,
        semantic_search: Optional[SemanticSearch] = None,
        search_timeout: float = 5.0,
        semantic_threshold: float = 0.7
    ):
        self.repository = repository
        self.entity_registry = entity_registry
        self.node_registry = node_registry
        self.semantic_search = semantic_search
        self.search_timeout = search_timeout
        self.semantic_threshold = semantic_threshold

    async def resolve(self, definition: ActionDefinition, params: Dict[str, Any], user_id: Optional[str] = None) -> Dict[str, Any]:
        """Resolve every relationship field, including those inside array items"""

        result = dict(params)
        protected = {field.name for field in definition.fields}
        deferred: Dict[str, Any] = dict(result.get(DEFERRED_KEY) or {})

        for field in definition.fields:
            if field.is_relationship:
                await self._resolve_field(field, result, user_id, deferred, field.name, protected)
            elif field.is_array and isinstance(result.get(field.name), list):
                related = [sub for sub in field.item_schema if sub.is_relationship]
                if not related:
                    continue
                items = [dict(item) if isinstance(item, dict) else item for item in result[field.name]]
                for index, item in enumerate(items):
                    if not isinstance(item, dict):
                        continue
                    for sub in related:
                        await self._resolve_field(sub, item, user_id, deferred, f"{field.name}.{index}.{sub.name}", set())
                result[field.name] = items

        if deferred:
            result[DEFERRED_KEY] = deferred
        return result

    async def _resolve_field(
        self,
        field: FieldSchema,
        container: Dict[str, Any],
        user_id: Optional[str],
        deferred: Dict[str, Any],
        path: str,
        protected: Set[str]
    ):
        config = field.relationship or RelationshipConfig(entity=relationship_base(field).capitalize())
        base = relationship_base(field)
        search_field = config.search_field
        prefixed = {
            key[len(base) + 1:]: value for key, value in container.items()
            if key.startswith(f"{base}_") and key not in protected and key != field.name and has_value(value)
        }

        value = container.get(field.name)
        if not has_value(value) and base != field.name:
            value = container.get(base)
        if not has_value(value):
            value = prefixed.get(search_field) or prefixed.get("name") or prefixed.get("email")

        extras = dict(prefixed)
        if isinstance(value, dict):
            if has_value(value.get("id")):
                container[field.name] = value["id"]
                return
            extras.update({k: v for k, v in value.items() if has_value(v)})
            value = value.get(search_field) or value.get("name") or value.get("email")

        if not has_value(value) or is_numeric_id(value) or not isinstance(value, str):
            return

        text = value.strip()
        node_slug, entity = split_entity_class(config.entity)
        node_slug = config.node_slug or node_slug
        if node_slug is None and self.node_registry:
            node_slug = self.node_registry.find_node_for_collection(entity)

        if node_slug and self.node_registry and not self.node_registry.is_local(node_slug):
            deferred[path] = text
            container[field.name] = text
            logger.info("Relationship deferred to remote node", field=path, node=node_slug, value=text)
            return

        record = await self.find(entity, text, search_field, user_id)
        if record is None and config.create_if_missing:
            record = await self.create(entity, text, extras, config, user_id)

        if record is None or not has_value(record.get("id")):
            logger.info("Relationship unresolved", field=path, entity=entity, value=text)
            container[field.name] = text
            return

        container[field.name] = record["id"]
        for key in list(container):
            if key.startswith(f"{base}_") and key not in protected and key != field.name:
                container.pop(key)
        if base != field.name:
            container.pop(base, None)

    async def find(self, entity: str, text: str, search_field: str = "name", user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Best matching record: email, then semantic, then substring"""

        if looks_like_email(text):
            record = await self._bounded(self.repository.search(entity, "email", text, user_id))
            if record:
                return record

        if self.semantic_search is not None:
            matches = await self._bounded(self.semantic_search.find_similar(entity, text, user_id)) or []
            best = max(matches, key=lambda m: m.get("relevance", 0.0), default=None)
            if best and best.get("relevance", 0.0) > self.semantic_threshold:
                return best

        return await self._bounded(self.repository.search(entity, search_field, text, user_id))

    async def create(
        self,
        entity: str,
        text: str,
        extras: Dict[str, Any],
        config: RelationshipConfig,
        user_id: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """Create the related record from its name when the type allows it"""

        capability = self.entity_registry.get(entity)
        if capability is None:
            logger.warning("Cannot auto-create relationship, entity not registered", entity=entity)
            return None

        data: Dict[str, Any] = dict(config.defaults)
        data.update(extras)
        if looks_like_email(text):
            data.setdefault("email", text)
            data.setdefault(config.search_field, text.split("@")[0])
        else:
            data[config.search_field] = text

        for field in capability.describe_fields():
            if field.required and not has_value(data.get(field.name)):
                data[field.name] = generated_default(field, text)

        try:
            record = await capability.create_from_fields(data, user_id)
        except Exception as e:
            logger.error("Relationship auto-create failed", entity=entity, error=str(e))
            return None

        logger.info("Related record created", entity=entity, record_id=record.get("id"), value=text)
        return record

    async def _bounded(self, call):
        try:
            return await asyncio.wait_for(call, timeout=self.search_timeout)
        except asyncio.TimeoutError:
            logger.warning("Relationship search timed out", timeout=self.search_timeout)
        except Exception as e:
            logger.warning("Relationship search failed", error=str(e))
        return None


def generated_default(field: FieldSchema, text: str) -> Any:
    """Placeholder for a required field of an auto-created record"""

    if field.default is not None:
        return field.default
    if field.type == FieldType.EMAIL or "email" in field.name:
        slug = re.sub(r"[^a-z0-9]+", ".", text.lower()).strip(".") or "record"
        return f"{slug}@generated.local"
    if field.type == FieldType.BOOLEAN:
        return False
    if field.type in (FieldType.NUMBER, FieldType.INTEGER):
        return 0
    if field.type == FieldType.ENUM and field.options:
        return field.options[0]
    if any(marker in field.name for marker in _NAME_LIKE):
        return text
    return ""
