from typing import Dict, Any, List, Optional
from datetime import datetime, timedelta

import structlog

from actionflow.domain.models.action_state import ActionDefinition, PendingAction, PendingActionStatus
from actionflow.domain.action.action_catalog import ActionCatalog
from actionflow.domain.context.memory.cache_memory_store import KeyValueStore, CacheMemoryStore
from actionflow.domain.extraction.field_satisfaction import (
    compute_missing_fields, deep_merge, smart_merge, has_value
)
from actionflow.infrastructure.observability.logging import action_logger

logger = structlog.get_logger(__name__)

KEY_PREFIX = "pending_action:"


def disambiguate_prefixes(partial: Dict[str, Any], missing_fields: List[str]) -> Dict[str, Any]:
    """Re-key bare fields onto prefixed missing fields

    With customer_name missing, {"name": "John"} becomes
    {"customer_name": "John"} so it cannot land on an unrelated top-level
    name field.
    """

    rekeyed: Dict[str, Any] = {}
    for key, value in partial.items():
        if key in missing_fields:
            rekeyed[key] = value
            continue

        candidates = [field for field in missing_fields if field.endswith(f"_{key}")]
        if candidates:
            target = candidates[0]
            logger.debug("Re-keyed bare field", field=key, target=target)
            if target not in rekeyed:
                rekeyed[target] = value
        else:
            rekeyed[key] = value
    return rekeyed


class PendingActionStore:
    """Session-keyed pending actions, one active action per session"""

    def __init__(self, cache_store: KeyValueStore, catalog: ActionCatalog, ttl: int = 86400):
        self.cache_store = cache_store
        self.catalog = catalog
        self.ttl = ttl

    async def get(self, session_id: str) -> Optional[PendingAction]:
        raw = await self.cache_store.get(self._key(session_id))
        if raw is None:
            return None

        action = PendingAction.model_validate(raw)
        if not action.is_active:
            return None
        return action

    async def has(self, session_id: str) -> bool:
        return await self.get(session_id) is not None

    async def store(self, session_id: str, action: PendingAction, user_id: Optional[str] = None) -> PendingAction:
        """Store an action, replacing whatever the session had before"""

        previous = await self.get(session_id)
        definition = self.catalog.get(action.action_id)
        if definition is not None:
            action.data["params"] = smart_merge(definition, action.params)
            action.apply_missing_fields(compute_missing_fields(definition, action.params))
        else:
            action.apply_missing_fields(action.missing_fields)

        action.user_id = user_id or action.user_id
        action.expires_at = datetime.utcnow() + timedelta(seconds=self.ttl)
        await self._save(session_id, action)

        if previous is not None and previous.id != action.id:
            action_logger.log_transition(session_id, previous.action_id, previous.status.value, "replaced")
        action_logger.log_transition(
            session_id, action.action_id, None, action.status.value, action.missing_fields
        )
        return action

    async def update_params(self, session_id: str, partial: Dict[str, Any]) -> Optional[PendingAction]:
        """Merge partial params and rederive missing fields from scratch"""

        action = await self.get(session_id)
        if action is None:
            return None

        before = action.status
        rekeyed = disambiguate_prefixes(partial, action.missing_fields)
        merged = deep_merge(action.params, rekeyed)

        definition = self.catalog.get(action.action_id)
        if definition is not None:
            merged = smart_merge(definition, merged)
            missing = compute_missing_fields(definition, merged)
        else:
            logger.warning("Action template gone, keeping stored field list", action_id=action.action_id)
            missing = [f for f in action.missing_fields if not has_value(merged.get(f))]

        action.data["params"] = merged
        action.apply_missing_fields(missing)
        await self._save(session_id, action)

        action_logger.log_transition(session_id, action.action_id, before.value, action.status.value, missing)
        return action

    async def delete(self, session_id: str) -> bool:
        return await self.cache_store.delete(self._key(session_id))

    async def mark_executed(self, session_id: str) -> Optional[PendingAction]:
        return await self._finish(session_id, PendingActionStatus.EXECUTED)

    async def mark_canceled(self, session_id: str) -> Optional[PendingAction]:
        return await self._finish(session_id, PendingActionStatus.CANCELED)

    async def cleanup_expired(self) -> int:
        if isinstance(self.cache_store, CacheMemoryStore):
            return await self.cache_store.clear_expired(KEY_PREFIX)
        return 0

    def definition_for(self, action: PendingAction) -> Optional[ActionDefinition]:
        return self.catalog.get(action.action_id)

    async def _finish(self, session_id: str, status: PendingActionStatus) -> Optional[PendingAction]:
        action = await self.get(session_id)
        if action is None:
            return None

        before = action.status
        action.status = status
        await self.delete(session_id)
        action_logger.log_transition(session_id, action.action_id, before.value, status.value)
        return action

    async def _save(self, session_id: str, action: PendingAction):
        await self.cache_store.set(self._key(session_id), action.model_dump(mode="json"), ttl=self.ttl)

    def _key(self, session_id: str) -> str:
        return f"{KEY_PREFIX}{session_id}"
