from abc import ABC, abstractmethod
from typing import Dict, List, Any, Optional
import asyncio
from datetime import datetime


class EntityRepository(ABC):
    """Entity persistence collaborator"""

    @abstractmethod
    async def find_by_id(self, entity: str, record_id: Any, user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def create(self, entity: str, data: Dict[str, Any], user_id: Optional[str] = None) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def save(self, entity: str, record_id: Any, data: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def list_fields(self, entity: str) -> List[str]:
        pass

    @abstractmethod
    async def search(self, entity: str, field: str, value: str, user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Substring search on one field, scoped to the owner"""
        pass


class InMemoryEntityRepository(EntityRepository):
    """Dict-backed repository used for local development and tests"""

    def __init__(self):
        self.records: Dict[str, Dict[int, Dict[str, Any]]] = {}
        self.fields: Dict[str, List[str]] = {}
        self._next_id = 1
        self._lock = asyncio.Lock()

    def declare(self, entity: str, fields: List[str]):
        self.fields[entity] = list(fields)
        self.records.setdefault(entity, {})

    async def find_by_id(self, entity: str, record_id: Any, user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        async with self._lock:
            try:
                record = self.records.get(entity, {}).get(int(record_id))
            except (TypeError, ValueError):
                return None
            if record is None or not self._owned_by(record, user_id):
                return None
            return dict(record)

    async def create(self, entity: str, data: Dict[str, Any], user_id: Optional[str] = None) -> Dict[str, Any]:
        """Insert a record, keeping only declared columns when any are declared"""

        columns = await self.list_fields(entity)
        async with self._lock:
            record = {k: v for k, v in data.items() if not columns or k in columns}
            record["id"] = self._next_id
            record["user_id"] = user_id
            record["created_at"] = datetime.utcnow().isoformat()
            self._next_id += 1
            self.records.setdefault(entity, {})[record["id"]] = record
            return dict(record)

    async def save(self, entity: str, record_id: Any, data: Dict[str, Any]) -> Dict[str, Any]:
        async with self._lock:
            record = self.records.setdefault(entity, {}).setdefault(int(record_id), {"id": int(record_id)})
            record.update(data)
            record["updated_at"] = datetime.utcnow().isoformat()
            return dict(record)

    async def list_fields(self, entity: str) -> List[str]:
        return list(self.fields.get(entity, []))

    async def search(self, entity: str, field: str, value: str, user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        """Case-insensitive substring match, exact matches first"""

        needle = value.strip().lower()
        if not needle:
            return None

        async with self._lock:
            candidates = [
                record for record in self.records.get(entity, {}).values()
                if self._owned_by(record, user_id) and needle in str(record.get(field, "")).lower()
            ]

        exact = [r for r in candidates if str(r.get(field, "")).lower() == needle]
        match = (exact or candidates or [None])[0]
        return dict(match) if match else None

    def _owned_by(self, record: Dict[str, Any], user_id: Optional[str]) -> bool:
        return user_id is None or record.get("user_id") in (None, user_id)
