from abc import ABC, abstractmethod
from typing import Dict, List, Any, Optional

from actionflow.domain.models.action_state import FieldSchema, FieldType
from actionflow.domain.entity.repository import EntityRepository

CAPABILITY_METHODS = ["describe_fields", "create_from_fields"]

_JSON_TYPES = {
    FieldType.NUMBER: "number",
    FieldType.INTEGER: "integer",
    FieldType.BOOLEAN: "boolean",
    FieldType.ARRAY: "array",
    FieldType.OBJECT: "object",
}


class EntityCapability(ABC):
    """Entity type that can be created from conversational fields"""

    def __init__(self, entity_name: str, label: Optional[str] = None, strict_schema: bool = False):
        self.entity_name = entity_name
        self.label = label or entity_name
        self.strict_schema = strict_schema

    @abstractmethod
    def describe_fields(self) -> List[FieldSchema]:
        """Fields the entity accepts, in prompt order"""
        pass

    @abstractmethod
    async def create_from_fields(self, fields: Dict[str, Any], user_id: Optional[str] = None) -> Dict[str, Any]:
        """Create a record and return its attributes"""
        pass

    def critical_fields(self) -> List[str]:
        return []

    def function_schema(self) -> Optional[Dict[str, Any]]:
        """Strict extraction schema, only for entities that publish one"""

        if not self.strict_schema:
            return None
        return build_function_schema(f"create_{self.entity_name.lower()}", self.describe_fields(),
                                     f"Extract fields for a new {self.label}")

    def describe(self) -> Dict[str, Any]:
        """Discovery payload as served from GET /collections"""

        fields = self.describe_fields()
        return {
            "class": self.entity_name,
            "label": self.label,
            "methods": list(CAPABILITY_METHODS),
            "format": {
                "fields": [f.model_dump(mode="json") for f in fields],
                "required": [f.name for f in fields if f.required],
                "critical_fields": self.critical_fields(),
                "strict": self.strict_schema,
            },
        }


class RepositoryCapability(EntityCapability):
    """Capability backed by an EntityRepository with a declared field list"""

    def __init__(
        self,
        entity_name: str,
        fields: List[FieldSchema],
        repository: EntityRepository,
        label: Optional[str] = None,
        strict_schema: bool = False,
        critical_fields: Optional[List[str]] = None
    ):
        super().__init__(entity_name, label, strict_schema)
        self.fields = list(fields)
        self.repository = repository
        self._critical_fields = list(critical_fields or [])

    def describe_fields(self) -> List[FieldSchema]:
        return list(self.fields)

    def critical_fields(self) -> List[str]:
        return list(self._critical_fields)

    async def create_from_fields(self, fields: Dict[str, Any], user_id: Optional[str] = None) -> Dict[str, Any]:
        known = {f.name for f in self.fields}
        data = {key: value for key, value in fields.items() if key in known or key.startswith("_")}
        for field in self.fields:
            if field.name not in data and field.default is not None:
                data[field.name] = field.default
        return await self.repository.create(self.entity_name, data, user_id)


class EntityRegistry:
    """Registered capability providers, looked up case-insensitively"""

    def __init__(self):
        self.capabilities: Dict[str, EntityCapability] = {}

    def register(self, capability: EntityCapability):
        self.capabilities[capability.entity_name.lower()] = capability

    def get(self, entity_name: str) -> Optional[EntityCapability]:
        return self.capabilities.get(entity_name.lower())

    def all(self) -> List[EntityCapability]:
        return list(self.capabilities.values())


def field_json_schema(field: FieldSchema) -> Dict[str, Any]:
    """JSON schema fragment for one field"""

    if field.is_relationship:
        schema: Dict[str, Any] = {"type": ["string", "integer"]}
    else:
        schema = {"type": _JSON_TYPES.get(field.type, "string")}
    if field.description:
        schema["description"] = field.description
    if field.type == FieldType.ENUM and field.options:
        schema["enum"] = list(field.options)

    if field.is_array:
        schema["items"] = _object_schema(field.item_schema) if field.item_schema else {}
    elif field.type == FieldType.OBJECT and field.item_schema:
        schema.update(_object_schema(field.item_schema))
    return schema


def _object_schema(fields: List[FieldSchema]) -> Dict[str, Any]:
    return {
        "type": "object",
        "properties": {f.name: field_json_schema(f) for f in fields},
        "required": [f.name for f in fields if f.required],
    }


def build_function_schema(name: str, fields: List[FieldSchema], description: str = "") -> Dict[str, Any]:
    """Function-call style schema for structured extraction

    Required fields are left out of the schema's own "required" list so the
    collaborator can return a partial fill instead of inventing values.
    """

    parameters = _object_schema(fields)
    parameters["required"] = []
    return {"name": name, "description": description, "parameters": parameters}
