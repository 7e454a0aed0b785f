from typing import Dict, Any, List, Optional, Callable, Awaitable
from pydantic import BaseModel, Field, ConfigDict
from datetime import datetime
from enum import Enum


class IntentType(str, Enum):
    """Closed set of things a message can try to do"""
    CONFIRM = "confirm"
    REJECT = "reject"
    MODIFY = "modify"
    PROVIDE_DATA = "provide_data"
    USE_SUGGESTIONS = "use_suggestions"
    QUESTION = "question"
    RETRIEVAL = "retrieval"
    NEW_REQUEST = "new_request"
    NEW_WORKFLOW = "new_workflow"
    GREETING = "greeting"
    COMPLEX_TASK = "complex_task"


class FieldType(str, Enum):
    """Declared type of an action field"""
    STRING = "string"
    TEXT = "text"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    DATE = "date"
    TIME = "time"
    EMAIL = "email"
    ENUM = "enum"
    ARRAY = "array"
    OBJECT = "object"
    RELATIONSHIP = "relationship"


class RelationshipConfig(BaseModel):
    """How a relationship field is resolved to a record identifier"""
    entity: str = Field(description="Related entity type, optionally prefixed with a node slug")
    search_field: str = Field(default="name", description="Field searched when the value is free text")
    create_if_missing: bool = Field(default=False)
    node_slug: Optional[str] = Field(None, description="Node owning the related entity, if remote")
    defaults: Dict[str, Any] = Field(default_factory=dict, description="Values applied when creating")


class FieldSchema(BaseModel):
    """Schema of a single action parameter"""
    name: str
    type: FieldType = Field(default=FieldType.STRING)
    required: bool = Field(default=False)
    description: str = Field(default="")
    alternative_fields: List[str] = Field(default_factory=list, description="Fields that together satisfy this one")
    item_schema: List["FieldSchema"] = Field(default_factory=list, description="Sub-fields of array items or related records")
    relationship: Optional[RelationshipConfig] = None
    options: List[str] = Field(default_factory=list)
    default: Any = None

    @property
    def is_array(self) -> bool:
        return self.type == FieldType.ARRAY

    @property
    def is_relationship(self) -> bool:
        return self.relationship is not None or self.type == FieldType.RELATIONSHIP

    def item_field(self, name: str) -> Optional["FieldSchema"]:
        for item in self.item_schema:
            if item.name == name:
                return item
        return None


class ActionDefinition(BaseModel):
    """Registry entry describing one action template"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Unique action identifier")
    label: str
    description: str = Field(default="")
    triggers: List[str] = Field(default_factory=list, description="Keywords matched against raw message text")
    fields: List[FieldSchema] = Field(default_factory=list)
    executor: str = Field(description="Executor id that carries out the action")
    entity_class: Optional[str] = Field(None, description="Entity type created by the action")
    is_remote: bool = Field(default=False)
    node_slug: Optional[str] = None
    source: str = Field(default="builtin", description="builtin, local or remote")
    stateless: bool = Field(default=False, description="Executes without collecting parameters")
    function_schema: Optional[Dict[str, Any]] = Field(None, description="Strict schema for structured extraction")

    @property
    def required_fields(self) -> List[str]:
        return [f.name for f in self.fields if f.required]

    @property
    def matches_by_intent(self) -> bool:
        """Entity templates are matched by classified intent rather than triggers"""
        return self.entity_class is not None

    def get_field(self, name: str) -> Optional[FieldSchema]:
        for field in self.fields:
            if field.name == name:
                return field
        return None


class IntentAnalysis(BaseModel):
    """Per-turn classification of a message"""
    intent: IntentType
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    extracted_data: Dict[str, Any] = Field(default_factory=dict)
    context_enhancement: str = Field(default="")
    suggested_action_id: Optional[str] = None
    modification_target: Optional[str] = None
    fast_path: bool = Field(default=False, description="Resolved without the text-generation collaborator")
    ai_error: Optional[str] = Field(None, description="User-facing message when the collaborator failed")


class PendingActionStatus(str, Enum):
    """Lifecycle of a pending action"""
    INCOMPLETE = "incomplete"
    READY = "ready"
    EXECUTED = "executed"
    CANCELED = "canceled"


class PendingAction(BaseModel):
    """Session-scoped action awaiting completion or confirmation"""
    id: str
    action_id: str
    label: str
    description: str = Field(default="")
    data: Dict[str, Any] = Field(default_factory=lambda: {"params": {}})
    missing_fields: List[str] = Field(default_factory=list)
    ready_to_execute: bool = Field(default=False)
    executor: str
    user_id: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    expires_at: Optional[datetime] = None
    status: PendingActionStatus = Field(default=PendingActionStatus.INCOMPLETE)
    entity_class: Optional[str] = None
    node_slug: Optional[str] = None
    action_start_index: int = Field(default=0, description="History length when the action started")

    @property
    def params(self) -> Dict[str, Any]:
        return self.data.setdefault("params", {})

    @property
    def is_active(self) -> bool:
        return self.status in (PendingActionStatus.INCOMPLETE, PendingActionStatus.READY)

    def apply_missing_fields(self, missing_fields: List[str]):
        """Set missing fields and derive readiness from them"""
        self.missing_fields = list(missing_fields)
        self.ready_to_execute = len(self.missing_fields) == 0
        if self.is_active:
            self.status = PendingActionStatus.READY if self.ready_to_execute else PendingActionStatus.INCOMPLETE


class ExecutionResult(BaseModel):
    """Outcome of a local or remote action execution"""
    success: bool
    message: str = Field(default="")
    data: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    node: Optional[str] = Field(None, description="Node that produced the result, if remote")
    credits_used: Optional[float] = None

    @classmethod
    def ok(cls, message: str = "", data: Optional[Dict[str, Any]] = None, **kwargs) -> "ExecutionResult":
        return cls(success=True, message=message, data=data or {}, **kwargs)

    @classmethod
    def fail(cls, error: str, message: Optional[str] = None, **kwargs) -> "ExecutionResult":
        return cls(success=False, error=error, message=message or error, **kwargs)

    async def or_else(self, fallback: Callable[[], Awaitable["ExecutionResult"]]) -> "ExecutionResult":
        """Return self when successful, otherwise the result of the fallback"""
        if self.success:
            return self
        return await fallback()


class NodeStatus(str, Enum):
    """Availability of a federated node"""
    ACTIVE = "active"
    INACTIVE = "inactive"


class NodeInfo(BaseModel):
    """A federated peer node"""
    slug: str
    name: str
    url: str
    api_token: Optional[str] = None
    collections: List[str] = Field(default_factory=list)
    status: NodeStatus = Field(default=NodeStatus.ACTIVE)

    @property
    def is_active(self) -> bool:
        return self.status == NodeStatus.ACTIVE


class ExecutionRequest(BaseModel):
    """A ready action as handed to the router"""
    executor: str
    params: Dict[str, Any] = Field(default_factory=dict)
    action_id: Optional[str] = None
    entity_class: Optional[str] = None
    node: Optional[str] = Field(None, description="Explicit node designation")
    forwarded: bool = Field(default=False, description="Request already arrived from a peer node")
    user_id: Optional[str] = None
    session_id: Optional[str] = None


class RemoteRoute(BaseModel):
    """Resolved routing target with node-specific prefixes removed"""
    node_slug: str
    entity_class: Optional[str] = None
    params: Dict[str, Any] = Field(default_factory=dict)
    reason: str = Field(description="Which signal selected the node")


class TurnResult(BaseModel):
    """Response for one conversational turn"""
    content: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    success: bool = Field(default=True)
