from typing import Dict, List, Any, Optional
import re

import structlog
from pydantic import ValidationError

from actionflow.domain.models.action_state import (
    ActionDefinition, FieldSchema, FieldType, IntentAnalysis, IntentType
)
from actionflow.domain.entity.capability import (
    EntityCapability, EntityRegistry, CAPABILITY_METHODS, build_function_schema
)
from actionflow.domain.extraction.field_satisfaction import calculate_confidence
from actionflow.domain.node.node_registry import NodeRegistry
from actionflow.domain.errors import RemoteExecutionError
from actionflow.infrastructure.http.node_client import NodeClient

logger = structlog.get_logger(__name__)

ENTITY_INTENTS = (IntentType.NEW_REQUEST, IntentType.NEW_WORKFLOW)


def _field(name: str, type: FieldType = FieldType.STRING, required: bool = False, description: str = "", **kwargs) -> FieldSchema:
    return FieldSchema(name=name, type=type, required=required, description=description, **kwargs)


BUILTIN_ACTIONS = [
    ActionDefinition(
        id="reply_email",
        label="Reply to Email",
        description="Draft and send a reply to an email",
        triggers=["reply", "respond to email", "answer email", "write back"],
        executor="email.reply",
        fields=[
            _field("to_email", FieldType.EMAIL, True, "Recipient address"),
            _field("original_content", FieldType.TEXT, True, "Email being replied to"),
            _field("subject", description="Reply subject"),
            _field("reply_body", FieldType.TEXT, description="Reply text, drafted when absent"),
        ],
    ),
    ActionDefinition(
        id="forward_email",
        label="Forward Email",
        description="Forward an email to someone else",
        triggers=["forward", "send this to", "share this email"],
        executor="email.forward",
        fields=[
            _field("to_email", FieldType.EMAIL, True, "Recipient address"),
            _field("original_content", FieldType.TEXT, True, "Email being forwarded"),
            _field("note", FieldType.TEXT, description="Message added above the forwarded email"),
        ],
    ),
    ActionDefinition(
        id="schedule_event",
        label="Schedule Event",
        description="Create a calendar event or meeting",
        triggers=["schedule", "meeting", "calendar", "appointment", "book a call"],
        executor="calendar.create",
        fields=[
            _field("title", required=True, description="Event title"),
            _field("date", FieldType.DATE, True, "Event date"),
            _field("time", FieldType.TIME, True, "Start time"),
            _field("duration", FieldType.INTEGER, description="Length in minutes", default=60),
            _field("location"),
            _field("attendees", FieldType.ARRAY, description="Attendee emails"),
            _field("description", FieldType.TEXT),
        ],
    ),
    ActionDefinition(
        id="create_task",
        label="Create Task",
        description="Add a task or reminder",
        triggers=["task", "todo", "to-do", "remind me"],
        executor="task.create",
        fields=[
            _field("title", required=True, description="What needs doing"),
            _field("due_date", FieldType.DATE),
            _field("priority", FieldType.ENUM, options=["low", "medium", "high"], default="medium"),
            _field("description", FieldType.TEXT),
        ],
    ),
    ActionDefinition(
        id="summarize_content",
        label="Summarize Content",
        description="Summarize a piece of text",
        triggers=["summarize", "summarise", "summary", "tldr"],
        executor="ai.summarize",
        fields=[
            _field("content", FieldType.TEXT, True, "Text to summarize"),
            _field("max_length", FieldType.INTEGER, description="Maximum summary length in words", default=200),
        ],
    ),
    ActionDefinition(
        id="translate_content",
        label="Translate Content",
        description="Translate text into another language",
        triggers=["translate", "translation"],
        executor="ai.translate",
        fields=[
            _field("content", FieldType.TEXT, True, "Text to translate"),
            _field("target_language", required=True, description="Language to translate into"),
        ],
    ),
    ActionDefinition(
        id="copy_response",
        label="Copy Response",
        description="Copy the last response to the clipboard",
        triggers=["copy"],
        executor="clipboard.copy",
        stateless=True,
        fields=[_field("content", FieldType.TEXT)],
    ),
    ActionDefinition(
        id="regenerate_response",
        label="Regenerate Response",
        description="Generate the last response again",
        triggers=["regenerate", "try again"],
        executor="chat.regenerate",
        stateless=True,
    ),
]


def definition_for_capability(capability: EntityCapability) -> ActionDefinition:
    """Synthesize a create action for a local entity"""

    lower = capability.entity_name.lower()
    critical = set(capability.critical_fields())
    fields = [
        f.model_copy(update={"required": True}) if f.name in critical else f
        for f in capability.describe_fields()
    ]
    return ActionDefinition(
        id=f"create_{lower}",
        label=f"Create {capability.label}",
        description=f"Create a new {capability.label}",
        triggers=_entity_triggers(capability.label),
        fields=fields,
        executor="model.dynamic",
        entity_class=capability.entity_name,
        source="local",
        function_schema=capability.function_schema(),
    )


def definition_for_remote(collection: Dict[str, Any], node_slug: str, action_id: Optional[str] = None) -> Optional[ActionDefinition]:
    """Synthesize a create action from a peer's /collections entry"""

    entity = collection.get("class")
    methods = collection.get("methods") or []
    if not entity or not all(method in methods for method in CAPABILITY_METHODS):
        return None

    fmt = collection.get("format") or {}
    required = list(dict.fromkeys(list(fmt.get("required", [])) + list(fmt.get("critical_fields", []))))

    fields: List[FieldSchema] = []
    for raw in fmt.get("fields", []):
        try:
            field = FieldSchema.model_validate(raw)
        except ValidationError:
            logger.warning("Skipping malformed remote field", node=node_slug, entity=entity, field=raw)
            continue
        if field.relationship and not field.relationship.node_slug:
            field = field.model_copy(update={
                "relationship": field.relationship.model_copy(update={"node_slug": node_slug})
            })
        fields.append(field.model_copy(update={"required": field.required or field.name in required}))

    known = {f.name for f in fields}
    fields += [FieldSchema(name=name, required=True) for name in required if name not in known]

    label = collection.get("label") or entity
    lower = entity.lower()
    return ActionDefinition(
        id=action_id or f"create_{lower}",
        label=f"Create {label}",
        description=f"Create a new {label} on {node_slug}",
        triggers=_entity_triggers(label),
        fields=fields,
        executor="model.remote",
        entity_class=f"{node_slug}:{entity}",
        is_remote=True,
        node_slug=node_slug,
        source="remote",
        function_schema=build_function_schema(f"create_{lower}", fields) if fmt.get("strict") else None,
    )


def _entity_triggers(label: str) -> List[str]:
    lower = label.lower()
    return [lower, f"create {lower}", f"add {lower}", f"new {lower}"]


def mentions(text: str, phrase: str) -> bool:
    """Whole-word, case-insensitive phrase match"""

    return re.search(rf"\b{re.escape(phrase.lower())}\b", text.lower()) is not None


def _entity_mentioned(text: str, action: ActionDefinition) -> bool:
    name = (action.entity_class or "").split(":")[-1].lower()
    if not name:
        return False
    return mentions(text, name) or mentions(text, name + "s") or mentions(text, name + "es")


class ActionCatalog:
    """Registry of built-in and discovered action templates"""

    def __init__(
        self,
        entity_registry: Optional[EntityRegistry] = None,
        node_registry: Optional[NodeRegistry] = None,
        node_client: Optional[NodeClient] = None,
        discovery_timeout: float = 5.0,
        intent_threshold: float = 0.8
    ):
        self.entity_registry = entity_registry or EntityRegistry()
        self.node_registry = node_registry
        self.node_client = node_client
        self.discovery_timeout = discovery_timeout
        self.intent_threshold = intent_threshold
        self.static_actions: Dict[str, ActionDefinition] = {}
        self.discovered_actions: Dict[str, ActionDefinition] = {}
        self.register_batch(BUILTIN_ACTIONS)

    def register(self, definition: ActionDefinition):
        """Register a static action that survives rediscovery"""

        self.static_actions[definition.id] = definition

    def register_batch(self, definitions: List[ActionDefinition]):
        for definition in definitions:
            self.register(definition)

    def unregister(self, action_id: str) -> bool:
        removed = self.static_actions.pop(action_id, None) or self.discovered_actions.pop(action_id, None)
        return removed is not None

    def get(self, action_id: str) -> Optional[ActionDefinition]:
        return self.static_actions.get(action_id) or self.discovered_actions.get(action_id)

    def all(self) -> List[ActionDefinition]:
        """All actions in registration order, static ones first"""

        return list(self.static_actions.values()) + list(self.discovered_actions.values())

    def find_by_trigger(self, message: str) -> List[ActionDefinition]:
        return [a for a in self.all() if any(mentions(message, t) for t in a.triggers)]

    def find_by_entity(self, entity: str) -> Optional[ActionDefinition]:
        wanted = entity.split(":")[-1].lower()
        for action in self.all():
            if action.entity_class and action.entity_class.split(":")[-1].lower() == wanted:
                return action
        return None

    async def discover(self) -> List[ActionDefinition]:
        """Re-derive entity actions from local capabilities and peer nodes

        Discovered actions are rebuilt from scratch on every call, so running
        this per request never accumulates stale entries.
        """

        discovered: Dict[str, ActionDefinition] = {}

        for capability in self.entity_registry.all():
            definition = definition_for_capability(capability)
            if definition.id in self.static_actions:
                logger.warning("Entity action shadowed by static action", action_id=definition.id)
                continue
            discovered[definition.id] = definition

        if self.node_registry and self.node_client:
            for node in self.node_registry.active_nodes():
                try:
                    collections = await self.node_client.get_collections(node, timeout=self.discovery_timeout)
                except RemoteExecutionError as e:
                    logger.warning("Node discovery failed", node=node.slug, error=str(e))
                    continue

                for collection in collections:
                    action_id = f"create_{str(collection.get('class', '')).lower()}"
                    if action_id in discovered or action_id in self.static_actions:
                        action_id = f"{node.slug}_{action_id}"
                    definition = definition_for_remote(collection, node.slug, action_id)
                    if definition:
                        discovered[definition.id] = definition

        self.discovered_actions = discovered
        logger.info("Action discovery complete", **self.statistics())
        return list(discovered.values())

    def is_eligible(self, action: ActionDefinition, message: str, intent: IntentAnalysis) -> bool:
        """Whether an action can match this turn

        Built-in actions match on trigger keywords or an explicit suggestion.
        Entity actions need a
        confident new_request or new_workflow classification plus some sign
        the user meant this entity.
        """

        if not action.matches_by_intent:
            return intent.suggested_action_id == action.id or any(
                mentions(message, trigger) for trigger in action.triggers
            )

        if intent.intent not in ENTITY_INTENTS or intent.confidence < self.intent_threshold:
            return False
        return (
            intent.suggested_action_id == action.id
            or _entity_mentioned(message, action)
            or calculate_confidence(action, intent.extracted_data) > 0
        )

    def match(
        self,
        message: str,
        intent: IntentAnalysis,
        candidates: Optional[List[ActionDefinition]] = None,
        confidences: Optional[Dict[str, float]] = None
    ) -> List[str]:
        """Rank eligible candidate actions, best first

        An eligible suggested_action_id wins outright. The rest sort by
        extraction confidence, then by whether the entity name appears in
        the message. Remaining ties keep registration order.
        """

        pool = candidates if candidates is not None else self.all()
        eligible = [a for a in pool if self.is_eligible(a, message, intent)]

        def sort_key(entry):
            index, action = entry
            if confidences and action.id in confidences:
                confidence = confidences[action.id]
            else:
                confidence = calculate_confidence(action, intent.extracted_data)
            return (
                action.id != intent.suggested_action_id,
                -confidence,
                not _entity_mentioned(message, action),
                index,
            )

        ranked = sorted(enumerate(eligible), key=sort_key)
        return [action.id for _, action in ranked]

    def statistics(self) -> Dict[str, Any]:
        actions = self.all()
        by_source: Dict[str, int] = {}
        for action in actions:
            by_source[action.source] = by_source.get(action.source, 0) + 1
        return {
            "total": len(actions),
            "local": sum(1 for a in actions if not a.is_remote),
            "remote": sum(1 for a in actions if a.is_remote),
            "by_source": by_source,
        }
