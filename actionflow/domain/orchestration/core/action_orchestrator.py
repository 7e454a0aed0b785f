from typing import TypedDict, List, Dict, Any, Optional, Literal
from uuid import uuid4
import time

from langgraph.graph import StateGraph, END
import structlog

from actionflow.domain.models.action_state import (
    ActionDefinition, ExecutionResult, IntentAnalysis, IntentType, PendingAction, TurnResult
)
from actionflow.domain.errors import AIErrorKind
from actionflow.domain.action.action_catalog import ActionCatalog
from actionflow.domain.action.action_executor import ActionExecutor, summarize_record
from actionflow.domain.context.memory.runtime_memory import RuntimeMemory
from actionflow.domain.context.state.pending_action_store import PendingActionStore, disambiguate_prefixes
from actionflow.domain.extraction.parameter_extractor import ParameterExtractor, action_scoped_turns
from actionflow.domain.intent.intent_classifier import IntentClassifier
from actionflow.domain.node.node_router import NodeRouter
from actionflow.domain.node.remote_execution import RemoteExecutionService
from actionflow.infrastructure.ai.text_generation import (
    GenerationRequest, TextGenerator, generate_with_timeout
)
from actionflow.infrastructure.config.settings import Settings
from actionflow.infrastructure.observability.logging import action_logger

logger = structlog.get_logger(__name__)

UPDATE_INTENTS = (IntentType.MODIFY, IntentType.PROVIDE_DATA, IntentType.USE_SUGGESTIONS)
START_INTENTS = (IntentType.NEW_REQUEST, IntentType.NEW_WORKFLOW, IntentType.COMPLEX_TASK)


class TurnState(TypedDict):
    """State for one conversational turn"""
    message: str
    session_id: str
    user_id: Optional[str]
    forwarded: bool
    history_index: int
    pending_action: Optional[PendingAction]
    intent: Optional[IntentAnalysis]
    executed_result: Optional[ExecutionResult]
    response: Optional[str]
    success: bool
    trace: List[str]


def describe_pending(action: PendingAction, definition: Optional[ActionDefinition]) -> str:
    """Ask for what is missing, or for confirmation when nothing is"""

    if action.ready_to_execute:
        summary = summarize_record(action.params)
        details = f"\n{summary}\n" if summary else "\n"
        return f"Ready to {action.label.lower()}:{details}\nShall I go ahead?"

    needed = []
    for name in action.missing_fields:
        field = definition.get_field(name) if definition else None
        label = name.replace("_", " ")
        needed.append(f"{label} ({field.description})" if field and field.description else label)
    return f"To {action.label.lower()}, I still need: {', '.join(needed)}."


class ActionOrchestrator:
    """Drives the pending action state machine for each turn using LangGraph"""

    def __init__(
        self,
        settings: Settings,
        classifier: IntentClassifier,
        catalog: ActionCatalog,
        extractor: ParameterExtractor,
        store: PendingActionStore,
        executor: ActionExecutor,
        router: NodeRouter,
        remote: RemoteExecutionService,
        memory: RuntimeMemory,
        generator: Optional[TextGenerator] = None
    ):
        self.settings = settings
        self.classifier = classifier
        self.catalog = catalog
        self.extractor = extractor
        self.store = store
        self.executor = executor
        self.router = router
        self.remote = remote
        self.memory = memory
        self.generator = generator
        self._discovered_at: Optional[float] = None
        self.workflow = self._create_workflow()

    def _create_workflow(self):
        """Create the turn graph"""

        workflow = StateGraph(TurnState)

        workflow.add_node("load_context", self.load_context_node)
        workflow.add_node("classify", self.classify_node)
        workflow.add_node("start_action", self.start_action_node)
        workflow.add_node("update_action", self.update_action_node)
        workflow.add_node("confirm_action", self.confirm_action_node)
        workflow.add_node("reject_action", self.reject_action_node)
        workflow.add_node("conversation", self.conversation_node)

        workflow.set_entry_point("load_context")
        workflow.add_edge("load_context", "classify")

        workflow.add_conditional_edges(
            "classify",
            self.route_by_intent,
            {
                "start": "start_action",
                "update": "update_action",
                "confirm": "confirm_action",
                "reject": "reject_action",
                "conversation": "conversation"
            }
        )

        for node in ("start_action", "update_action", "confirm_action", "reject_action", "conversation"):
            workflow.add_edge(node, END)

        return workflow.compile()

    def invalidate_discovery(self):
        """Rediscover actions on the next turn"""

        self._discovered_at = None

    async def process(
        self,
        message: str,
        session_id: str,
        user_id: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None
    ) -> TurnResult:
        """Handle one message; never raises"""

        options = options or {}
        forwarded = bool(options.get("forwarded"))

        with structlog.contextvars.bound_contextvars(session_id=session_id, trace_id=uuid4().hex):
            try:
                node = None if forwarded else await self._target_node(session_id, options)
                if node is not None:
                    remote_result = await self.remote.forward_chat(node, message, session_id, user_id)
                    if remote_result.success:
                        await self._sync_pin(session_id, node, remote_result)
                    else:
                        logger.warning("Remote chat failed, handling locally", node=node, error=remote_result.error)
                    result = await remote_result.or_else(
                        lambda: self._run_local(message, session_id, user_id, forwarded)
                    )
                else:
                    result = await self._run_local(message, session_id, user_id, forwarded)
            except Exception as e:
                logger.exception("Turn failed", error=str(e))
                return TurnResult(
                    content=self.settings.fallback_error_message,
                    metadata={"error": str(e)},
                    success=False
                )

        metadata = dict(result.data.get("metadata") or {})
        if result.node and "node" not in metadata:
            metadata["node"] = result.node
        return TurnResult(
            content=result.data.get("response", result.message),
            metadata=metadata,
            success=bool(result.data.get("success", result.success))
        )

    async def _target_node(self, session_id: str, options: Dict[str, Any]) -> Optional[str]:
        """Remote node that should handle this turn, if any"""

        requested = options.get("node")
        if requested:
            node = self.router.registry.find_node(requested)
            if node is None:
                logger.warning("Requested node unavailable", node=requested)
                return None
            return None if self.router.registry.is_local(node.slug) else node.slug

        pinned = await self.router.get_pinned_node(session_id)
        if pinned and not self.router.registry.is_local(pinned):
            return pinned
        return None

    async def _sync_pin(self, session_id: str, node: str, result: ExecutionResult):
        metadata = result.data.get("metadata") or {}
        if metadata.get("activeWorkflow"):
            await self.router.pin_session(session_id, node)
        else:
            await self.router.unpin_session(session_id)

    async def _run_local(self, message: str, session_id: str, user_id: Optional[str], forwarded: bool) -> ExecutionResult:
        initial_state: TurnState = {
            "message": message,
            "session_id": session_id,
            "user_id": user_id,
            "forwarded": forwarded,
            "history_index": await self.memory.turn_count(session_id),
            "pending_action": None,
            "intent": None,
            "executed_result": None,
            "response": None,
            "success": True,
            "trace": []
        }

        final = await self.workflow.ainvoke(initial_state)
        response = final.get("response") or ""

        await self.memory.add_to_conversation(session_id, {"role": "user", "content": message})
        await self.memory.add_to_conversation(session_id, {"role": "assistant", "content": response})

        pending = final.get("pending_action")
        executed = final.get("executed_result")
        intent = final.get("intent")
        metadata = {
            "intentAnalysis": intent.model_dump(mode="json") if intent else None,
            "activeWorkflow": pending.model_dump(mode="json") if pending else None,
            "executedActionResult": executed.model_dump(mode="json") if executed else None,
            "node": self.settings.node_slug,
            "trace": final.get("trace", []),
        }
        return ExecutionResult.ok(
            message=response,
            data={"response": response, "metadata": metadata, "success": final.get("success", True)}
        )

    async def load_context_node(self, state: TurnState) -> Dict[str, Any]:
        """Refresh discovered actions and load the session's pending action"""

        now = time.monotonic()
        if self._discovered_at is None or now - self._discovered_at > self.settings.discovery_ttl:
            await self.catalog.discover()
            self._discovered_at = now

        pending = await self.store.get(state["session_id"])
        return {"pending_action": pending, "trace": state["trace"] + ["load_context"]}

    async def classify_node(self, state: TurnState) -> Dict[str, Any]:
        """Classify the message against the pending action"""

        pending = state["pending_action"]
        intent = await self.classifier.classify(state["message"], pending, self.catalog.all())
        action_logger.log_intent(
            state["session_id"], intent.intent.value, intent.confidence, intent.fast_path, pending is not None
        )
        return {"intent": intent, "trace": state["trace"] + ["classify"]}

    def route_by_intent(self, state: TurnState) -> Literal["start", "update", "confirm", "reject", "conversation"]:
        """Route on the classified intent"""

        intent = state["intent"].intent
        has_pending = state["pending_action"] is not None

        if intent == IntentType.CONFIRM and has_pending:
            return "confirm"
        if intent == IntentType.REJECT and has_pending:
            return "reject"
        if intent in UPDATE_INTENTS and has_pending:
            return "update"
        if intent in START_INTENTS:
            return "start"
        return "conversation"

    async def start_action_node(self, state: TurnState) -> Dict[str, Any]:
        """Match an action and open a new pending action for it"""

        intent = state["intent"]
        pending = state["pending_action"]
        trace = state["trace"] + ["start_action"]

        ranked = self.catalog.match(state["message"], intent)
        if not ranked:
            if pending is not None:
                return await self._update(state, trace)
            return await self._converse(state, trace)

        definition = self.catalog.get(ranked[0])
        if pending is not None and pending.action_id == definition.id:
            return await self._update(state, trace)

        params: Dict[str, Any] = {}
        if definition.fields:
            params = await self.extractor.extract(
                state["message"], [], definition, state["user_id"], seed=intent.extracted_data
            )

        action = PendingAction(
            id=uuid4().hex,
            action_id=definition.id,
            label=definition.label,
            description=definition.description,
            data={"params": params},
            executor=definition.executor,
            user_id=state["user_id"],
            entity_class=definition.entity_class,
            node_slug=definition.node_slug,
            action_start_index=state["history_index"]
        )
        stored = await self.store.store(state["session_id"], action, state["user_id"])

        if definition.stateless:
            result = await self.executor.execute(stored, state["session_id"], state["forwarded"])
            if result.success:
                await self.store.mark_executed(state["session_id"])
            else:
                await self.store.delete(state["session_id"])
            return {
                "pending_action": None,
                "executed_result": result,
                "response": result.message,
                "success": result.success,
                "trace": trace
            }

        return {
            "pending_action": stored,
            "response": describe_pending(stored, definition),
            "trace": trace
        }

    async def update_action_node(self, state: TurnState) -> Dict[str, Any]:
        """Merge newly supplied data into the pending action"""

        return await self._update(state, state["trace"] + ["update_action"])

    async def _update(self, state: TurnState, trace: List[str]) -> Dict[str, Any]:
        pending = state["pending_action"]
        intent = state["intent"]
        definition = self.store.definition_for(pending)

        seed = disambiguate_prefixes(intent.extracted_data, pending.missing_fields)
        if definition is not None and definition.fields:
            turns = await action_scoped_turns(self.memory, state["session_id"], pending, intent.intent)
            partial = await self.extractor.extract(
                state["message"], turns, definition, state["user_id"],
                existing_params=pending.params, seed=seed
            )
        else:
            partial = seed

        updated = await self.store.update_params(state["session_id"], partial)
        if updated is None:
            return {"pending_action": None, "response": "That action has expired. What would you like to do?", "trace": trace}

        return {
            "pending_action": updated,
            "response": describe_pending(updated, definition),
            "trace": trace
        }

    async def confirm_action_node(self, state: TurnState) -> Dict[str, Any]:
        """Execute a ready action, or ask for what is still missing"""

        pending = state["pending_action"]
        trace = state["trace"] + ["confirm_action"]

        if not pending.ready_to_execute:
            return {"response": describe_pending(pending, self.store.definition_for(pending)), "trace": trace}

        result = await self.executor.execute(pending, state["session_id"], state["forwarded"])
        if result.success:
            await self.store.mark_executed(state["session_id"])
            pending = None

        return {
            "pending_action": pending,
            "executed_result": result,
            "response": result.message,
            "success": result.success,
            "trace": trace
        }

    async def reject_action_node(self, state: TurnState) -> Dict[str, Any]:
        """Cancel the pending action"""

        pending = state["pending_action"]
        await self.store.mark_canceled(state["session_id"])
        return {
            "pending_action": None,
            "response": f"Okay, I've cancelled {pending.label.lower()}.",
            "trace": state["trace"] + ["reject_action"]
        }

    async def conversation_node(self, state: TurnState) -> Dict[str, Any]:
        """Reply to turns that do not move the state machine"""

        return await self._converse(state, state["trace"] + ["conversation"])

    async def _converse(self, state: TurnState, trace: List[str]) -> Dict[str, Any]:
        intent = state["intent"]
        pending = state["pending_action"]

        if intent.ai_error:
            return {"response": intent.ai_error, "success": False, "trace": trace}

        success = True
        if intent.intent == IntentType.GREETING:
            response = "Hello! How can I help you today?"
        elif intent.intent in (IntentType.CONFIRM, IntentType.REJECT) and pending is None:
            response = "There is nothing waiting for confirmation right now."
        else:
            response, success = await self._generate_reply(state)

        if pending is not None:
            response += "\n\n" + describe_pending(pending, self.store.definition_for(pending))
        return {"response": response, "success": success, "trace": trace}

    async def _generate_reply(self, state: TurnState) -> tuple:
        if self.generator is None:
            return "I can help you create records, schedule events, manage tasks and handle email.", True

        history = await self.memory.get_conversation_history(state["session_id"])
        lines = [f"{turn.get('role')}: {turn.get('content')}" for turn in history[-10:]]
        lines.append(f"user: {state['message']}")
        result = await generate_with_timeout(
            self.generator,
            GenerationRequest(
                prompt="\n".join(lines),
                system_prompt="You are a helpful assistant. Answer the user's last message.",
                purpose="chat"
            ),
            self.settings.extract_timeout
        )
        if not result.success:
            kind = result.error_kind or AIErrorKind.UNKNOWN
            return self.settings.error_message(kind), False
        return result.content.strip(), True
