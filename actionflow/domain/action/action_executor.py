from typing import Dict, Any, Callable, Awaitable, Optional
import time

import structlog

from actionflow.domain.models.action_state import (
    ExecutionRequest, ExecutionResult, PendingAction
)
from actionflow.domain.action.action_catalog import ActionCatalog, definition_for_capability
from actionflow.domain.action.builtin_executors import BuiltinExecutors
from actionflow.domain.entity.capability import EntityRegistry
from actionflow.domain.errors import (
    ActionFlowError, LocalExecutionError, MissingRequiredFieldError, UnknownExecutorError
)
from actionflow.domain.extraction.relationship_resolver import RelationshipResolver, DEFERRED_KEY
from actionflow.domain.node.node_router import NodeRouter, split_entity_class
from actionflow.domain.node.remote_execution import RemoteExecutionService
from actionflow.infrastructure.ai.text_generation import TextGenerator
from actionflow.infrastructure.config.settings import Settings
from actionflow.infrastructure.observability.logging import action_logger, metrics

logger = structlog.get_logger(__name__)

Handler = Callable[[ExecutionRequest], Awaitable[ExecutionResult]]

HIDDEN_FIELDS = {"id", "user_id", "owner_id", "created_by", "workspace_id", "created_at", "updated_at"}


def is_internal_field(key: str) -> bool:
    return key in HIDDEN_FIELDS or key.endswith("_id") or key.startswith("_")


def summarize_record(record: Dict[str, Any]) -> str:
    """Readable attribute list without identifiers or ownership columns"""

    lines = []
    for key, value in record.items():
        if is_internal_field(key) or value in (None, "", [], {}):
            continue
        label = key.replace("_", " ").title()
        if isinstance(value, list):
            value = ", ".join(
                ", ".join(f"{k}: {v}" for k, v in item.items() if not is_internal_field(k))
                if isinstance(item, dict) else str(item)
                for item in value
            )
        elif isinstance(value, dict):
            value = ", ".join(f"{k}: {v}" for k, v in value.items() if not is_internal_field(k))
        lines.append(f"- {label}: {value}")
    return "\n".join(lines)


class ActionExecutor:
    """Runs ready actions locally or on the node that owns them"""

    def __init__(
        self,
        catalog: ActionCatalog,
        entity_registry: EntityRegistry,
        router: NodeRouter,
        remote: RemoteExecutionService,
        settings: Settings,
        generator: Optional[TextGenerator] = None,
        resolver: Optional[RelationshipResolver] = None
    ):
        self.catalog = catalog
        self.entity_registry = entity_registry
        self.router = router
        self.remote = remote
        self.settings = settings
        self.resolver = resolver
        self.handlers: Dict[str, Handler] = {
            "model.dynamic": self.create_entity,
            "model.remote": self.unroutable_remote,
        }
        self.handlers.update(BuiltinExecutors(generator, settings).handlers())

    def register_executor(self, executor_id: str, handler: Handler):
        self.handlers[executor_id] = handler

    async def execute(self, action: PendingAction, session_id: Optional[str] = None, forwarded: bool = False) -> ExecutionResult:
        """Execute a pending action; failures come back as unsuccessful results"""

        definition = self.catalog.get(action.action_id)
        stateless = definition.stateless if definition else False

        start = time.monotonic()
        try:
            if not action.ready_to_execute and not stateless:
                raise MissingRequiredFieldError(action.missing_fields)

            request = ExecutionRequest(
                executor=action.executor,
                params=dict(action.params),
                action_id=action.action_id,
                entity_class=action.entity_class,
                node=action.node_slug,
                forwarded=forwarded,
                user_id=action.user_id,
                session_id=session_id
            )
            result = await self.dispatch(request)
        except MissingRequiredFieldError as e:
            result = ExecutionResult.fail(
                str(e),
                message=f"I still need the following before I can continue: {', '.join(e.missing_fields)}."
            )
        except ActionFlowError as e:
            result = ExecutionResult.fail(str(e), message=f"Sorry, I couldn't complete {action.label}: {e}")
        except Exception as e:
            logger.exception("Unexpected executor failure", executor=action.executor)
            result = ExecutionResult.fail(str(e), message=f"Sorry, something went wrong while running {action.label}.")

        duration_ms = (time.monotonic() - start) * 1000
        action_logger.log_execution(action.executor, session_id, duration_ms, result.success, result.node, result.error)
        metrics.increment_counter("actions_executed", tags={"executor": action.executor, "success": str(result.success)})
        return result

    async def dispatch(self, request: ExecutionRequest) -> ExecutionResult:
        """Send a request to its owning node, or run the local handler"""

        route = self.router.should_route_remote(request)
        if route is not None:
            executor = "model.dynamic" if request.executor == "model.remote" else request.executor
            params = dict(route.params)
            if route.entity_class:
                params["entity_class"] = route.entity_class
            logger.info("Routing action to node", node=route.node_slug, reason=route.reason, executor=executor)
            return await self.remote.execute_on(
                route.node_slug,
                executor,
                params,
                user_id=request.user_id,
                session_id=request.session_id,
                action_type=request.action_id
            )

        handler = self.handlers.get(request.executor)
        if handler is None:
            raise UnknownExecutorError(request.executor)

        try:
            return await handler(request)
        except ActionFlowError:
            raise
        except Exception as e:
            raise LocalExecutionError(str(e), request.executor) from e

    async def create_entity(self, request: ExecutionRequest) -> ExecutionResult:
        """Create a local entity record from collected fields"""

        params = dict(request.params)
        _, entity_class = split_entity_class(request.entity_class or params.pop("entity_class", None))
        params.pop("entity_class", None)
        capability = self.entity_registry.get(entity_class) if entity_class else None
        if capability is None:
            raise LocalExecutionError(f"Unknown entity type '{entity_class}'", request.executor)

        if self.resolver is not None:
            params = await self.resolver.resolve(definition_for_capability(capability), params, request.user_id)
        params.pop(DEFERRED_KEY, None)

        record = await capability.create_from_fields(params, request.user_id)
        summary = summarize_record(record)
        message = f"{capability.label} created successfully."
        if summary:
            message += f"\n{summary}"
        return ExecutionResult.ok(message, {"entity": capability.entity_name, "record": record})

    async def unroutable_remote(self, request: ExecutionRequest) -> ExecutionResult:
        node = request.node or split_entity_class(request.entity_class)[0]
        return ExecutionResult.fail(
            f"Node '{node}' is not available",
            message=f"The node that owns this data ({node}) is not available right now.",
            node=node
        )
