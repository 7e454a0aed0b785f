from typing import List, Optional, Dict

import httpx
import structlog

from actionflow.domain.action.action_catalog import ActionCatalog
from actionflow.domain.action.action_executor import ActionExecutor
from actionflow.domain.action.action_ranker import ActionRanker
from actionflow.domain.context.memory.cache_memory_store import CacheMemoryStore, KeyValueStore
from actionflow.domain.context.memory.runtime_memory import RuntimeMemory
from actionflow.domain.context.state.pending_action_store import PendingActionStore
from actionflow.domain.entity.capability import EntityCapability, EntityRegistry
from actionflow.domain.entity.repository import EntityRepository, InMemoryEntityRepository
from actionflow.domain.extraction.parameter_extractor import ParameterExtractor
from actionflow.domain.extraction.relationship_resolver import RelationshipResolver, SemanticSearch
from actionflow.domain.intent.intent_classifier import IntentClassifier
from actionflow.domain.models.action_state import NodeInfo
from actionflow.domain.node.node_registry import NodeRegistry
from actionflow.domain.node.node_router import NodeRouter
from actionflow.domain.node.remote_execution import RemoteExecutionService
from actionflow.domain.node.usage_ledger import UsageLedger
from actionflow.domain.orchestration.core.action_orchestrator import ActionOrchestrator
from actionflow.infrastructure.ai.text_generation import TextGenerator
from actionflow.infrastructure.config.settings import Settings
from actionflow.infrastructure.http.node_client import NodeClient
from actionflow.infrastructure.security.token_validator import NodeTokenValidator

logger = structlog.get_logger(__name__)


class ActionFlowContainer:
    """Builds and holds the components serving one node"""

    def __init__(
        self,
        generator: TextGenerator,
        settings: Optional[Settings] = None,
        repository: Optional[EntityRepository] = None,
        nodes: Optional[List[NodeInfo]] = None,
        ownership: Optional[Dict[str, str]] = None,
        store: Optional[KeyValueStore] = None,
        semantic_search: Optional[SemanticSearch] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.settings = settings or Settings()
        self.generator = generator
        self.repository = repository or InMemoryEntityRepository()
        self.store = store or CacheMemoryStore()
        self.memory = RuntimeMemory()

        self.entity_registry = EntityRegistry()
        self.node_registry = NodeRegistry(self.settings.node_slug, nodes, ownership)
        self.node_client = NodeClient(self.settings.node_slug, self.settings.remote_timeout, transport)
        self.ledger = UsageLedger()
        self.token_validator = NodeTokenValidator(self.settings.node_token)

        self.catalog = ActionCatalog(
            self.entity_registry,
            self.node_registry,
            self.node_client,
            discovery_timeout=self.settings.discovery_timeout,
            intent_threshold=self.settings.intent_match_threshold
        )
        self.resolver = RelationshipResolver(
            self.repository,
            self.entity_registry,
            self.node_registry,
            semantic_search,
            search_timeout=self.settings.search_timeout,
            semantic_threshold=self.settings.semantic_match_threshold
        )
        self.pending_actions = PendingActionStore(self.store, self.catalog, self.settings.pending_action_ttl)
        self.router = NodeRouter(self.node_registry, self.store, self.settings.session_pin_ttl)
        self.remote = RemoteExecutionService(
            self.node_registry, self.node_client, self.ledger, self.settings.remote_timeout
        )

        self.classifier = IntentClassifier(generator, self.settings, ActionRanker())
        self.extractor = ParameterExtractor(generator, self.settings, self.resolver)
        self.executor = ActionExecutor(
            self.catalog,
            self.entity_registry,
            self.router,
            self.remote,
            self.settings,
            generator=generator,
            resolver=self.resolver
        )
        self.orchestrator = ActionOrchestrator(
            self.settings,
            self.classifier,
            self.catalog,
            self.extractor,
            self.pending_actions,
            self.executor,
            self.router,
            self.remote,
            self.memory,
            generator
        )

    def register_entity(self, capability: EntityCapability):
        """Expose an entity type; its create action appears on the next discovery"""

        self.entity_registry.register(capability)
        self.orchestrator.invalidate_discovery()
        logger.info("Registered entity", entity=capability.entity_name)
