from typing import Optional

import structlog

from thinkloop.domain.context.context_retriever import HybridRetriever
from thinkloop.domain.context.memory.cache_memory_store import CacheMemoryStore
from thinkloop.domain.context.memory.document_store import DocumentStore, MemoryStore
from thinkloop.domain.context.memory.lexical_memory_store import LexicalMemoryStore
from thinkloop.domain.context.memory.vector_memory_store import VectorMemoryStore
from thinkloop.domain.context.state.state_manager import ConversationStateManager
from thinkloop.domain.models.documents import MemoryCategory
from thinkloop.domain.orchestration.core.main_agent import AgentOrchestrator
from thinkloop.domain.tool.memory_tool import MemoryTool
from thinkloop.domain.tool.tool_executor import ToolExecutor
from thinkloop.domain.tool.tool_registry import ToolRegistry
from thinkloop.infrastructure.config import Settings
from thinkloop.infrastructure.llm.completion_provider import CompletionProvider
from thinkloop.infrastructure.observability.langfuse_tracing import Observer
from thinkloop.infrastructure.persistence.task_repository import TaskRepository
from thinkloop.infrastructure.persistence.tool_execution_repository import ToolExecutionRepository

logger = structlog.get_logger(__name__)


class Container:
    """Wires stores, tools and the orchestrator for one process"""

    def __init__(self, settings: Settings, provider: CompletionProvider, observer: Optional[Observer] = None):
        self.settings = settings
        self.provider = provider
        self.observer = observer or Observer.from_settings(settings)

        self.cache = CacheMemoryStore(
            default_ttl=settings.cache_ttl_seconds,
            check_period=settings.cache_check_period_seconds
        )
        self.vector_store = VectorMemoryStore()
        self.lexical_store = LexicalMemoryStore()
        self.documents = DocumentStore(provider, self.vector_store, self.lexical_store)
        self.memories = MemoryStore([
            MemoryCategory(name=category.name, subcategory=category.subcategory, description=category.description)
            for category in settings.memory_categories
        ])
        self.retriever = HybridRetriever(
            provider, self.vector_store, self.lexical_store, self.documents, self.memories
        )

        self.registry = ToolRegistry()
        self.memory_tool = self.registry.register(MemoryTool(
            documents=self.documents,
            memories=self.memories,
            retriever=self.retriever,
            cache=self.cache,
            provider=provider,
            model=settings.model,
            search_limit=settings.memory_search_limit
        ))

        self.execution_repository = ToolExecutionRepository()
        self.executor = ToolExecutor(
            self.registry,
            self.execution_repository,
            default_timeout=settings.tool_timeout_seconds
        )
        self.task_repository = TaskRepository()
        self.state_manager = ConversationStateManager()

        self.orchestrator = AgentOrchestrator(
            provider=provider,
            registry=self.registry,
            executor=self.executor,
            task_repository=self.task_repository,
            observer=self.observer,
            settings=settings
        )

        logger.info("Container ready", tools=self.registry.names(), max_steps=settings.max_steps)

    async def start(self):
        self.cache.start_sweeper()

    async def stop(self):
        await self.cache.stop_sweeper()
        self.observer.flush()
