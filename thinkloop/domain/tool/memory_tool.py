"""
Memory tool: remember, recall, update and forget facts about the user.

Recall decomposes the request into category-scoped queries and runs one hybrid
search per query. Records, per-conversation lists and search results are
cached; every write invalidates the keys it can affect.
"""

from typing import Dict, Any, List, Optional
import asyncio
import math

import structlog
from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, Field

from thinkloop.domain.context.context_retriever import HybridRetriever
from thinkloop.domain.context.memory.cache_memory_store import CacheMemoryStore
from thinkloop.domain.context.memory.document_store import DocumentStore, MemoryStore
from thinkloop.domain.models.documents import Document, Memory, SearchFilters, SearchQuery, SearchResult
from thinkloop.domain.tool.base_tool import ContextualTool, ToolPayload
from thinkloop.domain.tool.errors import NotFoundError, ValidationError
from thinkloop.infrastructure.llm.completion_provider import CompletionProvider

logger = structlog.get_logger(__name__)

SOURCE_ID = "memory_tool"


def memory_key(memory_id: str) -> str:
    return f"memory:{memory_id}"


def conversation_memories_key(conversation_id: str) -> str:
    return f"conversation_memories:{conversation_id}"


def search_key(query: str, filters: SearchFilters, size: int) -> str:
    return f"search:{query}:{filters.cache_key()}:{size}"


class RecallPayload(ToolPayload):
    query: str
    filters: Optional[SearchFilters] = None
    limit: int = Field(default=15, ge=1, le=100)


class RememberPayload(ToolPayload):
    name: str
    text: str
    category: str
    subcategory: str


class UpdatePayload(ToolPayload):
    memory_id: str
    name: Optional[str] = None
    category_id: Optional[str] = None
    text: Optional[str] = None


class ForgetPayload(ToolPayload):
    memory_id: str


class RecallQuery(BaseModel):
    category: str = Field(description="Memory category to search in")
    subcategory: str = Field(description="Memory subcategory to search in")
    question: str = Field(description="Natural language question for semantic search")
    query: str = Field(description="Keywords for lexical search")


class RecallPlan(BaseModel):
    thinking: str = Field(default="", description="Short reasoning about what to look for")
    queries: List[RecallQuery] = Field(default_factory=list)


RECALL_PROMPT = """You turn a request into searches over the user's memories.

Memories are stored in these categories:
{categories}

Return one query per category that may hold the answer. For each, give a
natural language question and a short keyword query. Use only the category
and subcategory names listed above."""


class MemoryTool(ContextualTool):
    name = "memory"
    description = "Remember, recall, update and forget facts about the user"
    actions = {
        "recall": RecallPayload,
        "remember": RememberPayload,
        "update": UpdatePayload,
        "forget": ForgetPayload,
    }

    def __init__(
        self,
        documents: DocumentStore,
        memories: MemoryStore,
        retriever: HybridRetriever,
        cache: CacheMemoryStore,
        provider: CompletionProvider,
        model: str,
        search_limit: int = 5
    ):
        self.documents = documents
        self.memories = memories
        self.retriever = retriever
        self.cache = cache
        self.provider = provider
        self.model = model
        self.search_limit = search_limit

    async def execute(self, action: str, payload: Dict[str, Any]) -> Document:
        schema = self.actions.get(action)
        if schema is None:
            raise ValidationError("unknown action for tool", {"tool_name": self.name, "action": action})

        parsed = schema.model_validate(payload)
        logger.debug("Memory action", action=action, conversation_id=parsed.conversation_id)

        if action == "recall":
            return await self.recall(parsed.query, parsed.limit, parsed.conversation_id, parsed.filters)
        if action == "remember":
            return await self.remember(
                parsed.name, parsed.text, parsed.category, parsed.subcategory, parsed.conversation_id
            )
        if action == "update":
            return await self.update(
                parsed.memory_id, parsed.name, parsed.category_id, parsed.text, parsed.conversation_id
            )
        return await self.forget(parsed.memory_id, parsed.conversation_id)

    async def self_query(self, query: str) -> RecallPlan:
        categories = "\n".join(
            f'<category name="{category.name}" subcategory="{category.subcategory}">{category.description}</category>'
            for category in self.memories.categories.values()
        )
        messages = [
            SystemMessage(content=RECALL_PROMPT.format(categories=categories)),
            HumanMessage(content=query),
        ]
        plan = await self.provider.object_completion(messages, RecallPlan, model=self.model, temperature=0.0)
        return plan or RecallPlan()

    async def recall(
        self,
        query: str,
        limit: int = 15,
        conversation_id: str = "default",
        filters: Optional[SearchFilters] = None
    ) -> Document:
        filters = filters or SearchFilters()
        plan = await self.self_query(query)

        queries = plan.queries or [
            RecallQuery(
                category=filters.category or "",
                subcategory=filters.subcategory or "",
                question=query,
                query=query
            )
        ]
        per_query = math.ceil(limit / len(queries))

        batches = await asyncio.gather(*(
            self._search_best_effort(
                SearchQuery(vector_query=item.question, text_query=item.query),
                filters.model_copy(update={
                    "category": item.category or filters.category,
                    "subcategory": item.subcategory or filters.subcategory,
                }),
                per_query
            )
            for item in queries
        ))

        unique: Dict[str, SearchResult] = {}
        for result in (result for batch in batches for result in batch):
            if result.memory is not None and result.memory.id not in unique:
                unique[result.memory.id] = result

        recalled = list(unique.values())[:limit]
        logger.info("Memories recalled", query=query[:80], queries=len(queries), recalled=len(recalled))

        if recalled:
            text = f"Found {len(recalled)} relevant memories:\n\n" + "\n".join(
                f'<memory name="{result.memory.name}" memory-id="{result.memory.id}">'
                f"{result.document.text or 'No content available'}</memory>"
                for result in recalled
            )
        else:
            text = "No relevant memories found."

        return await self.documents.create_document(
            text=text,
            source_id=SOURCE_ID,
            conversation_id=conversation_id,
            content_type="full",
            source=SOURCE_ID
        )

    async def _search_best_effort(self, query: SearchQuery, filters: SearchFilters, limit: int) -> List[SearchResult]:
        try:
            return await self.retriever.search(query, filters, limit)
        except Exception as e:
            logger.warning("Recall search failed", error=str(e), query=query.text_query[:80])
            return []

    async def remember(
        self,
        name: str,
        text: str,
        category: str,
        subcategory: str,
        conversation_id: str = "default"
    ) -> Document:
        category_record = await self.memories.find_category(category, subcategory)
        if category_record is None:
            raise NotFoundError(
                f"Category {category}/{subcategory} not found",
                {"category": category, "subcategory": subcategory}
            )

        document = await self.documents.create_document(
            text=text,
            source_id=SOURCE_ID,
            conversation_id=conversation_id,
            should_index=True,
            content_type="memory",
            source="memory",
            name=name,
            description=f"Memory: {name}",
            category=category,
            subcategory=subcategory
        )
        memory = await self.memories.create_memory(name, category_record.id, document.id)
        await self.memories.link_conversation(conversation_id, memory.id)

        self._invalidate(memory.id, [conversation_id])
        logger.info("Memory created", memory_id=memory.id, category=category, subcategory=subcategory)

        return await self.documents.create_document(
            text=f'<memory name="{memory.name}" memory-id="{memory.id}">{document.text}</memory>',
            source_id=SOURCE_ID,
            conversation_id=conversation_id,
            content_type="full",
            source=SOURCE_ID
        )

    async def update(
        self,
        memory_id: str,
        name: Optional[str] = None,
        category_id: Optional[str] = None,
        text: Optional[str] = None,
        conversation_id: str = "default"
    ) -> Document:
        memory = await self.get_memory_by_id(memory_id)
        if memory is None:
            raise NotFoundError(f"Memory {memory_id} not found", {"memory_id": memory_id})

        category = None
        if category_id:
            category = await self.memories.get_category(category_id)
            if category is None:
                raise NotFoundError(f"Category {category_id} not found", {"category_id": category_id})

        if text is not None or name or category:
            await self.documents.update_document(
                memory.document_id,
                text=text,
                name=name,
                description=f"Memory: {name}" if name else None,
                category=category.name if category else None,
                subcategory=category.subcategory if category else None
            )

        updated = await self.memories.update_memory(memory_id, name=name, category_id=category_id)
        self._invalidate(memory_id, await self.memories.conversations_for(memory_id))

        return await self.documents.create_document(
            text=f"Successfully updated memory: {updated.name}",
            source_id=SOURCE_ID,
            conversation_id=conversation_id,
            content_type="full",
            source=SOURCE_ID
        )

    async def forget(self, memory_id: str, conversation_id: str = "default") -> Document:
        memory = await self.get_memory_by_id(memory_id)
        if memory is None:
            raise NotFoundError(f"Memory {memory_id} not found", {"memory_id": memory_id})

        conversations = await self.memories.conversations_for(memory_id)
        await asyncio.gather(
            self.memories.delete_memory(memory_id),
            self.documents.delete_document(memory.document_id)
        )
        self._invalidate(memory_id, conversations)
        logger.info("Memory deleted", memory_id=memory_id)

        return await self.documents.create_document(
            text=f"Successfully deleted memory: {memory.name}",
            source_id=SOURCE_ID,
            conversation_id=conversation_id,
            content_type="full",
            source=SOURCE_ID
        )

    async def recent_context(self, conversation_id: str = "default") -> Document:
        try:
            formatted = "\n".join(
                f'<category name="{category.name}" subcategory="{category.subcategory}"/>'
                for category in self.memories.categories.values()
            )
            return await self.documents.create_document(
                text=formatted.strip() or "No recent memory categories found.",
                source_id=SOURCE_ID,
                conversation_id=conversation_id,
                kind="document",
                content_type="full",
                name="RecentMemoryCategories",
                source=SOURCE_ID,
                description="Memory categories and subcategories",
                context_tool=self.name
            )
        except Exception as e:
            document = await self.documents.create_error_document(
                e,
                conversation_id=conversation_id,
                context="Memory tool recent context",
                source_id=SOURCE_ID
            )
            document.metadata.context_tool = self.name
            return document

    async def search_memories(
        self,
        query: str,
        filters: Optional[SearchFilters] = None,
        limit: Optional[int] = None
    ) -> List[SearchResult]:
        """Cached memory-only search; failures yield an empty list"""

        limit = limit or self.search_limit
        filters = (filters or SearchFilters()).model_copy(update={"content_type": "memory"})
        fetch_size = limit * 2
        key = search_key(query, filters, fetch_size)

        cached = self.cache.get(key)
        if cached is not None:
            return cached[:limit]

        try:
            results = await self.retriever.search(
                SearchQuery(vector_query=query, text_query=query), filters, fetch_size
            )
        except Exception as e:
            logger.error("Memory search failed", error=str(e), query=query[:80])
            return []

        results = [result for result in results if result.memory is not None]
        self.cache.set(key, results)
        return results[:limit]

    async def get_memory_by_id(self, memory_id: str) -> Optional[Memory]:
        key = memory_key(memory_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        memory = await self.memories.get_memory(memory_id)
        if memory is not None:
            self.cache.set(key, memory)
        return memory

    async def get_memory_by_document_id(self, document_id: str) -> Optional[Memory]:
        return await self.memories.get_memory_by_document_id(document_id)

    async def find_by_conversation_id(self, conversation_id: str) -> List[Memory]:
        key = conversation_memories_key(conversation_id)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        memories = await self.memories.find_by_conversation_id(conversation_id)
        self.cache.set(key, memories)
        return memories

    async def prune_old_memories(self, days: int = 30, batch_size: int = 100) -> int:
        """Delete memories not updated within ``days`` and flush the cache"""

        old = await self.memories.older_than(days)
        for start in range(0, len(old), batch_size):
            batch = old[start:start + batch_size]
            await asyncio.gather(*(
                asyncio.gather(
                    self.memories.delete_memory(memory.id),
                    self.documents.delete_document(memory.document_id)
                )
                for memory in batch
            ))

        self.cache.flush()
        logger.info("Old memories pruned", count=len(old), days=days)
        return len(old)

    def _invalidate(self, memory_id: str, conversation_ids: List[str]):
        self.cache.delete(memory_key(memory_id))
        for conversation_id in conversation_ids:
            self.cache.delete(conversation_memories_key(conversation_id))
        self.cache.delete_prefix("search:")
