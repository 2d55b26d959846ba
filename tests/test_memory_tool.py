from datetime import datetime, timedelta

import pytest

from thinkloop.domain.context.context_retriever import HybridRetriever
from thinkloop.domain.context.memory.cache_memory_store import CacheMemoryStore
from thinkloop.domain.context.memory.document_store import DocumentStore, MemoryStore
from thinkloop.domain.context.memory.lexical_memory_store import LexicalMemoryStore
from thinkloop.domain.context.memory.vector_memory_store import VectorMemoryStore
from thinkloop.domain.models.documents import MemoryCategory
from thinkloop.domain.tool.errors import NotFoundError
from thinkloop.domain.tool.memory_tool import (
    MemoryTool, RecallPlan, RecallQuery, conversation_memories_key, memory_key
)
from tests.fakes import FakeProvider

HOBBIES = MemoryCategory(name="profile", subcategory="hobbies", description="What the user enjoys")
WORK = MemoryCategory(name="profile", subcategory="work", description="Where and how the user works")


class CountingRetriever(HybridRetriever):
    def __init__(self, *args, error=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls = []
        self.error = error

    async def search(self, query, filters=None, limit=15):
        self.calls.append({"query": query, "filters": filters, "limit": limit})
        if self.error:
            raise self.error
        return await super().search(query, filters, limit)


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def tool(provider):
    vector_store = VectorMemoryStore()
    lexical_store = LexicalMemoryStore()
    documents = DocumentStore(provider, vector_store, lexical_store)
    memories = MemoryStore([HOBBIES, WORK])
    retriever = CountingRetriever(provider, vector_store, lexical_store, documents, memories)
    return MemoryTool(documents, memories, retriever, CacheMemoryStore(), provider, model="test-model")


async def remember(tool: MemoryTool, name: str, text: str, subcategory: str = "hobbies", conversation_id: str = "c1"):
    await tool.execute("remember", {
        "name": name,
        "text": text,
        "category": "profile",
        "subcategory": subcategory,
        "conversation_id": conversation_id,
    })
    return await tool.memories.get_memory_by_document_id(
        next(
            document.id for document in tool.documents.documents.values()
            if document.metadata.content_type == "memory" and document.metadata.name == name
        )
    )


@pytest.mark.asyncio
async def test_remember_indexes_memory_and_links_conversation(tool):
    memory = await remember(tool, "hiking", "The user loves hiking in the alps")

    document = await tool.documents.get_document_by_id(memory.document_id)
    assert document.metadata.should_index
    assert document.metadata.category == "profile"
    assert memory.category_id == HOBBIES.id
    assert [m.id for m in await tool.find_by_conversation_id("c1")] == [memory.id]
    assert len(tool.documents.vector_store) == 1


@pytest.mark.asyncio
async def test_remember_returns_memory_tag(tool):
    result = await tool.execute("remember", {
        "name": "coffee", "text": "Drinks espresso", "category": "profile", "subcategory": "hobbies"
    })

    assert result.text.startswith('<memory name="coffee" memory-id="')
    assert result.text.endswith(">Drinks espresso</memory>")


@pytest.mark.asyncio
async def test_remember_with_unknown_category_creates_nothing(tool):
    with pytest.raises(NotFoundError):
        await tool.execute("remember", {
            "name": "pets", "text": "Has a cat", "category": "animals", "subcategory": "pets"
        })

    assert tool.memories.memories == {}
    assert len(tool.documents.vector_store) == 0


@pytest.mark.asyncio
async def test_recall_finds_remembered_fact(tool, provider):
    memory = await remember(tool, "hiking", "The user loves hiking in the alps")
    await remember(tool, "employer", "Works as a nurse at the city hospital", subcategory="work")

    result = await tool.execute("recall", {"query": "hiking", "conversation_id": "c1"})

    assert result.text.startswith("Found ")
    assert f'memory-id="{memory.id}"' in result.text
    assert "The user loves hiking in the alps" in result.text
    assert "RecallPlan" in provider.schemas_called()


@pytest.mark.asyncio
async def test_recall_splits_limit_across_planned_queries(tool, provider):
    provider.responses["RecallPlan"] = RecallPlan(queries=[
        RecallQuery(category="profile", subcategory="hobbies", question="What are the hobbies?", query="hobbies"),
        RecallQuery(category="profile", subcategory="work", question="Where does the user work?", query="work"),
    ])

    await tool.recall("tell me about me", limit=5)

    calls = tool.retriever.calls
    assert [call["limit"] for call in calls] == [3, 3]
    assert {call["filters"].subcategory for call in calls} == {"hobbies", "work"}


@pytest.mark.asyncio
async def test_recall_with_failing_search_reports_nothing_found(tool):
    await remember(tool, "hiking", "The user loves hiking in the alps")
    tool.retriever.error = ConnectionError("backend down")

    result = await tool.recall("hiking")

    assert result.text == "No relevant memories found."


@pytest.mark.asyncio
async def test_forget_removes_memory_and_its_document(tool):
    memory = await remember(tool, "hiking", "The user loves hiking in the alps")

    result = await tool.execute("forget", {"memory_id": memory.id})

    assert result.text == "Successfully deleted memory: hiking"
    assert await tool.get_memory_by_id(memory.id) is None
    assert await tool.documents.get_document_by_id(memory.document_id) is None
    assert len(tool.documents.vector_store) == 0
    assert (await tool.recall("hiking")).text == "No relevant memories found."


@pytest.mark.asyncio
async def test_update_and_forget_unknown_memory_are_not_found(tool):
    with pytest.raises(NotFoundError):
        await tool.execute("update", {"memory_id": "missing", "name": "x"})
    with pytest.raises(NotFoundError):
        await tool.execute("forget", {"memory_id": "missing"})


@pytest.mark.asyncio
async def test_update_rewrites_document_and_invalidates_cache(tool):
    memory = await remember(tool, "hiking", "The user loves hiking in the alps")
    assert await tool.get_memory_by_id(memory.id) is not None
    assert tool.cache.get(memory_key(memory.id)) is not None

    result = await tool.execute("update", {
        "memory_id": memory.id, "name": "climbing", "category_id": WORK.id, "text": "Climbs on weekends"
    })

    assert result.text == "Successfully updated memory: climbing"
    assert tool.cache.get(memory_key(memory.id)) is None
    assert tool.cache.get(conversation_memories_key("c1")) is None
    document = await tool.documents.get_document_by_id(memory.document_id)
    assert document.text == "Climbs on weekends"
    assert document.metadata.subcategory == "work"
    updated = await tool.get_memory_by_id(memory.id)
    assert updated.name == "climbing"
    assert updated.category_id == WORK.id


@pytest.mark.asyncio
async def test_search_memories_is_cached_until_a_write(tool):
    await remember(tool, "hiking", "The user loves hiking in the alps")

    first = await tool.search_memories("hiking")
    second = await tool.search_memories("hiking")

    assert len(tool.retriever.calls) == 1
    assert second == first
    assert tool.retriever.calls[0]["limit"] == 10
    assert tool.retriever.calls[0]["filters"].content_type == "memory"

    await remember(tool, "cycling", "Cycles to work")
    await tool.search_memories("hiking")

    assert len(tool.retriever.calls) == 2


@pytest.mark.asyncio
async def test_search_memories_returns_empty_list_on_failure(tool):
    tool.retriever.error = ConnectionError("backend down")

    assert await tool.search_memories("hiking") == []


@pytest.mark.asyncio
async def test_conversation_list_is_refreshed_after_remember(tool):
    first = await remember(tool, "hiking", "The user loves hiking in the alps")
    assert [m.id for m in await tool.find_by_conversation_id("c1")] == [first.id]

    second = await remember(tool, "cycling", "Cycles to work")

    assert [m.id for m in await tool.find_by_conversation_id("c1")] == [first.id, second.id]


@pytest.mark.asyncio
async def test_recent_context_lists_categories(tool):
    document = await tool.recent_context("c1")

    assert document.metadata.context_tool == "memory"
    assert document.conversation_id == "c1"
    assert '<category name="profile" subcategory="hobbies"/>' in document.text
    assert '<category name="profile" subcategory="work"/>' in document.text


@pytest.mark.asyncio
async def test_prune_deletes_only_stale_memories_and_flushes_cache(tool):
    stale = await remember(tool, "old job", "Used to work at a bakery", subcategory="work")
    fresh = await remember(tool, "hiking", "The user loves hiking in the alps")
    tool.memories.memories[stale.id] = stale.model_copy(
        update={"updated_at": datetime.utcnow() - timedelta(days=45)}
    )
    tool.cache.set("search:anything:", [])

    pruned = await tool.prune_old_memories(days=30, batch_size=1)

    assert pruned == 1
    assert await tool.memories.get_memory(stale.id) is None
    assert await tool.memories.get_memory(fresh.id) is not None
    assert tool.cache.cache == {}


@pytest.mark.asyncio
async def test_search_memories_caches_per_fetch_size(tool):
    for index in range(12):
        await remember(tool, f"hike {index}", f"Hiking trip number {index}")

    small = await tool.search_memories("hiking", limit=5)
    large = await tool.search_memories("hiking", limit=20)

    assert [call["limit"] for call in tool.retriever.calls] == [10, 40]
    assert len(small) == 5
    assert len(large) == 12
