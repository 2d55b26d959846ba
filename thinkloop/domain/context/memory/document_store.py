from typing import Dict, List, Any, Optional
from datetime import datetime, timedelta
import asyncio

import structlog

from thinkloop.domain.context.memory.lexical_memory_store import LexicalMemoryStore
from thinkloop.domain.context.memory.vector_memory_store import VectorMemoryStore
from thinkloop.domain.models.documents import Document, DocumentMetadata, Memory, MemoryCategory
from thinkloop.domain.tool.errors import NotFoundError
from thinkloop.infrastructure.llm.completion_provider import CompletionProvider

logger = structlog.get_logger(__name__)

INDEXED_FIELDS = ("source_id", "source", "content_type", "category", "subcategory")


def count_tokens(text: str) -> int:
    """Rough token estimate used for document metadata"""
    return len(text.split())


class DocumentStore:
    """Document persistence with vector and lexical indexing.

    Documents flagged with ``should_index`` are embedded and pushed to both
    search backends on create and update, and removed from them on delete.
    """

    def __init__(
        self,
        provider: CompletionProvider,
        vector_store: VectorMemoryStore,
        lexical_store: LexicalMemoryStore
    ):
        self.provider = provider
        self.vector_store = vector_store
        self.lexical_store = lexical_store
        self.documents: Dict[str, Document] = {}

    async def get_document_by_id(self, document_id: str) -> Optional[Document]:
        return self.documents.get(document_id)

    async def create_document(
        self,
        text: str,
        source_id: str,
        conversation_id: str = "default",
        document_id: Optional[str] = None,
        **metadata: Any
    ) -> Document:
        """Create a document, indexing it when ``should_index`` is set"""

        fields = {"source_id": source_id, "conversation_id": conversation_id, "text": text}
        if document_id:
            fields["id"] = document_id

        document = Document(
            **fields,
            metadata=DocumentMetadata(tokens=count_tokens(text), **metadata)
        )
        self.documents[document.id] = document

        if document.metadata.should_index:
            await self._index(document)

        logger.debug(
            "Document created",
            document_id=document.id,
            source_id=source_id,
            content_type=document.metadata.content_type,
            indexed=document.metadata.should_index
        )
        return document

    async def create_error_document(
        self,
        error: BaseException,
        conversation_id: str = "default",
        context: str = "",
        source_id: str = "system"
    ) -> Document:
        """Wrap a failure into a document so callers can keep going"""

        message = str(error) or error.__class__.__name__
        text = f"Error in {context}: {message}" if context else f"Error: {message}"

        logger.warning("Error document created", context=context, error=message, source_id=source_id)
        return await self.create_document(
            text=text,
            source_id=source_id,
            conversation_id=conversation_id,
            kind="error",
            content_type="full",
            name="Error",
            source=source_id,
            description=context or None
        )

    async def update_document(
        self,
        document_id: str,
        text: Optional[str] = None,
        **metadata: Any
    ) -> Document:
        document = self.documents.get(document_id)
        if document is None:
            raise NotFoundError(f"Document {document_id} not found", {"document_id": document_id})

        updates: Dict[str, Any] = {"updated_at": datetime.utcnow()}
        if text is not None:
            updates["text"] = text

        merged = document.metadata.model_dump()
        merged.update({key: value for key, value in metadata.items() if value is not None})
        if text is not None:
            merged["tokens"] = count_tokens(text)
        updates["metadata"] = DocumentMetadata(**merged)

        document = document.model_copy(update=updates)
        self.documents[document_id] = document

        if document.metadata.should_index:
            await self._index(document)

        return document

    async def delete_document(self, document_id: str) -> bool:
        document = self.documents.pop(document_id, None)
        if document is None:
            return False

        await asyncio.gather(
            self.vector_store.delete(document_id),
            self.lexical_store.delete(document_id)
        )
        return True

    async def _index(self, document: Document):
        attributes = {"source_id": document.source_id}
        metadata = document.metadata.model_dump()
        for field in INDEXED_FIELDS[1:]:
            if metadata.get(field) is not None:
                attributes[field] = metadata[field]

        embedding = await self.provider.embed(document.text)
        await asyncio.gather(
            self.vector_store.upsert(document.id, embedding, attributes),
            self.lexical_store.index(document.id, document.text, attributes)
        )


class MemoryStore:
    """Memories, their categories and the conversations they belong to"""

    def __init__(self, categories: Optional[List[MemoryCategory]] = None):
        self.memories: Dict[str, Memory] = {}
        self.categories: Dict[str, MemoryCategory] = {}
        self.conversation_links: Dict[str, List[str]] = {}

        for category in categories or []:
            self.add_category(category)

    def add_category(self, category: MemoryCategory) -> MemoryCategory:
        self.categories[category.id] = category
        return category

    async def find_category(self, name: str, subcategory: str) -> Optional[MemoryCategory]:
        for category in self.categories.values():
            if category.name == name and category.subcategory == subcategory:
                return category
        return None

    async def get_category(self, category_id: str) -> Optional[MemoryCategory]:
        return self.categories.get(category_id)

    async def create_memory(self, name: str, category_id: str, document_id: str) -> Memory:
        memory = Memory(name=name, category_id=category_id, document_id=document_id)
        self.memories[memory.id] = memory
        return memory

    async def get_memory(self, memory_id: str) -> Optional[Memory]:
        return self.memories.get(memory_id)

    async def get_memory_by_document_id(self, document_id: str) -> Optional[Memory]:
        for memory in self.memories.values():
            if memory.document_id == document_id:
                return memory
        return None

    async def update_memory(self, memory_id: str, **changes: Any) -> Memory:
        memory = self.memories.get(memory_id)
        if memory is None:
            raise NotFoundError(f"Memory {memory_id} not found", {"memory_id": memory_id})

        changes = {key: value for key, value in changes.items() if value is not None}
        changes["updated_at"] = datetime.utcnow()
        memory = memory.model_copy(update=changes)
        self.memories[memory_id] = memory
        return memory

    async def delete_memory(self, memory_id: str) -> bool:
        if self.memories.pop(memory_id, None) is None:
            return False
        for memory_ids in self.conversation_links.values():
            if memory_id in memory_ids:
                memory_ids.remove(memory_id)
        return True

    async def link_conversation(self, conversation_id: str, memory_id: str):
        memory_ids = self.conversation_links.setdefault(conversation_id, [])
        if memory_id not in memory_ids:
            memory_ids.append(memory_id)

    async def conversations_for(self, memory_id: str) -> List[str]:
        return [
            conversation_id for conversation_id, memory_ids in self.conversation_links.items()
            if memory_id in memory_ids
        ]

    async def find_by_conversation_id(self, conversation_id: str) -> List[Memory]:
        memory_ids = self.conversation_links.get(conversation_id, [])
        return [self.memories[memory_id] for memory_id in memory_ids if memory_id in self.memories]

    async def older_than(self, days: int) -> List[Memory]:
        cutoff = datetime.utcnow() - timedelta(days=days)
        return [memory for memory in self.memories.values() if memory.updated_at < cutoff]
