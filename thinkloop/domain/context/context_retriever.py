from typing import Dict, List, Optional
import asyncio
import time

import structlog

from thinkloop.domain.context.backends import LexicalBackend, VectorBackend
from thinkloop.domain.context.context_ranker import fuse_cooccurring, rrf_score
from thinkloop.domain.context.memory.document_store import DocumentStore, MemoryStore
from thinkloop.domain.context.memory.vector_memory_store import matches_filters
from thinkloop.domain.models.documents import SearchFilters, SearchQuery, SearchResult
from thinkloop.infrastructure.llm.completion_provider import CompletionProvider
from thinkloop.infrastructure.observability.logging import agent_logger, metrics

logger = structlog.get_logger(__name__)


def build_filter_expr(filters: SearchFilters) -> str:
    """AND-joined ``key:'value'`` conditions for the lexical backend"""

    return " AND ".join(f"{key}:'{value}'" for key, value in filters.active().items())


class HybridRetriever:
    """Vector and lexical search fused into one ranked list.

    Vector hits keep their raw similarity. Lexical hits are scored with
    Reciprocal Rank Fusion over their 1-based rank in the lexical list, and a
    document returned by both backends is rescored by ``fuse_cooccurring``.
    Any backend failure propagates to the caller.
    """

    def __init__(
        self,
        provider: CompletionProvider,
        vector_backend: VectorBackend,
        lexical_backend: LexicalBackend,
        documents: DocumentStore,
        memories: MemoryStore
    ):
        self.provider = provider
        self.vector_backend = vector_backend
        self.lexical_backend = lexical_backend
        self.documents = documents
        self.memories = memories

    async def search(
        self,
        query: SearchQuery,
        filters: Optional[SearchFilters] = None,
        limit: int = 15
    ) -> List[SearchResult]:
        filters = filters or SearchFilters()
        start_time = time.time()

        embedding = await self.provider.embed(query.vector_query)

        vector_hits, lexical_page = await asyncio.gather(
            self.vector_backend.search_similar(embedding, filters, limit),
            self.lexical_backend.search(
                query.text_query,
                filter_expr=build_filter_expr(filters),
                page_size=limit
            )
        )

        scores: Dict[str, float] = {}

        for hit in vector_hits:
            document_id = hit.payload.get("document_id")
            if document_id and matches_filters(hit.payload, filters):
                scores[document_id] = hit.score
            else:
                logger.debug("Vector hit excluded", document_id=document_id)

        for index, hit in enumerate(lexical_page.hits):
            document_id = hit.get("document_id")
            if not document_id or not matches_filters(hit, filters):
                logger.debug("Lexical hit excluded", document_id=document_id)
                continue

            rank = index + 1
            if document_id in scores:
                scores[document_id] = fuse_cooccurring(scores[document_id], rank)
            else:
                scores[document_id] = rrf_score(lexical_rank=rank)

        results = await self._hydrate(scores, filters)
        results.sort(key=lambda result: result.score, reverse=True)
        results = results[:limit]

        metrics.record_latency("hybrid_search", (time.time() - start_time) * 1000)
        agent_logger.log_retrieval(
            query=query.vector_query,
            vector_hits=len(vector_hits),
            lexical_hits=len(lexical_page.hits),
            returned=len(results)
        )
        return results

    async def _hydrate(self, scores: Dict[str, float], filters: SearchFilters) -> List[SearchResult]:
        document_ids = list(scores)

        async def load(document_id: str):
            return await asyncio.gather(
                self.documents.get_document_by_id(document_id),
                self.memories.get_memory_by_document_id(document_id)
            )

        loaded = await asyncio.gather(*(load(document_id) for document_id in document_ids))

        results = []
        for document_id, (document, memory) in zip(document_ids, loaded):
            if document is None:
                logger.debug("Document not found", document_id=document_id)
                continue
            if filters.content_type == "memory" and memory is None:
                logger.debug("Memory not found for document", document_id=document_id)
                continue
            results.append(SearchResult(document=document, score=scores[document_id], memory=memory))

        return results
