from typing import Dict, List, Any, Sequence

import numpy as np

from thinkloop.domain.context.backends import VectorBackend
from thinkloop.domain.models.documents import SearchFilters, VectorHit


def matches_filters(payload: Dict[str, Any], filters: SearchFilters) -> bool:
    """True when every present filter equals the payload field"""

    for key, value in filters.active().items():
        if payload.get(key) != value:
            return False
    return True


class VectorMemoryStore(VectorBackend):
    """In-memory vector index with cosine similarity"""

    def __init__(self):
        self.vectors: Dict[str, np.ndarray] = {}
        self.payloads: Dict[str, Dict[str, Any]] = {}

    async def upsert(self, document_id: str, vector: Sequence[float], payload: Dict[str, Any]):
        array = np.asarray(vector, dtype=float)
        norm = np.linalg.norm(array)
        self.vectors[document_id] = array / norm if norm else array
        self.payloads[document_id] = {**payload, "document_id": document_id}

    async def delete(self, document_id: str) -> bool:
        self.payloads.pop(document_id, None)
        return self.vectors.pop(document_id, None) is not None

    async def search_similar(self, vector: Sequence[float], filters: SearchFilters, limit: int) -> List[VectorHit]:
        if not self.vectors:
            return []

        query = np.asarray(vector, dtype=float)
        norm = np.linalg.norm(query)
        if norm:
            query = query / norm

        hits = []
        for document_id, stored in self.vectors.items():
            payload = self.payloads[document_id]
            if not matches_filters(payload, filters):
                continue
            if stored.shape != query.shape:
                continue
            hits.append(VectorHit(payload=dict(payload), score=float(np.dot(stored, query))))

        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits[:limit]

    def __len__(self) -> int:
        return len(self.vectors)
