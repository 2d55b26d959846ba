from abc import ABC, abstractmethod
from typing import List, Sequence

from thinkloop.domain.models.documents import LexicalPage, SearchFilters, VectorHit


class VectorBackend(ABC):
    """Nearest-neighbour search over document embeddings"""

    @abstractmethod
    async def search_similar(self, vector: Sequence[float], filters: SearchFilters, limit: int) -> List[VectorHit]:
        """Hits ordered best-first"""
        pass


class LexicalBackend(ABC):
    """Keyword search over document text"""

    @abstractmethod
    async def search(self, text: str, filter_expr: str = "", page_size: int = 15) -> LexicalPage:
        """``filter_expr`` is an AND-joined list of ``key:'value'`` conditions"""
        pass
