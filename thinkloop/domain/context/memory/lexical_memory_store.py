from typing import Dict, List, Any
import re

from thinkloop.domain.context.backends import LexicalBackend
from thinkloop.domain.context.context_ranker import ContextRanker
from thinkloop.domain.models.documents import LexicalPage

FILTER_CONDITION = re.compile(r"(\w+):'((?:[^'\\]|\\.)*)'")


def parse_filter_expr(filter_expr: str) -> Dict[str, str]:
    """Parse ``key:'value' AND key:'value'`` into a dict"""

    return {key: value for key, value in FILTER_CONDITION.findall(filter_expr or "")}


class LexicalMemoryStore(LexicalBackend):
    """In-memory keyword index"""

    def __init__(self, ranker: ContextRanker = None):
        self.ranker = ranker or ContextRanker()
        self.records: Dict[str, Dict[str, Any]] = {}

    async def index(self, document_id: str, text: str, attributes: Dict[str, Any]):
        self.records[document_id] = {**attributes, "document_id": document_id, "text": text}

    async def delete(self, document_id: str) -> bool:
        return self.records.pop(document_id, None) is not None

    async def search(self, text: str, filter_expr: str = "", page_size: int = 15) -> LexicalPage:
        conditions = parse_filter_expr(filter_expr)

        scored: List[tuple] = []
        for record in self.records.values():
            if any(record.get(key) != value for key, value in conditions.items()):
                continue
            score = self.ranker.calculate_relevance(text, record["text"])
            if score > 0:
                scored.append((score, record))

        scored.sort(key=lambda item: item[0], reverse=True)
        hits = [dict(record, _score=score) for score, record in scored[:page_size]]
        return LexicalPage(hits=hits, nb_hits=len(scored), page=0)
