from typing import Optional
import re

RRF_K = 60


def rrf_score(vector_rank: Optional[int] = None, lexical_rank: Optional[int] = None, k: int = RRF_K) -> float:
    """Reciprocal Rank Fusion over 1-based ranks; a missing rank contributes nothing"""

    vector_score = 1 / (k + vector_rank) if vector_rank else 0.0
    lexical_score = 1 / (k + lexical_rank) if lexical_rank else 0.0
    return vector_score + lexical_score


def fuse_cooccurring(vector_score: float, lexical_rank: int, k: int = RRF_K) -> float:
    """Score for a document found by both backends.

    The vector similarity is discarded and the lexical rank is used for both
    RRF terms, giving 2 / (k + lexical_rank). Change the fusion rule here only.
    """

    return rrf_score(lexical_rank, lexical_rank, k)


class ContextRanker:
    """Keyword relevance between a query and a piece of content"""

    def tokenize(self, text: str) -> set:
        return set(re.findall(r'\w+', text.lower()))

    def calculate_relevance(self, query: str, content: str) -> float:
        """Calculate relevance score between query and content"""

        query_lower = query.lower()
        content_lower = content.lower()

        query_words = self.tokenize(query_lower)
        content_words = self.tokenize(content_lower)

        if not query_words:
            return 0.0

        overlap = len(query_words.intersection(content_words))
        score = overlap / len(query_words)

        # Boost score if query appears as substring
        if score and query_lower in content_lower:
            score += 0.3

        return min(score, 1.0)
