from fastapi import APIRouter, Depends

from thinkloop.application.api.dependencies import get_container
from thinkloop.application.api.schema.requests import SearchRequest, SearchResponse
from thinkloop.application.container import Container
from thinkloop.domain.models.documents import SearchQuery

router = APIRouter(prefix="/api/v1", tags=["search"])


@router.post("/search", response_model=SearchResponse)
async def search(request: SearchRequest, container: Container = Depends(get_container)):
    query = SearchQuery(
        vector_query=request.vector_query,
        text_query=request.text_query or request.vector_query
    )
    results = await container.retriever.search(
        query, request.filters, request.limit or container.settings.search_default_limit
    )
    return SearchResponse(results=results)
