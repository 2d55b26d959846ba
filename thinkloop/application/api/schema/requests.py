from typing import Dict, Any, List, Literal, Optional
from pydantic import BaseModel, Field

from thinkloop.domain.models.documents import Document, SearchFilters, SearchResult, new_id


class ChatMessage(BaseModel):
    role: Literal["user", "assistant", "system"] = "user"
    content: str


class ChatRequest(BaseModel):
    conversation_id: str = Field(default_factory=new_id)
    message: str = Field(min_length=1)
    history: List[ChatMessage] = Field(default_factory=list)
    user_id: Optional[str] = None
    user_name: str = "User"
    allow_fast_track: bool = True


class ChatResponse(BaseModel):
    conversation_id: str
    fast_track: bool
    state: Dict[str, Any]


class ToolActionInfo(BaseModel):
    name: str
    parameters: Dict[str, Any]


class ToolInfo(BaseModel):
    name: str
    description: str
    actions: List[ToolActionInfo]


class ToolExecuteRequest(BaseModel):
    tool_name: str
    action: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    timeout_seconds: Optional[float] = Field(None, gt=0)


class ToolExecuteResponse(BaseModel):
    success: bool = True
    result: Document


class SearchRequest(BaseModel):
    vector_query: str = Field(min_length=1)
    text_query: Optional[str] = None
    filters: SearchFilters = Field(default_factory=SearchFilters)
    limit: Optional[int] = Field(None, ge=1, le=100)


class SearchResponse(BaseModel):
    results: List[SearchResult]
