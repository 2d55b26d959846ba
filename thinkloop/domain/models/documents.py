from typing import Dict, Any, List, Optional, Literal
from pydantic import BaseModel, Field, ConfigDict
from datetime import datetime
import uuid


ContentType = Literal["chunk", "full", "memory"]


def new_id() -> str:
    return str(uuid.uuid4())


class DocumentMetadata(BaseModel):
    """Metadata envelope carried by every document"""
    model_config = ConfigDict(extra="allow")

    kind: str = Field(default="text", description="Payload kind (text, document, error)")
    content_type: ContentType = Field(default="full")
    source: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    tokens: int = Field(default=0, description="Approximate token count of the text")
    should_index: bool = Field(default=False, description="Index in vector and lexical backends")
    context_tool: Optional[str] = Field(None, description="Tool whose recent context this document carries")


class Document(BaseModel):
    """Universal content envelope passed between the loop and tools"""
    id: str = Field(default_factory=new_id)
    source_id: str = Field(description="Producer of the document (tool or service)")
    conversation_id: str = Field(default="default")
    text: str = ""
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class MemoryCategory(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    subcategory: str
    description: str = ""


class Memory(BaseModel):
    """A remembered fact; references exactly one memory document"""
    id: str = Field(default_factory=new_id)
    name: str
    category_id: str
    document_id: str
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class SearchFilters(BaseModel):
    """Structured filters shared by the vector and lexical backends"""
    source_id: Optional[str] = None
    source: Optional[str] = None
    content_type: Optional[ContentType] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None

    def active(self) -> Dict[str, str]:
        """Present filters, in lexical filter-expression order"""
        return {key: value for key, value in self.model_dump().items() if value}

    def cache_key(self) -> str:
        return ",".join(f"{key}={value}" for key, value in self.active().items())


class SearchQuery(BaseModel):
    vector_query: str
    text_query: str


class SearchResult(BaseModel):
    document: Document
    score: float
    memory: Optional[Memory] = None


class VectorHit(BaseModel):
    """Nearest-neighbour hit; payload carries document_id plus filterable fields"""
    payload: Dict[str, Any]
    score: float


class LexicalPage(BaseModel):
    hits: List[Dict[str, Any]] = Field(default_factory=list)
    nb_hits: int = 0
    page: int = 0
