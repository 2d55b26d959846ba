import asyncio
import zlib
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel

from thinkloop.domain.context.backends import LexicalBackend, VectorBackend
from thinkloop.domain.models.documents import Document, LexicalPage, SearchFilters, VectorHit
from thinkloop.domain.tool.base_tool import BaseTool, ContextualTool, ToolPayload
from thinkloop.infrastructure.llm.completion_provider import CompletionProvider

EMBEDDING_SIZE = 32


def bag_of_words(text: str) -> List[float]:
    vector = [0.0] * EMBEDDING_SIZE
    for token in text.lower().split():
        vector[zlib.crc32(token.encode()) % EMBEDDING_SIZE] += 1.0
    return vector


class FakeProvider(CompletionProvider):
    """Scripted completions keyed by schema class name.

    A response may be a model instance, None, a list consumed one item per
    call (the last item repeats), or a callable receiving the messages.
    """

    def __init__(self, responses: Optional[Dict[str, Any]] = None, fail_embed: bool = False) -> None:
        self.responses = responses or {}
        self.fail_embed = fail_embed
        self.calls: List[Dict[str, Any]] = []
        self.embedded: List[str] = []

    async def text_completion(self, messages, model, temperature=0.0, user=None) -> str:
        self.calls.append({"schema": None, "model": model, "temperature": temperature, "messages": messages})
        return "ok"

    async def object_completion(self, messages, schema, model, temperature=0.0, user=None):
        name = schema.__name__
        self.calls.append({"schema": name, "model": model, "temperature": temperature, "messages": messages})

        response = self.responses.get(name)
        if isinstance(response, list):
            if not response:
                return None
            response = response.pop(0) if len(response) > 1 else response[0]
        if callable(response) and not isinstance(response, BaseModel):
            response = response(messages)
        return response

    async def embed(self, text: str) -> List[float]:
        if self.fail_embed:
            raise RuntimeError("embedding service unavailable")
        self.embedded.append(text)
        return bag_of_words(text)

    def schemas_called(self) -> List[str]:
        return [call["schema"] for call in self.calls]


class FakeVectorBackend(VectorBackend):
    def __init__(self, hits: Optional[List[VectorHit]] = None, error: Optional[Exception] = None) -> None:
        self.hits = hits or []
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    async def search_similar(self, vector, filters: SearchFilters, limit: int) -> List[VectorHit]:
        self.calls.append({"vector": vector, "filters": filters, "limit": limit})
        if self.error:
            raise self.error
        return list(self.hits)


class FakeLexicalBackend(LexicalBackend):
    def __init__(self, hits: Optional[List[Dict[str, Any]]] = None, error: Optional[Exception] = None) -> None:
        self.hits = hits or []
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    async def search(self, text: str, filter_expr: str = "", page_size: int = 15) -> LexicalPage:
        self.calls.append({"text": text, "filter_expr": filter_expr, "page_size": page_size})
        if self.error:
            raise self.error
        return LexicalPage(hits=list(self.hits), nb_hits=len(self.hits))


class EchoPayload(ToolPayload):
    text: str
    repeat: int = 1


class EchoTool(BaseTool):
    name = "echo"
    description = "Repeats text back"
    actions = {"echo": EchoPayload}

    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []

    async def execute(self, action: str, payload: Dict[str, Any]) -> Document:
        self.calls.append({"action": action, "payload": payload})
        return Document(
            source_id=self.name,
            conversation_id=payload.get("conversation_id", "default"),
            text=" ".join([payload["text"]] * payload.get("repeat", 1))
        )


class SlowTool(BaseTool):
    name = "slow"
    description = "Never finishes in time"
    actions = {"wait": ToolPayload}

    def __init__(self, delay: float = 10.0) -> None:
        self.delay = delay
        self.cancelled = False
        self.finished = False

    async def execute(self, action: str, payload: Dict[str, Any]) -> Document:
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        self.finished = True
        return Document(source_id=self.name, text="late")


class FailingTool(BaseTool):
    name = "failing"
    description = "Always raises"
    actions = {"run": ToolPayload}

    def __init__(self, error: Exception) -> None:
        self.error = error

    async def execute(self, action: str, payload: Dict[str, Any]) -> Document:
        raise self.error


class UpstreamError(Exception):
    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class CalendarTool(ContextualTool):
    name = "calendar"
    description = "Calendar events"
    actions = {"list": ToolPayload}

    def __init__(self) -> None:
        self.context_calls = 0

    async def execute(self, action: str, payload: Dict[str, Any]) -> Document:
        return Document(source_id=self.name, text="no events")

    async def recent_context(self, conversation_id: str = "default") -> Document:
        self.context_calls += 1
        return Document(
            source_id=self.name,
            conversation_id=conversation_id,
            text=f"calendar context #{self.context_calls}"
        )


def sequence(*items: Any) -> Callable[[Any], Any]:
    """Response callable returning items in order, then None"""

    remaining = list(items)

    def respond(messages):
        return remaining.pop(0) if remaining else None

    return respond
