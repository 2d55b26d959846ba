from typing import Deque, Dict, Any, List, Optional
from collections import deque
from datetime import datetime
import uuid

import structlog
from langfuse import Langfuse

from thinkloop.domain.tool.errors import NotFoundError
from thinkloop.infrastructure.config import Settings

logger = structlog.get_logger(__name__)


class TraceGeneration:
    """LLM generation recorded under a span"""

    def __init__(self, span: "TraceSpan", name: str, model: Optional[str], input: Any, remote: Any = None):
        self.id = str(uuid.uuid4())
        self.span = span
        self.name = name
        self.model = model
        self.input = input
        self.output: Any = None
        self.remote = remote

    def end(self, output: Any = None):
        self.output = output
        if self.remote is not None:
            self.remote.update(output=output)
            self.remote.end()


class TraceSpan:
    """A named phase of a reasoning session"""

    def __init__(self, observer: "Observer", name: str, metadata: Dict[str, Any], remote: Any = None):
        self.id = str(uuid.uuid4())
        self.observer = observer
        self.name = name
        self.metadata = metadata
        self.remote = remote
        self.generations: List[TraceGeneration] = []
        self.started_at = datetime.utcnow()

    def generation(self, name: str, input: Any, model: Optional[str] = None) -> TraceGeneration:
        remote = None
        if self.remote is not None:
            remote = self.remote.start_generation(name=name, model=model, input=input)
        generation = TraceGeneration(self, name, model, input, remote)
        self.generations.append(generation)
        return generation

    def event(
        self,
        name: str,
        input: Any = None,
        output: Any = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        if self.remote is not None:
            self.remote.create_event(name=name, input=input, output=output, metadata=metadata)
        return self.observer.record_event(
            name,
            {"input": input, "output": output, "metadata": metadata or {}},
            parent_id=self.id
        )

    def end(self, output: Any = None):
        self.observer.end_span(self.id, output)


class Observer:
    """Span/generation/event tracing, mirrored to Langfuse when configured"""

    def __init__(self, client: Optional[Langfuse] = None, max_events: int = 1000):
        self.client = client
        self.active_spans: Dict[str, TraceSpan] = {}
        # most recent events only; older ones are dropped
        self.events: Deque[Dict[str, Any]] = deque(maxlen=max_events)

    @classmethod
    def from_settings(cls, settings: Settings) -> "Observer":
        if not settings.langfuse_enabled:
            return cls()
        client = Langfuse(
            public_key=settings.langfuse_public_key,
            secret_key=settings.langfuse_secret_key,
            host=settings.langfuse_host
        )
        return cls(client)

    def start_span(self, name: str, metadata: Optional[Dict[str, Any]] = None) -> TraceSpan:
        remote = None
        if self.client is not None:
            remote = self.client.start_span(name=name, metadata=metadata or {})
        span = TraceSpan(self, name, metadata or {}, remote)
        self.active_spans[span.id] = span
        logger.debug("Span started", span_id=span.id, span_name=name)
        return span

    def end_span(self, span_id: str, output: Any = None):
        span = self.active_spans.pop(span_id, None)
        if span is None:
            raise NotFoundError(f"Span with id {span_id} not found", details={"span_id": span_id})
        if span.remote is not None:
            span.remote.update(output=output)
            span.remote.end()
        logger.debug("Span ended", span_id=span_id, span_name=span.name)

    def record_event(self, name: str, data: Optional[Dict[str, Any]] = None, parent_id: Optional[str] = None) -> Dict[str, Any]:
        event = {
            "id": str(uuid.uuid4()),
            "name": name,
            "span_id": parent_id,
            "data": data or {},
            "timestamp": datetime.utcnow().isoformat()
        }
        self.events.append(event)
        return event

    def events_for(self, span_id: str) -> List[Dict[str, Any]]:
        return [event for event in self.events if event["span_id"] == span_id]

    def flush(self):
        if self.client is not None:
            self.client.flush()
