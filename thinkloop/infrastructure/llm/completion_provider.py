"""
Completion provider contract consumed by the reasoning loop and memory tool.

The loop makes at most one call per completion; retries and model fallback are
the provider's concern.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar

import structlog
from langchain_core.embeddings import Embeddings
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage
from pydantic import BaseModel

logger = structlog.get_logger(__name__)

T = TypeVar("T", bound=BaseModel)


class CompletionUser(BaseModel):
    id: str = ""
    name: str = "User"


class CompletionProvider(ABC):
    """LLM and embedding calls used by the core"""

    @abstractmethod
    async def text_completion(
        self,
        messages: List[BaseMessage],
        model: str,
        temperature: float = 0.0,
        user: Optional[CompletionUser] = None
    ) -> str:
        pass

    @abstractmethod
    async def object_completion(
        self,
        messages: List[BaseMessage],
        schema: Type[T],
        model: str,
        temperature: float = 0.0,
        user: Optional[CompletionUser] = None
    ) -> Optional[T]:
        """Structured completion parsed into ``schema``; None when the model returns nothing"""
        pass

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        pass


ChatModelFactory = Callable[[str, float], BaseChatModel]


class LangChainCompletionProvider(CompletionProvider):
    """Adapter over LangChain chat models and embeddings"""

    def __init__(self, chat_model_factory: ChatModelFactory, embeddings: Embeddings):
        self.chat_model_factory = chat_model_factory
        self.embeddings = embeddings

    def _run_config(self, user: Optional[CompletionUser]) -> Dict[str, Any]:
        user = user or CompletionUser()
        return {"metadata": {"user_id": user.id, "user_name": user.name}}

    async def text_completion(self, messages, model, temperature=0.0, user=None) -> str:
        chat = self.chat_model_factory(model, temperature)
        response = await chat.ainvoke(messages, config=self._run_config(user))
        content = response.content
        if isinstance(content, str):
            return content
        return "".join(
            part.get("text", "") if isinstance(part, dict) else str(part)
            for part in content
        )

    async def object_completion(self, messages, schema, model, temperature=0.0, user=None):
        chat = self.chat_model_factory(model, temperature)
        structured = chat.with_structured_output(schema)
        result = await structured.ainvoke(messages, config=self._run_config(user))
        if result is None:
            logger.warning("Structured completion returned nothing", model=model, schema=schema.__name__)
            return None
        if isinstance(result, dict):
            return schema.model_validate(result)
        return result

    async def embed(self, text: str) -> List[float]:
        return await self.embeddings.aembed_query(text)
