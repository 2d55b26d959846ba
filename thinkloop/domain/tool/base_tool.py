from abc import ABC, abstractmethod
from typing import Dict, Any, Type

from pydantic import BaseModel, ConfigDict, Field

from thinkloop.domain.models.documents import Document


class ToolPayload(BaseModel):
    """Base payload schema; every action accepts a conversation id"""
    model_config = ConfigDict(extra="allow")

    conversation_id: str = Field(default="default")


class BaseTool(ABC):
    """A tool the agent can dispatch to.

    ``actions`` maps each supported action name to the pydantic schema its
    payload must satisfy. Tools return a Document or raise; errors are
    classified by the executor.
    """

    name: str = ""
    description: str = ""
    actions: Dict[str, Type[BaseModel]] = {}

    @property
    def id(self) -> str:
        return self.name

    @abstractmethod
    async def execute(self, action: str, payload: Dict[str, Any]) -> Document:
        pass


class ContextualTool(BaseTool):
    """Tool able to describe its recent state for the use phase"""

    @abstractmethod
    async def recent_context(self, conversation_id: str = "default") -> Document:
        """Never raises; failures come back as an error document"""
        pass
