from typing import Dict, List, Optional, AsyncIterator
from contextlib import asynccontextmanager
import asyncio

import structlog
from langchain_core.messages import BaseMessage

from thinkloop.domain.models.conversation_state import (
    AgentConfig, ConversationState, SessionTools, ToolDescriptor, UserProfile
)
from thinkloop.domain.tool.errors import ToolError

logger = structlog.get_logger(__name__)


class ConversationBusyError(ToolError):
    """A reasoning session for this conversation is already running"""
    type = "conflict"
    code = 409


class ConversationStateManager:
    """Hands out one ConversationState per in-flight reasoning session"""

    def __init__(self):
        self.active: Dict[str, ConversationState] = {}
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def session(
        self,
        conversation_id: str,
        model: str,
        alt_model: Optional[str] = None,
        messages: Optional[List[BaseMessage]] = None,
        tools: Optional[List[ToolDescriptor]] = None,
        user_id: Optional[str] = None,
        user_name: str = "User"
    ) -> AsyncIterator[ConversationState]:
        async with self._lock:
            if conversation_id in self.active:
                raise ConversationBusyError(
                    f"Conversation {conversation_id} already has a session in flight",
                    {"conversation_id": conversation_id}
                )

            state = ConversationState(
                conversation_id=conversation_id,
                messages=list(messages or []),
                config=AgentConfig(model=model, alt_model=alt_model, user_id=user_id),
                session=SessionTools(tools=list(tools or [])),
                profile=UserProfile(user_name=user_name)
            )
            self.active[conversation_id] = state

        logger.debug("Session opened", conversation_id=conversation_id)
        try:
            yield state
        finally:
            async with self._lock:
                self.active.pop(conversation_id, None)
            logger.debug("Session closed", conversation_id=conversation_id, step=state.config.step)

    def is_active(self, conversation_id: str) -> bool:
        return conversation_id in self.active

    def get_all_active_sessions(self) -> Dict[str, Dict]:
        """Summaries of every in-flight session"""

        return {
            conversation_id: state.get_state_summary()
            for conversation_id, state in self.active.items()
        }
