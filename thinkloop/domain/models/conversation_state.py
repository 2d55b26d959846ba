from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum
from langchain_core.messages import BaseMessage

from thinkloop.domain.models.documents import Document, new_id


FINAL_ANSWER_TOOL = "final_answer"


class TaskStatus(str, Enum):
    """Task execution status"""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class ActionStatus(str, Enum):
    """Action status; completed and failed are terminal"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self != ActionStatus.PENDING


class Action(BaseModel):
    """One tool invocation step belonging to a task"""
    id: str = Field(default_factory=new_id)
    task_id: str = Field(description="Owning task")
    tool_id: str = Field(description="Tool selected for this step")
    name: str
    payload: Optional[Dict[str, Any]] = Field(None, description="Filled during the use phase")
    sequence: int = Field(default=0, description="Loop step that created the action")
    status: ActionStatus = Field(default=ActionStatus.PENDING)
    result: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Task(BaseModel):
    """A decomposed unit of user intent produced during planning"""
    id: str = Field(default_factory=new_id)
    conversation_id: str
    name: str
    description: Optional[str] = None
    status: TaskStatus = Field(default=TaskStatus.PENDING)
    actions: List[Action] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class ToolDescriptor(BaseModel):
    """Tool as enumerated for a reasoning session"""
    id: Optional[str] = None
    name: str
    description: str = ""


class Ref(BaseModel):
    id: str
    name: str


class AgentThoughts(BaseModel):
    environment: str = ""
    context: str = ""
    tools: List[Any] = Field(default_factory=list)
    memory: List[Any] = Field(default_factory=list)
    task: List[Any] = Field(default_factory=list)


class AgentConfig(BaseModel):
    model: str
    alt_model: Optional[str] = None
    step: int = 0
    current_tool: Optional[Ref] = None
    current_action: Optional[Ref] = None
    current_task: Optional[Ref] = None
    user_id: Optional[str] = None
    fast_track: bool = False


class Interaction(BaseModel):
    tasks: List[Task] = Field(default_factory=list)
    tool_context: List[Document] = Field(default_factory=list)


class SessionTools(BaseModel):
    tools: List[ToolDescriptor] = Field(default_factory=list)


class UserProfile(BaseModel):
    user_name: str = "User"


class ConversationState(BaseModel):
    """Request-scoped context shared by every phase of one reasoning session"""
    conversation_id: str
    messages: List[BaseMessage] = Field(default_factory=list)
    interaction: Interaction = Field(default_factory=Interaction)
    thoughts: AgentThoughts = Field(default_factory=AgentThoughts)
    config: AgentConfig
    session: SessionTools = Field(default_factory=SessionTools)
    profile: UserProfile = Field(default_factory=UserProfile)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    def snapshot(self) -> "ConversationState":
        """Deep copy for read-only use by a phase"""
        return self.model_copy(deep=True)

    def update_config(self, **changes: Any):
        for key, value in changes.items():
            setattr(self.config, key, value)

    def update_thoughts(self, **changes: Any):
        for key, value in changes.items():
            setattr(self.thoughts, key, value)

    def update_interaction(self, **changes: Any):
        for key, value in changes.items():
            setattr(self.interaction, key, value)

    def latest_message(self) -> str:
        if not self.messages:
            return "Hello"
        content = self.messages[-1].content
        return content if isinstance(content, str) and content else "Hello"

    def recent_dialogue(self, limit: int = 3) -> List[BaseMessage]:
        """Last user/assistant turns, oldest first"""
        turns = [m for m in self.messages if m.type in ("human", "ai")]
        return turns[-limit:]

    def find_task(self, task_id: Optional[str]) -> Optional[Task]:
        if not task_id:
            return None
        for task in self.interaction.tasks:
            if task.id == task_id:
                return task
        return None

    def find_tool(self, name: Optional[str]) -> Optional[ToolDescriptor]:
        for tool in self.session.tools:
            if tool.name == name:
                return tool
        return None

    def replace_action(self, action: Action):
        """Swap the in-state copy of an action for its persisted version"""
        task = self.find_task(action.task_id)
        if task is None:
            return
        for index, existing in enumerate(task.actions):
            if existing.id == action.id:
                task.actions[index] = action
                return
        task.actions.append(action)

    def remember_tool_context(self, tool_name: str, document: Document, limit: int):
        """Keep one context document per tool, newest last, capped at limit"""
        kept = [
            doc for doc in self.interaction.tool_context
            if doc.metadata.context_tool != tool_name
        ]
        kept.append(document)
        self.interaction.tool_context = kept[-limit:]

    def get_state_summary(self) -> Dict[str, Any]:
        """Get a summary of the current state"""
        return {
            "conversation_id": self.conversation_id,
            "step": self.config.step,
            "fast_track": self.config.fast_track,
            "current_tool": self.config.current_tool.name if self.config.current_tool else None,
            "tasks": [
                {
                    "id": task.id,
                    "name": task.name,
                    "status": task.status.value,
                    "actions": [
                        {"id": a.id, "name": a.name, "status": a.status.value, "result": a.result}
                        for a in task.actions
                    ],
                }
                for task in self.interaction.tasks
            ],
            "tool_context": [doc.id for doc in self.interaction.tool_context],
        }
