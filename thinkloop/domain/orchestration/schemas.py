"""Structured completion outputs for each phase of the reasoning loop."""

from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field

from thinkloop.domain.models.conversation_state import TaskStatus


class EnvironmentObservation(BaseModel):
    thinking: str = ""
    result: str = Field(default="", description="What the agent knows about the user's surroundings")


class ContextObservation(BaseModel):
    thinking: str = ""
    result: str = Field(default="", description="General context relevant to the message")


class ToolThought(BaseModel):
    name: str = Field(description="Tool name")
    query: str = Field(default="", description="What the tool could do for this request")


class ToolsDraft(BaseModel):
    thinking: str = ""
    result: List[ToolThought] = Field(default_factory=list)


class MemoryThought(BaseModel):
    category: str
    subcategory: str
    query: str = ""


class MemoryDraft(BaseModel):
    thinking: str = ""
    result: List[MemoryThought] = Field(default_factory=list)


class PlannedTask(BaseModel):
    id: Optional[str] = Field(None, description="Id of an existing task to update, empty for a new task")
    name: str
    description: Optional[str] = None
    status: TaskStatus = Field(default=TaskStatus.PENDING)


class TaskPlan(BaseModel):
    thinking: str = ""
    result: List[PlannedTask] = Field(default_factory=list)


class NextAction(BaseModel):
    name: str = Field(description="Short name of the action")
    tool_name: str = Field(description="Name of one of the available tools")
    task_id: str = Field(description="Id of the task the action belongs to")


class NextStep(BaseModel):
    thinking: str = ""
    result: Optional[NextAction] = None


class ToolUse(BaseModel):
    action: str = Field(description="Action supported by the current tool")
    payload: Dict[str, Any] = Field(default_factory=dict)


class ToolUseDecision(BaseModel):
    thinking: str = ""
    result: Optional[ToolUse] = None


class FastTrackDecision(BaseModel):
    thinking: str = ""
    result: bool = False
