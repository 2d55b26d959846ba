from typing import Dict, Any, Optional
from pydantic import BaseModel, Field
from datetime import datetime
from enum import Enum

from thinkloop.domain.models.documents import new_id


class ExecutionStatus(str, Enum):
    """Audit status of a tool execution"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class ToolExecutionRecord(BaseModel):
    """One record per logical tool execution, updated in place"""
    id: str = Field(default_factory=new_id)
    tool_name: str
    action: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    status: ExecutionStatus = Field(default=ExecutionStatus.PENDING)
    result: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = Field(None, description="Serialized ToolError")
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status != ExecutionStatus.PENDING
