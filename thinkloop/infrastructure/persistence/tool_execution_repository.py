from typing import Dict, Any, List, Optional
from datetime import datetime

import structlog

from thinkloop.domain.models.tool_execution import ExecutionStatus, ToolExecutionRecord
from thinkloop.domain.tool.errors import NotFoundError

logger = structlog.get_logger(__name__)


class ToolExecutionRepository:
    """Audit trail of tool executions, one record per logical call"""

    def __init__(self):
        self.records: Dict[str, ToolExecutionRecord] = {}

    async def create(self, tool_name: str, action: str, parameters: Dict[str, Any]) -> ToolExecutionRecord:
        record = ToolExecutionRecord(tool_name=tool_name, action=action, parameters=parameters)
        self.records[record.id] = record
        return record.model_copy(deep=True)

    async def complete(self, execution_id: str, result: Dict[str, Any]) -> ToolExecutionRecord:
        return self._finish(execution_id, ExecutionStatus.COMPLETED, result=result)

    async def fail(self, execution_id: str, error: Dict[str, Any]) -> ToolExecutionRecord:
        return self._finish(execution_id, ExecutionStatus.FAILED, error=error)

    def _finish(
        self,
        execution_id: str,
        status: ExecutionStatus,
        result: Optional[Dict[str, Any]] = None,
        error: Optional[Dict[str, Any]] = None
    ) -> ToolExecutionRecord:
        record = self.records.get(execution_id)
        if record is None:
            raise NotFoundError(f"Tool execution {execution_id} not found", details={"execution_id": execution_id})

        if record.is_terminal:
            if record.status != status:
                logger.warning(
                    "Ignoring second terminal update",
                    execution_id=execution_id,
                    status=record.status.value,
                    attempted=status.value
                )
            return record.model_copy(deep=True)

        record.status = status
        record.result = result
        record.error = error
        record.updated_at = datetime.utcnow()
        return record.model_copy(deep=True)

    async def get(self, execution_id: str) -> Optional[ToolExecutionRecord]:
        record = self.records.get(execution_id)
        return record.model_copy(deep=True) if record else None

    async def list(self, limit: int = 50, tool_name: Optional[str] = None) -> List[ToolExecutionRecord]:
        """Most recent executions first"""

        records = [
            record for record in reversed(self.records.values())
            if tool_name is None or record.tool_name == tool_name
        ]
        return [record.model_copy(deep=True) for record in records[:limit]]
