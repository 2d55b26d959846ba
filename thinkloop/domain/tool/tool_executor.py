from typing import Dict, Any, Optional
import asyncio
import time

import structlog

from thinkloop.domain.models.documents import Document
from thinkloop.domain.tool.base_tool import BaseTool
from thinkloop.domain.tool.errors import ToolTimeoutError, classify_error
from thinkloop.domain.tool.tool_registry import ToolRegistry
from thinkloop.domain.tool.tool_validator import ToolValidator
from thinkloop.infrastructure.observability.logging import agent_logger, metrics
from thinkloop.infrastructure.persistence.tool_execution_repository import ToolExecutionRepository

logger = structlog.get_logger(__name__)


class ToolExecutor:
    """Resolves, validates, times out and audits tool calls"""

    def __init__(
        self,
        registry: ToolRegistry,
        repository: ToolExecutionRepository,
        validator: Optional[ToolValidator] = None,
        default_timeout: float = 30.0
    ):
        self.registry = registry
        self.repository = repository
        self.validator = validator or ToolValidator()
        self.default_timeout = default_timeout

    async def execute_with_timeout(
        self,
        tool: BaseTool,
        action: str,
        payload: Dict[str, Any],
        timeout: float
    ) -> Document:
        """Run the tool, cancelling it once the timeout elapses"""

        try:
            return await asyncio.wait_for(tool.execute(action, payload), timeout=timeout)
        except asyncio.TimeoutError:
            raise ToolTimeoutError(
                f"Tool {tool.name} timed out after {timeout}s",
                {"tool_name": tool.name, "action": action, "timeout_seconds": timeout}
            )

    async def dispatch(
        self,
        tool_name: str,
        action: str,
        payload: Dict[str, Any],
        timeout: Optional[float] = None
    ) -> Document:
        """Execute a tool call with one audit record per call.

        Unknown tools and invalid payloads fail before any record exists.
        Everything after that ends in exactly one terminal update of the
        record created here.
        """

        tool = self.registry.resolve(tool_name)
        parameters = self.validator.validate(tool, action, payload)

        record = await self.repository.create(tool_name, action, parameters)
        start_time = time.time()

        try:
            result = await self.execute_with_timeout(
                tool, action, parameters, timeout if timeout is not None else self.default_timeout
            )
        except Exception as e:
            error = classify_error(e)
            duration_ms = (time.time() - start_time) * 1000

            await self.repository.fail(record.id, error.to_dict())
            metrics.increment_counter("tool.failed", tags={"tool": tool_name, "type": error.type})
            agent_logger.log_tool_execution(
                tool_name=tool_name,
                action=action,
                execution_id=record.id,
                duration_ms=duration_ms,
                success=False,
                error=error.to_dict()
            )

            if error is e:
                raise
            raise error from e

        duration_ms = (time.time() - start_time) * 1000
        await self.repository.complete(record.id, result.model_dump(mode="json"))
        metrics.record_latency("tool_execution", duration_ms, tags={"tool": tool_name})
        agent_logger.log_tool_execution(
            tool_name=tool_name,
            action=action,
            execution_id=record.id,
            duration_ms=duration_ms
        )
        return result
