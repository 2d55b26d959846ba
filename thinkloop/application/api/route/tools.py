from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from thinkloop.application.api.dependencies import get_container
from thinkloop.application.api.schema.requests import (
    ToolActionInfo, ToolExecuteRequest, ToolExecuteResponse, ToolInfo
)
from thinkloop.application.container import Container
from thinkloop.domain.models.tool_execution import ToolExecutionRecord

router = APIRouter(prefix="/api/v1/tools", tags=["tools"])


@router.get("", response_model=List[ToolInfo])
async def list_tools(q: Optional[str] = None, container: Container = Depends(get_container)):
    tools = container.registry.search_tools(q) if q else list(container.registry.tools.values())
    return [
        ToolInfo(
            name=tool.name,
            description=tool.description,
            actions=[
                ToolActionInfo(name=action, parameters=schema.model_json_schema())
                for action, schema in tool.actions.items()
            ]
        )
        for tool in tools
    ]


@router.post("/execute", response_model=ToolExecuteResponse)
async def execute_tool(request: ToolExecuteRequest, container: Container = Depends(get_container)):
    result = await container.executor.dispatch(
        request.tool_name,
        request.action,
        request.payload,
        timeout=request.timeout_seconds
    )
    return ToolExecuteResponse(result=result)


@router.get("/executions", response_model=List[ToolExecutionRecord])
async def list_executions(
    limit: int = Query(default=50, ge=1, le=500),
    tool_name: Optional[str] = None,
    container: Container = Depends(get_container)
):
    return await container.execution_repository.list(limit=limit, tool_name=tool_name)
