from typing import Dict, List, Optional

import structlog

from thinkloop.domain.models.conversation_state import FINAL_ANSWER_TOOL, ToolDescriptor
from thinkloop.domain.tool.base_tool import BaseTool
from thinkloop.domain.tool.errors import NotFoundError

logger = structlog.get_logger(__name__)

FINAL_ANSWER_DESCRIPTOR = ToolDescriptor(
    id=FINAL_ANSWER_TOOL,
    name=FINAL_ANSWER_TOOL,
    description="Use when the request is fully handled and the agent should answer the user"
)


class ToolRegistry:
    """Registry for managing available tools"""

    def __init__(self):
        self.tools: Dict[str, BaseTool] = {}

    def register(self, tool: BaseTool) -> BaseTool:
        """Register a new tool"""

        if not tool.name:
            raise ValueError(f"{tool.__class__.__name__} has no name")
        if tool.name == FINAL_ANSWER_TOOL:
            raise ValueError(f"'{FINAL_ANSWER_TOOL}' is reserved")

        self.tools[tool.name] = tool
        logger.info("Tool registered", tool_name=tool.name, actions=list(tool.actions))
        return tool

    def get(self, name: str) -> Optional[BaseTool]:
        return self.tools.get(name)

    def resolve(self, name: str) -> BaseTool:
        """Look up a tool, failing with NotFoundError"""

        tool = self.tools.get(name)
        if tool is None:
            raise NotFoundError(f"Tool {name} not found", {"tool_name": name})
        return tool

    def names(self) -> List[str]:
        return list(self.tools)

    def descriptors(self, include_final_answer: bool = True) -> List[ToolDescriptor]:
        """Tools as enumerated for a reasoning session"""

        descriptors = [
            ToolDescriptor(id=tool.id, name=tool.name, description=tool.description)
            for tool in self.tools.values()
        ]
        if include_final_answer:
            descriptors.append(FINAL_ANSWER_DESCRIPTOR.model_copy())
        return descriptors

    def search_tools(self, query: str) -> List[BaseTool]:
        """Search tools by name or description"""

        query_lower = query.lower()
        return [
            tool for tool in self.tools.values()
            if query_lower in tool.name.lower() or query_lower in tool.description.lower()
        ]
