from typing import Dict, Any

from pydantic import ValidationError as PydanticValidationError

from thinkloop.domain.tool.base_tool import BaseTool
from thinkloop.domain.tool.errors import ValidationError


class ToolValidator:
    """Validates a tool call against the schema registered for its action"""

    def validate(self, tool: BaseTool, action: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Validated payload with defaults applied; unknown keys are kept"""

        schema = tool.actions.get(action)
        if schema is None:
            raise ValidationError(
                "unknown action for tool",
                {"tool_name": tool.name, "action": action, "actions": list(tool.actions)}
            )

        try:
            validated = schema.model_validate(payload or {})
        except PydanticValidationError as e:
            raise ValidationError(
                f"Invalid payload for {tool.name}.{action}",
                {"tool_name": tool.name, "action": action, "errors": e.errors(include_url=False, include_context=False)}
            ) from e

        return {**(payload or {}), **validated.model_dump()}
