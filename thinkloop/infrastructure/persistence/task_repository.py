from typing import Dict, Any, List, Optional
from datetime import datetime

import structlog

from thinkloop.domain.models.conversation_state import Action, ActionStatus, Task, TaskStatus
from thinkloop.domain.models.documents import Document
from thinkloop.domain.tool.errors import NotFoundError, ValidationError

logger = structlog.get_logger(__name__)


def _task_status(value: Any) -> TaskStatus:
    """Unknown or missing statuses fall back to pending"""

    try:
        return TaskStatus(value)
    except ValueError:
        if value:
            logger.warning("Unknown task status", status=value)
        return TaskStatus.PENDING


class TaskRepository:
    """In-memory task and action persistence"""

    def __init__(self):
        self.tasks: Dict[str, Task] = {}
        self.actions: Dict[str, Action] = {}

    async def create_tasks(self, conversation_id: str, planned: List[Dict[str, Any]]) -> List[Task]:
        """Persist a planned breakdown; items whose id is already known update that task"""

        persisted = []
        for item in planned:
            existing = self.tasks.get(item.get("id") or "")
            if existing is not None and existing.conversation_id == conversation_id:
                existing.name = item.get("name") or existing.name
                existing.description = item.get("description", existing.description)
                if item.get("status"):
                    existing.status = _task_status(item["status"])
                existing.updated_at = datetime.utcnow()
                task = existing
            else:
                task = Task(
                    conversation_id=conversation_id,
                    name=item.get("name") or "Untitled task",
                    description=item.get("description"),
                    status=_task_status(item.get("status"))
                )
                self.tasks[task.id] = task
            persisted.append(task.model_copy(deep=True))

        logger.debug("Tasks persisted", conversation_id=conversation_id, count=len(persisted))
        return persisted

    async def list_tasks(self, conversation_id: str) -> List[Task]:
        return [
            task.model_copy(deep=True)
            for task in self.tasks.values()
            if task.conversation_id == conversation_id
        ]

    async def create_action(self, action: Action) -> Action:
        stored = action.model_copy(deep=True)
        self.actions[stored.id] = stored
        task = self.tasks.get(stored.task_id)
        if task is not None:
            task.actions.append(stored)
        return stored.model_copy(deep=True)

    async def get_action(self, action_id: str) -> Optional[Action]:
        action = self.actions.get(action_id)
        return action.model_copy(deep=True) if action else None

    def _get(self, action_id: str) -> Action:
        action = self.actions.get(action_id)
        if action is None:
            raise NotFoundError(f"Action {action_id} not found", details={"action_id": action_id})
        return action

    async def update_action(
        self,
        action_id: str,
        payload: Optional[Dict[str, Any]] = None,
        status: Optional[ActionStatus] = None
    ) -> Action:
        action = self._get(action_id)

        if status is not None and status != action.status:
            if action.status.is_terminal:
                raise ValidationError(
                    f"Action {action_id} is already {action.status.value}",
                    details={"action_id": action_id, "status": action.status.value}
                )
            action.status = status

        if payload is not None:
            action.payload = payload
        action.updated_at = datetime.utcnow()
        return action.model_copy(deep=True)

    async def update_action_state(
        self,
        action_id: str,
        result: Optional[Document] = None,
        error: Optional[Dict[str, Any]] = None
    ) -> Action:
        """Move an action to its terminal state; repeated calls leave it unchanged"""

        action = self._get(action_id)
        if action.status.is_terminal:
            logger.warning("Action already terminal", action_id=action_id, status=action.status.value)
            return action.model_copy(deep=True)

        if error is not None:
            action.status = ActionStatus.FAILED
            action.result = error.get("message")
        else:
            action.status = ActionStatus.COMPLETED
            action.result = result.text if result is not None else None
        action.updated_at = datetime.utcnow()
        return action.model_copy(deep=True)
