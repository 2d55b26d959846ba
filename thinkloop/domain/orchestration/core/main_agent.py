from typing import TypedDict, List, Dict, Any, Optional, Literal
import asyncio

import structlog
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from langgraph.errors import GraphRecursionError
from langgraph.graph import StateGraph, END

from thinkloop.domain.models.conversation_state import (
    FINAL_ANSWER_TOOL, Action, ConversationState, Ref
)
from thinkloop.domain.models.documents import Document
from thinkloop.domain.orchestration import prompts
from thinkloop.domain.orchestration.continuation import ContinuationPredicate, step_bound
from thinkloop.domain.orchestration.schemas import (
    ContextObservation, EnvironmentObservation, FastTrackDecision, MemoryDraft,
    NextStep, TaskPlan, ToolsDraft, ToolUse, ToolUseDecision
)
from thinkloop.domain.tool.base_tool import ContextualTool
from thinkloop.domain.tool.errors import ToolError
from thinkloop.domain.tool.tool_executor import ToolExecutor
from thinkloop.domain.tool.tool_registry import ToolRegistry
from thinkloop.infrastructure.config import Settings
from thinkloop.infrastructure.llm.completion_provider import CompletionProvider, CompletionUser
from thinkloop.infrastructure.observability.langfuse_tracing import Observer, TraceSpan
from thinkloop.infrastructure.observability.logging import agent_logger
from thinkloop.infrastructure.persistence.task_repository import TaskRepository

logger = structlog.get_logger(__name__)

# plan, next, use, act and advance each take one graph step per iteration
NODES_PER_ITERATION = 5


class WorkflowState(TypedDict):
    """State for the reasoning graph"""
    conversation: ConversationState
    should_continue: ContinuationPredicate
    spans: List[TraceSpan]
    selected: bool
    tool_use: Optional[ToolUse]
    result: Optional[Document]
    idle_steps: int


def _trace_messages(messages: List[BaseMessage]) -> List[Dict[str, Any]]:
    return [{"role": message.type, "content": message.content} for message in messages]


class AgentOrchestrator:
    """Reasoning loop: observe, draft, then plan/next/use/act until done"""

    def __init__(
        self,
        provider: CompletionProvider,
        registry: ToolRegistry,
        executor: ToolExecutor,
        task_repository: TaskRepository,
        observer: Observer,
        settings: Settings,
        continuation: Optional[ContinuationPredicate] = None
    ):
        self.provider = provider
        self.registry = registry
        self.executor = executor
        self.task_repository = task_repository
        self.observer = observer
        self.settings = settings
        self.continuation = continuation or step_bound(settings.max_steps)
        self.workflow = self._create_workflow()

    def _create_workflow(self):
        """Create the reasoning graph"""

        workflow = StateGraph(WorkflowState)

        workflow.add_node("observe", self.observe_node)
        workflow.add_node("draft", self.draft_node)
        workflow.add_node("plan", self.plan_node)
        workflow.add_node("next", self.next_node)
        workflow.add_node("use", self.use_node)
        workflow.add_node("act", self.act_node)
        workflow.add_node("advance", self.advance_node)
        workflow.add_node("done", self.done_node)

        workflow.set_entry_point("observe")
        workflow.add_edge("observe", "draft")

        workflow.add_conditional_edges(
            "draft",
            self.route_after_draft,
            {"continue": "plan", "stop": "done"}
        )
        workflow.add_edge("plan", "next")

        workflow.add_conditional_edges(
            "next",
            self.route_after_next,
            {"final_answer": "done", "no_action": "advance", "use": "use"}
        )

        workflow.add_conditional_edges(
            "use",
            self.route_after_use,
            {"skip": "advance", "act": "act"}
        )
        workflow.add_edge("act", "advance")

        workflow.add_conditional_edges(
            "advance",
            self.route_after_advance,
            {"continue": "plan", "stop": "done"}
        )
        workflow.add_edge("done", END)

        return workflow.compile()

    def recursion_limit(self, continuation: ContinuationPredicate) -> int:
        """Graph step ceiling for a predicate; bounded predicates expose ``max_steps``"""

        steps = getattr(continuation, "max_steps", None) or self.settings.max_recursion_steps
        # observe, draft and done plus slack
        return NODES_PER_ITERATION * steps + 5

    def _user(self, conversation: ConversationState) -> CompletionUser:
        return CompletionUser(id=conversation.config.user_id or "", name=conversation.profile.user_name)

    def _alt_model(self, conversation: ConversationState) -> str:
        return conversation.config.alt_model or conversation.config.model

    def _current_span(self, state: WorkflowState) -> TraceSpan:
        if not state["spans"]:
            conversation = state["conversation"]
            state["spans"].append(self.observer.start_span(
                f"thinking #{conversation.config.step}",
                {"conversation_id": conversation.conversation_id, "step": conversation.config.step}
            ))
        return state["spans"][-1]

    def _end_spans(self, state: WorkflowState, output: Any = None):
        while state["spans"]:
            state["spans"].pop().end(output)

    async def _complete(self, span: TraceSpan, name: str, messages: List[BaseMessage], schema, model: str, conversation: ConversationState):
        generation = span.generation(name=name, input=_trace_messages(messages), model=model)
        result = await self.provider.object_completion(
            messages, schema, model=model, temperature=0.0, user=self._user(conversation)
        )
        generation.end(result.model_dump() if result is not None else None)
        return result

    async def observe_node(self, state: WorkflowState) -> Dict[str, Any]:
        """Read the environment and general context of the latest message"""

        conversation = state["conversation"]
        span = self.observer.start_span("observing", {"conversation_id": conversation.conversation_id})
        state["spans"].append(span)

        message = HumanMessage(content=conversation.latest_message())
        model = self._alt_model(conversation)

        environment, context = await asyncio.gather(
            self._complete(
                span, "environment",
                [SystemMessage(content=prompts.environment_prompt(conversation.snapshot())), message],
                EnvironmentObservation, model, conversation
            ),
            self._complete(
                span, "context",
                [SystemMessage(content=prompts.context_prompt(conversation.snapshot())), message],
                ContextObservation, model, conversation
            )
        )

        conversation.update_thoughts(
            environment=environment.result if environment is not None else "",
            context=context.result if context is not None else ""
        )
        agent_logger.log_phase("observe", conversation.conversation_id, conversation.config.step)
        return {"conversation": conversation}

    async def draft_node(self, state: WorkflowState) -> Dict[str, Any]:
        """Draft which tools and memories look relevant"""

        conversation = state["conversation"]
        span = state["spans"][-1]

        message = HumanMessage(content=conversation.latest_message())
        model = self._alt_model(conversation)

        tools, memory = await asyncio.gather(
            self._complete(
                span, "tools",
                [SystemMessage(content=prompts.tools_prompt(conversation.snapshot())), message],
                ToolsDraft, model, conversation
            ),
            self._complete(
                span, "memory",
                [SystemMessage(content=prompts.memory_prompt(conversation.snapshot())), message],
                MemoryDraft, model, conversation
            )
        )

        conversation.update_thoughts(
            tools=[thought.model_dump() for thought in tools.result] if tools is not None else [],
            memory=[thought.model_dump() for thought in memory.result] if memory is not None else []
        )
        self._end_spans(state, conversation.thoughts.model_dump())

        agent_logger.log_phase(
            "draft", conversation.conversation_id, conversation.config.step,
            {"tools": len(conversation.thoughts.tools), "memory": len(conversation.thoughts.memory)}
        )
        return {"conversation": conversation}

    async def plan_node(self, state: WorkflowState) -> Dict[str, Any]:
        """Break the message down into tasks and persist them"""

        conversation = state["conversation"]
        span = self._current_span(state)

        messages = [
            SystemMessage(content=prompts.task_prompt(conversation.snapshot())),
            HumanMessage(content=conversation.latest_message())
        ]
        plan = await self._complete(
            span, "task_planning", messages, TaskPlan, self.settings.planning_model, conversation
        )
        planned = [task.model_dump() for task in plan.result] if plan is not None else []

        tasks = await self.task_repository.create_tasks(conversation.conversation_id, planned)
        conversation.update_interaction(tasks=tasks)
        conversation.update_thoughts(task=planned)

        agent_logger.log_phase("plan", conversation.conversation_id, conversation.config.step, {"tasks": len(tasks)})
        return {"conversation": conversation, "selected": False, "tool_use": None, "result": None}

    async def next_node(self, state: WorkflowState) -> Dict[str, Any]:
        """Select the next action, its tool and its task"""

        conversation = state["conversation"]
        span = self._current_span(state)

        messages = [
            SystemMessage(content=prompts.action_prompt(conversation.snapshot())),
            HumanMessage(content=conversation.latest_message())
        ]
        decision = await self._complete(span, "action_selection", messages, NextStep, conversation.config.model, conversation)
        chosen = decision.result if decision is not None else None

        tool = conversation.find_tool(chosen.tool_name) if chosen else None
        task = conversation.find_task(chosen.task_id) if chosen else None

        if chosen is None or tool is None or not tool.id or task is None:
            logger.warning(
                "No action selected",
                conversation_id=conversation.conversation_id,
                step=conversation.config.step,
                tool_name=chosen.tool_name if chosen else None,
                task_id=chosen.task_id if chosen else None
            )
            conversation.update_config(current_action=None, current_tool=None, current_task=None)
            return {"conversation": conversation, "selected": False}

        action = await self.task_repository.create_action(Action(
            task_id=task.id,
            tool_id=tool.id,
            name=chosen.name,
            sequence=conversation.config.step
        ))
        conversation.replace_action(action)
        conversation.update_config(
            current_action=Ref(id=action.id, name=action.name),
            current_tool=Ref(id=tool.id, name=tool.name),
            current_task=Ref(id=task.id, name=task.name)
        )

        agent_logger.log_phase(
            "next", conversation.conversation_id, conversation.config.step,
            {"action": action.name, "tool": tool.name, "task": task.name}
        )
        return {"conversation": conversation, "selected": True}

    async def use_node(self, state: WorkflowState) -> Dict[str, Any]:
        """Gather tool context and decide the tool action and payload"""

        conversation = state["conversation"]
        span = self._current_span(state)
        tool_name = conversation.config.current_tool.name

        if tool_name in self.settings.context_tools:
            tool = self.registry.get(tool_name)
            if isinstance(tool, ContextualTool):
                document = await tool.recent_context(conversation.conversation_id)
                document.metadata.context_tool = tool_name
                conversation.remember_tool_context(tool_name, document, self.settings.max_tool_context)

        messages = [
            SystemMessage(content=prompts.use_prompt(conversation.snapshot())),
            HumanMessage(content=conversation.latest_message())
        ]
        decision = await self._complete(span, "tool_use", messages, ToolUseDecision, conversation.config.model, conversation)
        tool_use = decision.result if decision is not None else None

        if tool_use is None:
            logger.info("Tool use skipped", conversation_id=conversation.conversation_id, tool_name=tool_name)
            return {"conversation": conversation, "tool_use": None}

        action = await self.task_repository.update_action(conversation.config.current_action.id, payload=tool_use.payload)
        conversation.replace_action(action)

        agent_logger.log_phase(
            "use", conversation.conversation_id, conversation.config.step,
            {"tool": tool_name, "action": tool_use.action}
        )
        return {"conversation": conversation, "tool_use": tool_use}

    async def act_node(self, state: WorkflowState) -> Dict[str, Any]:
        """Dispatch the tool call and record the action outcome"""

        conversation = state["conversation"]
        span = self._current_span(state)
        tool_name = conversation.config.current_tool.name
        action_id = conversation.config.current_action.id
        tool_use = state["tool_use"]
        payload = {**tool_use.payload, "conversation_id": conversation.conversation_id}

        try:
            result = await self.executor.dispatch(
                tool_name, tool_use.action, payload, timeout=self.settings.tool_timeout_seconds
            )
        except ToolError as e:
            action = await self.task_repository.update_action_state(action_id, error=e.to_dict())
            conversation.replace_action(action)
            logger.error(
                "Tool execution failed",
                conversation_id=conversation.conversation_id,
                tool_name=tool_name,
                error=e.to_dict()
            )
            raise

        action = await self.task_repository.update_action_state(action_id, result=result)
        conversation.replace_action(action)

        span.event(
            name=f"{tool_name.lower()}_execution_complete",
            input={"action": tool_use.action, "payload": payload},
            output=result.model_dump(mode="json"),
            metadata={"tool": tool_name, "action": tool_use.action}
        )
        agent_logger.log_phase(
            "act", conversation.conversation_id, conversation.config.step,
            {"tool": tool_name, "action": tool_use.action, "document_id": result.id}
        )
        return {"conversation": conversation, "result": result}

    async def advance_node(self, state: WorkflowState) -> Dict[str, Any]:
        """Close the iteration and bump the step counter"""

        conversation = state["conversation"]
        idle_steps = 0 if state["selected"] else state["idle_steps"] + 1

        self._end_spans(state, {"selected": state["selected"], "acted": state["result"] is not None})
        conversation.update_config(step=conversation.config.step + 1)

        return {"conversation": conversation, "idle_steps": idle_steps}

    async def done_node(self, state: WorkflowState) -> Dict[str, Any]:
        conversation = state["conversation"]
        self._end_spans(state, conversation.get_state_summary())
        agent_logger.log_phase("done", conversation.conversation_id, conversation.config.step)
        return {"conversation": conversation}

    def route_after_draft(self, state: WorkflowState) -> Literal["continue", "stop"]:
        conversation = state["conversation"]
        route = "continue" if state["should_continue"](conversation) else "stop"
        agent_logger.log_workflow_transition(conversation.conversation_id, "draft", "plan" if route == "continue" else "done")
        return route

    def route_after_next(self, state: WorkflowState) -> Literal["final_answer", "no_action", "use"]:
        conversation = state["conversation"]
        if not state["selected"]:
            route = "no_action"
        elif conversation.config.current_tool.name == FINAL_ANSWER_TOOL:
            route = "final_answer"
        else:
            route = "use"
        agent_logger.log_workflow_transition(conversation.conversation_id, "next", route, condition=route)
        return route

    def route_after_use(self, state: WorkflowState) -> Literal["skip", "act"]:
        route = "act" if state["tool_use"] is not None else "skip"
        agent_logger.log_workflow_transition(state["conversation"].conversation_id, "use", route, condition=route)
        return route

    def route_after_advance(self, state: WorkflowState) -> Literal["continue", "stop"]:
        conversation = state["conversation"]

        if state["idle_steps"] >= self.settings.max_idle_steps:
            logger.warning(
                "Stopping after consecutive iterations without an action",
                conversation_id=conversation.conversation_id,
                idle_steps=state["idle_steps"]
            )
            route = "stop"
        else:
            route = "continue" if state["should_continue"](conversation) else "stop"

        agent_logger.log_workflow_transition(conversation.conversation_id, "advance", "plan" if route == "continue" else "done")
        return route

    async def think(
        self,
        conversation: ConversationState,
        continuation: Optional[ContinuationPredicate] = None
    ) -> ConversationState:
        """Run the reasoning loop over a conversation; fatal tool errors propagate"""

        should_continue = continuation or self.continuation
        initial_state: WorkflowState = {
            "conversation": conversation,
            "should_continue": should_continue,
            "spans": [],
            "selected": False,
            "tool_use": None,
            "result": None,
            "idle_steps": 0
        }

        with structlog.contextvars.bound_contextvars(conversation_id=conversation.conversation_id):
            logger.info("Thinking", step=conversation.config.step)
            try:
                await self.workflow.ainvoke(
                    initial_state, config={"recursion_limit": self.recursion_limit(should_continue)}
                )
            except GraphRecursionError:
                self._end_spans(initial_state, {"stopped": "step ceiling"})
                logger.warning(
                    "Stopping at step ceiling",
                    step=conversation.config.step,
                    max_recursion_steps=self.settings.max_recursion_steps
                )
            except Exception as e:
                self._end_spans(initial_state, {"error": str(e)})
                logger.error("Reasoning session aborted", error=str(e))
                raise
            finally:
                self.observer.flush()

        return conversation

    async def fast_track(self, conversation: ConversationState) -> bool:
        """Decide from the recent dialogue whether the full loop can be skipped"""

        span = self.observer.start_span("fast_track", {"conversation_id": conversation.conversation_id})
        messages = [SystemMessage(content=prompts.fast_track_prompt(conversation.snapshot()))]
        messages.extend(conversation.recent_dialogue(3))

        try:
            decision = await self._complete(
                span, "fast_track", messages, FastTrackDecision, conversation.config.model, conversation
            )
        finally:
            span.end()

        fast_track = bool(decision.result) if decision is not None else False
        conversation.update_config(fast_track=fast_track)
        logger.info("Fast track decided", conversation_id=conversation.conversation_id, fast_track=fast_track)
        return fast_track
