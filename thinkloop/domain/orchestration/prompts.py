"""System prompts for the reasoning loop phases."""

from typing import List
import json

from thinkloop.domain.models.conversation_state import ConversationState


def _tools(state: ConversationState) -> str:
    return "\n".join(
        f'<tool name="{tool.name}">{tool.description}</tool>' for tool in state.session.tools
    ) or "No tools available."


def _tasks(state: ConversationState) -> str:
    lines: List[str] = []
    for task in state.interaction.tasks:
        lines.append(f'<task id="{task.id}" name="{task.name}" status="{task.status.value}">')
        for action in task.actions:
            lines.append(
                f'  <action name="{action.name}" status="{action.status.value}">{action.result or ""}</action>'
            )
        lines.append("</task>")
    return "\n".join(lines) or "No tasks yet."


def _tool_context(state: ConversationState) -> str:
    return "\n".join(
        f'<context tool="{doc.metadata.context_tool}">{doc.text}</context>'
        for doc in state.interaction.tool_context
    ) or "No tool context."


def environment_prompt(state: ConversationState) -> str:
    return (
        f"You are observing the environment of {state.profile.user_name}. "
        "Describe anything about their surroundings, time or situation that the message reveals. "
        "Answer with an empty result when there is nothing to note."
    )


def context_prompt(state: ConversationState) -> str:
    return (
        f"You are gathering general context for a request from {state.profile.user_name}. "
        "Summarize what the assistant should keep in mind while handling the message."
    )


def tools_prompt(state: ConversationState) -> str:
    return (
        "List the tools that could help with the message and what each could do.\n\n"
        f"<tools>\n{_tools(state)}\n</tools>"
    )


def memory_prompt(state: ConversationState) -> str:
    return (
        "List the memory categories worth searching for this message, "
        "with a short query for each. Return an empty list when memory is not needed."
    )


def task_prompt(state: ConversationState) -> str:
    return (
        "Break the message down into tasks. Keep the ids of existing tasks you want to update "
        "and leave the id empty for new tasks. Mark tasks whose actions already succeeded as completed.\n\n"
        f"<environment>{state.thoughts.environment}</environment>\n"
        f"<context>{state.thoughts.context}</context>\n"
        f"<tasks>\n{_tasks(state)}\n</tasks>\n"
        f"<tools>\n{_tools(state)}\n</tools>"
    )


def action_prompt(state: ConversationState) -> str:
    return (
        "Pick the next action: a short name, one tool from the list and the id of the task it serves. "
        "Choose final_answer when everything needed to answer is done.\n\n"
        f"<tasks>\n{_tasks(state)}\n</tasks>\n"
        f"<tools>\n{_tools(state)}\n</tools>\n"
        f"<step>{state.config.step}</step>"
    )


def use_prompt(state: ConversationState) -> str:
    current_tool = state.config.current_tool.name if state.config.current_tool else ""
    current_action = state.config.current_action.name if state.config.current_action else ""
    return (
        f"Prepare the call to the {current_tool} tool for the action '{current_action}'. "
        "Return the tool action and its payload.\n\n"
        f"<tool_context>\n{_tool_context(state)}\n</tool_context>\n"
        f"<tasks>\n{_tasks(state)}\n</tasks>\n"
        f"<memory>{json.dumps(state.thoughts.memory)}</memory>"
    )


def fast_track_prompt(state: ConversationState) -> str:
    return (
        f"Decide whether the latest message from {state.profile.user_name} can be answered directly, "
        "without tools or memory. Return true only for small talk or questions answerable from the conversation."
    )
