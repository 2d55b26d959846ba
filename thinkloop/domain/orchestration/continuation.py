from typing import Callable

from thinkloop.domain.models.conversation_state import ConversationState

ContinuationPredicate = Callable[[ConversationState], bool]


def step_bound(max_steps: int) -> ContinuationPredicate:
    """Continue while fewer than ``max_steps`` iterations have completed"""

    def should_continue(state: ConversationState) -> bool:
        return state.config.step < max_steps

    # lets the orchestrator size its graph step ceiling
    should_continue.max_steps = max_steps
    return should_continue
