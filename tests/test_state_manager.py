import pytest
from langchain_core.messages import HumanMessage

from thinkloop.domain.context.state.state_manager import ConversationBusyError, ConversationStateManager
from thinkloop.domain.models.conversation_state import ToolDescriptor


@pytest.mark.asyncio
async def test_session_builds_state_and_releases_it():
    manager = ConversationStateManager()

    async with manager.session(
        "c1",
        model="test-model",
        alt_model="test-alt-model",
        messages=[HumanMessage(content="hello")],
        tools=[ToolDescriptor(id="memory", name="memory")],
        user_id="u1",
        user_name="Ada"
    ) as state:
        assert manager.is_active("c1")
        assert state.latest_message() == "hello"
        assert state.config.alt_model == "test-alt-model"
        assert state.profile.user_name == "Ada"
        assert state.find_tool("memory").id == "memory"
        assert list(manager.get_all_active_sessions()) == ["c1"]

    assert not manager.is_active("c1")


@pytest.mark.asyncio
async def test_second_session_for_same_conversation_is_rejected():
    manager = ConversationStateManager()

    async with manager.session("c1", model="test-model"):
        with pytest.raises(ConversationBusyError) as excinfo:
            async with manager.session("c1", model="test-model"):
                pass
        assert excinfo.value.code == 409

        async with manager.session("c2", model="test-model") as other:
            assert other.conversation_id == "c2"

    assert manager.active == {}


@pytest.mark.asyncio
async def test_session_is_released_when_body_raises():
    manager = ConversationStateManager()

    with pytest.raises(RuntimeError):
        async with manager.session("c1", model="test-model"):
            raise RuntimeError("boom")

    assert not manager.is_active("c1")


@pytest.mark.asyncio
async def test_sessions_do_not_share_state():
    manager = ConversationStateManager()

    async with manager.session("c1", model="test-model") as first:
        first.update_config(step=3)
    async with manager.session("c1", model="test-model") as second:
        assert second.config.step == 0
        assert second.latest_message() == "Hello"
