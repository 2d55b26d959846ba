from fastapi import APIRouter, Depends
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from thinkloop.application.api.dependencies import get_container
from thinkloop.application.api.schema.requests import ChatRequest, ChatResponse
from thinkloop.application.container import Container

router = APIRouter(prefix="/api/v1/agent", tags=["agent"])

MESSAGE_TYPES = {"user": HumanMessage, "assistant": AIMessage, "system": SystemMessage}


# REST endpoint for one reasoning session
@router.post("/chat", response_model=ChatResponse)
async def chat_endpoint(request: ChatRequest, container: Container = Depends(get_container)):
    messages = [MESSAGE_TYPES[message.role](content=message.content) for message in request.history]
    messages.append(HumanMessage(content=request.message))

    async with container.state_manager.session(
        request.conversation_id,
        model=container.settings.model,
        alt_model=container.settings.alt_model,
        messages=messages,
        tools=container.registry.descriptors(),
        user_id=request.user_id,
        user_name=request.user_name
    ) as conversation:
        fast_track = False
        if request.allow_fast_track:
            fast_track = await container.orchestrator.fast_track(conversation)
        if not fast_track:
            await container.orchestrator.think(conversation)

        return ChatResponse(
            conversation_id=conversation.conversation_id,
            fast_track=fast_track,
            state=conversation.get_state_summary()
        )
