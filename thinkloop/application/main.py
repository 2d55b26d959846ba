"""
Run the thinkloop REST API.

Usage:
    python -m thinkloop.application.main

Configuration comes from THINKLOOP_* environment variables (or a .env file).
OPENAI_API_KEY must be set for the default chat and embedding models.
"""

from typing import Optional

import uvicorn
from fastapi import FastAPI
from langchain_core.language_models import BaseChatModel
from langchain_openai import ChatOpenAI, OpenAIEmbeddings

from thinkloop.application.api.api_server import create_app
from thinkloop.application.container import Container
from thinkloop.infrastructure.config import Settings, load_settings
from thinkloop.infrastructure.llm.completion_provider import LangChainCompletionProvider
from thinkloop.infrastructure.observability.logging import setup_logging


def build_chat_model(model: str, temperature: float) -> BaseChatModel:
    return ChatOpenAI(model=model, temperature=temperature)


def build_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or load_settings()
    setup_logging(settings.log_level, settings.log_format, settings.service_name)

    provider = LangChainCompletionProvider(
        chat_model_factory=build_chat_model,
        embeddings=OpenAIEmbeddings(model=settings.embedding_model)
    )
    return create_app(Container(settings, provider))


if __name__ == "__main__":
    settings = load_settings()
    uvicorn.run(build_app(settings), host=settings.host, port=settings.port)
