import pytest

from thinkloop.application.api.api_server import create_app
from thinkloop.application.container import Container
from thinkloop.infrastructure.config import Settings
from thinkloop.infrastructure.observability.langfuse_tracing import Observer
from tests.fakes import FakeProvider


def make_settings(**overrides) -> Settings:
    settings = Settings(
        model="test-model",
        alt_model="test-alt-model",
        plan_model="test-plan-model",
        log_format="console",
        tool_timeout_seconds=1.0
    )
    if overrides:
        settings = settings.model_copy(update=overrides)
    return settings


@pytest.fixture
def container_factory():
    def _factory(provider: FakeProvider = None, **settings_overrides) -> Container:
        return Container(make_settings(**settings_overrides), provider or FakeProvider(), Observer())

    return _factory


@pytest.fixture
def app_factory(container_factory):
    def _factory(provider: FakeProvider = None, **settings_overrides):
        container = container_factory(provider, **settings_overrides)
        return create_app(container), container

    return _factory
