import asyncio
import time

import pytest

from thinkloop.domain.models.tool_execution import ExecutionStatus
from thinkloop.domain.tool.errors import (
    ExecutionError, ExternalServiceError, NotFoundError, RateLimitError, ToolTimeoutError, ValidationError
)
from thinkloop.domain.tool.tool_executor import ToolExecutor
from thinkloop.domain.tool.tool_registry import ToolRegistry
from thinkloop.domain.tool.tool_validator import ToolValidator
from thinkloop.infrastructure.persistence.tool_execution_repository import ToolExecutionRepository
from tests.fakes import EchoTool, FailingTool, SlowTool, UpstreamError


def make_executor(*tools, timeout: float = 1.0):
    registry = ToolRegistry()
    for tool in tools:
        registry.register(tool)
    repository = ToolExecutionRepository()
    return ToolExecutor(registry, repository, default_timeout=timeout), repository


@pytest.mark.asyncio
async def test_dispatch_to_unregistered_tool_fails_not_found_without_audit():
    executor, repository = make_executor(EchoTool())

    with pytest.raises(NotFoundError) as excinfo:
        await executor.dispatch("spotify", "play", {})

    assert excinfo.value.code == 404
    assert await repository.list() == []


@pytest.mark.asyncio
async def test_dispatch_returns_document_and_completes_one_record():
    tool = EchoTool()
    executor, repository = make_executor(tool)

    result = await executor.dispatch("echo", "echo", {"text": "hi", "repeat": 2})

    assert result.text == "hi hi"
    records = await repository.list()
    assert len(records) == 1
    assert records[0].status == ExecutionStatus.COMPLETED
    assert records[0].result["text"] == "hi hi"
    assert records[0].error is None


@pytest.mark.asyncio
async def test_validated_payload_gets_defaults_and_keeps_extra_keys():
    tool = EchoTool()
    executor, repository = make_executor(tool)

    await executor.dispatch("echo", "echo", {"text": "hi", "trace": "abc"})

    payload = tool.calls[0]["payload"]
    assert payload["repeat"] == 1
    assert payload["conversation_id"] == "default"
    assert payload["trace"] == "abc"
    records = await repository.list()
    assert records[0].parameters == payload


@pytest.mark.asyncio
async def test_unknown_action_is_a_validation_error_without_audit():
    executor, repository = make_executor(EchoTool())

    with pytest.raises(ValidationError) as excinfo:
        await executor.dispatch("echo", "shout", {"text": "hi"})

    assert excinfo.value.message == "unknown action for tool"
    assert await repository.list() == []


@pytest.mark.asyncio
async def test_invalid_payload_lists_errors():
    executor, repository = make_executor(EchoTool())

    with pytest.raises(ValidationError) as excinfo:
        await executor.dispatch("echo", "echo", {"repeat": "many"})

    locations = {tuple(error["loc"]) for error in excinfo.value.details["errors"]}
    assert ("text",) in locations
    assert ("repeat",) in locations
    assert await repository.list() == []


@pytest.mark.asyncio
async def test_timeout_fails_record_and_cancels_tool():
    tool = SlowTool(delay=10.0)
    executor, repository = make_executor(tool)

    started = time.monotonic()
    with pytest.raises(ToolTimeoutError) as excinfo:
        await executor.dispatch("slow", "wait", {}, timeout=0.05)
    elapsed = time.monotonic() - started

    assert elapsed < 1.0
    assert excinfo.value.code == 408
    await asyncio.sleep(0)
    assert tool.cancelled
    assert not tool.finished

    records = await repository.list()
    assert len(records) == 1
    assert records[0].status == ExecutionStatus.FAILED
    assert records[0].error["type"] == "timeout"
    assert records[0].error["code"] == 408


@pytest.mark.asyncio
async def test_execute_with_timeout_returns_result_in_time():
    tool = EchoTool()
    executor, _ = make_executor(tool)

    result = await executor.execute_with_timeout(tool, "echo", {"text": "fast"}, timeout=1.0)

    assert result.text == "fast"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error, expected_type, expected_code",
    [
        (RuntimeError("boom"), ExecutionError, 500),
        (UpstreamError("slow down", 429), RateLimitError, 429),
        (UpstreamError("bad gateway", 503), ExternalServiceError, 502),
    ],
)
async def test_tool_failures_are_classified_and_recorded(error, expected_type, expected_code):
    executor, repository = make_executor(FailingTool(error))

    with pytest.raises(expected_type) as excinfo:
        await executor.dispatch("failing", "run", {})

    assert excinfo.value.code == expected_code
    assert excinfo.value.__cause__ is error

    records = await repository.list()
    assert len(records) == 1
    assert records[0].status == ExecutionStatus.FAILED
    assert records[0].error == excinfo.value.to_dict()


@pytest.mark.asyncio
async def test_tool_raising_tool_error_is_recorded_unchanged():
    error = NotFoundError("Event 42 not found", {"event_id": "42"})
    executor, repository = make_executor(FailingTool(error))

    with pytest.raises(NotFoundError) as excinfo:
        await executor.dispatch("failing", "run", {})

    assert excinfo.value is error
    records = await repository.list()
    assert records[0].error == {
        "type": "not_found",
        "code": 404,
        "message": "Event 42 not found",
        "details": {"event_id": "42"},
    }


@pytest.mark.asyncio
async def test_second_terminal_update_is_ignored():
    repository = ToolExecutionRepository()
    record = await repository.create("echo", "echo", {"text": "hi"})

    await repository.complete(record.id, {"text": "hi"})
    updated = await repository.fail(record.id, {"type": "execution"})

    assert updated.status == ExecutionStatus.COMPLETED
    assert updated.error is None
    assert (await repository.get(record.id)).result == {"text": "hi"}


@pytest.mark.asyncio
async def test_executions_are_listed_newest_first_and_filterable():
    executor, repository = make_executor(EchoTool(), FailingTool(RuntimeError("x")))

    await executor.dispatch("echo", "echo", {"text": "first"})
    with pytest.raises(ExecutionError):
        await executor.dispatch("failing", "run", {})
    await executor.dispatch("echo", "echo", {"text": "second"})

    records = await repository.list()
    assert [record.parameters.get("text") for record in records] == ["second", None, "first"]
    assert [record.tool_name for record in await repository.list(tool_name="failing")] == ["failing"]
    assert len(await repository.list(limit=2)) == 2


def test_registry_resolve_and_descriptors():
    registry = ToolRegistry()
    registry.register(EchoTool())

    assert registry.get("missing") is None
    with pytest.raises(NotFoundError):
        registry.resolve("missing")
    assert registry.names() == ["echo"]
    assert [descriptor.name for descriptor in registry.descriptors()] == ["echo", "final_answer"]
    assert [tool.name for tool in registry.search_tools("repeats")] == ["echo"]


def test_validator_rejects_unknown_action():
    with pytest.raises(ValidationError):
        ToolValidator().validate(EchoTool(), "nope", {})
