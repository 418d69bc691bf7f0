import asyncio

import pytest
from pydantic import BaseModel

from luminous.core.turns import CapabilityInvocation
from luminous.errors import CapabilityNotFound, CapabilityUnconfigured
from luminous.tools.registry import CapabilityContext, CapabilityRegistry


class AddInput(BaseModel):
    a: int
    b: int


class EmptyInput(BaseModel):
    pass


@pytest.mark.asyncio
async def test_registry_logs_once_for_execute(monkeypatch, context: CapabilityContext) -> None:
    logs: list[str] = []

    def _capture(message: str, *args: object) -> None:
        logs.append(message)

    monkeypatch.setattr("luminous.tools.registry.logger.info", _capture)
    monkeypatch.setattr("luminous.tools.registry.logger.exception", _capture)

    registry = CapabilityRegistry()

    @registry.register(name="math.add", description="add", model=AddInput)
    def add(params: AddInput, _context: CapabilityContext) -> int:
        return params.a + params.b

    result = await registry.execute(CapabilityInvocation(name="math_add", args={"a": 1, "b": 2}), context)
    assert result.ok
    assert result.payload == 3
    assert result.name == "math_add"
    assert logs.count("tool.call.start name={} {{ {} }}") == 1
    assert logs.count("tool.call.end name={} duration={:.3f}ms") == 1
    assert any("Executing tool: math_add with args: a=1, b=2" in line for line in context.session.log.lines)


@pytest.mark.asyncio
async def test_unknown_capability_is_a_failed_result(context: CapabilityContext) -> None:
    registry = CapabilityRegistry()
    invocation = CapabilityInvocation(name="doSomething", args={})

    result = await registry.execute(invocation, context)

    assert not result.ok
    assert result.payload == {"error": "capability not found"}
    assert result.call_id == invocation.call_id
    assert any("Unknown tool called: doSomething" in line for line in context.session.log.lines)


@pytest.mark.asyncio
async def test_unknown_capability_warning_carries_its_kind(monkeypatch, context: CapabilityContext) -> None:
    warnings: list[tuple[object, ...]] = []
    monkeypatch.setattr("luminous.tools.registry.logger.warning", lambda message, *args: warnings.append(args))
    registry = CapabilityRegistry()

    with pytest.raises(CapabilityNotFound, match="doSomething"):
        registry.resolve("doSomething")
    await registry.execute(CapabilityInvocation(name="doSomething", args={}), context)

    assert warnings == [("doSomething", "CapabilityNotFound")]


@pytest.mark.asyncio
async def test_invalid_arguments_never_reach_the_handler(context: CapabilityContext) -> None:
    registry = CapabilityRegistry()
    called: list[AddInput] = []

    @registry.register(name="math.add", description="add", model=AddInput)
    def add(params: AddInput, _context: CapabilityContext) -> int:
        called.append(params)
        return 0

    result = await registry.execute(CapabilityInvocation(name="math.add", args={"a": "one"}), context)

    assert called == []
    assert not result.ok
    assert result.payload["kind"] == "CapabilityArgumentError"


@pytest.mark.asyncio
async def test_handler_failures_become_error_payloads(context: CapabilityContext) -> None:
    registry = CapabilityRegistry()

    @registry.register(name="svc.down", description="down", model=EmptyInput)
    def down(_params: EmptyInput, _context: CapabilityContext) -> None:
        raise CapabilityUnconfigured("no key")

    @registry.register(name="svc.crash", description="crash", model=EmptyInput)
    async def crash(_params: EmptyInput, _context: CapabilityContext) -> None:
        raise RuntimeError("boom")

    unconfigured = await registry.execute(CapabilityInvocation(name="svc_down"), context)
    crashed = await registry.execute(CapabilityInvocation(name="svc_crash"), context)

    assert unconfigured.payload == {"error": "no key", "kind": "CapabilityUnconfigured"}
    assert crashed.payload == {"error": "RuntimeError: boom", "kind": "CapabilityExecutionError"}


@pytest.mark.asyncio
async def test_execute_all_keeps_request_order_under_varied_latency(context: CapabilityContext) -> None:
    registry = CapabilityRegistry()
    finished: list[str] = []

    def _sleeper(name: str, delay: float):
        async def handler(_params: EmptyInput, _context: CapabilityContext) -> str:
            await asyncio.sleep(delay)
            finished.append(name)
            return name

        return handler

    for name, delay in (("a", 0.05), ("b", 0.0), ("c", 0.02)):
        registry.register(name=name, description=name, model=EmptyInput)(_sleeper(name, delay))

    invocations = [CapabilityInvocation(name=name) for name in ("a", "b", "c")]
    results = await registry.execute_all(invocations, context)

    assert finished != ["a", "b", "c"]
    assert [result.payload for result in results] == ["a", "b", "c"]
    assert [result.call_id for result in results] == [item.call_id for item in invocations]


def test_model_tools_use_underscore_names() -> None:
    registry = CapabilityRegistry()
    registry.register(name="fs.read", description="read", model=AddInput)(lambda params, context: None)

    tools = registry.model_tools()

    assert [tool["function"]["name"] for tool in tools] == ["fs_read"]
    assert tools[0]["function"]["parameters"]["required"] == ["a", "b"]
    assert registry.compact_rows() == ["fs_read: read"]
    assert registry.get("fs_read") is registry.get("fs.read")


def test_registry_model_tool_name_conflict_raises_error() -> None:
    registry = CapabilityRegistry()

    registry.register(name="fs.read", description="dot", model=EmptyInput)(lambda params, context: "dot")
    registry.register(name="fs_read", description="underscore", model=EmptyInput)(lambda params, context: "underscore")

    with pytest.raises(ValueError, match="Duplicate model tool name"):
        registry.model_tools()
