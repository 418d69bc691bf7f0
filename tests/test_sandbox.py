import json
import subprocess
import sys

import pytest

from luminous.core.state import InternalState, wire_aliases
from luminous.core.turns import CapabilityInvocation
from luminous.errors import SandboxExecutionError
from luminous.tools.registry import CapabilityContext, CapabilityRegistry
from luminous.tools.sandbox import CHILD_SCRIPT, ENTRY_NAME, run_code, screen_source, wrap_source

FRAME_ESCAPE = """\
def gen():
    yield g.gi_frame.f_back
g = gen()
for frame in g:
    break
while 'os' not in frame.f_globals:
    frame = frame.f_back
os = frame.f_globals['os']
return os.listdir('/')[:3]
"""

STACK_SURVEY = """\
def gen():
    yield g.gi_frame.f_back
g = gen()
for frame in g:
    break
found = []
while frame is not None:
    for scope in (frame.f_globals, frame.f_locals):
        found.extend(name for name in ('os', 'sys', 'io', 'json', 'builtins') if name in scope)
    frame = frame.f_back
return sorted(set(found))
"""


def _run_child_unscreened(code: str) -> dict:
    request = {
        "source": wrap_source(code),
        "entry": ENTRY_NAME,
        "state": InternalState().to_payload(),
        "aliases": wire_aliases(),
        "memory_mb": 512,
        "cpu_seconds": 5,
    }
    completed = subprocess.run(
        [sys.executable, "-I", str(CHILD_SCRIPT)],
        input=json.dumps(request),
        capture_output=True,
        text=True,
        env={},
        timeout=30,
        check=False,
    )
    messages = [json.loads(line) for line in completed.stdout.splitlines() if line.strip()]
    return messages[-1]


@pytest.mark.parametrize(
    "code",
    [
        "import os",
        "from os import path",
        "return ().__class__",
        "return __builtins__",
        "return eval('1')",
        "return open('/etc/passwd').read()",
        "return getattr(1, 'real')",
        "return (x for x in ()).gi_frame",
        "try:\n    1 / 0\nexcept ZeroDivisionError as exc:\n    return exc.tb_frame",
    ],
)
def test_screen_rejects_escape_hatches(code: str) -> None:
    with pytest.raises(SandboxExecutionError):
        screen_source(wrap_source(code))


@pytest.mark.asyncio
async def test_frame_walk_to_host_globals_is_rejected() -> None:
    with pytest.raises(SandboxExecutionError, match="attribute"):
        await run_code(FRAME_ESCAPE, InternalState())


def test_child_stack_holds_no_host_modules() -> None:
    message = _run_child_unscreened(STACK_SURVEY)

    assert message["kind"] == "result"
    assert message["value"] == []


def test_screen_reports_syntax_errors() -> None:
    with pytest.raises(SandboxExecutionError, match="SyntaxError"):
        screen_source(wrap_source("return ("))


def test_wrap_source_makes_a_function_body() -> None:
    assert wrap_source("x = 1\nreturn x") == "def sandbox_main():\n    x = 1\n    return x\n"


@pytest.mark.asyncio
async def test_run_code_returns_value_and_output() -> None:
    outcome = await run_code("print('hi')\nreturn sum(range(5))", InternalState())
    assert outcome.value == 10
    assert outcome.stdout == "hi\n"
    assert outcome.updates == []


@pytest.mark.asyncio
async def test_run_code_exposes_the_three_host_functions() -> None:
    code = "\n".join(
        [
            "before = get_internal_state()['coherence']",
            "add_log('checking coherence')",
            "update_self_model({'coherence': 0.5, 'novelty': 3})",
            "return [before, get_internal_state()['coherence'], get_internal_state()['novelty']]",
        ]
    )
    outcome = await run_code(code, InternalState())

    assert outcome.value == [0.85, 0.5, 0.6]
    assert outcome.logs == ["checking coherence"]
    assert outcome.updates == [{"coherence": 0.5, "novelty": 3}]


@pytest.mark.asyncio
async def test_run_code_reports_exceptions() -> None:
    with pytest.raises(SandboxExecutionError, match="ZeroDivisionError"):
        await run_code("return 1 / 0", InternalState())


@pytest.mark.asyncio
async def test_run_code_stops_runaway_loops() -> None:
    with pytest.raises(SandboxExecutionError):
        await run_code("while True:\n    pass", InternalState(), timeout_seconds=1)


@pytest.mark.asyncio
async def test_code_run_capability_applies_updates_to_session(
    registry: CapabilityRegistry, context: CapabilityContext
) -> None:
    code = "add_log('self-tuning')\nupdate_self_model({'complexity': 0.25, 'bogus': 1})\nreturn 'ok'"
    result = await registry.execute(CapabilityInvocation(name="code_run", args={"code": code}), context)

    assert result.ok
    assert result.payload["output"] == "ok"
    assert context.session.state.complexity == 0.25
    lines = context.session.log.lines
    assert any(line.endswith("self-tuning") for line in lines)
    assert any("Code execution successful" in line for line in lines)


@pytest.mark.asyncio
async def test_code_run_failure_is_a_result_not_a_crash(
    registry: CapabilityRegistry, context: CapabilityContext
) -> None:
    result = await registry.execute(CapabilityInvocation(name="code_run", args={"code": "import os"}), context)

    assert not result.ok
    assert result.payload["kind"] == "SandboxExecutionError"
    assert any("Code execution failed" in line for line in context.session.log.lines)
