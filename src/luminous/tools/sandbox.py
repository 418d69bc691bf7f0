"""Sandboxed code runs.

Model-supplied code never runs in this process. It is screened statically,
then executed by a separate ``python -I`` interpreter with an empty
environment, resource limits and a wall-clock timeout. The child sees a
small builtin set and exactly three host functions; their effects come back
as messages and are applied here.
"""

from __future__ import annotations

import ast
import asyncio
import json
import sys
import tempfile
import textwrap
from contextlib import suppress
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from loguru import logger

from luminous.core.state import InternalState, wire_aliases
from luminous.errors import SandboxExecutionError

CHILD_SCRIPT = Path(__file__).with_name("_sandbox_child.py")
ENTRY_NAME = "sandbox_main"
HOST_FUNCTIONS = frozenset({"get_internal_state", "update_self_model", "add_log"})
FORBIDDEN_NAMES = frozenset({
    "breakpoint",
    "compile",
    "delattr",
    "eval",
    "exec",
    "getattr",
    "globals",
    "input",
    "locals",
    "open",
    "setattr",
    "vars",
})
# Frame, code and traceback links reach the child's real globals without an underscore.
FORBIDDEN_ATTRIBUTES = frozenset({
    "ag_await",
    "ag_code",
    "ag_frame",
    "cr_await",
    "cr_code",
    "cr_frame",
    "cr_origin",
    "f_back",
    "f_builtins",
    "f_code",
    "f_globals",
    "f_locals",
    "f_trace",
    "gi_code",
    "gi_frame",
    "gi_yieldfrom",
    "tb_frame",
    "tb_next",
})


@dataclass(frozen=True)
class SandboxOutcome:
    """What one run produced, in the order the child reported it."""

    value: Any
    updates: list[dict[str, Any]] = field(default_factory=list)
    logs: list[str] = field(default_factory=list)
    stdout: str = ""


def wrap_source(code: str) -> str:
    """Wrap code as a function body so a bare ``return`` yields the result."""
    body = textwrap.indent(textwrap.dedent(code).strip() or "pass", "    ")
    return f"def {ENTRY_NAME}():\n{body}\n"


def screen_source(source: str) -> None:
    """Reject constructs that reach outside the three host functions."""
    try:
        tree = ast.parse(source, filename="<sandbox>")
    except SyntaxError as exc:
        raise SandboxExecutionError(f"SyntaxError: {exc.msg} (line {exc.lineno})") from exc

    for node in ast.walk(tree):
        if isinstance(node, ast.Import | ast.ImportFrom):
            raise SandboxExecutionError("imports are not available in the sandbox")
        if isinstance(node, ast.Attribute) and node.attr.startswith("_"):
            raise SandboxExecutionError(f"access to private attribute {node.attr!r} is not allowed")
        if isinstance(node, ast.Attribute) and node.attr in FORBIDDEN_ATTRIBUTES:
            raise SandboxExecutionError(f"access to attribute {node.attr!r} is not allowed")
        if isinstance(node, ast.Name) and (node.id.startswith("__") or node.id in FORBIDDEN_NAMES):
            raise SandboxExecutionError(f"name {node.id!r} is not available in the sandbox")


async def run_code(
    code: str,
    state: InternalState,
    *,
    timeout_seconds: float = 5,
    memory_mb: int = 512,
) -> SandboxOutcome:
    source = wrap_source(code)
    screen_source(source)
    request = {
        "source": source,
        "entry": ENTRY_NAME,
        "state": state.to_payload(),
        "aliases": wire_aliases(),
        "memory_mb": memory_mb,
        "cpu_seconds": timeout_seconds,
    }

    with tempfile.TemporaryDirectory(prefix="luminous-sandbox-") as workdir:
        process = await asyncio.create_subprocess_exec(
            sys.executable,
            "-I",
            str(CHILD_SCRIPT),
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=workdir,
            env={},
        )
        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(json.dumps(request).encode("utf-8")),
                timeout=timeout_seconds,
            )
        except TimeoutError as exc:
            with suppress(ProcessLookupError):
                process.kill()
            await process.wait()
            raise SandboxExecutionError(f"code did not finish within {timeout_seconds}s") from exc

    return _collect(stdout.decode("utf-8", errors="replace"), stderr.decode("utf-8", errors="replace"), process)


def _collect(stdout: str, stderr: str, process: asyncio.subprocess.Process) -> SandboxOutcome:
    updates: list[dict[str, Any]] = []
    logs: list[str] = []
    for line in stdout.splitlines():
        if not line.strip():
            continue
        try:
            message = json.loads(line)
        except json.JSONDecodeError:
            continue
        kind = message.get("kind") if isinstance(message, dict) else None
        if kind == "update" and isinstance(message.get("changes"), dict):
            updates.append(message["changes"])
        elif kind == "log":
            logs.append(str(message.get("message", "")))
        elif kind == "result":
            return SandboxOutcome(
                value=message.get("value"), updates=updates, logs=logs, stdout=message.get("stdout", "")
            )
        elif kind == "error":
            raise SandboxExecutionError(f"{message.get('type', 'Error')}: {message.get('message', '')}")

    detail = stderr.strip().splitlines()[-1] if stderr.strip() else f"exit={process.returncode}"
    logger.warning("sandbox.child.failed returncode={} detail={}", process.returncode, detail)
    raise SandboxExecutionError(f"sandbox process ended without a result: {detail}")
