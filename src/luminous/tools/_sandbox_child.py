"""Sandbox child process. Runs under ``python -I`` with an empty environment.

Reads one JSON request on stdin, runs the wrapped source with a fixed set
of builtins and three host functions, and reports back as JSON lines on the
real stdout. This file must stay importable without the luminous
package.

No module object is bound at module level or left in ``main``'s locals
once the submitted source runs, so nothing on the call stack leads back to
``os``, ``sys`` or the real builtins.
"""

SAFE_BUILTIN_NAMES = (
    "abs", "all", "any", "bool", "dict", "divmod", "enumerate", "filter", "float", "format",
    "int", "isinstance", "len", "list", "map", "max", "min", "pow", "print", "range", "repr",
    "reversed", "round", "set", "sorted", "str", "sum", "tuple", "zip",
    "ArithmeticError", "Exception", "KeyError", "IndexError", "TypeError", "ValueError", "ZeroDivisionError",
)


def _limit_resources(memory_mb, cpu_seconds):
    import math
    import os

    if os.name != "posix":
        return
    import resource

    limits = (
        (resource.RLIMIT_AS, memory_mb * 1024 * 1024),
        (resource.RLIMIT_CPU, max(1, int(math.ceil(cpu_seconds)))),
    )
    for kind, value in limits:
        try:
            resource.setrlimit(kind, (value, value))
        except (ValueError, OSError):
            continue


def _is_score(value):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    # NaN fails both comparisons.
    return 0.0 <= value <= 1.0


def main():
    import builtins
    import io
    import json
    import sys
    from contextlib import redirect_stdout

    channel = sys.stdout
    request = json.loads(sys.stdin.read())
    _limit_resources(request["memory_mb"], request["cpu_seconds"])

    dumps = json.dumps
    captured = io.StringIO()
    safe_builtins = {name: getattr(builtins, name) for name in SAFE_BUILTIN_NAMES}
    del builtins, io, json, sys

    state = dict(request["state"])
    aliases = request["aliases"]

    def emit(message):
        channel.write(dumps(message) + "\n")
        channel.flush()

    def get_internal_state():
        return dict(state)

    def update_self_model(changes):
        if not isinstance(changes, dict):
            raise TypeError("update_self_model expects a dict")
        for key, value in changes.items():
            name = aliases.get(key, key)
            if name in state and _is_score(value):
                state[name] = float(value)
        emit({"kind": "update", "changes": changes})
        return dict(state)

    def add_log(message):
        emit({"kind": "log", "message": str(message)})

    namespace = {
        "__builtins__": safe_builtins,
        "get_internal_state": get_internal_state,
        "update_self_model": update_self_model,
        "add_log": add_log,
    }
    try:
        with redirect_stdout(captured):
            exec(compile(request["source"], "<sandbox>", "exec"), namespace)  # noqa: S102
            value = namespace[request["entry"]]()
    except BaseException as exc:  # noqa: BLE001
        emit({"kind": "error", "type": type(exc).__name__, "message": str(exc), "stdout": captured.getvalue()})
        return 1
    try:
        dumps(value)
    except (TypeError, ValueError):
        value = repr(value)
    emit({"kind": "result", "value": value, "stdout": captured.getvalue()})
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
