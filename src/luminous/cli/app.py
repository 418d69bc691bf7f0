"""Command line entry points for Luminous."""

from __future__ import annotations

import asyncio

import typer
import uvicorn
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from luminous.app.runtime import SessionRuntime
from luminous.app.scheduler import ReflectionScheduler
from luminous.app.server import create_app
from luminous.config import Settings, get_settings
from luminous.core.orchestrator import AdvanceResult
from luminous.core.state import InternalState
from luminous.errors import ConfigurationError, LuminousError
from luminous.logging_utils import configure_logging
from luminous.memory.store import ConversationStore, FileBlobStore

app = typer.Typer(
    name="luminous",
    help="Luminous relay: a persistent, tool-calling conversation.",
    add_completion=False,
    rich_markup_mode="rich",
)
console = Console()

QUIT_COMMANDS = {"/quit", "/exit", "/q"}


def _store(settings: Settings) -> ConversationStore:
    return ConversationStore(FileBlobStore(settings.resolve_home() / "sessions"), settings.session_key)


def _runtime(settings: Settings) -> SessionRuntime:
    try:
        return SessionRuntime.from_settings(settings)
    except ConfigurationError as exc:
        console.print(f"[red]Configuration error:[/] {exc}")
        raise typer.Exit(1) from exc


def _state_table(state: InternalState, keepsake: str | None) -> Table:
    table = Table(title="Internal state", show_header=True)
    table.add_column("Dimension")
    table.add_column("Value", justify="right")
    for name, value in state.to_payload().items():
        table.add_row(name, f"{value:.2f}")
    if keepsake:
        table.caption = f"Keepsake: {keepsake}"
    return table


def _print_result(result: AdvanceResult, *, reflection: bool = False, show_logs: bool = False) -> None:
    if show_logs:
        for line in result.log:
            console.print(line, style="dim", markup=False, highlight=False)
    if result.final_text is None:
        return
    title = "Luminous (reflection)" if reflection else "Luminous"
    console.print(Panel(Markdown(result.final_text or "(no text)"), title=title, border_style="cyan"))


def _print_error(exc: LuminousError, *, show_logs: bool) -> None:
    if show_logs:
        for line in exc.logs:
            console.print(line, style="dim", markup=False, highlight=False)
    console.print(f"[red]{exc.kind}:[/] {exc}")


@app.command()
def ask(
    message: str = typer.Argument(..., help="Message to send"),
    logs: bool = typer.Option(False, "--logs", help="Print the session log lines of this turn"),
) -> None:
    """Send one message and print the reply."""
    settings = get_settings()
    configure_logging(level=settings.log_level)
    runtime = _runtime(settings)
    try:
        result = asyncio.run(runtime.submit(message))
    except LuminousError as exc:
        _print_error(exc, show_logs=logs)
        raise typer.Exit(1) from exc
    _print_result(result, show_logs=logs)


@app.command()
def chat(
    reflect: bool = typer.Option(True, "--reflect/--no-reflect", help="Run autonomous reflections in the background"),
) -> None:
    """Start an interactive chat. Commands: /state, /reset, /quit."""
    settings = get_settings()
    configure_logging(profile="chat", level=settings.log_level)
    runtime = _runtime(settings)
    asyncio.run(_chat_loop(runtime, reflect=reflect and settings.reflection_enabled))


async def _chat_loop(runtime: SessionRuntime, *, reflect: bool) -> None:
    settings = runtime.settings
    scheduler = ReflectionScheduler(
        runtime,
        asyncio.get_running_loop(),
        interval_seconds=settings.reflection_interval_seconds,
        probability=settings.reflection_probability,
        on_result=lambda result: _print_result(result, reflection=True),
    )
    if reflect:
        scheduler.start()
    console.print(f"[bold cyan]Luminous[/] ready. Model: {settings.model}. Type /quit to leave.")
    try:
        while True:
            try:
                line = await asyncio.to_thread(console.input, "[bold]You[/]: ")
            except (KeyboardInterrupt, EOFError):
                break
            text = line.strip()
            if not text:
                continue
            if text in QUIT_COMMANDS:
                break
            if text == "/state":
                console.print(_state_table(runtime.session.state, runtime.session.keepsake))
                continue
            if text == "/reset":
                await runtime.reset()
                console.print("[yellow]Session reset.[/]")
                continue
            try:
                result = await runtime.submit(text)
            except LuminousError as exc:
                _print_error(exc, show_logs=False)
                continue
            _print_result(result)
    finally:
        scheduler.shutdown()
    console.print("Goodbye!")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", help="Bind port"),
) -> None:
    """Serve the chat API over HTTP."""
    settings = get_settings()
    configure_logging(level=settings.log_level)
    runtime = _runtime(settings)
    uvicorn.run(create_app(runtime, enable_reflection=settings.reflection_enabled), host=host, port=port)


@app.command()
def state() -> None:
    """Show the persisted internal state and keepsake."""
    settings = get_settings()
    profile = _store(settings).load_profile()
    console.print(_state_table(profile.state, profile.keepsake))


@app.command()
def reset(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Forget the persisted history, state and keepsake."""
    settings = get_settings()
    if not yes and not typer.confirm("Forget the whole conversation?"):
        raise typer.Exit(1)
    _store(settings).reset()
    console.print("Session reset.")
