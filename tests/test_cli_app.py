from pathlib import Path
from typing import Any

import pytest
from fakes import ScriptedClient, text
from typer.testing import CliRunner

from luminous.cli.app import app
from luminous.config import Settings
from luminous.core.state import InternalState
from luminous.errors import ProviderTimeout
from luminous.memory.store import ConversationStore, FileBlobStore

runner = CliRunner()


@pytest.fixture
def home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.chdir(tmp_path)
    for name in ("LUMINOUS_API_KEY", "LLM_API_KEY", "API_KEY"):
        monkeypatch.delenv(name, raising=False)
    home = tmp_path / "home"
    monkeypatch.setenv("LUMINOUS_HOME", str(home))
    return home


def _use_model(monkeypatch: pytest.MonkeyPatch, client: ScriptedClient) -> None:
    class _Factory:
        @staticmethod
        def from_settings(_settings: Settings) -> Any:
            return client

    monkeypatch.setattr("luminous.app.runtime.AnyLLMClient", _Factory)


def test_ask_prints_reply_and_persists(home: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _use_model(monkeypatch, ScriptedClient(text("Hello from Luminous.")))

    result = runner.invoke(app, ["ask", "hello", "--logs"])

    assert result.exit_code == 0, result.output
    assert "Hello from Luminous." in result.output
    store = ConversationStore(FileBlobStore(home / "sessions"), "luminous")
    assert store.load()[-1].text == "Hello from Luminous."


def test_ask_reports_turn_failures(home: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _use_model(monkeypatch, ScriptedClient(ProviderTimeout("no response from the model within 30s")))

    result = runner.invoke(app, ["ask", "hello"])

    assert result.exit_code == 1
    assert "ProviderTimeout" in result.output


def test_ask_without_api_key_is_a_configuration_error(home: Path) -> None:
    result = runner.invoke(app, ["ask", "hello"])

    assert result.exit_code == 1
    assert "Configuration error" in result.output


def test_state_shows_persisted_values(home: Path) -> None:
    store = ConversationStore(FileBlobStore(home / "sessions"), "luminous")
    store.save_profile(InternalState(coherence=0.33), "my keepsake")

    result = runner.invoke(app, ["state"])

    assert result.exit_code == 0
    assert "coherence" in result.output
    assert "0.33" in result.output
    assert "my keepsake" in result.output


def test_reset_clears_persisted_session(home: Path) -> None:
    store = ConversationStore(FileBlobStore(home / "sessions"), "luminous")
    store.save_profile(InternalState(coherence=0.33), "my keepsake")

    result = runner.invoke(app, ["reset", "--yes"])

    assert result.exit_code == 0
    assert store.load_profile().keepsake is None


def test_reset_asks_for_confirmation(home: Path) -> None:
    store = ConversationStore(FileBlobStore(home / "sessions"), "luminous")
    store.save_profile(InternalState(), "keep")

    result = runner.invoke(app, ["reset"], input="n\n")

    assert result.exit_code == 1
    assert store.load_profile().keepsake == "keep"
