from __future__ import annotations

from pathlib import Path

import pytest

from luminous.config import Settings
from luminous.core.prompt import seed_history
from luminous.core.session import SessionContext
from luminous.tools import build_registry
from luminous.tools.registry import CapabilityContext, CapabilityRegistry


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        model="openai:test-model",
        api_key="test-key",
        home=tmp_path / "home",
        serpapi_key=None,
        shopify_key=None,
        shopify_store=None,
        max_tool_rounds=3,
        model_timeout_seconds=2,
        loop_timeout_seconds=10,
        sandbox_timeout_seconds=5,
    )


@pytest.fixture
def session() -> SessionContext:
    return SessionContext(history=seed_history())


@pytest.fixture
def registry() -> CapabilityRegistry:
    return build_registry()


@pytest.fixture
def context(session: SessionContext, settings: Settings) -> CapabilityContext:
    return CapabilityContext(session=session, settings=settings)
