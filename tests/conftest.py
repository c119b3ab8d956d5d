from __future__ import annotations

import asyncio

import pytest

from helpers import FakeSpawner
from vibebridge.engine.providers.base import AgentAdapter


@pytest.fixture
def spawner(monkeypatch) -> FakeSpawner:
    """Route agent process spawns to in-memory fake processes."""
    fake = FakeSpawner()
    monkeypatch.setattr(asyncio, "create_subprocess_exec", fake)
    # Fake pids must never reach os.killpg
    monkeypatch.setattr(AgentAdapter, "_kill", staticmethod(lambda proc: proc.kill()))
    return fake
