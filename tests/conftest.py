"""
Shared fixtures: a temp SQLite store, a scripted completion backend,
and an isolated model override file.
"""

import json

import httpx
import pytest

from lawline.backends.base import BaseBackend
from lawline.storage.models import Account
from lawline.storage.sqlite_store import SQLiteStore


def frame(content: str) -> str:
    """One provider SSE line carrying a content delta."""
    return "data: " + json.dumps({"choices": [{"index": 0, "delta": {"content": content}}]})


class ScriptedBackend(BaseBackend):
    """
    Plays back a fixed list of SSE lines. With fail_after=N it raises
    `error` after N lines have been yielded.
    """

    def __init__(self, lines=(), fail_after: int | None = None, error: Exception | None = None):
        super().__init__("scripted", "http://fake", default_model="glm-test")
        self.lines = list(lines)
        self.fail_after = fail_after
        self.error = error or httpx.ReadError("connection dropped")
        self.calls: list[dict] = []

    async def forward_stream(self, messages, model=None):
        self.calls.append({"messages": messages, "model": model})
        for i, line in enumerate(self.lines):
            if i == self.fail_after:
                raise self.error
            yield line
        if self.fail_after is not None and self.fail_after >= len(self.lines):
            raise self.error

    async def health_check(self) -> bool:
        return True


@pytest.fixture(autouse=True)
def override_file(tmp_path):
    """Point override.yaml at a temp path so a local model override never leaks in."""
    from lawline import config as cfg_mod

    orig = (cfg_mod._OVERRIDE_PATH, cfg_mod._override_mtime, cfg_mod._override_model)
    cfg_mod._OVERRIDE_PATH = tmp_path / "override.yaml"
    cfg_mod._override_mtime = 0.0
    cfg_mod._override_model = None
    yield cfg_mod._OVERRIDE_PATH
    cfg_mod._OVERRIDE_PATH, cfg_mod._override_mtime, cfg_mod._override_model = orig


@pytest.fixture
def store(tmp_path):
    """Create a fresh SQLite store for each test."""
    return SQLiteStore(str(tmp_path / "test.db"))


@pytest.fixture
def account(store):
    return store.create_account(Account(username="zhang", name="张三"))
