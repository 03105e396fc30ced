from __future__ import annotations

import os
import sys
from collections.abc import Callable
from pathlib import Path

import pytest

from teleshell.mcp.transport import LaunchSpec

FAKE_SERVER = Path(__file__).with_name("fake_mcp_server.py")


@pytest.fixture(autouse=True)
def _isolate_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in list(os.environ):
        if name.startswith("TELESHELL_"):
            monkeypatch.delenv(name)
    # Keep a developer's .env out of settings loading.
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def fake_server() -> Callable[[str], LaunchSpec]:
    def _launch(mode: str = "normal") -> LaunchSpec:
        return LaunchSpec(command=sys.executable, args=(str(FAKE_SERVER), mode))

    return _launch
