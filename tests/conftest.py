"""Shared pytest fixtures."""

from __future__ import annotations

import os
from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep user configuration and log output out of the test run."""

    for name in list(os.environ):
        if name.startswith("SPICY_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SPICY_LOG_DIR", str(tmp_path / "logs"))


@pytest.fixture
def schematic() -> str:
    return "\n".join(
        [
            "Version 4",
            "SHEET 1 880 680",
            "WIRE 80 96 400 96",
            "SYMBOL res 184 144 R0",
            "SYMATTR InstName R1",
            "SYMATTR Value 10k",
        ]
    ) + "\n"
