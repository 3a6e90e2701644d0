from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]
BACKEND_PATH = ROOT / "backend"
if str(BACKEND_PATH) not in sys.path:
    sys.path.insert(0, str(BACKEND_PATH))

from car_assistant.config import settings  # noqa: E402


@pytest.fixture(autouse=True)
def _no_ambient_credential(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a DASHSCOPE_API_KEY from the developer's shell out of the tests."""
    monkeypatch.setattr(settings, "dashscope_api_key", None)
