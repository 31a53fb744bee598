from __future__ import annotations

import pathlib
import sys

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from fakes import FakeFactory  # noqa: E402


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """Keep user settings and log env vars out of the tests."""
    for name in (
        "KOKO_MS_SETTINGS",
        "KOKO_MS_MODEL_PATH",
        "KOKO_MS_VOICES_PATH",
        "KOKO_MS_INSTANCES",
        "KOKO_MS_LOG_LEVEL",
        "KOKO_MS_LOG_DIR",
        "KOKO_MS_JSONL_FILE",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("KOKO_MS_NO_COLOR", "1")


@pytest.fixture
def factory():
    return FakeFactory()


@pytest.fixture
def pool(factory):
    from koko_ms.tts.pool import InstancePool

    p = InstancePool(factory, instances=2)
    yield p
    p.close()


@pytest.fixture
def service(pool):
    from koko_ms.core.config import KokoConfig
    from koko_ms.services.synthesis import SynthesisService

    return SynthesisService(pool, KokoConfig())
