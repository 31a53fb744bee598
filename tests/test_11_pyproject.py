"""Tests for pyproject.toml and package installation."""
from __future__ import annotations

import os
import subprocess
import sys
from pathlib import Path

import pytest

PYPROJECT = Path(__file__).parent.parent / "pyproject.toml"


def _load():
    tomllib = pytest.importorskip("tomllib")
    return tomllib.loads(PYPROJECT.read_text(encoding="utf-8"))


class TestPackageInstallation:

    def test_version_defined(self):
        import koko_ms

        assert isinstance(koko_ms.__version__, str)
        assert koko_ms.__version__

    def test_core_modules_importable(self):
        from koko_ms import cli, main
        from koko_ms.api import openai_compat, routes
        from koko_ms.core import config, logging, metrics
        from koko_ms.services import errors, synthesis
        from koko_ms.tts import assembler, dispatcher, engine, pool, router, segmenter
        from koko_ms.utils import audio

        for module in (cli, main, openai_compat, routes, config, logging, metrics, errors,
                       synthesis, assembler, dispatcher, engine, pool, router, segmenter, audio):
            assert module is not None


class TestCLIEntryPoint:

    def test_module_help_exits_zero(self):
        src = str(Path(__file__).parent.parent / "src")
        result = subprocess.run(
            [sys.executable, "-m", "koko_ms.cli", "--help"],
            capture_output=True,
            text=True,
            env={**os.environ, "PYTHONPATH": src, "KOKO_MS_NO_COLOR": "1"},
        )
        assert result.returncode == 0
        assert "openai" in result.stdout


class TestPyprojectToml:

    def test_pyproject_exists(self):
        assert PYPROJECT.exists()

    def test_project_name(self):
        data = _load()
        assert data["project"]["name"] == "koko-ms"

    def test_has_dependencies(self):
        deps = _load()["project"]["dependencies"]
        names = [d.split(">=")[0].split("[")[0] for d in deps]
        for name in ["fastapi", "uvicorn", "pydantic", "pyyaml", "numpy", "soundfile", "kokoro-onnx"]:
            assert name in names

    def test_console_script(self):
        assert _load()["project"]["scripts"]["koko"] == "koko_ms.cli:main"

    def test_test_extra(self):
        extras = _load()["project"]["optional-dependencies"]["test"]
        assert any(d.startswith("pytest") for d in extras)
