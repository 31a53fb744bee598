"""
Tests for configuration validation and defaults.

Tests cover:
- KokoConfig.from_settings() - all sections
- Defaults class values
- ConfigError on invalid values
- Command line overrides (with_overrides)
- Environment overrides and settings file loading
"""

import pytest

from koko_ms.core.config import (
    DEFAULT_VOICE_MAPPING,
    ConfigError,
    Defaults,
    KokoConfig,
    Settings,
    default_settings,
    load_settings,
)


class TestDefaults:
    """Tests for Defaults class values."""

    def test_model_defaults(self):
        assert Defaults.MODEL_PATH.endswith("kokoro-v1.0.onnx")
        assert Defaults.VOICES_PATH.endswith("voices-v1.0.bin")
        assert Defaults.SAMPLE_RATE == 24000

    def test_synthesis_defaults(self):
        assert Defaults.VOICE == "af_sarah.4+af_nicole.6"
        assert Defaults.SPEED == 1.0

    def test_pool_defaults(self):
        assert Defaults.POOL_INSTANCES == 2
        assert Defaults.POOL_QUEUE_SIZE > 0

    def test_output_defaults(self):
        assert Defaults.OUTPUT_TEXT == "tmp/output.wav"
        assert Defaults.OUTPUT_PLACEHOLDER in Defaults.OUTPUT_FILE

    def test_openai_voices_mapped(self):
        for voice in ["alloy", "echo", "fable", "onyx", "nova", "shimmer"]:
            assert voice in DEFAULT_VOICE_MAPPING


class TestKokoConfigFromSettings:
    """Tests for KokoConfig.from_settings()."""

    def test_from_settings_with_empty_raw(self):
        """from_settings should use defaults for empty raw dict."""
        config = KokoConfig.from_settings(Settings(raw={}))

        assert config.model.model_path == Defaults.MODEL_PATH
        assert config.synthesis.voice == Defaults.VOICE
        assert config.pool.instances == Defaults.POOL_INSTANCES
        assert config.chunking.max_chars == Defaults.CHUNKING_MAX_CHARS
        assert config.server.port == Defaults.SERVER_PORT
        assert config.logging.level == Defaults.LOGGING_LEVEL

    def test_from_settings_with_sections(self):
        settings = Settings(raw={
            "model": {"model_path": "/models/k.onnx", "voices_path": "/models/v.bin", "language": "en-gb"},
            "synthesis": {"voice": "af_sky", "speed": 1.3},
            "pool": {"instances": 4},
            "server": {"port": 8080},
        })
        config = KokoConfig.from_settings(settings)

        assert config.model.model_path == "/models/k.onnx"
        assert config.model.language == "en-gb"
        assert config.synthesis.voice == "af_sky"
        assert config.synthesis.speed == pytest.approx(1.3)
        assert config.pool.instances == 4
        assert config.server.port == 8080

    def test_voice_mapping_merges_with_defaults(self):
        settings = Settings(raw={"server": {"voice_mapping": {"alloy": "af_sky", "custom": "am_echo"}}})
        mapping = KokoConfig.from_settings(settings).server.voice_mapping

        assert mapping["alloy"] == "af_sky"
        assert mapping["custom"] == "am_echo"
        assert mapping["echo"] == DEFAULT_VOICE_MAPPING["echo"]

    def test_string_log_level(self):
        config = KokoConfig.from_settings(Settings(raw={"logging": {"level": "DEBUG"}}))
        assert config.logging.level == 4

    def test_null_sections_use_defaults(self):
        config = KokoConfig.from_settings(Settings(raw={"pool": None, "synthesis": None}))
        assert config.pool.instances == Defaults.POOL_INSTANCES
        assert config.synthesis.speed == Defaults.SPEED


class TestValidation:
    """Invalid values raise ConfigError."""

    @pytest.mark.parametrize("instances", [0, -1])
    def test_instances_must_be_positive(self, instances):
        with pytest.raises(ConfigError, match="instances"):
            KokoConfig.from_settings(Settings(raw={"pool": {"instances": instances}}))

    @pytest.mark.parametrize("speed", [0, -0.5])
    def test_speed_must_be_positive(self, speed):
        with pytest.raises(ConfigError, match="speed"):
            KokoConfig.from_settings(Settings(raw={"synthesis": {"speed": speed}}))

    def test_non_numeric_instances(self):
        with pytest.raises(ConfigError, match="integer"):
            KokoConfig.from_settings(Settings(raw={"pool": {"instances": "many"}}))

    def test_empty_voice(self):
        with pytest.raises(ConfigError, match="voice"):
            KokoConfig.from_settings(Settings(raw={"synthesis": {"voice": "  "}}))

    def test_port_range(self):
        with pytest.raises(ConfigError, match="port"):
            KokoConfig.from_settings(Settings(raw={"server": {"port": 70000}}))

    def test_log_level_range(self):
        with pytest.raises(ConfigError, match="logging.level"):
            KokoConfig.from_settings(Settings(raw={"logging": {"level": 9}}))


class TestOverrides:
    """Command line values applied with with_overrides()."""

    def test_none_keeps_configured_values(self):
        config = KokoConfig()
        assert config.with_overrides() == config

    def test_overrides_applied(self):
        config = KokoConfig().with_overrides(
            model_path="m.onnx", voices_path="v.bin", language="en-gb",
            voice="af_sky", speed=0.8, instances=3,
        )
        assert config.model.model_path == "m.onnx"
        assert config.model.voices_path == "v.bin"
        assert config.model.language == "en-gb"
        assert config.synthesis.voice == "af_sky"
        assert config.synthesis.speed == 0.8
        assert config.pool.instances == 3

    def test_zero_instances_rejected(self):
        with pytest.raises(ConfigError):
            KokoConfig().with_overrides(instances=0)

    def test_negative_speed_rejected(self):
        with pytest.raises(ConfigError):
            KokoConfig().with_overrides(speed=-1.0)


class TestLoadSettings:
    """Tests for load_settings() and environment overrides."""

    def test_missing_file_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_settings(str(tmp_path / "nope.yaml"))

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("- just\n- a list\n", encoding="utf-8")
        with pytest.raises(ConfigError):
            load_settings(str(path))

    def test_loads_yaml(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("pool:\n  instances: 3\nsynthesis:\n  voice: af_sky\n", encoding="utf-8")

        settings = load_settings(str(path))
        assert settings.instances == 3
        assert settings.get_config().synthesis.voice == "af_sky"

    def test_env_overrides(self, tmp_path, monkeypatch):
        path = tmp_path / "settings.yaml"
        path.write_text("pool:\n  instances: 3\n", encoding="utf-8")
        monkeypatch.setenv("KOKO_MS_INSTANCES", "5")
        monkeypatch.setenv("KOKO_MS_MODEL_PATH", "/opt/kokoro.onnx")

        config = load_settings(str(path)).get_config()
        assert config.pool.instances == 5
        assert config.model.model_path == "/opt/kokoro.onnx"

    def test_default_settings_without_file(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        settings = default_settings()
        assert settings.raw == {}
        assert settings.get_config().pool.instances == Defaults.POOL_INSTANCES

    def test_default_settings_from_env_path(self, tmp_path, monkeypatch):
        path = tmp_path / "custom.yaml"
        path.write_text("chunking:\n  max_chars: 50\n", encoding="utf-8")
        monkeypatch.setenv("KOKO_MS_SETTINGS", str(path))

        assert default_settings().get_config().chunking.max_chars == 50

    def test_shipped_settings_file_is_valid(self):
        from pathlib import Path

        path = Path(__file__).parent.parent / "config" / "settings.yaml"
        config = load_settings(str(path)).get_config()
        assert config.server.voice_mapping["shimmer"] == "af_sky"
