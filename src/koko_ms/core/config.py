"""
Configuration Management for koko-ms.

This module provides centralized configuration handling with:
    - Default values (Defaults class)
    - Dataclass-based configuration objects
    - YAML file loading with environment variable overrides
    - Validation with meaningful error messages

Configuration Hierarchy (highest priority first):
    1. Command line flags (applied by cli.py via KokoConfig.with_overrides)
    2. Environment variables (KOKO_MS_MODEL_PATH, KOKO_MS_INSTANCES, etc.)
    3. YAML config file (config/settings.yaml)
    4. Defaults class values

Example settings.yaml:
    model:
      model_path: checkpoints/kokoro-v1.0.onnx
      voices_path: data/voices-v1.0.bin
      language: en-us

    synthesis:
      voice: af_sarah.4+af_nicole.6
      speed: 1.0

    pool:
      instances: 2

    logging:
      level: 2  # NORMAL
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional
import os
import yaml


class ConfigError(Exception):
    """
    Raised when configuration validation fails.

    Invalid settings are fatal at startup: a pool with zero instances or
    a non-positive speed can never produce audio.
    """
    pass


class Defaults:
    """
    Centralized default configuration values.

    Sections:
        - Model: Kokoro ONNX model and voice pack locations
        - Synthesis: Voice style and speaking rate
        - Pool: Number of concurrent inference sessions
        - Chunking: Single-text splitting limit
        - Output: Default CLI destinations
        - Server: OpenAI-compatible HTTP front
        - Logging: Log level and formatting
    """

    # ─────────────────────────────────────────────────────────────────────────
    # Model
    # ─────────────────────────────────────────────────────────────────────────
    MODEL_PATH = "checkpoints/kokoro-v1.0.onnx"
    VOICES_PATH = "data/voices-v1.0.bin"
    LANGUAGE = "en-us"
    SAMPLE_RATE = 24000             # Kokoro native output rate

    # ─────────────────────────────────────────────────────────────────────────
    # Synthesis
    # ─────────────────────────────────────────────────────────────────────────
    VOICE = "af_sarah.4+af_nicole.6"
    SPEED = 1.0

    # ─────────────────────────────────────────────────────────────────────────
    # Instance Pool
    # ─────────────────────────────────────────────────────────────────────────
    POOL_INSTANCES = 2
    POOL_QUEUE_SIZE = 8             # Bounded reader queue between stdin and dispatcher

    # ─────────────────────────────────────────────────────────────────────────
    # Chunking
    # ─────────────────────────────────────────────────────────────────────────
    CHUNKING_MAX_CHARS = 400        # Longest text sent to a single inference call

    # ─────────────────────────────────────────────────────────────────────────
    # Output
    # ─────────────────────────────────────────────────────────────────────────
    OUTPUT_TEXT = "tmp/output.wav"
    OUTPUT_FILE = "tmp/output_{line}.wav"
    OUTPUT_PLACEHOLDER = "{line}"

    # ─────────────────────────────────────────────────────────────────────────
    # Server
    # ─────────────────────────────────────────────────────────────────────────
    SERVER_HOST = "0.0.0.0"
    SERVER_PORT = 3000
    SERVER_MAX_INPUT_CHARS = 4096

    # ─────────────────────────────────────────────────────────────────────────
    # Logging
    # ─────────────────────────────────────────────────────────────────────────
    LOGGING_TEXT_PREVIEW_CHARS = 80
    LOGGING_LEVEL = 2               # 1=MINIMAL, 2=NORMAL, 3=VERBOSE, 4=DEBUG


# OpenAI voice names mapped onto Kokoro voices.
DEFAULT_VOICE_MAPPING: Dict[str, str] = {
    "alloy": "af_alloy",
    "echo": "am_echo",
    "fable": "bm_fable",
    "onyx": "am_onyx",
    "nova": "af_nova",
    "shimmer": "af_sky",
}


@dataclass
class ModelConfig:
    """Kokoro model and voice pack locations."""
    model_path: str = Defaults.MODEL_PATH
    voices_path: str = Defaults.VOICES_PATH
    language: str = Defaults.LANGUAGE
    sample_rate: int = Defaults.SAMPLE_RATE


@dataclass
class SynthesisConfig:
    """
    Default voice and speed.

    The voice may be a single style name (``af_sky``) or a blend of styles
    where the digit after the dot is the weight in tenths
    (``af_sarah.4+af_nicole.6``).
    """
    voice: str = Defaults.VOICE
    speed: float = Defaults.SPEED


@dataclass
class PoolConfig:
    """
    Instance pool configuration.

    Each instance owns one inference session; ``instances`` is a
    process-wide bound on simultaneous inference calls.
    """
    instances: int = Defaults.POOL_INSTANCES
    queue_size: int = Defaults.POOL_QUEUE_SIZE


@dataclass
class ChunkingConfig:
    max_chars: int = Defaults.CHUNKING_MAX_CHARS


@dataclass
class OutputConfig:
    text_path: str = Defaults.OUTPUT_TEXT
    file_template: str = Defaults.OUTPUT_FILE
    placeholder: str = Defaults.OUTPUT_PLACEHOLDER


@dataclass
class ServerConfig:
    """OpenAI-compatible server front."""
    host: str = Defaults.SERVER_HOST
    port: int = Defaults.SERVER_PORT
    max_input_chars: int = Defaults.SERVER_MAX_INPUT_CHARS
    voice_mapping: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_VOICE_MAPPING))


@dataclass
class LoggingConfig:
    """
    Logging configuration.

    Log levels:
        1 = MINIMAL: Startup, shutdown, critical errors only
        2 = NORMAL: Request lifecycle, chunk completion (default)
        3 = VERBOSE: Per-chunk timing, pool waits
        4 = DEBUG: Lease tokens, queue state
    """
    text_preview_chars: int = Defaults.LOGGING_TEXT_PREVIEW_CHARS
    level: int = Defaults.LOGGING_LEVEL


@dataclass
class KokoConfig:
    """
    Validated configuration for the synthesis pipeline.

    Usage:
        settings = load_settings("config/settings.yaml")
        config = KokoConfig.from_settings(settings)
        print(config.pool.instances)
    """
    model: ModelConfig = field(default_factory=ModelConfig)
    synthesis: SynthesisConfig = field(default_factory=SynthesisConfig)
    pool: PoolConfig = field(default_factory=PoolConfig)
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_settings(cls, settings: "Settings") -> "KokoConfig":
        """
        Create KokoConfig from Settings with validation.

        Args:
            settings: Raw Settings object loaded from YAML.

        Returns:
            Validated KokoConfig instance.

        Raises:
            ConfigError: If any value fails validation.
        """
        raw = settings.raw

        model_raw = raw.get("model", {}) or {}
        model = ModelConfig(
            model_path=str(model_raw.get("model_path", Defaults.MODEL_PATH)),
            voices_path=str(model_raw.get("voices_path", Defaults.VOICES_PATH)),
            language=str(model_raw.get("language", Defaults.LANGUAGE)),
            sample_rate=cls._as_int("model.sample_rate", model_raw.get("sample_rate", Defaults.SAMPLE_RATE)),
        )
        cls._validate_positive("model.sample_rate", model.sample_rate)

        synthesis_raw = raw.get("synthesis", {}) or {}
        synthesis = SynthesisConfig(
            voice=str(synthesis_raw.get("voice", Defaults.VOICE)),
            speed=cls._as_float("synthesis.speed", synthesis_raw.get("speed", Defaults.SPEED)),
        )
        cls._validate_positive("synthesis.speed", synthesis.speed)
        if not synthesis.voice.strip():
            raise ConfigError("synthesis.voice must not be empty")

        pool_raw = raw.get("pool", {}) or {}
        pool = PoolConfig(
            instances=cls._as_int("pool.instances", pool_raw.get("instances", Defaults.POOL_INSTANCES)),
            queue_size=cls._as_int("pool.queue_size", pool_raw.get("queue_size", Defaults.POOL_QUEUE_SIZE)),
        )
        cls._validate_positive("pool.instances", pool.instances)
        cls._validate_positive("pool.queue_size", pool.queue_size)

        chunking_raw = raw.get("chunking", {}) or {}
        chunking = ChunkingConfig(
            max_chars=cls._as_int("chunking.max_chars", chunking_raw.get("max_chars", Defaults.CHUNKING_MAX_CHARS)),
        )
        cls._validate_positive("chunking.max_chars", chunking.max_chars)

        output_raw = raw.get("output", {}) or {}
        output = OutputConfig(
            text_path=str(output_raw.get("text_path", Defaults.OUTPUT_TEXT)),
            file_template=str(output_raw.get("file_template", Defaults.OUTPUT_FILE)),
            placeholder=str(output_raw.get("placeholder", Defaults.OUTPUT_PLACEHOLDER)),
        )
        if not output.placeholder:
            raise ConfigError("output.placeholder must not be empty")

        server_raw = raw.get("server", {}) or {}
        mapping = dict(DEFAULT_VOICE_MAPPING)
        mapping.update(server_raw.get("voice_mapping", {}) or {})
        server = ServerConfig(
            host=str(server_raw.get("host", Defaults.SERVER_HOST)),
            port=cls._as_int("server.port", server_raw.get("port", Defaults.SERVER_PORT)),
            max_input_chars=cls._as_int(
                "server.max_input_chars", server_raw.get("max_input_chars", Defaults.SERVER_MAX_INPUT_CHARS)
            ),
            voice_mapping=mapping,
        )
        cls._validate_range("server.port", server.port, 0, 65535)
        cls._validate_positive("server.max_input_chars", server.max_input_chars)

        logging_raw = raw.get("logging", {}) or {}
        log_level_raw = logging_raw.get("level", Defaults.LOGGING_LEVEL)

        # Handle string log levels (e.g., "INFO", "DEBUG")
        if isinstance(log_level_raw, str):
            level_map = {
                "MINIMAL": 1, "1": 1,
                "NORMAL": 2, "INFO": 2, "2": 2,
                "VERBOSE": 3, "3": 3,
                "DEBUG": 4, "TRACE": 4, "4": 4,
            }
            log_level = level_map.get(log_level_raw.upper(), Defaults.LOGGING_LEVEL)
        else:
            log_level = int(log_level_raw)

        logging_cfg = LoggingConfig(
            text_preview_chars=int(logging_raw.get("text_preview_chars", Defaults.LOGGING_TEXT_PREVIEW_CHARS)),
            level=log_level,
        )
        cls._validate_non_negative("logging.text_preview_chars", logging_cfg.text_preview_chars)
        cls._validate_range("logging.level", logging_cfg.level, 1, 4)

        return cls(
            model=model,
            synthesis=synthesis,
            pool=pool,
            chunking=chunking,
            output=output,
            server=server,
            logging=logging_cfg,
        )

    def with_overrides(
        self,
        *,
        model_path: Optional[str] = None,
        voices_path: Optional[str] = None,
        language: Optional[str] = None,
        voice: Optional[str] = None,
        speed: Optional[float] = None,
        instances: Optional[int] = None,
    ) -> "KokoConfig":
        """
        Return a copy with command line values applied on top.

        ``None`` means "not given" and keeps the configured value.

        Raises:
            ConfigError: If an override fails validation.
        """
        model = replace(
            self.model,
            model_path=model_path if model_path is not None else self.model.model_path,
            voices_path=voices_path if voices_path is not None else self.model.voices_path,
            language=language if language is not None else self.model.language,
        )
        synthesis = replace(
            self.synthesis,
            voice=voice if voice is not None else self.synthesis.voice,
            speed=speed if speed is not None else self.synthesis.speed,
        )
        pool = replace(self.pool, instances=instances if instances is not None else self.pool.instances)

        self._validate_positive("speed", synthesis.speed)
        self._validate_positive("instances", pool.instances)
        if not synthesis.voice.strip():
            raise ConfigError("voice must not be empty")

        return replace(self, model=model, synthesis=synthesis, pool=pool)

    @staticmethod
    def _as_int(name: str, value: Any) -> int:
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ConfigError(f"{name} must be an integer, got {value!r}") from None

    @staticmethod
    def _as_float(name: str, value: Any) -> float:
        try:
            return float(value)
        except (TypeError, ValueError):
            raise ConfigError(f"{name} must be a number, got {value!r}") from None

    @staticmethod
    def _validate_positive(name: str, value: int | float) -> None:
        """Validate that a value is positive (> 0)."""
        if value <= 0:
            raise ConfigError(f"{name} must be positive, got {value}")

    @staticmethod
    def _validate_non_negative(name: str, value: int | float) -> None:
        """Validate that a value is non-negative (>= 0)."""
        if value < 0:
            raise ConfigError(f"{name} must be non-negative, got {value}")

    @staticmethod
    def _validate_range(name: str, value: int | float, min_val: int | float, max_val: int | float) -> None:
        """Validate that a value is within a range [min_val, max_val]."""
        if not (min_val <= value <= max_val):
            raise ConfigError(f"{name} must be between {min_val} and {max_val}, got {value}")


@dataclass(frozen=True)
class Settings:
    """
    Immutable settings container loaded from YAML.

    This is the raw settings object before validation. Use
    get_config() to get a validated KokoConfig.

    Attributes:
        raw: Dictionary of raw configuration values.
    """
    raw: Dict[str, Any]

    @property
    def model_path(self) -> str:
        return str(self.raw.get("model", {}).get("model_path", Defaults.MODEL_PATH))

    @property
    def voices_path(self) -> str:
        return str(self.raw.get("model", {}).get("voices_path", Defaults.VOICES_PATH))

    @property
    def language(self) -> str:
        return str(self.raw.get("model", {}).get("language", Defaults.LANGUAGE))

    @property
    def instances(self) -> int:
        return int(self.raw.get("pool", {}).get("instances", Defaults.POOL_INSTANCES))

    def get_config(self) -> KokoConfig:
        """
        Get validated KokoConfig from these settings.

        Raises:
            ConfigError: If validation fails.
        """
        return KokoConfig.from_settings(self)


def _apply_env_overrides(raw: Dict[str, Any]) -> Dict[str, Any]:
    model_path = os.getenv("KOKO_MS_MODEL_PATH")
    if model_path:
        raw.setdefault("model", {})["model_path"] = model_path
    voices_path = os.getenv("KOKO_MS_VOICES_PATH")
    if voices_path:
        raw.setdefault("model", {})["voices_path"] = voices_path
    instances = os.getenv("KOKO_MS_INSTANCES")
    if instances:
        raw.setdefault("pool", {})["instances"] = instances
    return raw


def load_settings(path: str = "config/settings.yaml") -> Settings:
    """
    Load settings from a YAML configuration file.

    Environment variable overrides:
        - KOKO_MS_MODEL_PATH: Override model.model_path
        - KOKO_MS_VOICES_PATH: Override model.voices_path
        - KOKO_MS_INSTANCES: Override pool.instances

    Args:
        path: Path to the YAML configuration file.

    Returns:
        Settings object with loaded configuration.

    Raises:
        FileNotFoundError: If the settings file doesn't exist.
        ConfigError: If the file is not a YAML mapping.
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"settings file not found: {p.resolve()}")

    with p.open("r", encoding="utf-8") as f:
        loaded = yaml.safe_load(f) or {}

    if not isinstance(loaded, dict):
        raise ConfigError(f"settings file must contain a mapping: {p}")

    return Settings(raw=_apply_env_overrides(dict(loaded)))


def default_settings() -> Settings:
    """
    Settings used when no file is given.

    Reads ``KOKO_MS_SETTINGS`` if set, then ``config/settings.yaml`` if it
    exists, and falls back to built-in defaults otherwise.
    """
    env_path = os.getenv("KOKO_MS_SETTINGS")
    if env_path:
        return load_settings(env_path)
    if Path("config/settings.yaml").exists():
        return load_settings("config/settings.yaml")
    return Settings(raw=_apply_env_overrides({}))
