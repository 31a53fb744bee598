"""
koko-ms: Kokoro text-to-speech with a shared pool of model instances.

Text is split into chunks, each chunk is synthesized on one of N Kokoro
ONNX sessions, and the audio is reassembled in order (or written one file
per chunk) as mono 16-bit WAV.

Entry points:
    - CLI: ``koko text|file|stream|openai`` (koko_ms.cli)
    - OpenAI-compatible HTTP server: /v1/audio/speech (koko_ms.main)

Example Usage:
    >>> from koko_ms.core.config import KokoConfig
    >>> from koko_ms.services.synthesis import SynthesisService
    >>> from koko_ms.tts.engine import kokoro_session_factory
    >>> from koko_ms.tts.pool import InstancePool
    >>>
    >>> config = KokoConfig()
    >>> with InstancePool(kokoro_session_factory(config.model), instances=2) as pool:
    ...     wav = SynthesisService(pool, config).synthesize_wav("Hello there.")
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
