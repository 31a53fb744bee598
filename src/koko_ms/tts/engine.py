"""
Inference Engine Adapter.

The pipeline treats the neural model as an external collaborator behind
one narrow interface:

    session.infer(text, voice, speed) -> float32 mono samples
    session.sample_rate                -> fixed for the session's lifetime
    session.voices()                   -> names in the loaded voice pack

An InferenceSession is NOT thread-safe; the InstancePool guarantees that
each session serves one job at a time.

KokoroSession wraps ``kokoro_onnx.Kokoro``. Voices are either a single
style name (``af_sky``) or a blend written as ``name.W+name.W`` where W is
the weight in tenths (``af_sarah.4+af_nicole.6`` mixes 40% and 60%).

Model Files:
    kokoro-v1.0.onnx and voices-v1.0.bin. A relative path that does not
    exist is also looked up in ~/.local/share/koko, /usr/local/share/koko
    and /usr/share/koko.

See Also:
    - https://github.com/thewh1teagle/kokoro-onnx
"""
from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict, List, Sequence, Tuple, Union

import numpy as np

from koko_ms.core.config import Defaults, ModelConfig
from koko_ms.core.logging import debug, get_logger, info, verbose, warn
from koko_ms.services.errors import LoadError, UnknownVoiceError
from koko_ms.utils.timeit import timeit

_LOG = get_logger("koko-ms.engine")

MODEL_URL = "https://github.com/thewh1teagle/kokoro-onnx/releases/download/model-files-v1.0/kokoro-v1.0.onnx"
VOICES_URL = "https://github.com/thewh1teagle/kokoro-onnx/releases/download/model-files-v1.0/voices-v1.0.bin"

SHARE_DIRS = (
    "~/.local/share/koko",
    "/usr/local/share/koko",
    "/usr/share/koko",
)

VoiceStyle = Union[str, np.ndarray]


def parse_voice(spec: str) -> List[Tuple[str, float]]:
    """
    Parse a voice spec into ``(name, weight)`` pairs.

    Examples:
        >>> parse_voice("af_sky")
        [('af_sky', 1.0)]
        >>> parse_voice("af_sarah.4+af_nicole.6")
        [('af_sarah', 0.4), ('af_nicole', 0.6)]

    Raises:
        UnknownVoiceError: If the voice spec is empty or a blend component has
            no numeric weight.
    """
    spec = spec.strip()
    if not spec:
        raise UnknownVoiceError(spec)
    if "+" not in spec:
        return [(spec, 1.0)]

    parts: List[Tuple[str, float]] = []
    for component in spec.split("+"):
        name, sep, weight = component.strip().partition(".")
        if not sep or not name:
            raise UnknownVoiceError(spec)
        try:
            parts.append((name, float(weight) * 0.1))
        except ValueError:
            raise UnknownVoiceError(spec) from None
    return parts


def find_data_file(path: str, kind: str) -> Path:
    """
    Locate a model or voices file.

    The given path wins if it exists; otherwise its file name is looked
    up in the shared data directories.

    Raises:
        LoadError: If the file exists nowhere, with a download hint.
    """
    given = Path(path).expanduser()
    if given.exists():
        return given

    candidates = [Path(d).expanduser() / given.name for d in SHARE_DIRS]
    for candidate in candidates:
        if candidate.exists():
            info(_LOG, "data_file_found", kind=kind, path=str(candidate))
            return candidate

    url = MODEL_URL if kind == "model" else VOICES_URL
    raise LoadError(
        f"{kind} file not found: {path}",
        details={
            "download": url,
            "searched": [str(given)] + [str(c) for c in candidates],
        },
    )


class InferenceSession:
    """
    One loaded model plus voice pack.

    Subclasses implement ``voices()`` and ``infer()``; ``close()`` is
    optional.
    """
    sample_rate: int = 24000

    def voices(self) -> Sequence[str]:
        raise NotImplementedError

    def resolve_voice(self, spec: str) -> List[Tuple[str, float]]:
        """
        Validate a voice spec against this session's voice pack.

        Raises:
            UnknownVoiceError: If any component is not in the pack.
        """
        parts = parse_voice(spec)
        available = set(self.voices())
        for name, _ in parts:
            if name not in available:
                raise UnknownVoiceError(name, list(available))
        return parts

    def infer(self, text: str, voice: str, speed: float) -> np.ndarray:
        raise NotImplementedError

    def close(self) -> None:
        pass


class KokoroSession(InferenceSession):
    """
    Kokoro v1.0 session backed by kokoro-onnx.

    Blended styles are computed once per voice spec and kept for the session's
    lifetime; the underlying voice tensors are never modified.
    """

    def __init__(
        self,
        model_path: str,
        voices_path: str,
        language: str = "en-us",
        worker_id: int = 0,
        sample_rate: int = Defaults.SAMPLE_RATE,
    ):
        try:
            from kokoro_onnx import Kokoro
        except ImportError as exc:
            raise LoadError("Kokoro dependency missing. Install with: pip install kokoro-onnx") from exc

        self.worker_id = worker_id
        self.language = language
        self.sample_rate = sample_rate
        self._blends: Dict[str, np.ndarray] = {}

        with timeit("load_model") as t:
            try:
                self._model = Kokoro(model_path, voices_path)
            except Exception as exc:
                raise LoadError(
                    f"failed to load Kokoro model: {exc}",
                    details={"model": model_path, "voices": voices_path},
                ) from exc

        self._voices = sorted(self._model.get_voices())
        verbose(_LOG, "session_loaded", worker=worker_id, voices=len(self._voices), seconds=t.timing.seconds)

    def voices(self) -> Sequence[str]:
        return self._voices

    def _style(self, spec: str) -> VoiceStyle:
        parts = self.resolve_voice(spec)
        if len(parts) == 1 and parts[0][1] == 1.0:
            return parts[0][0]

        cached = self._blends.get(spec)
        if cached is None:
            cached = sum(
                self._model.get_voice_style(name).astype(np.float32) * weight
                for name, weight in parts
            )
            self._blends[spec] = cached
            debug(_LOG, "voice_blended", voice=spec)
        return cached

    def infer(self, text: str, voice: str, speed: float) -> np.ndarray:
        style = self._style(voice)
        samples, sample_rate = self._model.create(text, voice=style, speed=speed, lang=self.language)
        if int(sample_rate) != self.sample_rate:
            warn(_LOG, "unexpected_sample_rate", got=int(sample_rate), expected=self.sample_rate)

        wav = np.asarray(samples, dtype=np.float32)
        if wav.ndim > 1:
            wav = wav.reshape(-1)
        return wav

    def close(self) -> None:
        self._blends.clear()
        self._model = None


SessionFactory = Callable[[int], InferenceSession]


def kokoro_session_factory(model: ModelConfig) -> SessionFactory:
    """
    Build the factory the InstancePool calls once per worker.

    File lookup happens here, once, so a missing file fails before any
    session is created.

    Raises:
        LoadError: If the model or voices file cannot be found.
    """
    model_path = str(find_data_file(model.model_path, "model"))
    voices_path = str(find_data_file(model.voices_path, "voices"))

    def _factory(worker_id: int) -> InferenceSession:
        return KokoroSession(
            model_path,
            voices_path,
            language=model.language,
            worker_id=worker_id,
            sample_rate=model.sample_rate,
        )

    return _factory


__all__ = [
    "InferenceSession",
    "KokoroSession",
    "SessionFactory",
    "find_data_file",
    "kokoro_session_factory",
    "parse_voice",
]
