"""
Container Writer.

All audio leaves koko-ms as a WAV container:
    - PCM 16-bit little endian
    - Mono
    - The model's native sample rate (24000 Hz for Kokoro)

Writers:
    WavFileWriter    file destinations; libsndfile writes a header with
                     placeholder sizes and patches it on close()
    WavStreamWriter  pipes and HTTP bodies; the header is written first
                     with the maximum-length convention (RIFF and data
                     sizes 0xFFFFFFFF), then PCM frames are appended and
                     flushed chunk by chunk

A file writer closed after an error still patches the header with the
frames written so far. A process killed mid-write leaves the placeholder
header, which most players still accept.

Helpers:
    float_to_pcm16          float32 samples in [-1, 1] -> int16 bytes
    wav_bytes_from_float32  whole WAV file as bytes
    wav_stream_header       the 44-byte streaming header

Dependencies:
    - numpy: Sample conversion
    - soundfile: WAV writing (libsndfile)
"""
from __future__ import annotations

import io
import struct
from pathlib import Path
from typing import BinaryIO, Union

import numpy as np
import soundfile as sf

from koko_ms.core.logging import debug, get_logger, verbose
from koko_ms.services.errors import OutputError
from koko_ms.utils.timeit import timeit

_LOG = get_logger("koko-ms.audio")

STREAM_SIZE_UNKNOWN = 0xFFFFFFFF
_BITS = 16
_CHANNELS = 1


def to_int16(samples: np.ndarray) -> np.ndarray:
    """Clip to [-1, 1] and scale to int16."""
    wav = np.asarray(samples, dtype=np.float32).reshape(-1)
    return (np.clip(wav, -1.0, 1.0) * 32767.0).astype("<i2")


def float_to_pcm16(samples: np.ndarray) -> bytes:
    """Little-endian 16-bit PCM bytes for float32 samples."""
    return to_int16(samples).tobytes()


def wav_stream_header(sample_rate: int) -> bytes:
    """
    RIFF/WAVE header for a stream of unknown length.

    Both size fields hold 0xFFFFFFFF; ffmpeg, browsers and most players
    read such a stream until EOF.
    """
    block_align = _CHANNELS * _BITS // 8
    return struct.pack(
        "<4sI4s4sIHHIIHH4sI",
        b"RIFF",
        STREAM_SIZE_UNKNOWN,
        b"WAVE",
        b"fmt ",
        16,                         # fmt chunk size
        1,                          # PCM
        _CHANNELS,
        sample_rate,
        sample_rate * block_align,  # byte rate
        block_align,
        _BITS,
        b"data",
        STREAM_SIZE_UNKNOWN,
    )


def wav_bytes_from_float32(waveform: np.ndarray, sample_rate: int) -> bytes:
    """
    Encode a whole waveform as a finalized WAV file.

    Used for non-streaming HTTP responses.
    """
    with timeit("wav_encode") as t:
        buf = io.BytesIO()
        sf.write(buf, to_int16(waveform), sample_rate, format="WAV", subtype="PCM_16")
        out = buf.getvalue()
    verbose(_LOG, "wav_encoded", bytes=len(out), sr=sample_rate, seconds=round(t.timing.seconds, 4))
    return out


class WavFileWriter:
    """
    Incremental WAV writer for a file path.

    Usage:
        with WavFileWriter("tmp/output.wav", 24000) as w:
            w.write(chunk_samples)
    """

    def __init__(self, path: Union[str, Path], sample_rate: int):
        self.path = Path(path)
        self.sample_rate = sample_rate
        self.frames_written = 0
        try:
            self._file = sf.SoundFile(
                str(self.path),
                mode="w",
                samplerate=sample_rate,
                channels=_CHANNELS,
                subtype="PCM_16",
                format="WAV",
            )
        except (sf.LibsndfileError, OSError) as exc:
            raise OutputError(f"cannot open {self.path}: {exc}", target=str(self.path)) from exc

    @property
    def destination(self) -> str:
        return str(self.path)

    def write(self, samples: np.ndarray) -> None:
        pcm = to_int16(samples)
        try:
            self._file.write(pcm)
        except (sf.LibsndfileError, OSError) as exc:
            raise OutputError(f"write to {self.path} failed: {exc}", target=str(self.path)) from exc
        self.frames_written += len(pcm)

    def close(self) -> None:
        """Patch the header sizes and close. Safe to call twice."""
        if self._file.closed:
            return
        try:
            self._file.close()
        except (sf.LibsndfileError, OSError) as exc:
            raise OutputError(f"closing {self.path} failed: {exc}", target=str(self.path)) from exc
        debug(_LOG, "file_closed", path=str(self.path), frames=self.frames_written)

    def __enter__(self) -> "WavFileWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class WavStreamWriter:
    """
    Streaming WAV writer for a binary stream (stdout pipe, HTTP body sink).

    The header is written on the first ``write()`` (or ``start()``) so an
    operation that fails before producing audio leaves the stream empty.
    With ``header=False`` only raw PCM frames are written.
    """

    def __init__(self, stream: BinaryIO, sample_rate: int, name: str = "<stream>", header: bool = True):
        self.stream = stream
        self.sample_rate = sample_rate
        self.name = name
        self.frames_written = 0
        self._started = not header

    @property
    def destination(self) -> str:
        return self.name

    def _emit(self, data: bytes) -> None:
        try:
            self.stream.write(data)
            self.stream.flush()
        except (OSError, ValueError) as exc:
            raise OutputError(f"write to {self.name} failed: {exc}", target=self.name) from exc

    def start(self) -> None:
        if not self._started:
            self._started = True
            self._emit(wav_stream_header(self.sample_rate))

    def write(self, samples: np.ndarray) -> None:
        self.start()
        data = float_to_pcm16(samples)
        self._emit(data)
        self.frames_written += len(data) // 2

    def close(self) -> None:
        """Nothing to finalize: every write is flushed and the stream belongs to the caller."""

    def __enter__(self) -> "WavStreamWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
