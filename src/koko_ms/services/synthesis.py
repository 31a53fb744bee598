"""
SynthesisService - the pipeline composed for each consumption mode.

    chunks -> Dispatcher -> Assembler -> Container Writer -> Output Router

Modes:
    synthesize_to_target()  ordered; one destination (file, stdout pipe)
    synthesize_batch()      independent; one file per chunk, failures isolated
    synthesize_wav()        ordered; whole WAV body for an HTTP response
    stream_wav()            ordered; WAV (or raw PCM) bytes as they become ready

Every mode shares the InstancePool it was built with, so the pool size
bounds concurrent inference across all callers in the process.

Example:
    >>> pool = InstancePool(kokoro_session_factory(config.model), instances=2)
    >>> service = SynthesisService(pool, config)
    >>> summary = service.synthesize_to_target(
    ...     segment_text("Hello there.", 400), SinglePath("tmp/output.wav"))
    >>> print(summary.audio_seconds)
"""
from __future__ import annotations

import threading
from contextlib import closing
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

import numpy as np

from koko_ms.core.config import ConfigError, KokoConfig
from koko_ms.core.logging import fail, get_logger, info, success, verbose, warn
from koko_ms.services.errors import InferenceError
from koko_ms.tts.assembler import BatchReport, assemble_ordered, emit_independent
from koko_ms.tts.dispatcher import Dispatcher, InferenceResult
from koko_ms.tts.pool import InstancePool
from koko_ms.tts.router import ByteSink, HttpBody, OutputTarget, RawStream, is_per_chunk, open_writer
from koko_ms.tts.segmenter import TextChunk, segment_text
from koko_ms.utils.audio import wav_bytes_from_float32
from koko_ms.utils.timeit import timeit

_LOG = get_logger("koko-ms.service")


@dataclass
class SynthesisSummary:
    """
    Result of an ordered synthesis.

    Attributes:
        chunks: Chunks written.
        words: Words synthesized.
        audio_seconds: Length of the produced audio.
        seconds: Wall-clock time taken.
        destination: Where the audio went.
    """
    chunks: int
    words: int
    audio_seconds: float
    seconds: float
    destination: str

    @property
    def words_per_second(self) -> float:
        return self.words / self.seconds if self.seconds > 0 else 0.0


class _CountingChunks:
    """Pass-through iterable that counts words of the chunks it yields."""

    def __init__(self, chunks: Iterable[TextChunk]):
        self._chunks = chunks
        self.words = 0

    def __iter__(self) -> Iterator[TextChunk]:
        for chunk in self._chunks:
            self.words += len(chunk.content.split())
            yield chunk


class SynthesisService:
    """
    Runs chunks through the shared InstancePool.

    Args:
        pool: Loaded InstancePool, owned by the caller.
        config: Validated configuration (default voice and speed).
    """

    def __init__(self, pool: InstancePool, config: Optional[KokoConfig] = None):
        self._pool = pool
        self._config = config or KokoConfig()

    @property
    def pool(self) -> InstancePool:
        return self._pool

    @property
    def config(self) -> KokoConfig:
        return self._config

    @property
    def sample_rate(self) -> int:
        return self._pool.sample_rate

    def resolve(self, voice: Optional[str] = None, speed: Optional[float] = None) -> Tuple[str, float]:
        """
        Apply defaults and validate voice and speed.

        Raises:
            ConfigError: If speed is not positive.
            UnknownVoiceError: If the voice is not in the voice pack.
        """
        voice = voice or self._config.synthesis.voice
        speed = self._config.synthesis.speed if speed is None else float(speed)
        if speed <= 0:
            raise ConfigError(f"speed must be positive, got {speed}")
        self._pool.resolve_voice(voice)
        return voice, speed

    def iter_audio(
        self,
        chunks: Iterable[TextChunk],
        voice: Optional[str] = None,
        speed: Optional[float] = None,
    ) -> Iterator[InferenceResult]:
        """
        Ordered results for ``chunks``.

        At most ``pool.size`` results are held between inference and the
        consumer, so memory stays bounded for unbounded input.

        Raises:
            InferenceError: On the first failed chunk in index order.
        """
        voice, speed = self.resolve(voice, speed)
        return self._ordered(chunks, voice, speed)

    def _ordered(self, chunks: Iterable[TextChunk], voice: str, speed: float) -> Iterator[InferenceResult]:
        with Dispatcher(self._pool, voice, speed, max_outstanding=self._pool.size) as dispatcher:
            yield from assemble_ordered(dispatcher.dispatch(chunks), on_release=dispatcher.ack)

    def synthesize_to_target(
        self,
        chunks: Iterable[TextChunk],
        target: OutputTarget,
        voice: Optional[str] = None,
        speed: Optional[float] = None,
    ) -> SynthesisSummary:
        """
        Ordered synthesis into a single destination.

        Audio already written stays in the destination when a chunk fails;
        a file destination is closed with a valid header first.

        Raises:
            InferenceError: If a chunk fails.
            OutputError: If the destination cannot be written.
        """
        if is_per_chunk(target):
            raise ValueError("per-chunk targets need synthesize_batch()")

        voice, speed = self.resolve(voice, speed)
        counted = _CountingChunks(chunks)
        written = 0
        frames = 0

        with timeit("synthesize") as t:
            writer = open_writer(target, self.sample_rate)
            if isinstance(target, RawStream):
                # a pipe gets a valid header even when no chunk ever arrives
                writer.start()
            try:
                with closing(self._ordered(counted, voice, speed)) as results:
                    for result in results:
                        writer.write(result.pcm)
                        written += 1
                        frames += len(result.pcm)
                        if written == 1:
                            verbose(_LOG, "first_audio", seconds=t.elapsed())
            except InferenceError as exc:
                fail(_LOG, "synthesis_aborted", chunk=exc.chunk_index, written=written, error=exc.message)
                raise
            finally:
                writer.close()

        summary = SynthesisSummary(
            chunks=written,
            words=counted.words,
            audio_seconds=frames / self.sample_rate,
            seconds=t.timing.seconds,
            destination=writer.destination,
        )
        success(
            _LOG,
            "synthesis_done",
            chunks=summary.chunks,
            audio_s=round(summary.audio_seconds, 2),
            words_per_s=round(summary.words_per_second, 1),
            dest=summary.destination,
            seconds=summary.seconds,
        )
        return summary

    def synthesize_batch(
        self,
        chunks: Sequence[TextChunk],
        target: OutputTarget,
        voice: Optional[str] = None,
        speed: Optional[float] = None,
    ) -> BatchReport:
        """
        Independent synthesis: one output per chunk.

        Each chunk is written as soon as it is ready. Failures, in inference
        or in writing, are recorded and do not affect other chunks.
        """
        if not is_per_chunk(target):
            raise ValueError("synthesize_batch() needs a per-chunk target")

        voice, speed = self.resolve(voice, speed)
        count = len(chunks)
        sample_rate = self.sample_rate

        def _write(result: InferenceResult) -> str:
            writer = open_writer(target, sample_rate, result.chunk_index, count)
            with writer:
                writer.write(result.pcm)
            verbose(_LOG, "chunk_written", chunk=result.chunk_index, dest=writer.destination)
            return writer.destination

        info(_LOG, "batch_started", chunks=count, instances=self._pool.size)
        with timeit("batch") as t:
            with Dispatcher(self._pool, voice, speed) as dispatcher:
                report = emit_independent(dispatcher.dispatch(chunks), _write)

        if report.ok:
            success(_LOG, "batch_done", written=len(report.written), seconds=t.timing.seconds)
        else:
            warn(
                _LOG,
                "batch_done",
                written=len(report.written),
                failed=sorted(report.failed),
                seconds=t.timing.seconds,
            )
        return report

    def synthesize_wav(self, text: str, voice: Optional[str] = None, speed: Optional[float] = None) -> bytes:
        """Whole WAV file for ``text``."""
        chunks = segment_text(text, self._config.chunking.max_chars)
        parts: List[np.ndarray] = [r.pcm for r in self.iter_audio(chunks, voice, speed)]
        samples = np.concatenate(parts) if parts else np.zeros(0, dtype=np.float32)
        return wav_bytes_from_float32(samples, self.sample_rate)

    def stream_wav(
        self,
        text: str,
        voice: Optional[str] = None,
        speed: Optional[float] = None,
        header: bool = True,
        cancel: Optional[threading.Event] = None,
    ) -> Iterator[bytes]:
        """
        Streaming body for ``text``: a max-length WAV header, then PCM per chunk.

        Voice and speed are validated before the generator is returned, so
        callers can still answer with an error status.
        """
        voice, speed = self.resolve(voice, speed)
        chunks = segment_text(text, self._config.chunking.max_chars)
        return self._stream(chunks, voice, speed, header, cancel)

    def _stream(
        self,
        chunks: List[TextChunk],
        voice: str,
        speed: float,
        header: bool,
        cancel: Optional[threading.Event],
    ) -> Iterator[bytes]:
        target = HttpBody(ByteSink(), header=header)
        writer = open_writer(target, self.sample_rate)
        with timeit("stream") as t, closing(self._ordered(chunks, voice, speed)) as results:
            for result in results:
                if cancel is not None and cancel.is_set():
                    info(_LOG, "stream_cancelled", chunk=result.chunk_index)
                    return
                writer.write(result.pcm)
                if result.chunk_index == 0:
                    verbose(_LOG, "first_audio", seconds=t.elapsed())
                yield target.sink.drain()
        success(_LOG, "stream_done", chunks=len(chunks), seconds=t.timing.seconds)


__all__ = [
    "SynthesisService",
    "SynthesisSummary",
    "BatchReport",
]
