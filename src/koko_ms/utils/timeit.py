"""
Timing helper for stage latencies.

    with timeit("inference", meta={"chunk": 3}) as t:
        pcm = session.infer(text, voice, speed)
    verbose(_LOG, "chunk_done", seconds=t.timing.seconds)

Uses ``time.perf_counter()``.
"""
from __future__ import annotations

from dataclasses import dataclass
from time import perf_counter
from typing import Any, Dict, Optional


@dataclass
class Timing:
    name: str
    seconds: float
    meta: Optional[Dict[str, Any]] = None


class timeit:
    """
    Context manager measuring the wall-clock time of its block.

    ``timing`` is filled in on exit, including when the block raises.
    ``elapsed()`` can be read while the block is still running, e.g. to
    log time-to-first-audio from inside a streaming loop.
    """

    def __init__(self, name: str, meta: Optional[Dict[str, Any]] = None):
        self.name = name
        self.meta = meta
        self._t0: float | None = None
        self.timing: Timing | None = None

    def __enter__(self) -> "timeit":
        self._t0 = perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.timing = Timing(name=self.name, seconds=self.elapsed(), meta=self.meta)

    def elapsed(self) -> float:
        assert self._t0 is not None
        return perf_counter() - self._t0
