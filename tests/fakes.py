"""In-process stand-ins for Kokoro sessions used across the test suite."""
from __future__ import annotations

import threading
import time
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from koko_ms.tts.engine import InferenceSession

FAKE_VOICES = [
    "af_alloy",
    "af_nicole",
    "af_nova",
    "af_sarah",
    "af_sky",
    "am_echo",
    "am_onyx",
    "bm_fable",
]


def fake_pcm(text: str) -> np.ndarray:
    """Deterministic samples for ``text``: length and level depend on the text."""
    level = (sum(map(ord, text)) % 50 + 1) / 100.0
    return np.full(len(text) * 10, level, dtype=np.float32)


class Tracker:
    """Counts concurrent infer() calls across every session of a pool."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.active = 0
        self.max_active = 0
        self.calls: List[Tuple[str, int]] = []
        self.started: List[str] = []

    def enter(self, text: str, worker_id: int) -> None:
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self.started.append(text)

    def leave(self, text: str, worker_id: int) -> None:
        with self._lock:
            self.active -= 1
            self.calls.append((text, worker_id))


class FakeSession(InferenceSession):
    """
    Inference session that sleeps instead of running a model.

    Text containing ``FAIL`` raises; text containing ``WAIT`` blocks until
    ``gate`` is set.
    """

    def __init__(
        self,
        worker_id: int,
        tracker: Optional[Tracker] = None,
        delay: Optional[Callable[[str], float]] = None,
        gate: Optional[threading.Event] = None,
        voices: Sequence[str] = FAKE_VOICES,
        sample_rate: int = 24000,
    ):
        self.worker_id = worker_id
        self.tracker = tracker or Tracker()
        self.delay = delay
        self.gate = gate
        self.sample_rate = sample_rate
        self._voices = list(voices)
        self.closed = False
        self.in_use = threading.Lock()

    def voices(self) -> Sequence[str]:
        return self._voices

    def infer(self, text: str, voice: str, speed: float) -> np.ndarray:
        self.resolve_voice(voice)
        if not self.in_use.acquire(blocking=False):
            raise AssertionError(f"session {self.worker_id} used by two jobs at once")
        self.tracker.enter(text, self.worker_id)
        try:
            if self.gate is not None and "WAIT" in text:
                self.gate.wait(timeout=5)
            if self.delay is not None:
                time.sleep(self.delay(text))
            if "FAIL" in text:
                raise RuntimeError(f"synthetic failure for {text!r}")
            return fake_pcm(text)
        finally:
            self.tracker.leave(text, self.worker_id)
            self.in_use.release()

    def close(self) -> None:
        self.closed = True


class FakeFactory:
    """SessionFactory that records every session it builds."""

    def __init__(
        self,
        delay: Optional[Callable[[str], float]] = None,
        gate: Optional[threading.Event] = None,
        fail_on: Optional[int] = None,
        sample_rates: Optional[Dict[int, int]] = None,
    ):
        self.tracker = Tracker()
        self.delay = delay
        self.gate = gate
        self.fail_on = fail_on
        self.sample_rates = sample_rates or {}
        self.sessions: List[FakeSession] = []

    def __call__(self, worker_id: int) -> FakeSession:
        if self.fail_on == worker_id:
            raise RuntimeError(f"cannot load instance {worker_id}")
        session = FakeSession(
            worker_id,
            tracker=self.tracker,
            delay=self.delay,
            gate=self.gate,
            sample_rate=self.sample_rates.get(worker_id, 24000),
        )
        self.sessions.append(session)
        return session


def delays(table: Dict[str, float], default: float = 0.0) -> Callable[[str], float]:
    """Delay function looking up exact chunk text."""
    return lambda text: table.get(text, default)
