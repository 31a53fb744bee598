"""
koko-ms services layer.

    - synthesis.py: SynthesisService, the pipeline per consumption mode
    - errors.py: ErrorCode and the pipeline exception hierarchy
"""
from .errors import (
    AcquireCancelled,
    ErrorCode,
    InferenceError,
    KokoError,
    LoadError,
    OutputError,
    ProtocolError,
    StaleLeaseError,
    UnknownVoiceError,
)

__all__ = [
    "ErrorCode",
    "KokoError",
    "LoadError",
    "UnknownVoiceError",
    "InferenceError",
    "OutputError",
    "ProtocolError",
    "AcquireCancelled",
    "StaleLeaseError",
]
