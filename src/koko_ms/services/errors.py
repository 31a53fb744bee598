"""
Error codes and exceptions for the synthesis pipeline.

Every pipeline error carries a machine readable ``code`` from
:class:`ErrorCode`, a human readable ``message`` and optional
``details``; ``to_dict()`` gives the body used by the CLI summary and
the HTTP front.

Policy by class:
    LoadError        - fatal: no partial pool is ever handed out
    InferenceError   - scoped to one chunk
    OutputError      - scoped to one output target
    ProtocolError    - scoped to one HTTP request

Configuration problems raise ``koko_ms.core.config.ConfigError``.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class ErrorCode:
    LOAD_FAILED = "LOAD_FAILED"             # Model or voice pack could not be loaded
    UNKNOWN_VOICE = "UNKNOWN_VOICE"         # Voice or blend component not in the voice pack
    INFERENCE_FAILED = "INFERENCE_FAILED"   # One chunk failed in the inference engine
    OUTPUT_FAILED = "OUTPUT_FAILED"         # Writing or flushing an output target failed
    INVALID_REQUEST = "INVALID_REQUEST"     # Malformed client request
    CANCELLED = "CANCELLED"                 # Waiting for a worker was cancelled
    STALE_LEASE = "STALE_LEASE"             # Worker lease released twice or never issued
    INTERNAL_ERROR = "INTERNAL_ERROR"


class KokoError(Exception):
    """
    Base exception for pipeline errors.

    Attributes:
        message: Human-readable error message.
        code: Error code from ErrorCode.
        details: Optional dictionary with additional context.
    """
    def __init__(self, message: str, code: str = ErrorCode.INTERNAL_ERROR, details: Optional[Dict] = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "ok": False,
            "error": self.code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class LoadError(KokoError):
    """Raised when the model or voice data cannot be loaded."""
    def __init__(self, message: str, details: Optional[Dict] = None, code: str = ErrorCode.LOAD_FAILED):
        super().__init__(message, code, details)


class UnknownVoiceError(LoadError):
    """Raised when a requested voice does not exist in the loaded voice pack."""
    def __init__(self, voice: str, available: Optional[list] = None):
        details: Dict[str, Any] = {"voice": voice}
        if available:
            details["available"] = sorted(available)
        super().__init__(f"unknown voice: {voice}", details, code=ErrorCode.UNKNOWN_VOICE)
        self.voice = voice


class InferenceError(KokoError):
    """
    Raised when inference fails for one chunk.

    Attributes:
        chunk_index: Index of the failing chunk.
    """
    def __init__(self, message: str, chunk_index: int, details: Optional[Dict] = None):
        merged = {"chunk": chunk_index}
        merged.update(details or {})
        super().__init__(message, ErrorCode.INFERENCE_FAILED, merged)
        self.chunk_index = chunk_index


class OutputError(KokoError):
    """Raised when an output target cannot be created, written or flushed."""
    def __init__(self, message: str, target: Optional[str] = None, details: Optional[Dict] = None):
        merged = {"target": target} if target is not None else {}
        merged.update(details or {})
        super().__init__(message, ErrorCode.OUTPUT_FAILED, merged)
        self.target = target


class ProtocolError(KokoError):
    """Raised for malformed client requests at the HTTP front."""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.INVALID_REQUEST, details)


class AcquireCancelled(KokoError):
    """Raised when a caller stops waiting for a pool worker."""
    def __init__(self, message: str = "worker acquisition cancelled"):
        super().__init__(message, ErrorCode.CANCELLED)


class StaleLeaseError(KokoError):
    """Raised when a lease is released twice or does not belong to the pool."""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.STALE_LEASE, details)
