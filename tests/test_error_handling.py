"""Tests for pipeline error types."""
from __future__ import annotations

import pytest

from koko_ms.services.errors import (
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


class TestErrorCodes:

    def test_codes_are_strings(self):
        for name in ["LOAD_FAILED", "UNKNOWN_VOICE", "INFERENCE_FAILED", "OUTPUT_FAILED",
                     "INVALID_REQUEST", "CANCELLED", "STALE_LEASE", "INTERNAL_ERROR"]:
            assert getattr(ErrorCode, name) == name


class TestKokoError:

    def test_defaults(self):
        err = KokoError("boom")
        assert err.message == "boom"
        assert err.code == ErrorCode.INTERNAL_ERROR
        assert err.details == {}
        assert str(err) == "boom"

    def test_to_dict_without_details(self):
        assert KokoError("boom").to_dict() == {"ok": False, "error": "INTERNAL_ERROR", "message": "boom"}

    def test_to_dict_with_details(self):
        d = KokoError("boom", ErrorCode.LOAD_FAILED, {"path": "x"}).to_dict()
        assert d["error"] == "LOAD_FAILED"
        assert d["details"] == {"path": "x"}


class TestSubclasses:

    def test_load_error(self):
        err = LoadError("missing model", {"path": "m.onnx"})
        assert isinstance(err, KokoError)
        assert err.code == ErrorCode.LOAD_FAILED
        assert err.details["path"] == "m.onnx"

    def test_unknown_voice_is_load_error(self):
        err = UnknownVoiceError("zz_x", available=["b", "a"])
        assert isinstance(err, LoadError)
        assert err.code == ErrorCode.UNKNOWN_VOICE
        assert err.voice == "zz_x"
        assert err.details == {"voice": "zz_x", "available": ["a", "b"]}
        assert "zz_x" in err.message

    def test_unknown_voice_without_list(self):
        assert "available" not in UnknownVoiceError("zz_x").details

    def test_inference_error_carries_chunk(self):
        err = InferenceError("engine crashed", 7, {"voice": "af_sky"})
        assert err.chunk_index == 7
        assert err.code == ErrorCode.INFERENCE_FAILED
        assert err.details == {"chunk": 7, "voice": "af_sky"}

    def test_output_error_target(self):
        err = OutputError("disk full", target="out.wav")
        assert err.target == "out.wav"
        assert err.details["target"] == "out.wav"
        assert OutputError("pipe closed").details == {}

    def test_protocol_error(self):
        err = ProtocolError("input: field required")
        assert err.code == ErrorCode.INVALID_REQUEST

    def test_pool_errors(self):
        assert AcquireCancelled().code == ErrorCode.CANCELLED
        assert StaleLeaseError("twice").code == ErrorCode.STALE_LEASE

    def test_catchable_as_base(self):
        with pytest.raises(KokoError):
            raise OutputError("x")
