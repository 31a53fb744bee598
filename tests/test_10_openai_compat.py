"""Tests for the OpenAI-compatible HTTP front, served from a pool of fake sessions."""
from __future__ import annotations

import numpy as np
import pytest
from fastapi.testclient import TestClient

from fakes import FAKE_VOICES, fake_pcm


def _config(**sections):
    from koko_ms.core.config import KokoConfig, Settings

    return KokoConfig.from_settings(Settings(raw=sections))


@pytest.fixture
def client(pool):
    from koko_ms.main import create_app

    app = create_app(pool=pool, config=_config(chunking={"max_chars": 40}))
    with TestClient(app) as c:
        yield c


class TestRoutes:

    def test_endpoints_registered(self, pool):
        from koko_ms.main import create_app

        app = create_app(pool=pool, config=_config())
        routes = [r.path for r in app.routes]
        for path in ["/v1/audio/speech", "/v1/audio/voices", "/v1/models", "/health", "/metrics"]:
            assert path in routes

    def test_speech_requires_post(self, client):
        assert client.get("/v1/audio/speech").status_code == 405

    def test_injected_pool_left_open(self, pool):
        from koko_ms.main import create_app

        with TestClient(create_app(pool=pool, config=_config())):
            pass
        with pool.lease():
            pass


class TestRequestModel:

    def test_minimal_request(self):
        from koko_ms.api.openai_compat import OpenAISpeechRequest

        req = OpenAISpeechRequest(input="Hello world")
        assert req.model == "tts-1"
        assert req.voice == "alloy"
        assert req.speed == 1.0
        assert req.stream is False
        assert req.response_format.value == "wav"

    def test_speed_bounds(self):
        from pydantic import ValidationError

        from koko_ms.api.openai_compat import OpenAISpeechRequest

        OpenAISpeechRequest(input="x", speed=0.25)
        OpenAISpeechRequest(input="x", speed=4.0)
        with pytest.raises(ValidationError):
            OpenAISpeechRequest(input="x", speed=0.1)
        with pytest.raises(ValidationError):
            OpenAISpeechRequest(input="x", speed=5.0)

    def test_empty_input_rejected(self):
        from pydantic import ValidationError

        from koko_ms.api.openai_compat import OpenAISpeechRequest

        with pytest.raises(ValidationError):
            OpenAISpeechRequest(input="")


class TestVoiceMapping:

    def test_openai_voices_mapped(self):
        from koko_ms.api.openai_compat import map_voice

        config = _config()
        assert map_voice("alloy", config) == "af_alloy"
        assert map_voice("shimmer", config) == "af_sky"

    def test_kokoro_voice_passes_through(self):
        from koko_ms.api.openai_compat import map_voice

        assert map_voice("af_sarah.4+af_nicole.6", _config()) == "af_sarah.4+af_nicole.6"

    def test_configured_mapping(self):
        from koko_ms.api.openai_compat import map_voice

        assert map_voice("alloy", _config(server={"voice_mapping": {"alloy": "bm_fable"}})) == "bm_fable"


class TestSpeech:

    def test_whole_wav(self, client):
        r = client.post("/v1/audio/speech", json={"model": "tts-1", "input": "Hello!", "voice": "alloy"})

        assert r.status_code == 200
        assert r.headers["content-type"] == "audio/wav"
        assert r.headers["x-voice-mapped-to"] == "af_alloy"
        assert r.headers["x-request-id"]
        assert r.content[:4] == b"RIFF"
        assert r.content[8:12] == b"WAVE"

    def test_multi_chunk_in_order(self, client):
        import io

        import soundfile as sf

        from koko_ms.tts.segmenter import split_text

        text = "The first sentence is here. A second one follows it. And then a third one."
        r = client.post("/v1/audio/speech", json={"input": text, "voice": "af_sky"})
        assert r.status_code == 200

        expected = np.concatenate([fake_pcm(p) for p in split_text(text, 40)])
        data, sr = sf.read(io.BytesIO(r.content), dtype="int16")
        assert sr == 24000
        np.testing.assert_array_equal(data, (expected * 32767).astype(np.int16))

    def test_stream(self, client):
        from koko_ms.tts.segmenter import split_text
        from koko_ms.utils.audio import float_to_pcm16, wav_stream_header

        text = "Streaming starts here. It keeps going for a while. Then it stops."
        r = client.post("/v1/audio/speech", json={"input": text, "voice": "af_sky", "stream": True})

        assert r.status_code == 200
        expected = wav_stream_header(24000) + b"".join(float_to_pcm16(fake_pcm(p)) for p in split_text(text, 40))
        assert r.content == expected

    def test_pcm_format(self, client):
        r = client.post("/v1/audio/speech", json={"input": "Raw.", "voice": "af_sky", "response_format": "pcm"})

        assert r.status_code == 200
        assert r.headers["content-type"] == "audio/pcm"
        assert len(r.content) == 2 * len(fake_pcm("Raw."))

    def test_unsupported_format_falls_back_to_wav(self, client):
        r = client.post("/v1/audio/speech", json={"input": "Hi.", "voice": "af_sky", "response_format": "mp3"})

        assert r.status_code == 200
        assert r.headers["content-type"] == "audio/wav"
        assert r.content[:4] == b"RIFF"

    @pytest.mark.parametrize("chars,expected", [(5, "Hello"), (0, "")])
    def test_request_log_preview_length(self, pool, monkeypatch, chars, expected):
        from koko_ms.api import openai_compat
        from koko_ms.main import create_app

        logged = []
        monkeypatch.setattr(openai_compat, "info", lambda logger, msg, **fields: logged.append((msg, fields)))

        app = create_app(pool=pool, config=_config(logging={"text_preview_chars": chars}))
        with TestClient(app) as c:
            r = c.post("/v1/audio/speech", json={"input": "Hello there, world.", "voice": "af_sky"})

        assert r.status_code == 200
        fields = dict(logged)["openai_request"]
        assert fields["text_preview"] == expected
        assert fields["chars"] == 19


class TestErrors:

    def test_unknown_voice(self, client):
        r = client.post("/v1/audio/speech", json={"input": "Hi.", "voice": "xx_none"})

        assert r.status_code == 400
        err = r.json()["error"]
        assert err["type"] == "invalid_request_error"
        assert err["code"] == "unknown_voice"

    def test_unknown_voice_in_stream_mode(self, client):
        r = client.post("/v1/audio/speech", json={"input": "Hi.", "voice": "xx_none", "stream": True})
        assert r.status_code == 400

    def test_missing_input_is_protocol_error(self, client):
        r = client.post("/v1/audio/speech", json={"voice": "af_sky"})

        assert r.status_code == 400
        err = r.json()["error"]
        assert err["type"] == "invalid_request_error"
        assert err["code"] == "invalid_request"
        assert "input" in err["message"]

    def test_malformed_json(self, client):
        r = client.post(
            "/v1/audio/speech",
            content=b"{not json",
            headers={"content-type": "application/json"},
        )
        assert r.status_code == 400

    def test_speed_out_of_range(self, client):
        r = client.post("/v1/audio/speech", json={"input": "Hi.", "speed": 10})
        assert r.status_code == 400

    def test_whitespace_input(self, client):
        r = client.post("/v1/audio/speech", json={"input": "   ", "voice": "af_sky"})
        assert r.status_code == 400

    def test_input_over_configured_limit(self, pool):
        from koko_ms.main import create_app

        app = create_app(pool=pool, config=_config(server={"max_input_chars": 10}))
        with TestClient(app) as c:
            r = c.post("/v1/audio/speech", json={"input": "This is longer than ten.", "voice": "af_sky"})
        assert r.status_code == 400

    def test_inference_failure_is_500(self, client):
        r = client.post("/v1/audio/speech", json={"input": "FAIL please.", "voice": "af_sky"})

        assert r.status_code == 500
        err = r.json()["error"]
        assert err["type"] == "server_error"
        assert err["code"] == "inference_failed"

    def test_bad_request_does_not_affect_pool(self, client, pool):
        client.post("/v1/audio/speech", json={"voice": "af_sky"})
        client.post("/v1/audio/speech", json={"input": "FAIL", "voice": "af_sky"})

        r = client.post("/v1/audio/speech", json={"input": "Still fine.", "voice": "af_sky"})
        assert r.status_code == 200
        assert pool.stats().busy == 0


class TestInfoEndpoints:

    def test_voices(self, client):
        assert client.get("/v1/audio/voices").json() == {"voices": FAKE_VOICES}

    def test_models(self, client):
        data = client.get("/v1/models").json()
        assert data["object"] == "list"
        assert data["data"][0]["id"] == "kokoro-v1.0"

    def test_health(self, client):
        data = client.get("/health").json()
        assert data["status"] == "ok"
        assert data["instances"] == 2
        assert data["busy"] == 0
        assert data["sample_rate"] == 24000

    def test_metrics(self, client):
        client.post("/v1/audio/speech", json={"input": "Count me.", "voice": "af_sky"})
        r = client.get("/metrics")

        assert r.status_code == 200
        assert "koko_jobs_total" in r.text
        assert "koko_pool_instances 2.0" in r.text
        assert 'koko_requests_total{status="ok",stream="false"} 1.0' in r.text


class _DisconnectAfter:
    """Request stand-in that reports a disconnect after ``parts`` parts were sent."""

    def __init__(self, parts):
        self.parts = parts
        self.polls = 0

    async def is_disconnected(self):
        self.polls += 1
        return self.polls > self.parts


class TestClientDisconnect:

    def test_disconnect_stops_submission_and_frees_workers(self, pool, factory):
        import asyncio
        import threading

        from koko_ms.api.openai_compat import stream_until_disconnect
        from koko_ms.services.synthesis import SynthesisService

        service = SynthesisService(pool, _config(chunking={"max_chars": 12}))
        text = " ".join(f"Chunk {i}." for i in range(20))
        cancel = threading.Event()
        body = service.stream_wav(text, voice="af_sky", cancel=cancel)

        async def collect():
            return [part async for part in stream_until_disconnect(_DisconnectAfter(1), body, cancel)]

        parts = asyncio.run(collect())

        assert len(parts) == 1
        assert cancel.is_set()
        assert pool.stats().busy == 0
        assert len(factory.tracker.started) < 20
        # the body was closed, not just abandoned
        assert list(body) == []

    def test_connected_client_gets_every_part(self, pool):
        import asyncio
        import threading

        from koko_ms.api.openai_compat import stream_until_disconnect
        from koko_ms.services.synthesis import SynthesisService

        service = SynthesisService(pool, _config(chunking={"max_chars": 12}))
        cancel = threading.Event()
        body = service.stream_wav("First one. Second one.", voice="af_sky", cancel=cancel)

        async def collect():
            return [part async for part in stream_until_disconnect(_DisconnectAfter(100), body, cancel)]

        parts = asyncio.run(collect())
        assert len(parts) == 2
        assert pool.stats().busy == 0
