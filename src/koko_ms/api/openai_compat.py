"""
OpenAI-Compatible Speech Endpoint.

    POST /v1/audio/speech   synthesize text (whole WAV, or streamed with ``stream: true``)
    GET  /v1/audio/voices   voices in the loaded voice pack
    GET  /v1/models         the single model this server runs

Every request runs Segmenter -> Dispatcher -> ordered Assembler ->
Container Writer on its own, but all requests share the application's
InstancePool: when requests outnumber workers their chunk jobs queue for
workers in arrival order.

Voice Mapping:
    OpenAI voice names map onto Kokoro voices (alloy -> af_alloy, ...).
    Anything else is used as a Kokoro voice or blend directly. Mapping is
    configurable in settings.yaml:

    server:
      voice_mapping:
        alloy: "af_sarah.4+af_nicole.6"

Error Responses:
    Errors use OpenAI's format:
    {
        "error": {
            "message": "unknown voice: xx_none",
            "type": "invalid_request_error",
            "code": "unknown_voice"
        }
    }

Example Usage:
    from openai import OpenAI
    client = OpenAI(base_url="http://localhost:3000/v1", api_key="unused")
    response = client.audio.speech.create(model="tts-1", voice="af_sky", input="Hello!")
    response.stream_to_file("output.wav")
"""
from __future__ import annotations

import threading
import uuid
from enum import Enum
from typing import AsyncIterator, Iterator

from fastapi import APIRouter, Depends, Request, Response
from fastapi.concurrency import iterate_in_threadpool, run_in_threadpool
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from koko_ms.api.dependencies import get_config, get_service
from koko_ms.core.config import KokoConfig
from koko_ms.core.logging import debug, error, get_logger, info, set_request_id, warn
from koko_ms.services.errors import InferenceError, ProtocolError, UnknownVoiceError
from koko_ms.services.synthesis import SynthesisService
from koko_ms.tts.segmenter import split_text
from koko_ms.utils.timeit import timeit

router = APIRouter()

_LOG = get_logger("koko-ms.openai")

MODEL_ID = "kokoro-v1.0"


class ResponseFormat(str, Enum):
    """
    Audio formats accepted for compatibility.

    Only wav and pcm are produced; the compressed formats are answered
    with wav and a warning is logged.
    """
    WAV = "wav"
    PCM = "pcm"
    MP3 = "mp3"
    OPUS = "opus"
    AAC = "aac"
    FLAC = "flac"


class OpenAISpeechRequest(BaseModel):
    """
    OpenAI-compatible speech synthesis request.

    Attributes:
        model: Accepted and ignored; the server runs one model.
        input: Text to synthesize, 1-4096 characters.
        voice: OpenAI voice name, Kokoro voice, or Kokoro blend.
        response_format: wav (default) or pcm.
        speed: Speaking rate, 0.25-4.0.
        stream: Send audio chunk by chunk as it is synthesized.
    """
    model: str = Field(default="tts-1", description="Ignored; the server runs one model.")
    input: str = Field(..., min_length=1, max_length=4096, description="The text to generate audio for.")
    voice: str = Field(default="alloy", description="OpenAI voice name or Kokoro voice/blend.")
    response_format: ResponseFormat = Field(default=ResponseFormat.WAV)
    speed: float = Field(default=1.0, ge=0.25, le=4.0)
    stream: bool = Field(default=False, description="Stream audio as it is synthesized.")


def map_voice(voice: str, config: KokoConfig) -> str:
    """OpenAI voice name to Kokoro voice; other names pass through."""
    return config.server.voice_mapping.get(voice, voice)


def _openai_error_response(message: str, error_type: str, code: str, status_code: int = 500) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "message": message,
                "type": error_type,
                "code": code,
            }
        },
    )


def protocol_error_response(exc: ProtocolError) -> JSONResponse:
    """400 response for a malformed request."""
    return _openai_error_response(exc.message, "invalid_request_error", exc.code.lower(), 400)


async def stream_until_disconnect(
    request: Request,
    body: Iterator[bytes],
    cancel: threading.Event,
) -> AsyncIterator[bytes]:
    """
    Relay a synchronous audio body to the client until it goes away.

    Each part is produced on the threadpool. When the client disconnects
    ``cancel`` is set so no further chunks are submitted, and the body is
    closed on the threadpool, where waiting for in-flight jobs cannot
    stall the event loop.
    """
    try:
        async for part in iterate_in_threadpool(body):
            if await request.is_disconnected():
                info(_LOG, "client_disconnected")
                break
            yield part
    finally:
        cancel.set()
        close = getattr(body, "close", None)
        if close is not None:
            await run_in_threadpool(close)


@router.post("/v1/audio/speech", response_class=Response)
def openai_speech(
    req: OpenAISpeechRequest,
    request: Request,
    service: SynthesisService = Depends(get_service),
    config: KokoConfig = Depends(get_config),
):
    """
    OpenAI-compatible text-to-speech.

    Returns:
        audio/wav (or audio/pcm) with headers:
            - X-Request-Id: Request identifier used in logs
            - X-Voice-Mapped-To: Kokoro voice used
            - X-Sample-Rate: Output sample rate

    Errors:
        400: Malformed request or unknown voice
        500: Inference failed

    Example:
        curl -X POST http://localhost:3000/v1/audio/speech \\
            -H "Content-Type: application/json" \\
            -d '{"model": "tts-1", "input": "Hello!", "voice": "af_sky"}' \\
            --output speech.wav
    """
    rid = str(uuid.uuid4())[:12]
    set_request_id(rid)
    metrics = service.pool.metrics

    with timeit("request") as t:
        if len(req.input) > config.server.max_input_chars:
            return protocol_error_response(
                ProtocolError(f"input longer than {config.server.max_input_chars} characters")
            )
        if not split_text(req.input, config.chunking.max_chars):
            return protocol_error_response(ProtocolError("input contains no text"))

        voice = map_voice(req.voice, config)
        preview_chars = config.logging.text_preview_chars
        info(
            _LOG,
            "openai_request",
            chars=len(req.input),
            text_preview=req.input[:preview_chars] if preview_chars > 0 else "",
            voice=req.voice,
            mapped=voice,
            model=req.model,
            format=req.response_format.value,
            stream=req.stream,
        )
        debug(_LOG, "openai_request_full", text=req.input, speed=req.speed)

        fmt = req.response_format
        if fmt not in (ResponseFormat.WAV, ResponseFormat.PCM):
            warn(_LOG, "format_unsupported", requested=fmt.value, using="wav")
            fmt = ResponseFormat.WAV
        media_type = "audio/pcm" if fmt is ResponseFormat.PCM else "audio/wav"
        headers = {
            "X-Request-Id": rid,
            "X-Voice-Mapped-To": voice,
            "X-Sample-Rate": str(service.sample_rate),
        }

        try:
            if req.stream:
                cancel = threading.Event()
                body = service.stream_wav(
                    req.input, voice, req.speed, header=fmt is ResponseFormat.WAV, cancel=cancel
                )
                metrics.record_request("streaming", t.elapsed(), stream=True)
                return StreamingResponse(
                    stream_until_disconnect(request, body, cancel), media_type=media_type, headers=headers
                )

            if fmt is ResponseFormat.PCM:
                content = b"".join(service.stream_wav(req.input, voice, req.speed, header=False))
            else:
                content = service.synthesize_wav(req.input, voice, req.speed)

        except UnknownVoiceError as e:
            metrics.record_request("invalid", t.elapsed())
            return _openai_error_response(e.message, "invalid_request_error", "unknown_voice", 400)

        except InferenceError as e:
            error(_LOG, "openai_failed", chunk=e.chunk_index, error=e.message)
            metrics.record_request("error", t.elapsed())
            return _openai_error_response(e.message, "server_error", e.code.lower(), 500)

    metrics.record_request("ok", t.timing.seconds)
    return Response(content=content, media_type=media_type, headers=headers)


@router.get("/v1/audio/voices")
def openai_voices(service: SynthesisService = Depends(get_service)):
    """Voices in the loaded voice pack."""
    return {"voices": list(service.pool.voices())}


@router.get("/v1/models")
def openai_models():
    return {
        "object": "list",
        "data": [{"id": MODEL_ID, "object": "model", "owned_by": "koko-ms"}],
    }
