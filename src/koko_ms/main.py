"""
FastAPI Application Entry Point.

Creates the koko-ms HTTP server: an OpenAI-compatible speech API in front
of one shared InstancePool.

    - OpenAI-compatible API: /v1/audio/speech, /v1/audio/voices, /v1/models
    - Operations: /health, /metrics

The pool is created in the lifespan handler (or injected by the caller)
and stored on ``app.state``; it is closed on shutdown only when the app
created it.

Usage:
    # Through the CLI
    koko openai --ip 0.0.0.0 --port 3000 --instances 2

    # Or with uvicorn directly
    uvicorn koko_ms.main:app --host 0.0.0.0 --port 3000
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError

from koko_ms.api.openai_compat import protocol_error_response, router as openai_router
from koko_ms.api.routes import router
from koko_ms.core.config import KokoConfig, Settings, default_settings
from koko_ms.core.logging import configure_logging, get_logger, info, warn
from koko_ms.services.errors import ProtocolError
from koko_ms.services.synthesis import SynthesisService
from koko_ms.tts.engine import kokoro_session_factory
from koko_ms.tts.pool import InstancePool

_LOG = get_logger("koko-ms.server")


def _validation_message(exc: RequestValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return "; ".join(parts) or "invalid request"


def create_app(
    settings: Optional[Settings] = None,
    pool: Optional[InstancePool] = None,
    config: Optional[KokoConfig] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Raw settings; ``default_settings()`` when omitted.
        pool: Loaded InstancePool to serve from. When omitted the lifespan
            handler builds one with ``config.pool.instances`` Kokoro
            sessions and closes it on shutdown.
        config: Validated configuration, taking precedence over
            ``settings``.

    Returns:
        FastAPI: Application ready to serve. Nothing is loaded until startup.
    """
    configure_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cfg = config if config is not None else (settings or default_settings()).get_config()
        owned = pool is None
        active = pool
        if active is None:
            info(_LOG, "pool_loading", instances=cfg.pool.instances, model=cfg.model.model_path)
            active = InstancePool(kokoro_session_factory(cfg.model), instances=cfg.pool.instances)

        app.state.config = cfg
        app.state.pool = active
        app.state.service = SynthesisService(active, cfg)
        info(_LOG, "server_ready", instances=active.size, sample_rate=active.sample_rate)
        try:
            yield
        finally:
            if owned:
                active.close()
            info(_LOG, "server_stopped")

    app = FastAPI(title="koko-ms", lifespan=lifespan)

    app.include_router(router)           # /health, /metrics
    app.include_router(openai_router)    # OpenAI: /v1/audio/speech

    @app.exception_handler(RequestValidationError)
    async def _on_validation_error(request: Request, exc: RequestValidationError):
        err = ProtocolError(_validation_message(exc))
        warn(_LOG, "request_rejected", path=request.url.path, error=err.message)
        return protocol_error_response(err)

    @app.exception_handler(ProtocolError)
    async def _on_protocol_error(request: Request, exc: ProtocolError):
        warn(_LOG, "request_rejected", path=request.url.path, error=exc.message)
        return protocol_error_response(exc)

    return app


# Application instance for ASGI servers; the pool is loaded at startup.
app = create_app()
