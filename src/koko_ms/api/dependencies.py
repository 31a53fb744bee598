"""
FastAPI dependency providers.

The SynthesisService (and the InstancePool inside it) is created once by
the application lifespan in main.py and stored on ``app.state``; route
handlers receive it through ``Depends(get_service)``. Nothing here holds
a module-level pool, so tests can build an app around a pool of fake
sessions.
"""
from __future__ import annotations

from fastapi import Request

from koko_ms.core.config import KokoConfig
from koko_ms.services.synthesis import SynthesisService


def get_service(request: Request) -> SynthesisService:
    """The application's SynthesisService."""
    return request.app.state.service


def get_config(request: Request) -> KokoConfig:
    """The validated configuration the application was built with."""
    return request.app.state.config
