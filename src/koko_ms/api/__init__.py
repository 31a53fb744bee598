"""
HTTP layer for koko-ms.

    - openai_compat.py: OpenAI-compatible speech endpoint (/v1/audio/speech)
    - routes.py: /health and /metrics
    - dependencies.py: FastAPI dependency providers
"""
