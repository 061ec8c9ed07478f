"""
Operational routes.

Endpoints:
    GET /api/health                 - Service status and configured upstreams
    GET /api/docs                   - Raw OpenAPI document (application/x-yaml)
    GET /api/elevenlabs/audio/{key} - Synthesized speech referenced by audioReference
    GET /metrics                    - Prometheus metrics

None of these require credentials and none go through the request
pipeline, so they produce no LogRecord.
"""
from __future__ import annotations

from pathlib import Path

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse

from relay_api.api.dependencies import get_container
from relay_api.container import RelayContainer
from relay_api.core.errors import ErrorKind, RelayError
from relay_api.core.logging import error, get_logger, verbose
from relay_api.providers.audio_store import AUDIO_ROUTE
from relay_api.utils.timeit import iso_now

router = APIRouter()

_LOG = get_logger("relay.api")

AUDIO_CACHE_CONTROL = "public, max-age=3600"


@router.get("/api/health")
def health(container: RelayContainer = Depends(get_container)):
    """
    Health check for load balancers and uptime probes.

    Reports whether each upstream is configured; it never calls them.
    """
    try:
        config = container.config
        return {
            "status": "healthy",
            "timestamp": iso_now(),
            "version": config.app.version,
            "services": config.credentials.service_status(),
            "environment": config.app.environment,
        }
    except Exception as e:
        error(_LOG, "health_check_failed", error=str(e), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"status": "unhealthy", "error": "Health check failed", "timestamp": iso_now()},
        )


@router.get("/api/docs")
def docs(container: RelayContainer = Depends(get_container)):
    path = Path(container.config.app.docs_path)
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        error(_LOG, "docs_unavailable", path=str(path), error=str(e))
        return JSONResponse(
            status_code=500,
            content={
                "error": "Failed to load API documentation",
                "message": "Documentation file unavailable",
                "code": ErrorKind.INTERNAL.code,
                "timestamp": iso_now(),
            },
        )
    return Response(
        content=content,
        media_type="application/x-yaml",
        headers={"Cache-Control": "public, max-age=3600"},
    )


@router.get(AUDIO_ROUTE + "/{key}")
def audio(key: str, container: RelayContainer = Depends(get_container)):
    """Serve stored MP3; 404 envelope when the key is unknown or expired."""
    data = container.audio_store.load(key)
    if data is None:
        raise RelayError.not_found("Audio not found or expired")
    verbose(_LOG, "audio_served", key=key[:8], bytes=len(data))
    return Response(content=data, media_type="audio/mpeg", headers={"Cache-Control": AUDIO_CACHE_CONTROL})


@router.get("/metrics")
def prometheus_metrics(container: RelayContainer = Depends(get_container)):
    content, content_type = container.metrics.get_metrics_response()
    return Response(content=content, media_type=content_type)
