"""
FastAPI Dependency Injection Providers.

The application container is created by ``create_app()`` and stored on
``app.state.container``; handlers receive it with ``Depends(get_container)``.

Usage in Route Handlers:
    from fastapi import Depends
    from relay_api.api.dependencies import get_container

    @router.get("/api/health")
    def health(container: RelayContainer = Depends(get_container)):
        ...
"""
from __future__ import annotations

from fastapi import Request

from relay_api.container import RelayContainer


def get_container(request: Request) -> RelayContainer:
    return request.app.state.container
