"""
Relayed routes.

Endpoints:
    POST /api/openai/analyze                  - Conversation analysis
    POST /api/elevenlabs/conversation         - Agent conversation actions
    POST /api/elevenlabs/voice                - Text-to-speech
    POST /api/resend/send                     - Transactional email
    POST /api/users/{user_id}/activity/logs   - Record a user action
    GET  /api/users/{user_id}/activity/logs   - List a user's actions
    GET  /api/admin/activity/logs             - List all users' actions

Request Flow:
    1. Read the raw body (JSON parse errors become a validation failure
       after authentication, never before)
    2. Hand a PipelineRequest to RequestPipeline.run() in the threadpool
    3. Return the PipelineResult status, body and headers as-is

The pipeline never raises, so every outcome below is a JSONResponse.
"""
from __future__ import annotations

import json
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from relay_api.api.dependencies import get_container
from relay_api.container import RelayContainer
from relay_api.pipeline.handler import Capability, PipelineRequest

router = APIRouter()


async def _body(request: Request) -> Any:
    raw = await request.body()
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


async def _relay(
    container: RelayContainer,
    capability: Capability,
    request: Request,
    path_params: Optional[Dict[str, str]] = None,
    with_body: bool = True,
) -> JSONResponse:
    pipeline_request = PipelineRequest(
        method=request.method,
        endpoint=request.url.path,
        headers=dict(request.headers),
        body=await _body(request) if with_body else None,
        path_params=path_params or {},
        query=dict(request.query_params),
    )
    result = await run_in_threadpool(container.pipeline.run, capability, pipeline_request)
    return JSONResponse(status_code=result.status, content=result.body, headers=result.headers)


@router.post("/api/openai/analyze")
async def analyze(request: Request, container: RelayContainer = Depends(get_container)):
    return await _relay(container, container.capabilities.analyze, request)


@router.post("/api/elevenlabs/conversation")
async def conversation(request: Request, container: RelayContainer = Depends(get_container)):
    return await _relay(container, container.capabilities.conversation, request)


@router.post("/api/elevenlabs/voice")
async def voice(request: Request, container: RelayContainer = Depends(get_container)):
    return await _relay(container, container.capabilities.voice, request)


@router.post("/api/resend/send")
async def send_email(request: Request, container: RelayContainer = Depends(get_container)):
    return await _relay(container, container.capabilities.email, request)


@router.post("/api/users/{user_id}/activity/logs")
async def create_activity(user_id: str, request: Request, container: RelayContainer = Depends(get_container)):
    return await _relay(container, container.capabilities.activity_create, request, {"user_id": user_id})


@router.get("/api/users/{user_id}/activity/logs")
async def list_activity(user_id: str, request: Request, container: RelayContainer = Depends(get_container)):
    return await _relay(
        container, container.capabilities.activity_list, request, {"user_id": user_id}, with_body=False
    )


@router.get("/api/admin/activity/logs")
async def admin_activity(request: Request, container: RelayContainer = Depends(get_container)):
    return await _relay(container, container.capabilities.activity_admin, request, with_body=False)
