"""
Text analysis capability: POST /api/openai/analyze.

Cached in the "completion" namespace with message ``created_at`` ignored.
A provider failure does not fail the request: the caller receives the
deterministic fallback analysis (200, nothing cached).
"""
from __future__ import annotations

from typing import Any, Dict

from relay_api.api.schemas import AnalyzeRequest
from relay_api.core.errors import RelayError
from relay_api.pipeline.auth import AuthContext
from relay_api.pipeline.handler import Capability, PipelineRequest
from relay_api.providers.openai import CompletionAdapter, fallback_analysis

CACHE_CONTROL = "public, s-maxage=3600, stale-while-revalidate=86400"


class AnalysisService:
    def __init__(self, adapter: CompletionAdapter):
        self.adapter = adapter

    def analyze(self, payload: AnalyzeRequest, auth: AuthContext, request: PipelineRequest) -> Dict[str, Any]:
        messages = [m.model_dump(exclude_none=True) for m in payload.messages]
        profile = payload.user_profile.model_dump(exclude_none=True)
        topic = payload.study_topic.model_dump(exclude_none=True) if payload.study_topic else None
        vocabulary = payload.vocabulary_context.model_dump(exclude_none=True) if payload.vocabulary_context else None
        return self.adapter.analyze(messages, profile, topic, vocabulary)

    @staticmethod
    def fallback(payload: AnalyzeRequest, err: RelayError) -> Dict[str, Any]:
        return fallback_analysis()

    @staticmethod
    def summarize(payload: AnalyzeRequest) -> Dict[str, Any]:
        return {
            "messageCount": len(payload.messages),
            "hasStudyTopic": payload.study_topic is not None,
            "hasVocabularyContext": payload.vocabulary_context is not None,
        }

    def capability(self) -> Capability:
        return Capability(
            name="text-analysis",
            service_name="openai",
            schema=AnalyzeRequest,
            invoke=self.analyze,
            namespace="completion",
            volatile_fields=("created_at",),
            fallback=self.fallback,
            summarize=self.summarize,
            cache_control=CACHE_CONTROL,
        )
