"""
Voice capabilities.

    voice-conversation  POST /api/elevenlabs/conversation   never cached
    voice-synthesis     POST /api/elevenlabs/voice          "voice" namespace

Conversation requests carry an ``action``; each action has its own
required fields, checked before any upstream call. Synthesized audio is
written to the AudioStore under the request's content digest, and the
caller receives ``{audioReference, duration}``. A cached reference whose
file has expired or been cleaned up is treated as a miss.
"""
from __future__ import annotations

from typing import Any, Callable, Dict, List, Tuple

from relay_api.api.schemas import ConversationAction, ConversationRequest, VoiceRequest
from relay_api.pipeline.auth import AuthContext
from relay_api.pipeline.cache import ResponseCache
from relay_api.pipeline.handler import Capability, PipelineRequest
from relay_api.providers.audio_store import AudioStore
from relay_api.providers.elevenlabs import VoiceAdapter
from relay_api.utils.timeit import iso_now

SYNTHESIS_CACHE_CONTROL = "public, s-maxage=3600, stale-while-revalidate=86400"
CONVERSATION_CACHE_CONTROL = "public, s-maxage=300, stale-while-revalidate=600"

VOICE_NAMESPACE = "voice"


def conversation_missing_fields(payload: ConversationRequest) -> List[Tuple[str, str]]:
    action = payload.action
    if action is ConversationAction.START:
        if not payload.agent_id:
            return [("agentId", "agentId is required for start_conversation")]
    elif action is ConversationAction.SEND:
        missing = []
        if not payload.conversation_id:
            missing.append(("conversationId", "conversationId is required for send_message"))
        if not payload.message:
            missing.append(("message", "message is required for send_message"))
        return missing
    elif action is ConversationAction.END:
        if not payload.conversation_id:
            return [("conversationId", "conversationId is required for end_conversation")]
    return []


class VoiceService:
    def __init__(self, adapter: VoiceAdapter, audio_store: AudioStore):
        self.adapter = adapter
        self.audio_store = audio_store
        self._actions: Dict[ConversationAction, Callable[[ConversationRequest], Any]] = {
            ConversationAction.START: lambda p: self.adapter.start_conversation(p.agent_id, p.config),
            ConversationAction.SEND: lambda p: self.adapter.send_message(p.conversation_id, p.message, p.config),
            ConversationAction.END: lambda p: self.adapter.end_conversation(p.conversation_id),
        }

    # ── conversation ────────────────────────────────────────────────────────

    def converse(self, payload: ConversationRequest, auth: AuthContext, request: PipelineRequest) -> Any:
        return self._actions[payload.action](payload)

    @staticmethod
    def conversation_response(result: Any, payload: ConversationRequest) -> Dict[str, Any]:
        return {
            "success": True,
            "data": result,
            "action": payload.action.value,
            "timestamp": iso_now(),
        }

    @staticmethod
    def conversation_summary(payload: ConversationRequest) -> Dict[str, Any]:
        return {
            "action": payload.action.value,
            "agentId": payload.agent_id,
            "conversationId": payload.conversation_id,
            "hasMessage": bool(payload.message),
        }

    # ── synthesis ───────────────────────────────────────────────────────────

    def synthesize(self, payload: VoiceRequest, auth: AuthContext, request: PipelineRequest) -> Dict[str, Any]:
        settings = payload.settings.model_dump(exclude_none=True) if payload.settings else None
        audio = self.adapter.synthesize(payload.text, payload.voice_id, settings)
        return self.audio_store.save(self.audio_key(payload), audio)

    def audio_available(self, cached: Any, payload: VoiceRequest) -> bool:
        """A cached reference is only served while its audio file is."""
        return self.audio_store.exists(self.audio_key(payload))

    @staticmethod
    def audio_key(payload: VoiceRequest) -> str:
        """Hex digest of the request content; same request, same file."""
        content = payload.model_dump(mode="json", by_alias=True, exclude_none=True)
        return ResponseCache.key(content, VOICE_NAMESPACE).split(":", 1)[1]

    @staticmethod
    def synthesis_summary(payload: VoiceRequest) -> Dict[str, Any]:
        return {"voiceId": payload.voice_id, "textLength": len(payload.text)}

    # ── capabilities ────────────────────────────────────────────────────────

    def conversation_capability(self) -> Capability:
        return Capability(
            name="voice-conversation",
            service_name="elevenlabs",
            schema=ConversationRequest,
            invoke=self.converse,
            required_fields=conversation_missing_fields,
            summarize=self.conversation_summary,
            respond=self.conversation_response,
            cache_control=CONVERSATION_CACHE_CONTROL,
        )

    def synthesis_capability(self) -> Capability:
        return Capability(
            name="voice-synthesis",
            service_name="elevenlabs",
            schema=VoiceRequest,
            invoke=self.synthesize,
            namespace=VOICE_NAMESPACE,
            still_valid=self.audio_available,
            summarize=self.synthesis_summary,
            cache_control=SYNTHESIS_CACHE_CONTROL,
        )
