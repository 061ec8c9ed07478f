"""
Voice adapter: ElevenLabs conversational agents and text-to-speech.

Endpoints used:
    POST   /convai/conversation                     start (agent_id + config)
    POST   /convai/conversation/{id}/message        send (message + config)
    DELETE /convai/conversation/{id}                end
    POST   /text-to-speech/{voice_id}               synthesize (audio/mpeg)

Every failure raises RelayError(EXTERNAL_PROVIDER, provider="elevenlabs").
"""
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

import httpx

from relay_api.core.config import ProvidersConfig
from relay_api.core.errors import RelayError
from relay_api.core.logging import debug, get_logger

_LOG = get_logger("relay.providers.elevenlabs")

PROVIDER = "elevenlabs"

DEFAULT_VOICE_SETTINGS = {"stability": 0.5, "similarity_boost": 0.5}


class VoiceAdapter:
    """
    Args:
        api_key: ElevenLabs key; None means not configured.
        config: Base URL, TTS model and timeout.
        transport: Optional httpx transport (tests pass MockTransport).
    """

    def __init__(
        self,
        api_key: Optional[str],
        config: Optional[ProvidersConfig] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.config = config or ProvidersConfig()
        self._api_key = api_key
        self._http = httpx.Client(
            base_url=self.config.elevenlabs_base_url,
            timeout=self.config.timeout_s,
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    # ── conversations ───────────────────────────────────────────────────────

    def start_conversation(self, agent_id: str, config: Optional[Mapping[str, Any]] = None) -> Any:
        body = {"agent_id": agent_id, **(config or {})}
        return self._json("POST", "/convai/conversation", "Failed to start conversation", json=body)

    def send_message(self, conversation_id: str, message: str, config: Optional[Mapping[str, Any]] = None) -> Any:
        body = {"message": message, **(config or {})}
        return self._json(
            "POST", f"/convai/conversation/{conversation_id}/message",
            "Failed to send message to conversation", json=body,
        )

    def end_conversation(self, conversation_id: str) -> Any:
        return self._json("DELETE", f"/convai/conversation/{conversation_id}", "Failed to end conversation")

    # ── text-to-speech ──────────────────────────────────────────────────────

    def synthesize(self, text: str, voice_id: str, settings: Optional[Mapping[str, Any]] = None) -> bytes:
        """
        Render text to MP3.

        Caller settings are merged over stability/similarity_boost 0.5.

        Returns:
            MP3 bytes.
        """
        body = {
            "text": text,
            "model_id": self.config.elevenlabs_model,
            "voice_settings": {**DEFAULT_VOICE_SETTINGS, **(settings or {})},
        }
        resp = self._send(
            "POST", f"/text-to-speech/{voice_id}", "Failed to generate voice",
            json=body, accept="audio/mpeg",
        )
        if not resp.content:
            raise RelayError.provider_failure(PROVIDER, "Failed to generate voice", cause="empty audio body")
        debug(_LOG, "synthesized", voice_id=voice_id, bytes=len(resp.content))
        return resp.content

    # ── internals ───────────────────────────────────────────────────────────

    def _send(self, method: str, path: str, message: str, accept: str = "application/json", **kwargs: Any) -> httpx.Response:
        if not self._api_key:
            raise RelayError.provider_failure(PROVIDER, "Provider not configured", cause="ELEVENLABS_API_KEY is not set")
        try:
            resp = self._http.request(
                method, path,
                headers={"xi-api-key": self._api_key, "Accept": accept},
                **kwargs,
            )
        except httpx.HTTPError as e:
            raise RelayError.provider_failure(PROVIDER, message, cause=str(e)) from e
        if not resp.is_success:
            raise RelayError.provider_failure(
                PROVIDER, message, cause=f"HTTP {resp.status_code}: {resp.text[:500]}"
            )
        return resp

    def _json(self, method: str, path: str, message: str, **kwargs: Any) -> Any:
        resp = self._send(method, path, message, **kwargs)
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError as e:
            raise RelayError.provider_failure(PROVIDER, message, cause=f"invalid JSON: {e}") from e
