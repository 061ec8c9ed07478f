"""
Application container.

Builds every long-lived collaborator once per application from Settings
and wires them together:

    Settings
      └── RelayConfig
            ├── ResponseCache
            ├── SupabaseClient (optional) ── identity, profiles, prompts, logs
            ├── Authenticator
            ├── CallLogger ── SupabaseLogSink | ProcessLogSink
            ├── RelayMetrics
            ├── adapters: CompletionAdapter, VoiceAdapter, EmailAdapter
            ├── AudioStore
            └── RequestPipeline

The container lives on ``app.state.container``; there are no module-level
service singletons, so tests build as many isolated apps as they need.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import httpx

from relay_api.core.config import RelayConfig, Settings
from relay_api.core.logging import get_logger, info, warn
from relay_api.core.metrics import RelayMetrics
from relay_api.pipeline.auth import Authenticator
from relay_api.pipeline.cache import ResponseCache
from relay_api.pipeline.call_log import CallLogger, LogSink, ProcessLogSink, SupabaseLogSink
from relay_api.pipeline.handler import Capability, RequestPipeline
from relay_api.providers.audio_store import AudioStore
from relay_api.providers.elevenlabs import VoiceAdapter
from relay_api.providers.openai import CompletionAdapter, PromptLibrary
from relay_api.providers.resend import EmailAdapter
from relay_api.providers.supabase import SupabaseClient
from relay_api.services import ActivityService, AnalysisService, EmailService, RoleLookup, VoiceService

_LOG = get_logger("relay.container")


@dataclass
class Capabilities:
    analyze: Capability
    conversation: Capability
    voice: Capability
    email: Capability
    activity_create: Capability
    activity_list: Capability
    activity_admin: Capability


@dataclass
class RelayContainer:
    settings: Settings
    config: RelayConfig
    cache: ResponseCache
    metrics: RelayMetrics
    call_logger: CallLogger
    authenticator: Authenticator
    pipeline: RequestPipeline
    audio_store: AudioStore
    capabilities: Capabilities
    supabase: Optional[SupabaseClient] = None
    completion: Optional[CompletionAdapter] = None
    voice: Optional[VoiceAdapter] = None
    email: Optional[EmailAdapter] = None

    @classmethod
    def build(
        cls,
        settings: Settings,
        transport: Optional[httpx.BaseTransport] = None,
        sink: Optional[LogSink] = None,
    ) -> "RelayContainer":
        """
        Wire the application.

        Args:
            settings: Loaded settings.
            transport: httpx transport shared by every provider client
                (tests pass a MockTransport).
            sink: Log sink override. Defaults to Supabase when configured,
                else the process log.

        Raises:
            ConfigValidationError: If the settings are invalid.
        """
        config = settings.get_relay_config()
        creds = config.credentials

        cache = ResponseCache.from_config(config.cache)
        metrics = RelayMetrics()

        supabase: Optional[SupabaseClient] = None
        if creds.supabase_configured:
            supabase = SupabaseClient(
                creds.supabase_url, creds.supabase_service_key,
                timeout_s=config.providers.timeout_s, transport=transport,
            )
        else:
            warn(_LOG, "supabase_not_configured", detail="token auth, activity logs and log store are disabled")

        if sink is None:
            sink = SupabaseLogSink(supabase) if supabase is not None else ProcessLogSink()
        call_logger = CallLogger(sink)

        authenticator = Authenticator(
            supabase.get_user if supabase is not None else None,
            creds.api_secret_key,
        )
        pipeline = RequestPipeline(
            authenticator, cache, call_logger, metrics,
            development=config.app.is_development,
        )

        prompts = PromptLibrary(supabase.get_analysis_prompt if supabase is not None else None, cache)
        completion = CompletionAdapter(creds.openai_api_key, prompts, config.providers, transport=transport)
        voice = VoiceAdapter(creds.elevenlabs_api_key, config.providers, transport=transport)
        email = EmailAdapter(creds.resend_api_key, config.providers, transport=transport)
        audio_store = AudioStore(config.audio, public_base_url=config.app.public_base_url)

        voice_service = VoiceService(voice, audio_store)
        activity_service = ActivityService(supabase, RoleLookup(supabase, cache), config.activity)
        capabilities = Capabilities(
            analyze=AnalysisService(completion).capability(),
            conversation=voice_service.conversation_capability(),
            voice=voice_service.synthesis_capability(),
            email=EmailService(email, call_logger).capability(),
            activity_create=activity_service.create_capability(),
            activity_list=activity_service.list_capability(),
            activity_admin=activity_service.admin_capability(),
        )

        info(
            _LOG, "container_ready",
            environment=config.app.environment,
            session_id=call_logger.session_id,
            **config.credentials.service_status(),
        )
        return cls(
            settings=settings,
            config=config,
            cache=cache,
            metrics=metrics,
            call_logger=call_logger,
            authenticator=authenticator,
            pipeline=pipeline,
            audio_store=audio_store,
            capabilities=capabilities,
            supabase=supabase,
            completion=completion,
            voice=voice,
            email=email,
        )

    def close(self) -> None:
        for client in (self.supabase, self.completion, self.voice, self.email):
            if client is not None:
                client.close()
