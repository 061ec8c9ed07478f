"""
Services layer: one module per relayed capability group.

Each service wraps its provider adapter and describes its operations as
pipeline Capabilities (schema, cache namespace, fallback, response
shape). The API layer runs them through the shared RequestPipeline.

Components:
    - analysis.py: Conversation analysis (OpenAI)
    - voice.py: Conversations and speech synthesis (ElevenLabs)
    - email.py: Transactional email (Resend)
    - activity.py: Per-user and admin activity logs (Supabase)
"""
from .activity import ActivityService, RoleLookup
from .analysis import AnalysisService
from .email import EmailService
from .voice import VoiceService

__all__ = [
    "ActivityService",
    "AnalysisService",
    "EmailService",
    "RoleLookup",
    "VoiceService",
]
