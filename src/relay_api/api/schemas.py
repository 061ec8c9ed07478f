"""
API Request Schemas.

Pydantic models for every relayed endpoint. Field names follow the wire
format (camelCase) through aliases; models also accept the Python names.

Models:
    AnalyzeRequest: POST /api/openai/analyze
    ConversationRequest: POST /api/elevenlabs/conversation
    VoiceRequest: POST /api/elevenlabs/voice
    EmailRequest: POST /api/resend/send
    ActivityLogRequest: POST /api/users/{user_id}/activity/logs
    ActivityLogQuery: GET /api/users/{user_id}/activity/logs
    AdminActivityLogQuery: GET /api/admin/activity/logs

Validation failures surface as a 400 envelope listing every violated
field by its wire name (e.g. "messages.0.content").
"""
from __future__ import annotations

import re
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from relay_api.core.config import Defaults
from relay_api.providers.resend import EmailType

_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class _Wire(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ─────────────────────────────────────────────────────────────────────────────
# Text analysis
# ─────────────────────────────────────────────────────────────────────────────

class Message(_Wire):
    role: Literal["user", "assistant", "system"]
    content: str = Field(..., min_length=1)
    created_at: Optional[str] = None


class UserProfile(_Wire):
    native_language: Optional[str] = None
    practice_languages: Optional[List[str]] = None
    level: Optional[str] = None
    learning_goals: Optional[str] = None
    first_name: Optional[str] = None
    interface_language: Optional[str] = None


class StudyTopic(_Wire):
    title: str
    description: Optional[str] = None


class VocabularyWord(_Wire):
    word: str
    translation: Optional[str] = None


class VocabularyContext(_Wire):
    word_list_title: str
    word_list_topic: str
    word_list_words: List[VocabularyWord]


class AnalyzeRequest(_Wire):
    """
    Conversation analysis request.

    ``messages[].created_at`` is ignored when deriving the cache key, so
    the same conversation replayed later still hits.
    """
    messages: List[Message] = Field(..., min_length=1)
    user_profile: UserProfile = Field(default_factory=UserProfile, alias="userProfile")
    study_topic: Optional[StudyTopic] = Field(None, alias="studyTopic")
    vocabulary_context: Optional[VocabularyContext] = Field(None, alias="vocabularyContext")


# ─────────────────────────────────────────────────────────────────────────────
# Voice
# ─────────────────────────────────────────────────────────────────────────────

class ConversationAction(str, Enum):
    START = "start_conversation"
    SEND = "send_message"
    END = "end_conversation"


ACTION_ALIASES = {
    "start": ConversationAction.START,
    "send": ConversationAction.SEND,
    "end": ConversationAction.END,
}


class ConversationRequest(_Wire):
    action: ConversationAction
    agent_id: Optional[str] = Field(None, alias="agentId")
    message: Optional[str] = None
    conversation_id: Optional[str] = Field(None, alias="conversationId")
    config: Optional[Dict[str, Any]] = None

    @field_validator("action", mode="before")
    @classmethod
    def _expand_alias(cls, v: Any) -> Any:
        if isinstance(v, str):
            return ACTION_ALIASES.get(v, v)
        return v


class VoiceSettings(_Wire):
    stability: Optional[float] = Field(None, ge=0, le=1)
    similarity_boost: Optional[float] = Field(None, ge=0, le=1)
    style: Optional[float] = Field(None, ge=0, le=1)
    use_speaker_boost: Optional[bool] = None


class VoiceRequest(_Wire):
    text: str = Field(..., min_length=1, max_length=5000)
    voice_id: str = Field(..., alias="voiceId", min_length=1)
    settings: Optional[VoiceSettings] = None


# ─────────────────────────────────────────────────────────────────────────────
# Email
# ─────────────────────────────────────────────────────────────────────────────

class EmailRequest(_Wire):
    email_type: EmailType = Field(..., alias="emailType")
    to: str
    data: Dict[str, Any]

    @field_validator("to")
    @classmethod
    def _valid_address(cls, v: str) -> str:
        if not _EMAIL.match(v):
            raise ValueError("Invalid email address")
        return v


# ─────────────────────────────────────────────────────────────────────────────
# Activity
# ─────────────────────────────────────────────────────────────────────────────

class ActionType(str, Enum):
    LOGIN = "login"
    LOGOUT = "logout"
    CONVERSATION_START = "conversation_start"
    CONVERSATION_END = "conversation_end"
    SETTINGS_CHANGE = "settings_change"
    PROFILE_UPDATE = "profile_update"
    STUDY_PLAN_ACTION = "study_plan_action"
    VOCABULARY_PRACTICE = "vocabulary_practice"
    VOICE_INTERACTION = "voice_interaction"
    PAGE_VIEW = "page_view"
    FEATURE_USAGE = "feature_usage"


class ActivityMetadata(_Wire):
    ip_address: Optional[str] = Field(None, alias="ipAddress")
    user_agent: Optional[str] = Field(None, alias="userAgent")
    session_id: Optional[str] = Field(None, alias="sessionId")
    timestamp: Optional[str] = None


class ActivityLogRequest(_Wire):
    action_type: ActionType = Field(..., alias="actionType")
    action_data: Optional[Dict[str, Any]] = Field(None, alias="actionData")
    metadata: Optional[ActivityMetadata] = None


class ActivityLogQuery(_Wire):
    """Query parameters arrive as strings; pydantic coerces them. No limit means the configured default."""
    limit: Optional[int] = Field(None, ge=1, le=Defaults.ACTIVITY_MAX_LIMIT)
    offset: int = Field(0, ge=0)
    action_type: Optional[str] = Field(None, alias="actionType")


class AdminActivityLogQuery(ActivityLogQuery):
    user_id: Optional[str] = Field(None, alias="userId")
