"""
Completion adapter: conversation analysis through OpenAI chat completions.

Flow for one analysis:
    1. Pick the conversation type ("vocabulary_practice" when a vocabulary
       context is given, else "general").
    2. Load the active prompt template for (type, interface language) from
       the prompt store, falling back to a built-in template.
    3. Substitute ``{{variable}}`` placeholders.
    4. POST /chat/completions, asking for a JSON answer.
    5. Extract the JSON object from the answer and fill missing fields.

Every upstream failure, including an answer that holds no parseable JSON
object, raises RelayError(EXTERNAL_PROVIDER, provider="openai"). The
analysis capability turns that into :func:`fallback_analysis`.
"""
from __future__ import annotations

import json
import re
from typing import Any, Callable, Dict, List, Mapping, Optional

import httpx

from relay_api.core.config import ProvidersConfig
from relay_api.core.errors import RelayError
from relay_api.core.logging import debug, get_logger, info, warn
from relay_api.pipeline.cache import ResponseCache

_LOG = get_logger("relay.providers.openai")

PROVIDER = "openai"

GENERAL = "general"
VOCABULARY_PRACTICE = "vocabulary_practice"

SYSTEM_PROMPTS = {
    GENERAL: (
        "You are an expert language learning analyst. Analyze conversations and provide "
        "structured insights for personalized learning. Always respond with valid JSON."
    ),
    VOCABULARY_PRACTICE: (
        "You are an expert language learning analyst. Analyze vocabulary practice "
        "conversations and provide structured insights. Always respond with valid JSON."
    ),
}

_ANSWER_SHAPE = """Respond with a JSON object of this shape:
{
  "summary": string,
  "keyTopics": [string],
  "userInsights": {
    "languageLevel": string,
    "commonMistakes": [string],
    "interests": [string],
    "learningStyle": string,
    "strengths": [string],
    "areasForImprovement": [string]
  },
  "conversationType": string,
  "learningProgress": {
    "vocabularyProgress": string,
    "grammarProgress": string,
    "fluencyProgress": string
  }
}"""

BUILTIN_TEMPLATES = {
    GENERAL: (
        "Analyze this language practice conversation for {{first_name}}.\n"
        "Native language: {{native_language}}\n"
        "Practice languages: {{practice_languages}}\n"
        "Level: {{level}}\n"
        "Learning goals: {{learning_goals}}\n"
        "Write the summary in the language with code {{interface_language}}."
        "{{study_topic_context}}\n\n"
        "CONVERSATION:\n{{conversation_text}}\n\n" + _ANSWER_SHAPE
    ),
    VOCABULARY_PRACTICE: (
        "Analyze this vocabulary practice conversation for {{first_name}}.\n"
        "Native language: {{native_language}}\n"
        "Practice languages: {{practice_languages}}\n"
        "Level: {{level}}\n"
        "Word list: {{word_list_title}} (topic: {{word_list_topic}})\n"
        "Target words: {{vocabulary_words}}\n"
        "Assess which target words were used correctly. Write the summary in the "
        "language with code {{interface_language}}.\n\n"
        "CONVERSATION:\n{{conversation_text}}\n\n" + _ANSWER_SHAPE
    ),
}

NOT_SPECIFIED = "Not specified"
NOT_ASSESSED = "Not assessed"

_PLACEHOLDER = re.compile(r"\{\{\s*([a-z_]+)\s*\}\}")
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


# ─────────────────────────────────────────────────────────────────────────────
# Prompt rendering
# ─────────────────────────────────────────────────────────────────────────────

def conversation_text(messages: List[Mapping[str, Any]]) -> str:
    """``ROLE: content`` blocks separated by blank lines."""
    return "\n\n".join(f"{m['role'].upper()}: {m['content']}" for m in messages)


def prompt_variables(
    messages: List[Mapping[str, Any]],
    profile: Mapping[str, Any],
    study_topic: Optional[Mapping[str, Any]] = None,
    vocabulary: Optional[Mapping[str, Any]] = None,
) -> Dict[str, str]:
    """Values for every placeholder a template may use."""
    study_topic_context = ""
    if study_topic:
        study_topic_context = (
            f'\n\nSTUDY TOPIC CONTEXT:\nThe conversation was focused on: "{study_topic["title"]}"'
        )
        if study_topic.get("description"):
            study_topic_context += f"\nDescription: {study_topic['description']}"

    vocabulary = vocabulary or {}
    words = ", ".join(w["word"] for w in vocabulary.get("word_list_words", []))

    return {
        "native_language": profile.get("native_language") or NOT_SPECIFIED,
        "practice_languages": ", ".join(profile.get("practice_languages") or []) or NOT_SPECIFIED,
        "level": profile.get("level") or NOT_SPECIFIED,
        "learning_goals": profile.get("learning_goals") or NOT_SPECIFIED,
        "interface_language": profile.get("interface_language") or "en",
        "first_name": profile.get("first_name") or "User",
        "study_topic_context": study_topic_context,
        "conversation_text": conversation_text(messages),
        "word_list_title": vocabulary.get("word_list_title", ""),
        "word_list_topic": vocabulary.get("word_list_topic", ""),
        "vocabulary_words": words,
    }


def render_prompt(template: str, variables: Mapping[str, str]) -> str:
    """Replace ``{{name}}`` placeholders; unknown placeholders render empty."""
    return _PLACEHOLDER.sub(lambda m: variables.get(m.group(1), ""), template)


# ─────────────────────────────────────────────────────────────────────────────
# Answer parsing
# ─────────────────────────────────────────────────────────────────────────────

def _str_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def parse_analysis(answer: str) -> Dict[str, Any]:
    """
    Extract the JSON object from a model answer and fill missing fields.

    Raises:
        ValueError: If the answer holds no parseable JSON object.
    """
    match = _JSON_OBJECT.search(answer or "")
    if not match:
        raise ValueError("no JSON object in answer")
    raw = json.loads(match.group(0))
    if not isinstance(raw, dict):
        raise ValueError("answer JSON is not an object")

    insights = raw.get("userInsights") if isinstance(raw.get("userInsights"), dict) else {}
    progress = raw.get("learningProgress") if isinstance(raw.get("learningProgress"), dict) else {}

    return {
        "summary": raw.get("summary") or "No summary available",
        "keyTopics": _str_list(raw.get("keyTopics")),
        "userInsights": {
            "languageLevel": insights.get("languageLevel") or "Unknown",
            "commonMistakes": _str_list(insights.get("commonMistakes")),
            "interests": _str_list(insights.get("interests")),
            "learningStyle": insights.get("learningStyle") or "practical",
            "strengths": _str_list(insights.get("strengths")),
            "areasForImprovement": _str_list(insights.get("areasForImprovement")),
        },
        "conversationType": raw.get("conversationType") or GENERAL,
        "learningProgress": {
            "vocabularyProgress": progress.get("vocabularyProgress") or NOT_ASSESSED,
            "grammarProgress": progress.get("grammarProgress") or NOT_ASSESSED,
            "fluencyProgress": progress.get("fluencyProgress") or NOT_ASSESSED,
        },
    }


def fallback_analysis() -> Dict[str, Any]:
    """Deterministic analysis returned when the provider cannot answer."""
    return {
        "summary": "Conversation analysis failed - using fallback summary",
        "keyTopics": ["conversation", "language practice"],
        "userInsights": {
            "languageLevel": "Unknown",
            "commonMistakes": [],
            "interests": [],
            "learningStyle": "practical",
            "strengths": [],
            "areasForImprovement": [],
        },
        "conversationType": GENERAL,
        "learningProgress": {
            "vocabularyProgress": NOT_ASSESSED,
            "grammarProgress": NOT_ASSESSED,
            "fluencyProgress": NOT_ASSESSED,
        },
    }


# ─────────────────────────────────────────────────────────────────────────────
# Prompt store
# ─────────────────────────────────────────────────────────────────────────────

# (conversation_type, language_code) -> row with "prompt_template" or None
PromptLookup = Callable[[str, str], Optional[Dict[str, Any]]]


class PromptLibrary:
    """
    Active prompt templates, cached in the "template" namespace.

    A missing store, a store error or an absent row all resolve to the
    built-in template for the conversation type.
    """

    NAMESPACE = "template"

    def __init__(self, lookup: Optional[PromptLookup], cache: ResponseCache):
        self._lookup = lookup
        self._cache = cache

    def get(self, conversation_type: str, language_code: str) -> str:
        key = ResponseCache.key({"type": conversation_type, "language": language_code}, self.NAMESPACE)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        template: Optional[str] = None
        if self._lookup is not None:
            try:
                row = self._lookup(conversation_type, language_code)
            except RelayError as e:
                warn(_LOG, "prompt_lookup_failed", type=conversation_type, error=e.cause or e.message)
                return BUILTIN_TEMPLATES[conversation_type]
            if row and row.get("prompt_template"):
                template = str(row["prompt_template"])
                info(_LOG, "prompt_loaded", name=row.get("prompt_name"), version=row.get("prompt_version"))

        if template is None:
            debug(_LOG, "prompt_builtin", type=conversation_type, language=language_code)
            template = BUILTIN_TEMPLATES[conversation_type]

        self._cache.set(key, template, self.NAMESPACE)
        return template


# ─────────────────────────────────────────────────────────────────────────────
# Adapter
# ─────────────────────────────────────────────────────────────────────────────

class CompletionAdapter:
    """
    Chat-completions client for conversation analysis.

    Args:
        api_key: OpenAI key; None means not configured (every call fails
            as a provider error).
        prompts: Template source.
        config: Model, temperature, token limit, base URL and timeout.
        transport: Optional httpx transport (tests pass MockTransport).
    """

    def __init__(
        self,
        api_key: Optional[str],
        prompts: PromptLibrary,
        config: Optional[ProvidersConfig] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.config = config or ProvidersConfig()
        self._api_key = api_key
        self._prompts = prompts
        self._http = httpx.Client(
            base_url=self.config.openai_base_url,
            timeout=self.config.timeout_s,
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def analyze(
        self,
        messages: List[Mapping[str, Any]],
        profile: Mapping[str, Any],
        study_topic: Optional[Mapping[str, Any]] = None,
        vocabulary: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Analyze a conversation.

        Returns:
            Analysis dict (summary, keyTopics, userInsights,
            conversationType, learningProgress).

        Raises:
            RelayError: EXTERNAL_PROVIDER on any upstream failure.
        """
        if not self._api_key:
            raise RelayError.provider_failure(PROVIDER, "Provider not configured", cause="OPENAI_API_KEY is not set")

        conversation_type = VOCABULARY_PRACTICE if vocabulary else GENERAL
        language = profile.get("interface_language") or "en"
        template = self._prompts.get(conversation_type, language)
        prompt = render_prompt(template, prompt_variables(messages, profile, study_topic, vocabulary))

        answer = self.complete(SYSTEM_PROMPTS[conversation_type], prompt)
        try:
            return parse_analysis(answer)
        except ValueError as e:
            raise RelayError.provider_failure(PROVIDER, "Unusable analysis response", cause=str(e)) from e

    def complete(self, system: str, user: str) -> str:
        """One chat completion; returns the first choice's content."""
        body = {
            "model": self.config.openai_model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "temperature": self.config.openai_temperature,
            "max_tokens": self.config.openai_max_tokens,
        }
        try:
            resp = self._http.post(
                "/chat/completions",
                json=body,
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
        except httpx.HTTPError as e:
            raise RelayError.provider_failure(PROVIDER, "Upstream request failed", cause=str(e)) from e

        if not resp.is_success:
            raise RelayError.provider_failure(
                PROVIDER, "Upstream request failed", cause=f"HTTP {resp.status_code}: {resp.text[:500]}"
            )

        try:
            content = resp.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise RelayError.provider_failure(PROVIDER, "Malformed upstream response", cause=repr(e)) from e
        if not content:
            raise RelayError.provider_failure(PROVIDER, "Empty upstream response", cause="no content in first choice")

        debug(_LOG, "completion", model=self.config.openai_model, chars=len(content))
        return content
