"""
Tests for the provider adapters.

Tests cover:
- Completion adapter: request shape, answer parsing, failures, prompt store
- Voice adapter: endpoints, xi-api-key header, voice settings merge
- Email adapter: templates, escaping, tags, send body
- Audio store: save/load, expiry, key validation, cleanup
- Supabase client: identity, select params, exact counts, inserts
"""
import json
import os
import time

import httpx
import pytest

from conftest import ANALYSIS, SUPABASE_URL, FakeUpstream, completion_response
from relay_api.core.config import AudioConfig, ProvidersConfig
from relay_api.core.errors import ErrorKind, RelayError
from relay_api.pipeline.cache import ResponseCache
from relay_api.providers.audio_store import AudioStore, estimate_duration
from relay_api.providers.elevenlabs import VoiceAdapter
from relay_api.providers.openai import (
    BUILTIN_TEMPLATES,
    GENERAL,
    VOCABULARY_PRACTICE,
    CompletionAdapter,
    PromptLibrary,
    conversation_text,
    fallback_analysis,
    parse_analysis,
    prompt_variables,
    render_prompt,
)
from relay_api.providers.resend import EmailAdapter, EmailType, missing_fields, non_string_fields, render
from relay_api.providers.supabase import SupabaseClient

MESSAGES = [{"role": "user", "content": "Hello"}, {"role": "assistant", "content": "Hi there!"}]
PROFILE = {"native_language": "tr", "practice_languages": ["en"], "level": "A2", "first_name": "Ada"}

HEX_KEY = "ab" + "0" * 62


def provider_error(fn, *args, **kwargs) -> RelayError:
    with pytest.raises(RelayError) as info:
        fn(*args, **kwargs)
    assert info.value.kind is ErrorKind.EXTERNAL_PROVIDER
    return info.value


# ─────────────────────────────────────────────────────────────────────────────
# Completion
# ─────────────────────────────────────────────────────────────────────────────

class TestPromptRendering:
    def test_conversation_text(self):
        assert conversation_text(MESSAGES) == "USER: Hello\n\nASSISTANT: Hi there!"

    def test_defaults_for_missing_profile_fields(self):
        v = prompt_variables(MESSAGES, {})
        assert v["native_language"] == "Not specified"
        assert v["practice_languages"] == "Not specified"
        assert v["first_name"] == "User"
        assert v["interface_language"] == "en"
        assert v["study_topic_context"] == ""

    def test_study_topic_context(self):
        v = prompt_variables(MESSAGES, PROFILE, {"title": "Travel", "description": "Airports"})
        assert '"Travel"' in v["study_topic_context"]
        assert "Description: Airports" in v["study_topic_context"]

    def test_vocabulary_words(self):
        vocab = {"word_list_title": "Food", "word_list_topic": "Kitchen",
                 "word_list_words": [{"word": "apple"}, {"word": "bread"}]}
        assert prompt_variables(MESSAGES, PROFILE, vocabulary=vocab)["vocabulary_words"] == "apple, bread"

    def test_render_prompt(self):
        assert render_prompt("Hi {{first_name}}, {{ level }}{{unknown}}!", {"first_name": "Ada", "level": "A2"}) \
            == "Hi Ada, A2!"


class TestParseAnalysis:
    def test_json_inside_prose(self):
        parsed = parse_analysis("Sure! Here it is:\n" + json.dumps(ANALYSIS) + "\nThanks")
        assert parsed == ANALYSIS

    def test_missing_fields_are_filled(self):
        parsed = parse_analysis('{"summary": "short"}')
        assert parsed["summary"] == "short"
        assert parsed["keyTopics"] == []
        assert parsed["userInsights"]["languageLevel"] == "Unknown"
        assert parsed["learningProgress"]["grammarProgress"] == "Not assessed"
        assert parsed["conversationType"] == GENERAL

    @pytest.mark.parametrize("answer", ["no json here", "{not json}", ""])
    def test_unparseable(self, answer):
        with pytest.raises(ValueError):
            parse_analysis(answer)

    def test_fallback_shape(self):
        fb = fallback_analysis()
        assert set(fb) == set(ANALYSIS)
        assert fb["keyTopics"] == ["conversation", "language practice"]


class TestPromptLibrary:
    def test_store_row_wins_and_is_cached(self):
        calls = []

        def lookup(conversation_type, language):
            calls.append((conversation_type, language))
            return {"prompt_template": "Custom {{conversation_text}}", "prompt_name": "p", "prompt_version": 2}

        library = PromptLibrary(lookup, ResponseCache())
        assert library.get(GENERAL, "tr") == "Custom {{conversation_text}}"
        assert library.get(GENERAL, "tr") == "Custom {{conversation_text}}"
        assert calls == [(GENERAL, "tr")]

    def test_missing_row_uses_builtin(self):
        library = PromptLibrary(lambda t, lang: None, ResponseCache())
        assert library.get(VOCABULARY_PRACTICE, "en") == BUILTIN_TEMPLATES[VOCABULARY_PRACTICE]

    def test_no_store_uses_builtin(self):
        assert PromptLibrary(None, ResponseCache()).get(GENERAL, "en") == BUILTIN_TEMPLATES[GENERAL]

    def test_store_error_uses_builtin_without_caching(self):
        def lookup(conversation_type, language):
            raise RelayError.provider_failure("supabase", "Query failed")

        cache = ResponseCache()
        assert PromptLibrary(lookup, cache).get(GENERAL, "en") == BUILTIN_TEMPLATES[GENERAL]
        assert len(cache) == 0


class TestCompletionAdapter:
    def _adapter(self, up: FakeUpstream, api_key="sk-test") -> CompletionAdapter:
        return CompletionAdapter(api_key, PromptLibrary(None, ResponseCache()), transport=up.transport())

    def test_request_shape(self):
        up = FakeUpstream()
        up.on("POST", "api.openai.com", "/v1/chat/completions", completion_response(ANALYSIS))
        adapter = self._adapter(up)

        assert adapter.analyze(MESSAGES, PROFILE) == ANALYSIS

        request = up.calls[0]
        assert request.headers["authorization"] == "Bearer sk-test"
        body = json.loads(request.content)
        assert body["model"] == "gpt-4o-mini"
        assert body["temperature"] == 0.3
        assert body["max_tokens"] == 2000
        assert body["messages"][0]["role"] == "system"
        assert "USER: Hello" in body["messages"][1]["content"]
        assert "Ada" in body["messages"][1]["content"]
        adapter.close()

    def test_vocabulary_context_selects_vocabulary_prompt(self):
        up = FakeUpstream()
        up.on("POST", "api.openai.com", "/v1/chat/completions", completion_response(ANALYSIS))
        adapter = self._adapter(up)
        vocab = {"word_list_title": "Food", "word_list_topic": "Kitchen", "word_list_words": [{"word": "apple"}]}

        adapter.analyze(MESSAGES, PROFILE, vocabulary=vocab)

        prompt = up.bodies("api.openai.com")[0]["messages"][1]["content"]
        assert "Target words: apple" in prompt
        adapter.close()

    def test_missing_key(self):
        up = FakeUpstream()
        adapter = self._adapter(up, api_key=None)
        err = provider_error(adapter.analyze, MESSAGES, PROFILE)
        assert err.provider == "openai"
        assert up.calls == []
        adapter.close()

    def test_http_error(self):
        up = FakeUpstream()
        up.on("POST", "api.openai.com", "/v1/chat/completions", httpx.Response(500, text="overloaded"))
        adapter = self._adapter(up)
        err = provider_error(adapter.analyze, MESSAGES, PROFILE)
        assert "HTTP 500" in err.cause
        adapter.close()

    def test_unparseable_answer(self):
        up = FakeUpstream()
        up.on("POST", "api.openai.com", "/v1/chat/completions", completion_response("I cannot help"))
        adapter = self._adapter(up)
        assert provider_error(adapter.analyze, MESSAGES, PROFILE).message == "Unusable analysis response"
        adapter.close()

    def test_malformed_envelope(self):
        up = FakeUpstream()
        up.on("POST", "api.openai.com", "/v1/chat/completions", httpx.Response(200, json={"choices": []}))
        adapter = self._adapter(up)
        assert provider_error(adapter.analyze, MESSAGES, PROFILE).message == "Malformed upstream response"
        adapter.close()


# ─────────────────────────────────────────────────────────────────────────────
# Voice
# ─────────────────────────────────────────────────────────────────────────────

class TestVoiceAdapter:
    HOST = "api.elevenlabs.io"

    def test_start_conversation(self):
        up = FakeUpstream()
        up.on("POST", self.HOST, "/v1/convai/conversation", httpx.Response(200, json={"conversation_id": "c1"}))
        adapter = VoiceAdapter("xi-test", transport=up.transport())

        assert adapter.start_conversation("agent-1", {"language": "en"}) == {"conversation_id": "c1"}
        assert up.calls[0].headers["xi-api-key"] == "xi-test"
        assert up.bodies(self.HOST)[0] == {"agent_id": "agent-1", "language": "en"}
        adapter.close()

    def test_send_and_end(self):
        up = FakeUpstream()
        up.on("POST", self.HOST, "/v1/convai/conversation/c1/message", httpx.Response(200, json={"reply": "hi"}))
        up.on("DELETE", self.HOST, "/v1/convai/conversation/c1", httpx.Response(204))
        adapter = VoiceAdapter("xi-test", transport=up.transport())

        assert adapter.send_message("c1", "hello") == {"reply": "hi"}
        assert adapter.end_conversation("c1") == {}
        assert up.bodies(self.HOST)[0] == {"message": "hello"}
        adapter.close()

    def test_synthesize_merges_settings(self):
        up = FakeUpstream()
        up.on("POST", self.HOST, "/v1/text-to-speech/voice-1", httpx.Response(200, content=b"ID3mp3"))
        adapter = VoiceAdapter("xi-test", transport=up.transport())

        assert adapter.synthesize("Merhaba", "voice-1", {"stability": 0.9}) == b"ID3mp3"

        assert up.calls[0].headers["accept"] == "audio/mpeg"
        body = up.bodies(self.HOST)[0]
        assert body["model_id"] == "eleven_multilingual_v2"
        assert body["voice_settings"] == {"stability": 0.9, "similarity_boost": 0.5}
        adapter.close()

    def test_failures(self):
        up = FakeUpstream()
        up.on("POST", self.HOST, "/v1/text-to-speech/voice-1", httpx.Response(200, content=b""))
        up.on("POST", self.HOST, "/v1/convai/conversation", httpx.Response(401, json={"detail": "bad key"}))
        adapter = VoiceAdapter("xi-test", transport=up.transport())

        assert provider_error(adapter.synthesize, "x", "voice-1").message == "Failed to generate voice"
        assert provider_error(adapter.start_conversation, "a").message == "Failed to start conversation"
        adapter.close()

    def test_not_configured(self):
        up = FakeUpstream()
        adapter = VoiceAdapter(None, transport=up.transport())
        assert provider_error(adapter.synthesize, "x", "v").message == "Provider not configured"
        assert up.calls == []
        adapter.close()


# ─────────────────────────────────────────────────────────────────────────────
# Email
# ─────────────────────────────────────────────────────────────────────────────

INVITE = {"studentName": "Ada", "teacherName": "Grace", "invitationLink": "https://app/i/1", "language": "English"}


class TestEmailTemplates:
    def test_required_fields(self):
        assert missing_fields(EmailType.WELCOME, {"userName": "Ada"}) == ["language", "dashboardLink"]
        assert missing_fields(EmailType.CONTACT, {"name": "a", "email": "b", "message": "c"}) == []

    def test_student_invitation(self):
        email = render(EmailType.STUDENT_INVITATION, INVITE)
        assert email.subject == "You've been invited to learn English with Grace"
        assert "https://app/i/1" in email.text
        assert 'href="https://app/i/1"' in email.html
        assert email.tags == [{"name": "email_type", "value": "student_invitation"},
                              {"name": "language", "value": "English"}]

    def test_teacher_invitation_subject(self):
        assert render(EmailType.TEACHER_INVITATION, INVITE).subject == "You've been invited to teach English to Ada"

    def test_welcome(self):
        email = render(EmailType.WELCOME, {"userName": "Ada", "language": "Turkish", "dashboardLink": "https://app"})
        assert email.subject == "Welcome to iAlla, Ada!"
        assert "Go to Dashboard" in email.html

    def test_contact_escapes_and_breaks_lines(self):
        email = render(EmailType.CONTACT, {"name": "<b>Eve</b>", "email": "eve@example.com",
                                           "message": "line one\n<script>x</script>"})
        assert email.subject == "Contact from <b>Eve</b>"
        assert "<script>" not in email.html
        assert "&lt;b&gt;Eve&lt;/b&gt;" in email.html
        assert "line one<br>&lt;script&gt;" in email.html
        assert email.tags == [{"name": "email_type", "value": "contact"}]

    def test_contact_custom_subject(self):
        email = render(EmailType.CONTACT, {"name": "E", "email": "e@x.io", "message": "m", "subject": "Hello"})
        assert email.subject == "Hello"

    def test_render_missing_fields(self):
        with pytest.raises(RelayError) as info:
            render(EmailType.WELCOME, {"userName": "Ada"})
        assert info.value.kind is ErrorKind.VALIDATION
        assert info.value.message == "Missing required fields for welcome: language, dashboardLink"

    def test_non_string_fields(self):
        assert non_string_fields(EmailType.WELCOME, {"userName": "Ada", "language": "tr", "dashboardLink": 7}) == [
            "dashboardLink"
        ]
        assert non_string_fields(EmailType.CONTACT, {"name": "E", "email": "e@x.io", "message": "m", "subject": 42}) == [
            "subject"
        ]
        assert non_string_fields(EmailType.CONTACT, {"name": "E", "email": "e@x.io", "message": "m"}) == []

    def test_render_rejects_non_string_link(self):
        with pytest.raises(RelayError) as info:
            render(EmailType.STUDENT_INVITATION, {**INVITE, "invitationLink": ["https://app/i/1"]})
        assert info.value.kind is ErrorKind.VALIDATION
        assert info.value.details == [{"field": "data.invitationLink", "message": "Must be a string"}]


class TestEmailAdapter:
    HOST = "api.resend.com"

    def test_send(self):
        up = FakeUpstream()
        up.on("POST", self.HOST, "/emails", httpx.Response(200, json={"id": "msg_1"}))
        adapter = EmailAdapter("re-test", transport=up.transport())

        assert adapter.send(EmailType.STUDENT_INVITATION, "ada@example.com", INVITE) == {"id": "msg_1", "status": "sent"}

        assert up.calls[0].headers["authorization"] == "Bearer re-test"
        body = up.bodies(self.HOST)[0]
        assert body["from"] == ProvidersConfig().email_from
        assert body["to"] == ["ada@example.com"]
        assert set(body) == {"from", "to", "subject", "text", "html", "tags"}
        adapter.close()

    def test_missing_id(self):
        up = FakeUpstream()
        up.on("POST", self.HOST, "/emails", httpx.Response(200, json={}))
        adapter = EmailAdapter("re-test", transport=up.transport())
        assert adapter.send(EmailType.STUDENT_INVITATION, "a@b.co", INVITE)["id"] == "unknown"
        adapter.close()

    def test_upstream_error(self):
        up = FakeUpstream()
        up.on("POST", self.HOST, "/emails", httpx.Response(422, json={"message": "invalid from"}))
        adapter = EmailAdapter("re-test", transport=up.transport())
        err = provider_error(adapter.send, EmailType.STUDENT_INVITATION, "a@b.co", INVITE)
        assert err.message == "Failed to send email"
        adapter.close()

    def test_validation_before_send(self):
        up = FakeUpstream()
        adapter = EmailAdapter("re-test", transport=up.transport())
        with pytest.raises(RelayError):
            adapter.send(EmailType.WELCOME, "a@b.co", {})
        assert up.calls == []
        adapter.close()


# ─────────────────────────────────────────────────────────────────────────────
# Audio store
# ─────────────────────────────────────────────────────────────────────────────

class TestAudioStore:
    def _store(self, tmp_path, ttl=3600, base_url=""):
        return AudioStore(AudioConfig(base_dir=str(tmp_path / "audio"), ttl_seconds=ttl), public_base_url=base_url)

    def test_save_and_load(self, tmp_path):
        store = self._store(tmp_path)
        meta = store.save(HEX_KEY, b"\x00" * 16000)
        assert meta == {"audioReference": f"/api/elevenlabs/audio/{HEX_KEY}", "duration": 1.0}
        assert (tmp_path / "audio" / "ab" / f"{HEX_KEY}.mp3").exists()
        assert store.load(HEX_KEY) == b"\x00" * 16000
        assert store.exists(HEX_KEY) is True

    def test_absolute_reference(self, tmp_path):
        store = self._store(tmp_path, base_url="https://relay.example/")
        assert store.reference(HEX_KEY) == f"https://relay.example/api/elevenlabs/audio/{HEX_KEY}"

    def test_unknown_and_invalid_keys(self, tmp_path):
        store = self._store(tmp_path)
        assert store.load("f" * 64) is None
        assert store.load("../../etc/passwd") is None
        with pytest.raises(ValueError):
            store.save("not-a-key", b"x")

    def test_expired(self, tmp_path):
        store = self._store(tmp_path, ttl=60)
        store.save(HEX_KEY, b"abc")
        old = time.time() - 120
        os.utime(store.path_for(HEX_KEY), (old, old))
        assert store.load(HEX_KEY) is None
        assert store.exists(HEX_KEY) is False

    def test_cleanup(self, tmp_path):
        store = self._store(tmp_path, ttl=60)
        other = "cd" + "1" * 62
        store.save(HEX_KEY, b"abc")
        store.save(other, b"def")
        old = time.time() - 120
        os.utime(store.path_for(HEX_KEY), (old, old))

        assert store.cleanup() == 1
        assert not (tmp_path / "audio" / "ab").exists()
        assert store.load(other) == b"def"

    def test_estimate_duration(self):
        assert estimate_duration(32000, 128) == 2.0


# ─────────────────────────────────────────────────────────────────────────────
# Supabase
# ─────────────────────────────────────────────────────────────────────────────

class TestSupabaseClient:
    def _client(self, up):
        return SupabaseClient(SUPABASE_URL, "service-role", transport=up.transport())

    def test_get_user(self):
        up = FakeUpstream()
        up.on("GET", "db.test", "/auth/v1/user", httpx.Response(200, json={"id": "u1", "email": "a@b.co"}))
        client = self._client(up)
        assert client.get_user("tok") == {"id": "u1", "email": "a@b.co"}
        assert up.calls[0].headers["authorization"] == "Bearer tok"
        assert up.calls[0].headers["apikey"] == "service-role"
        client.close()

    def test_rejected_token(self):
        up = FakeUpstream()
        up.on("GET", "db.test", "/auth/v1/user", httpx.Response(401, json={"msg": "bad jwt"}))
        client = self._client(up)
        assert client.get_user("tok") is None
        client.close()

    def test_identity_service_error(self):
        up = FakeUpstream()
        up.on("GET", "db.test", "/auth/v1/user", httpx.Response(503, text="down"))
        client = self._client(up)
        provider_error(client.get_user, "tok")
        client.close()

    def test_select_params(self):
        up = FakeUpstream()
        up.on("GET", "db.test", "/rest/v1/user_action_logs", httpx.Response(200, json=[{"id": 1}]))
        client = self._client(up)

        rows = client.select("user_action_logs", {"user_id": "u1", "is_active": True},
                             order="created_at", descending=True, limit=10, offset=20)

        assert rows == [{"id": 1}]
        params = up.calls[0].url.params
        assert params["user_id"] == "eq.u1"
        assert params["is_active"] == "eq.true"
        assert params["order"] == "created_at.desc"
        assert params["limit"] == "10"
        assert params["offset"] == "20"
        client.close()

    def test_count(self):
        up = FakeUpstream()
        up.on("HEAD", "db.test", "/rest/v1/user_action_logs",
              httpx.Response(200, headers={"Content-Range": "0-9/42"}))
        client = self._client(up)
        assert client.count("user_action_logs", {"user_id": "u1"}) == 42
        assert up.calls[0].headers["prefer"] == "count=exact"
        client.close()

    def test_insert_returning(self):
        up = FakeUpstream()
        up.on("POST", "db.test", "/rest/v1/user_action_logs",
              httpx.Response(201, json=[{"id": "row-1", "action_type": "login"}]))
        client = self._client(up)
        assert client.insert("user_action_logs", {"action_type": "login"}) == {"id": "row-1", "action_type": "login"}
        assert up.calls[0].headers["prefer"] == "return=representation"
        client.close()

    def test_role_lookup(self):
        up = FakeUpstream()
        up.on("GET", "db.test", "/rest/v1/profiles", httpx.Response(200, json=[{"user_role": "admin"}]))
        client = self._client(up)
        assert client.get_user_role("u1") == "admin"
        assert up.calls[0].url.params["select"] == "user_role"
        client.close()

    def test_datastore_error(self):
        up = FakeUpstream()
        up.on("GET", "db.test", "/rest/v1/profiles", httpx.Response(500, text="boom"))
        client = self._client(up)
        err = provider_error(client.get_user_role, "u1")
        assert err.provider == "supabase"
        client.close()
