"""
Shared fixtures.

Upstreams are faked with one httpx.MockTransport routed by host and path;
every provider client in the container shares it. Log records land in an
in-memory sink.
"""
from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import httpx
import pytest
from fastapi.testclient import TestClient

from relay_api.container import RelayContainer
from relay_api.core.config import Settings
from relay_api.main import create_app

SUPABASE_URL = "https://db.test"
API_SECRET = "s3cret-static-key"

USER_TOKEN = "user-token"
OTHER_TOKEN = "other-token"
ADMIN_TOKEN = "admin-token"

USERS = {
    USER_TOKEN: {"id": "user-1", "email": "ada@example.com"},
    OTHER_TOKEN: {"id": "user-2", "email": "bob@example.com"},
    ADMIN_TOKEN: {"id": "admin-1", "email": "root@example.com"},
}
ROLES = {"user-1": "student", "user-2": "teacher", "admin-1": "admin"}

ANALYSIS = {
    "summary": "The learner greeted the tutor.",
    "keyTopics": ["greetings"],
    "userInsights": {"languageLevel": "A1", "commonMistakes": [], "interests": [],
                     "learningStyle": "practical", "strengths": [], "areasForImprovement": []},
    "conversationType": "general",
    "learningProgress": {"vocabularyProgress": "new", "grammarProgress": "ok", "fluencyProgress": "low"},
}

Handler = Union[httpx.Response, Callable[[httpx.Request], httpx.Response]]


class FakeUpstream:
    """
    Route table for httpx.MockTransport.

    Routes are (method, host, path prefix); the longest matching prefix
    wins. Unrouted requests answer 404.
    """

    def __init__(self) -> None:
        self.calls: List[httpx.Request] = []
        self._routes: Dict[Tuple[str, str, str], Handler] = {}

    def on(self, method: str, host: str, path: str, handler: Handler) -> None:
        self._routes[(method.upper(), host, path)] = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        matches = [
            (path, h) for (m, host, path), h in self._routes.items()
            if m == request.method and host == request.url.host and request.url.path.startswith(path)
        ]
        if not matches:
            return httpx.Response(404, json={"error": "not routed"})
        _, handler = max(matches, key=lambda item: len(item[0]))
        return handler(request) if callable(handler) else handler

    def count(self, host: str, path: str = "", method: Optional[str] = None) -> int:
        return sum(
            1 for r in self.calls
            if r.url.host == host and r.url.path.startswith(path) and (method is None or r.method == method)
        )

    def bodies(self, host: str, path: str = "") -> List[Any]:
        return [
            json.loads(r.content) for r in self.calls
            if r.url.host == host and r.url.path.startswith(path) and r.content
        ]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


class MemorySink:
    """LogSink keeping records in memory; ``broken`` makes every write fail."""

    def __init__(self, broken: bool = False) -> None:
        self.records = []
        self.events = []
        self.broken = broken

    def write(self, record) -> None:
        if self.broken:
            raise RuntimeError("log store down")
        self.records.append(record)

    def write_event(self, category, event_type, user_id, data) -> None:
        if self.broken:
            raise RuntimeError("log store down")
        self.events.append((category, event_type, user_id, data))


def completion_response(content: Any) -> httpx.Response:
    text = content if isinstance(content, str) else json.dumps(content)
    return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": text}}]})


def _supabase_user(request: httpx.Request) -> httpx.Response:
    token = request.headers.get("authorization", "").partition(" ")[2]
    user = USERS.get(token)
    if user is None:
        return httpx.Response(401, json={"msg": "invalid JWT"})
    return httpx.Response(200, json=user)


def _supabase_profiles(request: httpx.Request) -> httpx.Response:
    user_id = request.url.params.get("user_id", "").removeprefix("eq.")
    role = ROLES.get(user_id)
    return httpx.Response(200, json=[{"user_role": role}] if role else [])


def bearer(token: str = USER_TOKEN) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def static_key(key: str = API_SECRET) -> Dict[str, str]:
    return {"X-API-Key": key}


@pytest.fixture
def env() -> Dict[str, str]:
    return {
        "OPENAI_API_KEY": "sk-test",
        "ELEVENLABS_API_KEY": "xi-test",
        "RESEND_API_KEY": "re-test",
        "SUPABASE_URL": SUPABASE_URL,
        "SUPABASE_SERVICE_ROLE_KEY": "service-role",
        "API_SECRET_KEY": API_SECRET,
    }


@pytest.fixture
def settings(tmp_path, env) -> Settings:
    return Settings(
        raw={"audio": {"base_dir": str(tmp_path / "audio")}},
        env=env,
    )


@pytest.fixture
def upstream() -> FakeUpstream:
    up = FakeUpstream()
    up.on("GET", "db.test", "/auth/v1/user", _supabase_user)
    up.on("GET", "db.test", "/rest/v1/profiles", _supabase_profiles)
    up.on("GET", "db.test", "/rest/v1/analysis_prompts", httpx.Response(200, json=[]))
    up.on("POST", "api.openai.com", "/v1/chat/completions", completion_response(ANALYSIS))
    return up


@pytest.fixture
def sink() -> MemorySink:
    return MemorySink()


@pytest.fixture
def container(settings, upstream, sink) -> RelayContainer:
    c = RelayContainer.build(settings, transport=upstream.transport(), sink=sink)
    yield c
    c.close()


@pytest.fixture
def client(container):
    app = create_app(container=container)
    with TestClient(app) as c:
        yield c
