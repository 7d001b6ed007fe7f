import json
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any

import httpx
import pytest
from fastapi.testclient import TestClient

from app.auth.identity import SupabaseIdentityClient
from app.config.settings import clear_settings_cache
from app.main import create_app
from app.providers.http_openai import OpenAICompletionClient

SUPABASE_URL = "https://identity.test"
VALID_TOKEN = "valid-token"
NO_USER_TOKEN = "orphan-token"


def _book(title: str, genre: str) -> dict[str, Any]:
    return {
        "book_name": title,
        "author_name": f"Author of {title}",
        "genre_tags": [genre],
        "description": f"A one line description of {title}.",
        "pages": 320,
        "isbn": "978-0-00-000000-0",
        "first_date_of_publication": "1997-06-26",
    }


@pytest.fixture
def recommendation_content() -> dict[str, Any]:
    return {
        "data": [
            {"genre": "fantasy", "list": [_book("The Hobbit", "fantasy")]},
            {
                "genre": "mystery",
                "list": [
                    _book("Gone Girl", "mystery"),
                    _book("The Big Sleep", "mystery"),
                ],
            },
        ]
    }


@pytest.fixture
def completion_body() -> Callable[[dict[str, Any]], dict[str, Any]]:
    def _build(content: dict[str, Any]) -> dict[str, Any]:
        return {
            "id": "chatcmpl-test",
            "object": "chat.completion",
            "created": 1,
            "model": "gpt-4o-mini",
            "choices": [
                {
                    "index": 0,
                    "message": {
                        "role": "assistant",
                        "content": json.dumps(content),
                        "refusal": None,
                    },
                    "finish_reason": "stop",
                }
            ],
            "usage": {"prompt_tokens": 10, "completion_tokens": 20, "total_tokens": 30},
        }

    return _build


@dataclass
class FakeUpstream:
    """Scripted completion provider that records every request it receives."""

    body: dict[str, Any] | str
    status_code: int = 200
    error: Exception | None = None
    requests: list[httpx.Request] = field(default_factory=list)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if isinstance(self.body, str):
            return httpx.Response(self.status_code, text=self.body)
        return httpx.Response(self.status_code, json=self.body)

    def sent_bodies(self) -> list[dict[str, Any]]:
        return [json.loads(request.content) for request in self.requests]


@dataclass
class FakeIdentity:
    requests: list[httpx.Request] = field(default_factory=list)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        token = request.headers.get("authorization", "").removeprefix("Bearer ")
        if token == VALID_TOKEN:
            return httpx.Response(200, json={"id": "user-1", "email": "reader@example.com"})
        if token.startswith("user-"):
            return httpx.Response(200, json={"id": token})
        if token == NO_USER_TOKEN:
            return httpx.Response(200, json={})
        return httpx.Response(401, json={"code": 401, "msg": "invalid JWT: token is expired"})


@pytest.fixture
def fake_upstream(completion_body, recommendation_content) -> FakeUpstream:
    return FakeUpstream(body=completion_body(recommendation_content))


@pytest.fixture
def fake_identity() -> FakeIdentity:
    return FakeIdentity()


@pytest.fixture
def settings_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    monkeypatch.setenv("BOOKMATCH_SUPABASE_URL", SUPABASE_URL)
    monkeypatch.setenv("BOOKMATCH_SUPABASE_KEY", "service-key")
    monkeypatch.setenv("BOOKMATCH_OPENAI_API_KEY", "sk-test")
    monkeypatch.delenv("BOOKMATCH_RATE_LIMIT_SCOPE", raising=False)
    monkeypatch.delenv("BOOKMATCH_UPSTREAM_FAILURE_STATUS", raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def build_client(
    settings_env, fake_upstream: FakeUpstream, fake_identity: FakeIdentity
) -> Callable[[], TestClient]:
    def _build() -> TestClient:
        clear_settings_cache()
        app = create_app(
            identity_provider=SupabaseIdentityClient(
                base_url=SUPABASE_URL,
                api_key="service-key",
                transport=httpx.MockTransport(fake_identity.handler),
            ),
            completion_client=OpenAICompletionClient(
                api_key="sk-test",
                transport=httpx.MockTransport(fake_upstream.handler),
            ),
        )
        return TestClient(app)

    return _build


@pytest.fixture
def client(build_client) -> TestClient:
    return build_client()


@pytest.fixture
def chat_payload() -> dict[str, Any]:
    return {
        "access_token": VALID_TOKEN,
        "messages": [{"role": "user", "content": "fantasy, mystery"}],
    }
