import asyncio
import json

import httpx
import pytest

from app.conversation.window import ConversationWindowBuilder
from app.models.recommendations import Message
from app.providers.base import (
    CompletionFailure,
    CompletionSuccess,
    ParseError,
    TransportError,
    UpstreamError,
)
from app.providers.http_openai import OpenAICompletionClient

WINDOW = ConversationWindowBuilder().stage([Message(role="user", content="fantasy, mystery")])


def _client(handler) -> OpenAICompletionClient:  # type: ignore[no-untyped-def]
    return OpenAICompletionClient(
        api_key="sk-test",
        base_url="https://llm.test/",
        transport=httpx.MockTransport(handler),
    )


def test_success_parses_structured_book_list(completion_body, recommendation_content) -> None:
    captured: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json=completion_body(recommendation_content))

    outcome = asyncio.run(_client(handler).complete(WINDOW))

    assert isinstance(outcome, CompletionSuccess)
    groups = outcome.recommendations.data
    assert [group.genre for group in groups] == ["fantasy", "mystery"]
    book = groups[1].books[1]
    source = recommendation_content["data"][1]["list"][1]
    assert book.title == source["book_name"]
    assert book.author == source["author_name"]
    assert book.genre_tags == source["genre_tags"]
    assert book.description == source["description"]
    assert book.page_count == source["pages"]
    assert book.isbn == source["isbn"]
    assert book.first_publication_date == source["first_date_of_publication"]

    request = captured[0]
    assert str(request.url) == "https://llm.test/v1/chat/completions"
    assert request.headers["authorization"] == "Bearer sk-test"
    body = json.loads(request.content)
    assert body["model"] == "gpt-4o-mini"
    assert body["response_format"]["type"] == "json_schema"
    assert body["response_format"]["json_schema"]["strict"] is True
    assert body["messages"] == [message.model_dump() for message in WINDOW]


def test_server_error_maps_to_upstream_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="upstream exploded")

    outcome = asyncio.run(_client(handler).complete(WINDOW))

    assert isinstance(outcome, CompletionFailure)
    assert isinstance(outcome.error, UpstreamError)
    assert outcome.error.status_code == 500
    assert outcome.error.body == "upstream exploded"


def test_timeout_maps_to_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    outcome = asyncio.run(_client(handler).complete(WINDOW))

    assert isinstance(outcome, CompletionFailure)
    assert isinstance(outcome.error, TransportError)
    assert isinstance(outcome.error.cause, httpx.TimeoutException)


def test_connection_error_maps_to_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    outcome = asyncio.run(_client(handler).complete(WINDOW))

    assert isinstance(outcome, CompletionFailure)
    assert isinstance(outcome.error, TransportError)


def test_content_with_extra_book_field_is_a_parse_error(
    completion_body, recommendation_content
) -> None:
    recommendation_content["data"][0]["list"][0]["rating"] = 5

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=completion_body(recommendation_content))

    outcome = asyncio.run(_client(handler).complete(WINDOW))

    assert isinstance(outcome, CompletionFailure)
    assert isinstance(outcome.error, ParseError)


def test_unknown_genre_is_a_parse_error(completion_body, recommendation_content) -> None:
    recommendation_content["data"][0]["genre"] = "cookbooks"

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=completion_body(recommendation_content))

    outcome = asyncio.run(_client(handler).complete(WINDOW))

    assert isinstance(outcome, CompletionFailure)
    assert isinstance(outcome.error, ParseError)


def test_refusal_is_a_parse_error() -> None:
    body = {
        "choices": [
            {"message": {"role": "assistant", "content": None, "refusal": "I can't help."}}
        ]
    }

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=body)

    outcome = asyncio.run(_client(handler).complete(WINDOW))

    assert isinstance(outcome, CompletionFailure)
    assert isinstance(outcome.error, ParseError)
    assert "I can't help." in outcome.error.message


@pytest.mark.parametrize(
    "raw",
    [
        "not json at all",
        json.dumps({"choices": []}),
        json.dumps({"choices": [{"message": {"role": "assistant", "content": "{oops"}}]}),
    ],
)
def test_malformed_success_body_is_a_parse_error(raw: str) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text=raw)

    outcome = asyncio.run(_client(handler).complete(WINDOW))

    assert isinstance(outcome, CompletionFailure)
    assert isinstance(outcome.error, ParseError)


def test_each_call_issues_exactly_one_request() -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(503, text="overloaded")

    asyncio.run(_client(handler).complete(WINDOW))

    assert len(calls) == 1


def test_unencodable_body_maps_to_transport_error_without_request() -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={})

    message = Message.model_construct(role="user", content="x\ud800")
    window = ConversationWindowBuilder().stage([message])
    outcome = asyncio.run(_client(handler).complete(window))

    assert isinstance(outcome, CompletionFailure)
    assert isinstance(outcome.error, TransportError)
    assert isinstance(outcome.error.cause, ValueError)
    assert calls == []
