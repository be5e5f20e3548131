from __future__ import annotations

import httpx
import orjson
import pytest

from adapters.sse.generation_stream import (
    GenerationStreamError,
    HttpGenerationSource,
    build_generation_request,
    iter_sse_chunks,
    split_chunks,
)
from domain.models import ConversationMessage
from domain.services.stream_parser import parse_stream
from tests.helpers.stream_fixtures import load_stream_fixture, screen


def test_sse_frames_decode_to_parseable_chunks() -> None:
    lines = load_stream_fixture("home_settings.sse").splitlines()

    chunks = list(iter_sse_chunks(lines))

    assert len(chunks) == 3
    result = parse_stream(chunks)
    assert [record.id for record in result.records] == ["screen-home", "screen-settings"]
    assert result.records[0].is_root is True


def test_done_frame_stops_the_stream() -> None:
    lines = ['data: {"chunk": "a"}', "", 'data: {"done": true}', "", 'data: {"chunk": "b"}', ""]

    assert list(iter_sse_chunks(lines)) == ["a"]


def test_error_frame_raises() -> None:
    lines = ['data: {"chunk": "a"}', "", 'data: {"error": "quota exceeded"}', ""]
    chunks = iter_sse_chunks(lines)

    assert next(chunks) == "a"
    with pytest.raises(GenerationStreamError, match="quota exceeded"):
        next(chunks)


def test_malformed_frame_raises() -> None:
    with pytest.raises(GenerationStreamError, match="Malformed"):
        list(iter_sse_chunks(["data: {not json", ""]))


def test_comments_and_unterminated_last_frame() -> None:
    lines = [": keep-alive", 'data: {"chunk": "x"}']

    assert list(iter_sse_chunks(lines)) == ["x"]


def test_split_chunks() -> None:
    assert list(split_chunks("abcdefg", 3)) == ["abc", "def", "g"]
    assert list(split_chunks("abc", 0)) == ["abc"]


def test_generation_request_keeps_recent_history() -> None:
    history = [ConversationMessage(content=f"m{idx}") for idx in range(8)]

    body = build_generation_request("Add a cart", [screen("Home", body="<p/>")], history)

    assert body["existingScreens"] == [{"name": "Home", "html": "<p/>"}]
    assert [item["content"] for item in body["conversationHistory"]] == [
        "m2",
        "m3",
        "m4",
        "m5",
        "m6",
        "m7",
    ]


def test_http_source_streams_chunks() -> None:
    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = orjson.loads(request.content)
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, content=load_stream_fixture("home_settings.sse").encode())

    source = HttpGenerationSource(
        "http://generator.test/api/ai/generate-design",
        headers={"Authorization": "Bearer k"},
        transport=httpx.MockTransport(handler),
    )

    chunks = list(source.stream("Budget app"))

    assert len(chunks) == 3
    assert seen["body"] == {"prompt": "Budget app", "existingScreens": [], "conversationHistory": []}
    assert seen["auth"] == "Bearer k"


def test_http_source_reports_error_status() -> None:
    source = HttpGenerationSource(
        "http://generator.test/generate",
        transport=httpx.MockTransport(lambda request: httpx.Response(401, text="no key")),
    )

    with pytest.raises(GenerationStreamError, match="401"):
        list(source.stream("x"))
