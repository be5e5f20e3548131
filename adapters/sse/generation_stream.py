from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Sequence
from typing import Any, List

import httpx
import orjson

from domain.models import ConversationMessage, ScreenRecord

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
HISTORY_LIMIT = 6


class GenerationStreamError(RuntimeError):
    pass


def iter_sse_chunks(lines: Iterable[str]) -> Iterator[str]:
    """Decode `data: {"chunk": ...}` frames into raw text chunks.

    A `{"done": true}` frame ends the stream; an `{"error": ...}` frame raises
    GenerationStreamError. Frames are separated by blank lines and may span
    several `data:` lines.
    """
    data_lines: List[str] = []
    for line in lines:
        line = line.rstrip("\r\n")
        if not line:
            if data_lines:
                payload = "\n".join(data_lines)
                data_lines = []
                frame = _decode_frame(payload)
                if frame.get("done"):
                    return
                chunk = _frame_chunk(frame)
                if chunk:
                    yield chunk
            continue
        if line.startswith(":"):
            continue
        if line.startswith(DATA_PREFIX):
            value = line[len(DATA_PREFIX) :]
            data_lines.append(value[1:] if value.startswith(" ") else value)
    if data_lines:
        frame = _decode_frame("\n".join(data_lines))
        if not frame.get("done"):
            chunk = _frame_chunk(frame)
            if chunk:
                yield chunk


def _decode_frame(payload: str) -> dict[str, Any]:
    try:
        frame = orjson.loads(payload)
    except orjson.JSONDecodeError as exc:
        raise GenerationStreamError(f"Malformed stream frame: {payload[:80]!r}") from exc
    if not isinstance(frame, dict):
        raise GenerationStreamError(f"Unexpected stream frame: {payload[:80]!r}")
    return frame


def _frame_chunk(frame: dict[str, Any]) -> str:
    if "error" in frame:
        raise GenerationStreamError(str(frame["error"]))
    chunk = frame.get("chunk")
    return chunk if isinstance(chunk, str) else ""


def split_chunks(text: str, size: int) -> Iterator[str]:
    if size <= 0:
        yield text
        return
    for start in range(0, len(text), size):
        yield text[start : start + size]


def build_generation_request(
    prompt: str,
    screens: Sequence[ScreenRecord] = (),
    history: Sequence[ConversationMessage] = (),
) -> dict[str, Any]:
    return {
        "prompt": prompt,
        "existingScreens": [{"name": screen.name, "html": screen.body} for screen in screens],
        "conversationHistory": [
            {"role": message.role, "content": message.content}
            for message in list(history)[-HISTORY_LIMIT:]
        ],
    }


class HttpGenerationSource:
    """Streams generation chunks from a model route speaking the SSE frame format."""

    def __init__(
        self,
        endpoint_url: str,
        timeout_seconds: float = 120.0,
        headers: dict[str, str] | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.endpoint_url = endpoint_url
        self.timeout_seconds = timeout_seconds
        self.headers = dict(headers or {})
        self.transport = transport

    def stream(
        self,
        prompt: str,
        screens: Sequence[ScreenRecord] = (),
        history: Sequence[ConversationMessage] = (),
    ) -> Iterator[str]:
        body = build_generation_request(prompt, screens, history)
        logger.info("Requesting generation from %s", self.endpoint_url)
        with httpx.Client(timeout=self.timeout_seconds, transport=self.transport) as client:
            with client.stream(
                "POST",
                self.endpoint_url,
                content=orjson.dumps(body),
                headers={"Content-Type": "application/json", **self.headers},
            ) as response:
                if response.status_code >= 400:
                    response.read()
                    raise GenerationStreamError(
                        f"Generation endpoint returned {response.status_code}: "
                        f"{response.text[:200]}"
                    )
                yield from iter_sse_chunks(response.iter_lines())
