import json

import httpx
import pytest

from app.core.config import Settings
from app.services.llm import (
    IMAGE_SHARED_PLACEHOLDER,
    DeltaAccumulator,
    GeminiClient,
    LLMConfigError,
    LLMEmptyResponseError,
    LLMRequestError,
    build_gemini_contents,
    split_sse_lines,
)


def _settings(**overrides: str) -> Settings:
    environ = {"GEMINI_API_KEY": "test-key", "GEMINI_MODEL": "gemini-test"}
    environ.update(overrides)
    return Settings(environ=environ)


def _frame(text: str) -> str:
    return "data: " + json.dumps({"candidates": [{"content": {"parts": [{"text": text}]}}]}) + "\n\n"


def _client(handler, **overrides: str) -> GeminiClient:
    return GeminiClient(_settings(**overrides), http_client=httpx.Client(transport=httpx.MockTransport(handler)))


def test_delta_accumulator_emits_suffixes() -> None:
    accumulator = DeltaAccumulator()
    deltas = [accumulator.feed(text) for text in ["Hi", "Hi there", "Hi there!"]]
    assert deltas == ["Hi", " there", "!"]
    assert "".join(deltas) == accumulator.text == "Hi there!"


def test_delta_accumulator_handles_non_prefix_snapshot() -> None:
    accumulator = DeltaAccumulator()
    assert accumulator.feed("Hello") == "Hello"
    assert accumulator.feed("Hi") == "Hi"
    assert accumulator.text == "HelloHi"
    assert accumulator.feed("") == ""


def test_split_sse_lines_keeps_partial_remainder() -> None:
    lines, remainder = split_sse_lines("data: a\r\ndata: b\ndata: par")
    assert lines == ["data: a", "data: b"]
    assert remainder == "data: par"


def test_build_gemini_contents_attaches_image_to_last_user_turn() -> None:
    history = [
        {"role": "user", "content": "Merhaba"},
        {"role": "assistant", "content": "Selam!"},
        {"role": "user", "content": ""},
    ]
    contents = build_gemini_contents(history, {"data": "aGVsbG8=", "mime_type": "image/png"})
    assert [item["role"] for item in contents] == ["user", "model", "user"]
    assert contents[0]["parts"] == [{"text": "Merhaba"}]
    assert contents[2]["parts"] == [{"inlineData": {"data": "aGVsbG8=", "mimeType": "image/png"}}]
    assert build_gemini_contents([{"role": "user", "content": ""}])[0]["parts"] == [
        {"text": IMAGE_SHARED_PLACEHOLDER}
    ]


def test_stream_chat_reassembles_chunked_frames() -> None:
    body = _frame("Mer") + _frame("Merhaba") + "data: {not json}\n\n" + _frame("Merhaba!").rstrip("\n")
    seen_urls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen_urls.append(str(request.url))
        chunks = [body[index : index + 7].encode("utf-8") for index in range(0, len(body), 7)]
        return httpx.Response(200, content=iter(chunks), headers={"content-type": "text/event-stream"})

    deltas: list[tuple[str, str]] = []
    final = _client(handler).stream_chat("ctx", [{"role": "user", "content": "selam"}], None, lambda d, f: deltas.append((d, f)))

    assert final == "Merhaba!"
    assert [delta for delta, _ in deltas] == ["Mer", "haba", "!"]
    assert deltas[-1][1] == "Merhaba!"
    assert "models/gemini-test:streamGenerateContent" in seen_urls[0]
    assert "alt=sse" in seen_urls[0]


def test_stream_chat_raises_on_error_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, text="quota exceeded")

    with pytest.raises(LLMRequestError) as excinfo:
        _client(handler).stream_chat("ctx", [{"role": "user", "content": "selam"}], None, lambda d, f: None)
    assert excinfo.value.status_code == 429


def test_complete_chat_returns_text_and_sends_system_instruction() -> None:
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured.update(json.loads(request.content))
        return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": " Tamam. "}]}}]})

    reply = _client(handler).complete_chat("CONTEXT-BLOB", [{"role": "user", "content": "selam"}])
    assert reply == "Tamam."
    assert "CONTEXT-BLOB" in captured["systemInstruction"]["parts"][0]["text"]


def test_complete_chat_empty_response_is_an_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"candidates": []})

    with pytest.raises(LLMEmptyResponseError):
        _client(handler).complete_chat("ctx", [{"role": "user", "content": "selam"}])


def test_analyze_image_parses_json_reply() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        text = '```json\n{"meal_name": "Menemen", "total_calories": 310}\n```'
        return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})

    result = _client(handler).analyze_image("aGVsbG8=", "image/jpeg", "tr", model="gemini-vision-override")
    assert result["total_calories"] == 310


def test_analyze_image_without_key_mocks_in_development_only() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    transport = httpx.MockTransport(handler)
    development = GeminiClient(Settings(environ={}), http_client=httpx.Client(transport=transport))
    assert development.analyze_image("aGVsbG8=", "image/jpeg", "en")["confidence"] == 0.38

    production = GeminiClient(Settings(environ={"APP_ENV": "production"}), http_client=httpx.Client(transport=transport))
    with pytest.raises(LLMConfigError):
        production.analyze_image("aGVsbG8=", "image/jpeg", "en")
    with pytest.raises(LLMConfigError):
        production.complete_chat("ctx", [{"role": "user", "content": "selam"}])


def test_summarize_swallows_upstream_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    assert _client(handler).summarize("Kullanıcı: selam") is None
