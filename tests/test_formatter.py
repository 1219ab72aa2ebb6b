"""Tests for the OpenAI-compatible LLM formatter."""

import json

import httpx
import pytest

from dictation.collaborators import FormatterConfig, OpenAIConfig
from dictation.core.formatter import (
    DEFAULT_INSTRUCTIONS,
    OpenAIFormatter,
    build_system_prompt,
    create_formatter,
    looks_like_answer,
)
from dictation.core.session import TranscribeContext
from dictation.errors import FormattingError


def _reply(content: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


def _formatter(handler) -> OpenAIFormatter:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OpenAIFormatter(api_key="sk-test", base_url="https://llm.test/v1/", client=client)


@pytest.mark.asyncio
async def test_format_extracts_tagged_text_and_sends_vocabulary() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["payload"] = json.loads(request.content)
        return httpx.Response(
            200, json=_reply("<formatted_text>Hello, world.</formatted_text>")
        )

    formatter = _formatter(handler)
    context = TranscribeContext(session_id="s1", vocabulary=["Amical"])

    result = await formatter.format("hello world", context)

    assert result == "Hello, world."
    assert seen["url"] == "https://llm.test/v1/chat/completions"
    payload = seen["payload"]
    assert payload["model"] == "gpt-4o-mini"
    assert payload["temperature"] == 0.1
    assert payload["max_tokens"] == 2000
    assert "Amical" in payload["messages"][0]["content"]
    assert payload["messages"][1] == {"role": "user", "content": "hello world"}


@pytest.mark.asyncio
async def test_format_without_tags_uses_whole_reply() -> None:
    formatter = _formatter(lambda request: httpx.Response(200, json=_reply("  Hi there.  ")))

    assert await formatter.format("hi there") == "Hi there."


@pytest.mark.asyncio
async def test_format_returns_original_when_reply_looks_like_an_answer() -> None:
    answer = "<formatted_text>" + "The capital of France is Paris. " * 5 + "</formatted_text>"
    formatter = _formatter(lambda request: httpx.Response(200, json=_reply(answer)))

    assert await formatter.format("what is the capital of france") == (
        "what is the capital of france"
    )


@pytest.mark.asyncio
async def test_format_http_error_raises_formatting_error() -> None:
    formatter = _formatter(lambda request: httpx.Response(503, text="overloaded"))

    with pytest.raises(FormattingError, match="503"):
        await formatter.format("text")


@pytest.mark.asyncio
async def test_format_unexpected_shape_raises_formatting_error() -> None:
    formatter = _formatter(lambda request: httpx.Response(200, json={"choices": []}))

    with pytest.raises(FormattingError, match="Unexpected LLM response"):
        await formatter.format("text")


@pytest.mark.asyncio
async def test_format_timeout_raises_formatting_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(FormattingError, match="timed out"):
        await _formatter(handler).format("text")


@pytest.mark.parametrize(
    "original, formatted, expected",
    [
        ("short", "short.", False),
        ("abc", "x" * 60, True),
        ("a" * 100, "a" * 149, False),
        ("a" * 100, "a" * 160, True),
        ("", "anything", False),
    ],
)
def test_looks_like_answer(original, formatted, expected) -> None:
    assert looks_like_answer(original, formatted) is expected


def test_build_system_prompt_uses_custom_instructions() -> None:
    prompt = build_system_prompt(instructions="Use bullet points")

    assert "Use bullet points" in prompt
    assert DEFAULT_INSTRUCTIONS not in prompt
    assert "Dictionary" not in prompt


class _Settings:
    def __init__(self, formatter: FormatterConfig, openai: OpenAIConfig = None) -> None:
        self.formatter = formatter
        self.openai = openai

    def get_formatter_config(self):
        return self.formatter

    def get_openai_config(self):
        return self.openai


def test_create_formatter_requires_enabled_config_and_api_key() -> None:
    assert create_formatter(_Settings(FormatterConfig(enabled=False))) is None
    assert create_formatter(_Settings(FormatterConfig(enabled=True))) is None

    formatter = create_formatter(
        _Settings(
            FormatterConfig(enabled=True, model="gpt-4.1-mini", timeout=5.0),
            OpenAIConfig(api_key="sk-test"),
        )
    )
    assert formatter is not None
    assert formatter.model == "gpt-4.1-mini"
    assert formatter.timeout == 5.0
