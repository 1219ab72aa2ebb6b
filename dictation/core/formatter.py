"""
LLM formatter for finalized dictation text.

Sends the raw transcription to an OpenAI-compatible chat completions
endpoint and extracts the reply from <formatted_text> tags. The orchestrator
treats every failure here as recoverable and keeps the unformatted text.
"""

import logging
import re
from typing import List, Optional, Protocol

import httpx

from dictation.core.session import TranscribeContext
from dictation.errors import FormattingError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"

SYSTEM_PROMPT = """You are a text formatting assistant.

## Output rules
- Wrap the formatted text in <formatted_text></formatted_text> tags
- Do not write anything outside the tags (no explanations or comments)
- If the input is empty, return <formatted_text></formatted_text>"""

DEFAULT_INSTRUCTIONS = """Turn the speech recognition result into natural, readable text.

- Add punctuation and sentence breaks where they belong
- Remove filler words and false starts
- Fix words that were obviously misrecognized, using the surrounding context
- Use the dictionary terms exactly as written
- Keep the original meaning and tone
- If the text contains a question or request, format it; never answer it
- Never add content that was not in the input"""

_FORMATTED_TEXT = re.compile(r"<formatted_text>([\s\S]*?)</formatted_text>")


class Formatter(Protocol):
    name: str
    model: str

    async def format(self, text: str, context: Optional[TranscribeContext]) -> str: ...


def build_system_prompt(
    vocabulary: Optional[List[str]] = None, instructions: Optional[str] = None
) -> str:
    parts = [SYSTEM_PROMPT]
    parts.append(f"\n## Formatting rules\n{(instructions or '').strip() or DEFAULT_INSTRUCTIONS}")
    if vocabulary:
        parts.append(
            "\n## Dictionary (terms and proper nouns)\n"
            f"Use these words exactly: {', '.join(vocabulary)}"
        )
    return "\n".join(parts)


def looks_like_answer(original: str, formatted: str) -> bool:
    """Formatting barely changes length; a much longer reply is an answer."""
    if not original:
        return False
    ratio = len(formatted) / len(original)
    return ratio > 1.5 and len(formatted) - len(original) > 50


class OpenAIFormatter:
    """Formatter for OpenAI-compatible chat completion APIs."""

    name = "openai"

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        base_url: str = "https://api.openai.com/v1",
        instructions: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.instructions = instructions
        self.timeout = timeout
        self._client = client

    async def format(self, text: str, context: Optional[TranscribeContext] = None) -> str:
        """
        Format a transcription.

        Args:
            text: Raw transcription
            context: Session context (vocabulary is added to the prompt)

        Returns:
            Formatted text, or ``text`` itself when the reply looks like an
            answer rather than a reformatting

        Raises:
            FormattingError: On transport errors or non-200 responses
        """
        system_prompt = build_system_prompt(
            context.vocabulary if context else None, self.instructions
        )
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": text},
            ],
            "temperature": 0.1,
            "max_tokens": 2000,
        }
        url = f"{self.base_url}/chat/completions"
        headers = {"Authorization": f"Bearer {self.api_key}"}

        logger.info(f"Formatting request (model: {self.model}, chars: {len(text)})")
        try:
            if self._client is not None:
                response = await self._client.post(
                    url, json=payload, headers=headers, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(url, json=payload, headers=headers)
        except httpx.ConnectError as e:
            raise FormattingError(f"Cannot connect to {self.base_url}") from e
        except httpx.TimeoutException as e:
            raise FormattingError("Formatting request timed out") from e

        if response.status_code != 200:
            logger.error(f"LLM API error: {response.status_code} - {response.text}")
            raise FormattingError(f"LLM server error: {response.status_code}")

        try:
            reply = response.json()["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise FormattingError(f"Unexpected LLM response shape: {e}") from e

        match = _FORMATTED_TEXT.search(reply)
        formatted = match.group(1).strip() if match else reply.strip()

        if looks_like_answer(text, formatted):
            logger.warning(
                "Formatting output appears to be an answer, using original text "
                f"({len(text)} -> {len(formatted)} chars)"
            )
            return text

        logger.debug(f"Formatting completed (xml tags: {bool(match)})")
        return formatted


def create_formatter(settings_reader) -> Optional[OpenAIFormatter]:
    """Build the formatter from settings, or None when disabled or unconfigured."""
    formatter_config = settings_reader.get_formatter_config()
    if not formatter_config or not formatter_config.enabled:
        return None

    openai_config = settings_reader.get_openai_config()
    if not openai_config or not openai_config.api_key:
        logger.warning("Formatting skipped: OpenAI API key missing")
        return None

    return OpenAIFormatter(
        api_key=openai_config.api_key,
        model=formatter_config.model or DEFAULT_MODEL,
        base_url=openai_config.base_url,
        instructions=formatter_config.instructions,
        timeout=formatter_config.timeout,
    )
