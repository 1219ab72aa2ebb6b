"""
Deterministic text post-processing applied when a session is finalized.

- strip_leading_space: Whisper-style engines often emit a leading space
- apply_replacements: vocabulary replacements with Unicode word boundaries
"""

from typing import Mapping, Optional

import regex

_TRAILING_ASCII_WHITESPACE = regex.compile(r"[ \t\r\n]$")


def strip_leading_space(text: str, pre_selection_text: Optional[str]) -> str:
    """
    Drop a single leading space when the insertion point does not need it.

    The space is removed only if the text before the cursor is known and is
    either empty or ends in ASCII whitespace. Unknown context (None) keeps the
    space, since it may be needed as a separator.
    """
    if not text.startswith(" "):
        return text

    should_strip = pre_selection_text is not None and (
        pre_selection_text == ""
        or _TRAILING_ASCII_WHITESPACE.search(pre_selection_text) is not None
    )
    return text[1:] if should_strip else text


def replacement_pattern(word: str) -> "regex.Pattern":
    """Case-insensitive pattern matching ``word`` not inside a larger word."""
    return regex.compile(
        rf"(?<![\p{{L}}\p{{N}}]){regex.escape(word)}(?![\p{{L}}\p{{N}}])",
        regex.IGNORECASE | regex.UNICODE,
    )


def apply_replacements(text: str, replacements: Mapping[str, str]) -> str:
    """
    Apply vocabulary replacements in insertion order.

    Matching is case-insensitive and uses letter/number lookarounds instead
    of ASCII ``\\b``, so it behaves the same for Latin, Cyrillic, CJK, Arabic
    and other scripts.
    """
    if not replacements or not text:
        return text

    result = text
    for word, replacement in replacements.items():
        if not word:
            continue
        # Function replacement keeps backslashes in the replacement literal
        result = replacement_pattern(word).sub(lambda _m, r=replacement: r, result)
    return result


def count_words(text: str) -> int:
    stripped = text.strip()
    return len(stripped.split()) if stripped else 0
