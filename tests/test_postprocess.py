"""Tests for leading-space correction and vocabulary replacements."""

import pytest

from dictation.core.postprocess import apply_replacements, count_words, strip_leading_space


@pytest.mark.parametrize(
    "pre_selection_text, expected",
    [
        ("", "hello"),
        ("word ", "hello"),
        ("line\n", "hello"),
        ("tab\t", "hello"),
        ("word", " hello"),
        (None, " hello"),
        ("word\u00a0", " hello"),
    ],
)
def test_strip_leading_space(pre_selection_text, expected) -> None:
    assert strip_leading_space(" hello", pre_selection_text) == expected


def test_strip_leading_space_removes_only_one_space() -> None:
    assert strip_leading_space("  hello", "") == " hello"
    assert strip_leading_space("hello", "") == "hello"


def test_replacement_respects_word_boundaries() -> None:
    assert apply_replacements("hello he said", {"he": "she"}) == "hello she said"


def test_replacement_is_case_insensitive() -> None:
    assert apply_replacements("Open GITHUB now", {"github": "GitHub"}) == "Open GitHub now"


def test_replacements_apply_in_insertion_order() -> None:
    text = "new york is big"

    longer_first = apply_replacements(text, {"new york": "NYC", "york": "Yorkshire"})
    shorter_first = apply_replacements(text, {"york": "Yorkshire", "new york": "NYC"})

    assert longer_first == "NYC is big"
    assert shorter_first == "new Yorkshire is big"


def test_replacement_boundaries_work_for_non_latin_scripts() -> None:
    assert apply_replacements("привет мир, миров", {"мир": "свет"}) == "привет свет, миров"


def test_replacement_does_not_match_inside_digits() -> None:
    assert apply_replacements("a1 a 1a", {"a": "b"}) == "a1 b 1a"


def test_replacement_text_is_literal() -> None:
    assert apply_replacements("path here", {"path": r"C:\new"}) == r"C:\new here"
    assert apply_replacements("cost", {"cost": "$1"}) == "$1"


def test_regex_metacharacters_in_word_are_escaped() -> None:
    assert apply_replacements("use c++ daily", {"c++": "C++"}) == "use C++ daily"


def test_empty_inputs_are_returned_unchanged() -> None:
    assert apply_replacements("", {"a": "b"}) == ""
    assert apply_replacements("text", {}) == "text"


def test_count_words() -> None:
    assert count_words("  one two\nthree ") == 3
    assert count_words("   ") == 0
