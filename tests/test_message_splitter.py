"""Tests for message chunking."""

import pytest

from event_digest.services.message_splitter import add_position_markers, split_message


def test_short_text_single_chunk() -> None:
    assert split_message("hello\r\nworld ", max_length=100) == ["hello\nworld"]


def test_empty_text_yields_no_chunks() -> None:
    assert split_message("   ", max_length=10) == []
    assert split_message(None) == []


def test_invalid_max_length() -> None:
    with pytest.raises(ValueError):
        split_message("text", max_length=0)


def test_paragraphs_are_packed_greedily() -> None:
    text = "aaaa\n\nbbbb\n\ncccc"

    assert split_message(text, max_length=10) == ["aaaa\n\nbbbb", "cccc"]


def test_oversized_paragraph_splits_on_lines() -> None:
    paragraph = "\n".join(["line-one", "line-two", "line-three"])

    chunks = split_message(paragraph, max_length=18)

    assert chunks == ["line-one\nline-two", "line-three"]


def test_oversized_line_is_hard_cut() -> None:
    chunks = split_message("x" * 25, max_length=10)

    assert chunks == ["x" * 10, "x" * 10, "x" * 5]


def test_every_chunk_respects_limit_and_keeps_content() -> None:
    paragraphs = [f"Paragraph {i}\n" + ("word " * (i * 7)) for i in range(1, 30)]
    text = "\n\n".join(paragraphs)

    chunks = split_message(text, max_length=120)

    assert all(len(chunk) <= 120 for chunk in chunks)
    assert "".join(chunks).replace(" ", "").replace("\n", "") == text.replace(
        " ", ""
    ).replace("\n", "")


def test_position_markers() -> None:
    assert add_position_markers(["only"]) == ["only"]
    assert add_position_markers(["a", "b", "c"]) == [
        "(1/3)\na",
        "(2/3)\nb",
        "(3/3)\nc",
    ]
