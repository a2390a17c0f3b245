"""Tests for JSON recovery from model output."""

import pytest

from event_digest.services.json_extractor import (
    decode_extraction_page,
    extract_json,
    find_first_balanced_json,
    strip_code_fences,
)


def test_strip_code_fences_removes_json_fence() -> None:
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences("```\n[1]\n```") == "[1]"
    assert strip_code_fences(None) == ""


def test_extract_json_plain_object() -> None:
    assert extract_json('{"has_more": false, "events": []}') == {
        "has_more": False,
        "events": [],
    }


def test_extract_json_from_prose_with_trailing_text() -> None:
    text = 'Sure! Here it is:\n{"events": [{"name": "A"}]}\nLet me know if you need more.'
    assert extract_json(text) == {"events": [{"name": "A"}]}


def test_balanced_scan_ignores_braces_inside_strings() -> None:
    text = 'prefix {"name": "Show {ao vivo} \\"}\\"", "n": 1} suffix }'
    candidate = find_first_balanced_json(text)

    assert candidate == '{"name": "Show {ao vivo} \\"}\\"", "n": 1}'
    assert extract_json(text) == {"name": 'Show {ao vivo} "}"', "n": 1}


def test_array_fallback_when_no_object() -> None:
    assert extract_json("values: [1, 2, 3] done") == [1, 2, 3]


@pytest.mark.parametrize("text", ["", "   ", "no json here", '{"unclosed": [1, 2'])
def test_extract_json_returns_none_on_failure(text: str) -> None:
    assert extract_json(text) is None


def test_decode_extraction_page_success() -> None:
    result = decode_extraction_page(
        '```json\n{"meta": {"month": "Março"}, "has_more": true, '
        '"cursor": "p2", "events": [{"unit": "A", "name": "B"}]}\n```'
    )

    assert result.ok
    assert result.page is not None
    assert result.page.has_more is True
    assert result.page.cursor == "p2"
    assert result.page.meta == {"month": "Março"}
    assert result.page.events == [{"unit": "A", "name": "B"}]


def test_decode_extraction_page_defaults_missing_keys() -> None:
    result = decode_extraction_page('{"events": "oops", "meta": null, "cursor": null}')

    assert result.ok
    assert result.page is not None
    assert result.page.events == []
    assert result.page.meta == {}
    assert result.page.cursor == ""
    assert result.page.has_more is False


def test_decode_extraction_page_rejects_non_object() -> None:
    result = decode_extraction_page("[1, 2]")

    assert not result.ok
    assert result.error is not None
    assert "expected JSON object" in result.error


def test_decode_extraction_page_unparseable() -> None:
    result = decode_extraction_page("The guide could not be read.")

    assert not result.ok
    assert result.error == "no parseable JSON found"
