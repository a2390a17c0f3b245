"""Tests for the OpenAI extraction adapter."""

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace
from typing import Any

import httpx
import openai
import pytest

from event_digest.adapters import llm_client as llm_module
from event_digest.adapters.llm_client import (
    LLMClient,
    build_user_prompt,
    load_prompt_from_file,
)
from event_digest.domain.exceptions import LLMAPIError
from event_digest.domain.models import DocumentPayload


class StubCompletions:
    def __init__(self, outcome: Any) -> None:
        self.outcome = outcome
        self.requests: list[dict[str, Any]] = []

    def create(self, **kwargs: Any) -> Any:
        self.requests.append(kwargs)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


class StubOpenAIClient:
    """Minimal stub for OpenAI client used in tests."""

    def __init__(self, outcome: Any) -> None:
        self.completions = StubCompletions(outcome)
        self.chat = SimpleNamespace(completions=self.completions)


def _response(content: str | None) -> SimpleNamespace:
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        usage=SimpleNamespace(prompt_tokens=1200, completion_tokens=300),
    )


def _client(outcome: Any, **kwargs: Any) -> tuple[LLMClient, StubCompletions]:
    stub = StubOpenAIClient(outcome)
    client = LLMClient(api_key="sk-test", client=stub, **kwargs)
    return client, stub.completions


def test_build_user_prompt_variants() -> None:
    assert build_user_prompt() == "List every show and activity in the attached guide."

    prompt = build_user_prompt(
        extra_instructions="CONTINUATION\n  cursor: p2",
        selected_units=["Sesc Pompeia", "  "],
    )
    assert "ONLY EXTRACT EVENTS FROM THESE UNITS:\n- Sesc Pompeia" in prompt
    assert prompt.endswith("EXTRA INSTRUCTIONS:\nCONTINUATION\n  cursor: p2")
    assert "-   " not in prompt


def test_extract_events_attaches_pdf_and_schema(
    document_payload: DocumentPayload,
) -> None:
    client, completions = _client(_response('{"has_more": false, "events": []}'))

    raw = client.extract_events(document_payload, extra_instructions="resume")

    assert raw == '{"has_more": false, "events": []}'
    request = completions.requests[0]
    assert request["model"] == "gpt-4o-mini"
    assert "temperature" not in request
    assert request["response_format"]["type"] == "json_schema"
    assert request["response_format"]["json_schema"]["name"] == "event_page"

    system, user = request["messages"]
    assert system["role"] == "system"
    assert "has_more" in system["content"]
    file_part, text_part = user["content"]
    assert file_part["type"] == "file"
    assert file_part["file"]["filename"] == "emcartaz-marco.pdf"
    assert file_part["file"]["file_data"] == (
        f"data:application/pdf;base64,{document_payload.data_base64}"
    )
    assert "EXTRA INSTRUCTIONS:\nresume" in text_part["text"]


def test_temperature_forwarded_when_set(document_payload: DocumentPayload) -> None:
    client, completions = _client(_response("{}"), temperature=0.2)

    client.extract_events(document_payload)

    assert completions.requests[0]["temperature"] == 0.2


def test_empty_answer_raises(document_payload: DocumentPayload) -> None:
    client, _ = _client(_response(None))

    with pytest.raises(LLMAPIError, match="Empty response"):
        client.extract_events(document_payload)


def test_api_error_is_wrapped(document_payload: DocumentPayload) -> None:
    error = openai.APIConnectionError(
        request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    )
    client, _ = _client(error)

    with pytest.raises(LLMAPIError):
        client.extract_events(document_payload)


def test_extract_units_sorted_and_unique(document_payload: DocumentPayload) -> None:
    client, completions = _client(
        _response('{"units": ["Sesc Pompeia", " Sesc  Belenzinho", "Sesc Pompeia", 3]}')
    )

    units = client.extract_units(document_payload)

    assert units == ["Sesc Belenzinho", "Sesc Pompeia"]
    assert completions.requests[0]["response_format"]["json_schema"]["name"] == "unit_list"


def test_extract_units_failure_returns_empty(document_payload: DocumentPayload) -> None:
    client, _ = _client(_response("no idea"))
    assert client.extract_units(document_payload) == []

    failing, _ = _client(
        openai.APIConnectionError(request=httpx.Request("POST", "https://api.openai.com"))
    )
    assert failing.extract_units(document_payload) == []


def test_calculate_cost_uses_model_table() -> None:
    client, _ = _client(_response("{}"), model="gpt-4o")

    assert client._calculate_cost(1_000_000, 1_000_000) == pytest.approx(12.5)


def test_load_prompt_from_yaml(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(llm_module, "_PROMPT_CACHE", {})
    prompt_path = tmp_path / "prompt.yaml"
    prompt_path.write_text(
        'version: "v9"\nsystem: "Extract events"\nunits_system: "List units"\n',
        encoding="utf-8",
    )

    data = load_prompt_from_file(str(prompt_path))

    assert data.version == "v9"
    assert data.content == "Extract events"
    assert data.units_content == "List units"
    assert len(data.checksum) == 64


def test_load_prompt_plain_text(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(llm_module, "_PROMPT_CACHE", {})
    prompt_path = tmp_path / "prompt.txt"
    prompt_path.write_text("Just the system prompt", encoding="utf-8")

    data = load_prompt_from_file(str(prompt_path))

    assert data.version is None
    assert data.content == "Just the system prompt"
    assert data.units_content is None


def test_load_prompt_invalid_yaml(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(llm_module, "_PROMPT_CACHE", {})
    prompt_path = tmp_path / "prompt.yaml"
    prompt_path.write_text('version: "v1"\n', encoding="utf-8")

    with pytest.raises(ValueError, match="system"):
        load_prompt_from_file(str(prompt_path))


def test_load_prompt_missing_file() -> None:
    with pytest.raises(FileNotFoundError):
        load_prompt_from_file("config/prompts/does-not-exist.yaml")


def test_units_prompt_falls_back_to_default(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setattr(llm_module, "_PROMPT_CACHE", {})
    prompt_path = tmp_path / "prompt.yaml"
    prompt_path.write_text('version: "v1"\nsystem: "Extract"\n', encoding="utf-8")

    client, _ = _client(_response("{}"), prompt_file=str(prompt_path))

    assert client.units_prompt == llm_module.DEFAULT_UNITS_PROMPT
    assert client.prompt_version == "v1"
