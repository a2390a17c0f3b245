"""LLM client adapter for guide extraction.

Implements ExtractionClientProtocol with OpenAI integration. The guide PDF is
attached to every request as a base64 file part; the model answers with one
page of events in the JSON shape described by ``EXTRACTION_RESPONSE_SCHEMA``.
"""

import hashlib
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

import yaml
from openai import APIError, OpenAI
from openai import RateLimitError as OpenAIRateLimitError

from event_digest.config.logging_config import get_logger
from event_digest.domain.exceptions import LLMAPIError
from event_digest.domain.models import EVENT_TEXT_FIELDS, DocumentPayload
from event_digest.services.json_extractor import extract_json
from event_digest.services.text_normalizer import normalize_text

# Token cost per 1M tokens (as of 2025-10)
TOKEN_COSTS: Final[dict[str, dict[str, float]]] = {
    "gpt-4o-mini": {"input": 0.150, "output": 0.600},
    "gpt-4o": {"input": 2.50, "output": 10.00},
    "gpt-4.1-mini": {"input": 0.40, "output": 1.60},
}

PREVIEW_LENGTH_RESPONSE: Final[int] = 500
"""Maximum characters to show in response preview for logging."""

DEFAULT_PROMPT_PATH: Final[Path] = Path("config/prompts/events.yaml")

DEFAULT_UNITS_PROMPT: Final[str] = (
    "List the names of every venue (unit) that has events in the attached "
    'guide. Reply strictly with JSON: {"units": ["..."]}.'
)

EXTRACTION_RESPONSE_SCHEMA: Final[dict[str, Any]] = {
    "type": "object",
    "properties": {
        "meta": {
            "type": "object",
            "properties": {
                "city": {"type": "string"},
                "scope": {"type": "string"},
                "source": {"type": "string"},
                "month": {"type": "string"},
            },
        },
        "has_more": {"type": "boolean"},
        "cursor": {"type": "string"},
        "events": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {field: {"type": "string"} for field in EVENT_TEXT_FIELDS},
            },
        },
    },
    "required": ["has_more", "events"],
}

UNITS_RESPONSE_SCHEMA: Final[dict[str, Any]] = {
    "type": "object",
    "properties": {"units": {"type": "array", "items": {"type": "string"}}},
    "required": ["units"],
}

logger = get_logger(__name__)


@dataclass(frozen=True)
class PromptFileData:
    """Loaded prompt payload with metadata."""

    content: str
    version: str | None
    checksum: str
    size_bytes: int
    path: Path
    units_content: str | None = None


@dataclass
class _PromptCacheEntry:
    """Cache entry storing metadata for a prompt file."""

    mtime: float
    data: PromptFileData


_PROMPT_CACHE: dict[Path, _PromptCacheEntry] = {}


def load_prompt_from_file(file_path: str) -> PromptFileData:
    """Load prompt template from a file with caching and metadata.

    YAML prompt files carry ``version`` and ``system`` strings and an optional
    ``units_system`` prompt used for unit discovery. Any other file is read as
    the raw system prompt.

    Args:
        file_path: Path to the prompt file

    Returns:
        Prompt payload metadata

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If YAML prompt file has invalid structure
    """

    raw_path = Path(file_path).expanduser()
    path = raw_path if raw_path.is_absolute() else (Path.cwd() / raw_path).resolve()

    if not path.exists():
        repo_root = Path(__file__).resolve().parents[2]
        alt_path = (repo_root / raw_path).resolve()
        if alt_path.exists():
            path = alt_path
        else:
            raise FileNotFoundError(f"Prompt file not found: {file_path}")

    stat_result = path.stat()
    cache_entry = _PROMPT_CACHE.get(path)
    if cache_entry and cache_entry.mtime == stat_result.st_mtime:
        return cache_entry.data

    units_prompt: str | None = None
    if path.suffix.lower() in {".yaml", ".yml"}:
        parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        if not isinstance(parsed, dict):
            raise ValueError(f"Prompt YAML must be a mapping: {path}")

        version = parsed.get("version")
        if not isinstance(version, str):
            raise ValueError(f"Prompt YAML missing 'version' string: {path}")

        system_prompt = parsed.get("system")
        if not isinstance(system_prompt, str):
            raise ValueError(f"Prompt YAML missing 'system' string: {path}")

        raw_units = parsed.get("units_system")
        units_prompt = raw_units if isinstance(raw_units, str) else None
    else:
        system_prompt = path.read_text(encoding="utf-8")
        version = None

    encoded = system_prompt.encode("utf-8")
    prompt_data = PromptFileData(
        content=system_prompt,
        version=version,
        checksum=hashlib.sha256(encoded).hexdigest(),
        size_bytes=len(encoded),
        path=path,
        units_content=units_prompt,
    )

    _PROMPT_CACHE[path] = _PromptCacheEntry(
        mtime=stat_result.st_mtime, data=prompt_data
    )
    return prompt_data


def build_user_prompt(
    *, extra_instructions: str = "", selected_units: list[str] | None = None
) -> str:
    """Build the per-round user prompt.

    Example:
        >>> print(build_user_prompt(selected_units=["Sesc Pompeia"]))
        List every show and activity in the attached guide.
        <BLANKLINE>
        ONLY EXTRACT EVENTS FROM THESE UNITS:
        - Sesc Pompeia
    """
    parts = ["List every show and activity in the attached guide."]

    units = [unit for unit in (selected_units or []) if unit.strip()]
    if units:
        parts.append(
            "ONLY EXTRACT EVENTS FROM THESE UNITS:\n"
            + "\n".join(f"- {unit}" for unit in units)
        )

    if extra_instructions.strip():
        parts.append(f"EXTRA INSTRUCTIONS:\n{extra_instructions.strip()}")

    return "\n\n".join(parts)


def _file_part(document: DocumentPayload) -> dict[str, Any]:
    filename = Path(document.ref.url.split("?", 1)[0]).name or "guide.pdf"
    return {
        "type": "file",
        "file": {
            "filename": filename,
            "file_data": f"data:{document.mime_type};base64,{document.data_base64}",
        },
    }


class LLMClient:
    """OpenAI LLM client for guide extraction."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        temperature: float | None = None,
        timeout: int = 180,
        prompt_file: str | None = None,
        *,
        client: OpenAI | None = None,
    ) -> None:
        """Initialize LLM client.

        Args:
            api_key: OpenAI API key
            model: Model name
            temperature: Sampling temperature (model default when None)
            timeout: Request timeout in seconds
            prompt_file: Path to prompt file (defaults to config/prompts/events.yaml)
            client: Pre-built OpenAI client (tests inject a fake)
        """
        self.client = client or OpenAI(api_key=api_key, timeout=timeout)
        self.model = model
        self.temperature = temperature

        prompt_data = load_prompt_from_file(prompt_file or str(DEFAULT_PROMPT_PATH))
        self.system_prompt = prompt_data.content
        self.units_prompt = prompt_data.units_content or DEFAULT_UNITS_PROMPT
        self.prompt_version = prompt_data.version

        logger.info(
            "llm_system_prompt_ready",
            prompt_hash=prompt_data.checksum,
            prompt_version=self.prompt_version,
            prompt_path=str(prompt_data.path),
            prompt_size_bytes=prompt_data.size_bytes,
        )

    def extract_events(
        self,
        document: DocumentPayload,
        *,
        extra_instructions: str = "",
        selected_units: list[str] | None = None,
    ) -> str:
        """Ask the model for one page of events.

        Args:
            document: Guide payload
            extra_instructions: Continuation instructions for this round
            selected_units: Optional unit allow-list

        Returns:
            Raw response text

        Raises:
            LLMAPIError: On API communication errors or an empty answer
        """
        prompt = build_user_prompt(
            extra_instructions=extra_instructions, selected_units=selected_units
        )
        return self._complete(
            system_prompt=self.system_prompt,
            prompt=prompt,
            document=document,
            schema_name="event_page",
            schema=EXTRACTION_RESPONSE_SCHEMA,
        )

    def extract_units(self, document: DocumentPayload) -> list[str]:
        """List the unit names present in the guide.

        Returns:
            Distinct unit names in alphabetical order; empty on any failure
        """
        try:
            raw = self._complete(
                system_prompt=self.units_prompt,
                prompt="List the units in the attached guide.",
                document=document,
                schema_name="unit_list",
                schema=UNITS_RESPONSE_SCHEMA,
            )
        except LLMAPIError as e:
            logger.warning("llm_unit_extraction_failed", error=str(e))
            return []

        parsed = extract_json(raw)
        units = parsed.get("units") if isinstance(parsed, dict) else None
        if not isinstance(units, list):
            logger.warning("llm_unit_extraction_unparseable", preview=raw[:200])
            return []

        names = {normalize_text(unit) for unit in units if isinstance(unit, str)}
        return sorted(name for name in names if name)

    def _complete(
        self,
        *,
        system_prompt: str,
        prompt: str,
        document: DocumentPayload,
        schema_name: str,
        schema: dict[str, Any],
    ) -> str:
        start_time = time.time()
        logger.info(
            "llm_request_started",
            model=self.model,
            schema=schema_name,
            prompt_length=len(prompt),
            document_size_bytes=document.size_bytes,
        )

        request: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {
                    "role": "user",
                    "content": [
                        _file_part(document),
                        {"type": "text", "text": prompt},
                    ],
                },
            ],
            "response_format": {
                "type": "json_schema",
                "json_schema": {"name": schema_name, "schema": schema},
            },
        }
        if self.temperature is not None:
            request["temperature"] = self.temperature

        try:
            response = self.client.chat.completions.create(**request)
        except OpenAIRateLimitError as e:
            raise LLMAPIError(f"Rate limit exceeded: {e}") from e
        except APIError as e:
            raise LLMAPIError(f"OpenAI API error: {e}") from e

        latency_ms = int((time.time() - start_time) * 1000)
        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise LLMAPIError("Empty response from LLM")

        tokens_in = response.usage.prompt_tokens if response.usage else 0
        tokens_out = response.usage.completion_tokens if response.usage else 0
        logger.info(
            "llm_request_completed",
            schema=schema_name,
            latency_ms=latency_ms,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            cost_usd=round(self._calculate_cost(tokens_in, tokens_out), 6),
        )
        logger.debug("llm_response_preview", preview=content[:PREVIEW_LENGTH_RESPONSE])
        return content

    def _calculate_cost(self, tokens_in: int, tokens_out: int) -> float:
        """Calculate cost for API call.

        Args:
            tokens_in: Input tokens
            tokens_out: Output tokens

        Returns:
            Cost in USD
        """
        costs = TOKEN_COSTS.get(self.model, TOKEN_COSTS["gpt-4o-mini"])
        cost_in = (tokens_in / 1_000_000) * costs["input"]
        cost_out = (tokens_out / 1_000_000) * costs["output"]
        return cost_in + cost_out

