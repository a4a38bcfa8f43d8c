"""LLM tagging of note batches using the Claude API."""

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any

import anthropic

from ..errors import ParseError, TagGenerationError
from ..models import NotePreview
from ..prompts import TAGGING_BATCH_PROMPT, TAGGING_SYSTEM_PROMPT

logger = logging.getLogger(__name__)

MAX_TAGS_PER_NOTE = 3


class TagGenerationProvider(ABC):
    """Assigns short topic tags to a batch of note previews."""

    @abstractmethod
    async def classify_batch(self, previews: list[NotePreview], batch_index: int = 0) -> list[list[str]]:
        """Return one tag list per preview, in order. An empty list means the model skipped it.

        Raises TagGenerationError when the call fails and ParseError when the
        answer cannot be read.
        """


def _extract_json(text: str) -> dict:
    """Extract a JSON object from a model answer, handling markdown code blocks."""
    text = text.strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    # Try extracting from ```json ... ``` or ``` ... ```
    match = re.search(r"```(?:json)?\s*\n?(.*?)\n?\s*```", text, re.DOTALL)
    if match:
        try:
            return json.loads(match.group(1).strip())
        except json.JSONDecodeError:
            pass

    # Try finding first { ... } block
    match = re.search(r"\{.*\}", text, re.DOTALL)
    if match:
        try:
            return json.loads(match.group(0))
        except json.JSONDecodeError:
            pass

    raise ParseError(f"model answer is not JSON: {text[:100]!r}")


def parse_tag_assignments(text: str, count: int) -> list[list[str]]:
    """Parse {"classifications": [{"noteIndex": n, "tags": [...]}]} into count tag lists."""
    parsed = _extract_json(text)
    if not isinstance(parsed, dict) or not isinstance(parsed.get("classifications"), list):
        raise ParseError("model answer has no classifications list")

    tags: list[list[str]] = [[] for _ in range(count)]
    for item in parsed["classifications"]:
        if not isinstance(item, dict):
            continue
        index = item.get("noteIndex")
        raw_tags = item.get("tags")
        if isinstance(index, str) and index.strip().isdigit():
            index = int(index)
        if not isinstance(index, int) or not 1 <= index <= count or not isinstance(raw_tags, list):
            continue
        cleaned = [str(t).strip() for t in raw_tags if str(t).strip()]
        tags[index - 1] = cleaned[:MAX_TAGS_PER_NOTE]
    return tags


def build_batch_prompt(previews: list[NotePreview], batch_index: int) -> str:
    notes = "\n\n".join(f"[{p.index}] {p.text}" for p in previews)
    return TAGGING_BATCH_PROMPT.format(batch_number=batch_index + 1, notes=notes)


class AnthropicTagProvider(TagGenerationProvider):
    """Tags notes with Claude."""

    def __init__(self, config: dict[str, Any]):
        api_key = config.get("claude_api_key")
        if not api_key:
            raise ValueError("Claude API key required for tagging. Set ANTHROPIC_API_KEY or claude_api_key in config.")

        batch_cfg = config.get("batch", {})
        self.client = anthropic.AsyncAnthropic(api_key=api_key)
        self.model = config.get("claude_model", "claude-sonnet-4-20250514")
        self.max_tokens = batch_cfg.get("max_tokens", 2000)
        self.temperature = batch_cfg.get("temperature", 0.3)

    async def classify_batch(self, previews: list[NotePreview], batch_index: int = 0) -> list[list[str]]:
        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                system=TAGGING_SYSTEM_PROMPT,
                messages=[{"role": "user", "content": build_batch_prompt(previews, batch_index)}],
            )
        except anthropic.APIError as e:
            raise TagGenerationError(f"tagging request failed: {e}") from e

        text = "".join(block.text for block in response.content if getattr(block, "type", "") == "text")
        return parse_tag_assignments(text, len(previews))
