"""Question answering over a fixed reference text.

The tool does not answer by itself: it pulls the passages of the text that
best match the question and hands them to the model as context.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from chat_orchestrator.ai.tools.base import ToolExecutionError
from chat_orchestrator.log import get_logger

logger = get_logger(__name__)

MAX_CONTEXT_LENGTH = 25_000
PASSAGE_WINDOW = 1_500
MIN_KEYWORD_LENGTH = 3
PASSAGE_SEPARATOR = "\n\n---\n\n"

STOP_WORDS = frozenset({
    "the", "a", "an", "is", "are", "was", "were", "what", "which", "who", "whom",
    "when", "where", "why", "how", "does", "do", "did", "has", "have", "had",
    "in", "on", "at", "to", "for", "of", "with", "by", "from", "about", "into",
    "during", "his", "her", "their", "its", "that", "this", "these", "those",
    "and", "or", "but", "if", "then", "else", "just", "before", "after",
    "upriver", "start", "begins", "narrating", "story", "novella",
})

# (triggers, keywords): a question mentioning any trigger also searches the keywords
KeywordRules = Sequence[tuple[Sequence[str], Sequence[str]]]

DEFAULT_KEYWORD_RULES: KeywordRules = (
    (("river",), ("thames", "congo", "river", "water")),
    (("position", "hired"), ("captain", "steamboat", "command", "skipper", "appointed")),
    (("kurtz",), ("kurtz", "ivory", "station", "agent")),
    (("death", "words"), ("horror", "died", "death", "last", "whispered")),
    (("attack",), ("arrows", "natives", "spears", "attack", "savages")),
    (("repair", "steamboat"), ("rivets", "repair", "boiler", "steam", "wreck")),
    (("poles", "station"), ("heads", "skulls", "poles", "ornamental")),
)

_PUNCTUATION = re.compile(r"[?.,!]")


class ReferenceQuestionInput(BaseModel):
    question: str = Field(description="The question to answer about the reference text")


@dataclass
class _Passage:
    start: int
    end: int
    score: int = 1


def extract_keywords(question: str, rules: KeywordRules = DEFAULT_KEYWORD_RULES) -> list[str]:
    """Search terms for *question*: content words plus rule-triggered extras."""
    lowered = question.lower()
    words = [
        w
        for w in _PUNCTUATION.sub("", lowered).split()
        if len(w) >= MIN_KEYWORD_LENGTH and w not in STOP_WORDS
    ]
    for triggers, extra in rules:
        if any(t.lower() in lowered for t in triggers):
            words.extend(k.lower() for k in extra)
    return list(dict.fromkeys(words))


def extract_relevant_passages(
    full_text: str,
    question: str,
    rules: KeywordRules = DEFAULT_KEYWORD_RULES,
    max_length: int = MAX_CONTEXT_LENGTH,
    window: int = PASSAGE_WINDOW,
) -> str:
    """Return the passages of *full_text* most relevant to *question*.

    Each keyword hit opens a window of *window* characters around it;
    overlapping windows merge and accumulate score. Passages are taken by
    score, then position, until *max_length* would be exceeded. With no
    hits the start and end of the text are returned instead.
    """
    if not full_text:
        return ""

    text_lower = full_text.lower()
    half = window // 2
    passages: list[_Passage] = []

    for keyword in extract_keywords(question, rules):
        idx = text_lower.find(keyword)
        while idx != -1:
            start = max(0, idx - half)
            end = min(len(full_text), idx + len(keyword) + half)
            for existing in passages:
                if start <= existing.end and end >= existing.start:
                    existing.start = min(existing.start, start)
                    existing.end = max(existing.end, end)
                    existing.score += 1
                    break
            else:
                passages.append(_Passage(start, end))
            idx = text_lower.find(keyword, idx + len(keyword))

    passages.sort(key=lambda p: (-p.score, p.start))

    selected: list[str] = []
    used: list[_Passage] = []
    length = 0
    for passage in passages:
        if any(passage.start < u.end and passage.end > u.start for u in used):
            continue
        passage_text = full_text[passage.start:passage.end].strip()
        if length + len(passage_text) + 10 > max_length:
            break
        selected.append(passage_text)
        used.append(passage)
        length += len(passage_text) + len(PASSAGE_SEPARATOR)

    if not selected:
        half_context = max_length // 2
        return (full_text[:half_context] + "\n\n[...]\n\n" + full_text[-half_context:]).strip()

    return PASSAGE_SEPARATOR.join(selected)


class ReferenceLibrary:
    """Loads the reference text once and answers passage lookups against it."""

    def __init__(
        self,
        path: str | Path,
        title: str = "Heart of Darkness",
        rules: KeywordRules = DEFAULT_KEYWORD_RULES,
    ):
        self._path = Path(path)
        self._title = title
        self._rules = rules
        self._text: str | None = None
        self._load_lock = asyncio.Lock()

    @property
    def title(self) -> str:
        return self._title

    @property
    def description(self) -> str:
        return (
            f'Answer questions about "{self._title}" using the full text of the book. '
            "Returns the passages most relevant to the question."
        )

    async def text(self) -> str:
        if self._text is not None:
            return self._text
        async with self._load_lock:
            if self._text is None:
                self._text = await asyncio.to_thread(self._read)
                logger.info("reference_text_loaded", path=str(self._path), length=len(self._text))
        return self._text

    def _read(self) -> str:
        try:
            content = self._path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise ToolExecutionError(
                f"Error loading {self._title} text: file not found: {self._path.name}"
            ) from e
        except (OSError, UnicodeDecodeError) as e:
            raise ToolExecutionError(f"Error loading {self._title} text: {e}") from e
        if not content:
            raise ToolExecutionError(f"Error loading {self._title} text: file is empty")
        return content

    async def answer(self, question: str) -> dict[str, Any]:
        full_text = await self.text()
        context = extract_relevant_passages(full_text, question, self._rules)
        return {
            "question": question,
            "textLength": len(full_text),
            "contextLength": len(context),
            "context": context,
            "instructions": (
                f"Use the provided text passages from {self._title} to answer the question. "
                "These are the most relevant sections based on your question."
            ),
        }
