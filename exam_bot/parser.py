"""Bulk question import from plain text.

File format (blocks separated by blank lines or by the next numbered line)::

    1. What is 2+2?
    A. 3
    B. 4
    C. 5
    Ans: B
    Explain: Basic addition

Option letters are not interpreted; options keep the order they appear in.
Blocks missing question text, with fewer than two options, or without a usable
``Ans:`` line are dropped silently.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Optional

_QUESTION_RE = re.compile(r"^\d+\.\s")
_QUESTION_PREFIX_RE = re.compile(r"^\d+\.\s*")
_OPTION_RE = re.compile(r"^[A-Z]\.\s")
_OPTION_PREFIX_RE = re.compile(r"^[A-Z]\.\s*")
_ANSWER_RE = re.compile(r"^Ans:\s", re.IGNORECASE)
_ANSWER_PREFIX_RE = re.compile(r"^Ans:\s*", re.IGNORECASE)
_EXPLAIN_RE = re.compile(r"^Explain:\s", re.IGNORECASE)
_EXPLAIN_PREFIX_RE = re.compile(r"^Explain:\s*", re.IGNORECASE)


@dataclass(slots=True)
class ParsedQuestion:
    question_text: str
    options: List[str]
    correct_option: int
    explanation: Optional[str] = None


@dataclass(slots=True)
class _Block:
    question_text: Optional[str] = None
    options: List[str] = field(default_factory=list)
    correct_option: Optional[int] = None
    explanation: Optional[str] = None

    def build(self) -> Optional[ParsedQuestion]:
        if not self.question_text or len(self.options) < 2 or self.correct_option is None:
            return None
        return ParsedQuestion(
            question_text=self.question_text,
            options=list(self.options),
            correct_option=self.correct_option,
            explanation=self.explanation,
        )


def parse_questions(text: str) -> Iterator[ParsedQuestion]:
    """Yield every complete question found in ``text``.

    The returned iterator is single-use; parse again for another pass.
    """
    block = _Block()
    for raw_line in text.splitlines():
        line = raw_line.strip()

        if not line:
            question = block.build()
            if question is not None:
                yield question
            block = _Block()
            continue

        if _QUESTION_RE.match(line):
            question = block.build()
            if question is not None:
                yield question
            block = _Block(question_text=_QUESTION_PREFIX_RE.sub("", line, count=1))
        elif _OPTION_RE.match(line):
            block.options.append(_OPTION_PREFIX_RE.sub("", line, count=1))
        elif _ANSWER_RE.match(line):
            answer = _ANSWER_PREFIX_RE.sub("", line, count=1).strip().upper()
            if answer:
                index = ord(answer[0]) - ord("A")
                if 0 <= index < len(block.options):
                    block.correct_option = index
        elif _EXPLAIN_RE.match(line):
            block.explanation = _EXPLAIN_PREFIX_RE.sub("", line, count=1).strip()

    question = block.build()
    if question is not None:
        yield question


def serialize_questions(questions: Iterable[ParsedQuestion]) -> str:
    """Render questions in the import format; parsing the result gives them back."""
    blocks = []
    for number, question in enumerate(questions, start=1):
        lines = [f"{number}. {question.question_text}"]
        for idx, option in enumerate(question.options):
            lines.append(f"{chr(ord('A') + idx)}. {option}")
        lines.append(f"Ans: {chr(ord('A') + question.correct_option)}")
        if question.explanation:
            lines.append(f"Explain: {question.explanation}")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks) + "\n"


TEMPLATE = serialize_questions(
    [
        ParsedQuestion("What is 2+2?", ["3", "4", "5", "6"], 1, "Basic addition"),
        ParsedQuestion("Capital of France?", ["London", "Paris", "Berlin"], 1, "Paris is the capital"),
    ]
)
