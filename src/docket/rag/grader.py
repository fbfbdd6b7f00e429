"""LLM relevance grading of retrieved documents.

The model answers with one of three grades. ``relevant`` and ``partial``
keep a document, ``irrelevant`` drops it, and anything else is treated as
``irrelevant`` and logged: a dropped good document is preferred over a kept
unparseable one.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from docket.db.models import TextRecord
from docket.rag.llm_client import complete

logger = logging.getLogger(__name__)

T = TypeVar("T")

# (model, messages) -> completion text
CompleteFn = Callable[..., str]

GRADES = ("relevant", "partial", "irrelevant")
_KEEP = frozenset({"relevant", "partial"})

_GRADER_SYSTEM = (
    "You are grading whether a retrieved document helps answer a question. "
    "Answer with exactly one word:\n"
    "  relevant   - the document contains information that answers the question\n"
    "  partial    - the document contains some information needed to answer it\n"
    "  irrelevant - the document does not help answer the question\n"
    "Output only the single word, nothing else."
)


@dataclass
class GraderConfig:
    model: str = "openai/gpt-4o-mini"
    max_document_chars: int = 8_000


def parse_grade(raw: str) -> str | None:
    """Normalise a model answer to one of GRADES, or None if it is not one."""
    answer = raw.strip().strip(".!\"'`").strip().lower()
    return answer if answer in GRADES else None


class RelevanceGrader:
    """Keep/drop decisions for (question, document) pairs via one chat completion each."""

    def __init__(
        self,
        config: GraderConfig | None = None,
        complete_fn: CompleteFn | None = None,
    ) -> None:
        self._config = config or GraderConfig()
        self._complete = complete_fn or complete

    def grade(self, question: str, document: str) -> str | None:
        """Return the parsed grade for *document*, or None if unparseable.

        Raises:
            ValueError: If *question* or *document* is blank (no provider call is made).
        """
        if not question.strip():
            raise ValueError("question must be a non-empty string")
        if not document.strip():
            raise ValueError("document must be a non-empty string")

        raw = self._complete(
            model=self._config.model,
            messages=[
                {"role": "system", "content": _GRADER_SYSTEM},
                {
                    "role": "user",
                    "content": (
                        f"Question: {question}\n\n"
                        f"Document: {document[: self._config.max_document_chars]}\n\n"
                        "Grade:"
                    ),
                },
            ],
            temperature=0,
        )
        grade = parse_grade(raw)
        if grade is None:
            logger.warning(
                "Unparseable relevance grade %r; treating document as irrelevant", raw[:80]
            )
        return grade

    def is_relevant(self, question: str, document: str) -> bool:
        """True if the model grades *document* relevant or partially relevant."""
        return self.grade(question, document) in _KEEP

    def filter_relevant(
        self,
        question: str,
        results: list[tuple[TextRecord, T]],
    ) -> list[tuple[TextRecord, T]]:
        """Keep the (record, score) pairs whose record text is graded relevant.

        Order is preserved. Records with blank text are dropped without a call.
        """
        kept = [
            (record, score)
            for record, score in results
            if record.text.strip() and self.is_relevant(question, record.text)
        ]
        if results and not kept:
            logger.warning(
                "All %d retrieved documents were graded irrelevant for %r",
                len(results),
                question[:80],
            )
        return kept
