"""Plan review comments: split a review document into individual comment records.

A city's plan review letter mixes boilerplate with the comments an
applicant has to address. A chat model lists those comments one per line
(or answers NONE) and each line becomes one ``comment`` text record, tagged
with the jurisdiction as scope and the review document as document_ref.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from docket.db.models import TextRecord
from docket.db.repository import Repository
from docket.rag.llm_client import complete

logger = logging.getLogger(__name__)

COMMENT_KIND = "comment"

# (model, messages, max_tokens) -> completion text
CompleteFn = Callable[..., str]

_COMMENTS_SYSTEM = (
    "You are an expert architect. Given a plan review document from a city, "
    "extract just the comments that must be addressed.\n"
    "Resubmittal requirements are boilerplate and must not be included.\n"
    "List each comment on its own line and nothing else. "
    "If there are no comments, respond with only NONE."
)


@dataclass
class CommentExtractorConfig:
    model: str = "openai/gpt-4o-mini"
    max_document_chars: int = 50_000
    max_tokens: int = 4_000


def parse_comments(raw: str) -> list[str]:
    """One comment per non-blank line; NONE means no comments."""
    if raw.strip().lower() == "none":
        return []
    lines = (line.strip() for line in raw.splitlines())
    return list(dict.fromkeys(line for line in lines if line))


class CommentExtractor:
    """Ask a chat model for the actionable comments in one review document."""

    def __init__(
        self,
        config: CommentExtractorConfig | None = None,
        complete_fn: CompleteFn | None = None,
    ) -> None:
        self._config = config or CommentExtractorConfig()
        self._complete = complete_fn or complete

    def extract(self, document_text: str) -> list[str]:
        """Return the comments in *document_text*; blank text yields none without a call."""
        if not document_text.strip():
            return []
        raw = self._complete(
            model=self._config.model,
            messages=[
                {"role": "system", "content": _COMMENTS_SYSTEM},
                {"role": "user", "content": document_text[: self._config.max_document_chars]},
            ],
            max_tokens=self._config.max_tokens,
            temperature=0,
        )
        return parse_comments(raw)


def add_comments(
    repo: Repository,
    comments: Iterable[str],
    scope: str | None,
    document_ref: str,
    source_url: str | None = None,
) -> int:
    """Store *comments* as comment records, skipping ones already stored for this document.

    Returns:
        Number of records created.
    """
    existing = repo.existing_texts(COMMENT_KIND, document_ref, scope)
    new = [c for c in dict.fromkeys(c.strip() for c in comments) if c and c not in existing]
    repo.add_text_records([
        TextRecord(
            kind=COMMENT_KIND,
            text=comment,
            scope=scope,
            document_ref=document_ref,
            source_url=source_url,
        )
        for comment in new
    ])
    logger.info("Stored %d new comments from %s", len(new), document_ref)
    return len(new)
