"""Document chunking job: split long text records into overlapping chunk records.

Each chunk's first line becomes its heading and the rest its body. Chunks
inherit the parent's scope and source_url and start without a vector, so
the embedding backfill picks them up on its next run.
"""

from __future__ import annotations

import logging

from docket.db.models import TextRecord
from docket.db.repository import Repository

logger = logging.getLogger(__name__)

CHUNK_KIND = "chunk"


def split_fixed_window(text: str, chunk_size: int = 800, overlap: int = 200) -> list[str]:
    """Split *text* into windows of *chunk_size* characters overlapping by *overlap*.

    Segments are stripped; empty segments are omitted.
    """
    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")
    if not 0 <= overlap < chunk_size:
        raise ValueError("overlap must be in [0, chunk_size)")
    if not text.strip():
        return []

    step = chunk_size - overlap
    segments: list[str] = []
    pos = 0
    length = len(text)

    while pos < length:
        end = min(pos + chunk_size, length)
        segment = text[pos:end].strip()
        if segment:
            segments.append(segment)
        if end >= length:
            break
        pos += step

    return segments


def split_heading(segment: str) -> tuple[str, str]:
    """Return (first line, remaining text), both stripped."""
    heading, _, body = segment.strip().partition("\n")
    return heading.strip(), body.strip()


def chunk_documents(
    repo: Repository,
    source_kind: str = "agenda",
    chunk_size: int = 800,
    overlap: int = 200,
    batch_size: int = 10,
) -> int:
    """Chunk every *source_kind* record that has no chunks yet.

    A document's chunks are written in one transaction. Documents whose
    text yields no segment are skipped for this run.

    Returns:
        Number of chunk records created.
    """
    created = 0
    cursor = 0
    while True:
        parents = repo.list_unchunked(source_kind, limit=batch_size, after_id=cursor)
        if not parents:
            break
        for parent in parents:
            cursor = parent.id
            segments = split_fixed_window(parent.text, chunk_size, overlap)
            if not segments:
                logger.info("Nothing to chunk in %s record %d", source_kind, parent.id)
                continue
            chunks = []
            for index, segment in enumerate(segments):
                heading, body = split_heading(segment)
                chunks.append(
                    TextRecord(
                        kind=CHUNK_KIND,
                        text=segment,
                        raw_record_id=None,
                        document_ref=parent.document_ref,
                        scope=parent.scope,
                        heading=heading,
                        body=body,
                        source_url=parent.source_url,
                        parent_id=parent.id,
                        chunk_index=index,
                    )
                )
            repo.add_text_records(chunks)
            created += len(chunks)
            logger.info("Split %s record %d into %d chunks", source_kind, parent.id, len(chunks))

    return created
