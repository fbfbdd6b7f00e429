"""Backfill jobs: fill derived fields on records ingested without them.

EmbeddingBackfill walks records that have no vector in the client model's
vec table, in ascending id order, and embeds them one batch per provider
round-trip. A keyset cursor (``id > last seen``) means a record the
provider skipped is not selected again in the same run, so the loop always
terminates; the record still has no vector and is picked up next run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from docket.db.repository import Repository
from docket.db.vectors import ensure_vec_table, model_to_slug
from docket.rag.embedding_client import EmbeddingClient, truncate_text

logger = logging.getLogger(__name__)


@dataclass
class BackfillConfig:
    """Configuration for the embedding backfill.

    Attributes:
        batch_size: Records selected (and embedded together) per iteration.
        max_chars: Each text is cut to this many characters before embedding.
        kind: Only backfill text records of this kind; None for all kinds.
    """

    batch_size: int = 50
    max_chars: int = 2000
    kind: str | None = None


class EmbeddingBackfill:
    """Embed every text record that lacks a vector for the client's model.

    Args:
        repo: Open Repository.
        client: Embedding client; its model decides the target vec table.
        config: Batch size, truncation limit and optional kind filter.
    """

    def __init__(
        self,
        repo: Repository,
        client: EmbeddingClient,
        config: BackfillConfig | None = None,
    ) -> None:
        self._repo = repo
        self._client = client
        self._config = config or BackfillConfig()
        if self._config.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self._config.batch_size}")

    def backfill(self) -> int:
        """Run until no unvisited unembedded record remains. Returns vectors written.

        A provider failure propagates; batches written before it stay committed.
        """
        table = ensure_vec_table(
            self._repo.conn,
            model_to_slug(self._client.model),
            self._client.dimensions,
            model=self._client.model,
        )
        embedded = 0
        skipped = 0
        cursor = 0
        while True:
            batch = self._repo.list_unembedded(
                table, limit=self._config.batch_size, after_id=cursor, kind=self._config.kind
            )
            if not batch:
                break
            cursor = batch[-1].id

            texts = {r.id: truncate_text(r.text, self._config.max_chars) for r in batch}
            vectors = self._client.embed_texts(list(texts.values()))

            for record in batch:
                vector = vectors.get(texts[record.id])
                if vector is None:
                    logger.warning("No embedding returned for text record %d; skipping", record.id)
                    skipped += 1
                    continue
                if self._repo.set_embedding(table, record.id, vector):
                    embedded += 1
            logger.info("Embedded %d records so far (last id %d)", embedded, cursor)

        logger.info("Backfill done: %d embedded, %d skipped", embedded, skipped)
        return embedded


def backfill_source_urls(repo: Repository, batch_size: int = 100) -> int:
    """Copy each text record's document URL from its raw record into ``source_url``.

    The URL field is chosen by the text record's kind. Records whose raw
    payload has no URL for that kind are left alone.

    Returns:
        Number of records updated.
    """
    updated = 0
    cursor = 0
    while True:
        batch = repo.list_missing_source_url(limit=batch_size, after_id=cursor)
        if not batch:
            break
        cursor = batch[-1].id
        for record in batch:
            raw = repo.get_raw_record_by_id(record.raw_record_id)
            if raw is None:
                continue
            url = raw.document_url(record.kind)
            if not url:
                continue
            repo.set_source_url(record.id, url)
            updated += 1

    logger.info("Filled source_url on %d text records", updated)
    return updated
