"""Vector retriever: exact cosine-distance nearest neighbours over text records.

The query is embedded with the same client (and so the same model) that
embedded the store, and only that model's vec table is scanned.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass

from docket.db.models import TextRecord
from docket.db.repository import Repository
from docket.db.vectors import check_vec_table, vec_table_exists
from docket.rag.embedding_client import EmbeddingClient

logger = logging.getLogger(__name__)

SearchResult = tuple[TextRecord, float]


@dataclass
class RetrieverConfig:
    """Defaults for VectorRetriever.

    Attributes:
        top_k: Results returned when the caller gives no *k*.
        kind: Record kind searched when the caller gives none (None = all kinds).
    """

    top_k: int = 10
    kind: str | None = None


class VectorRetriever:
    """Rank stored text records by cosine distance to a query string."""

    def __init__(
        self,
        repo: Repository,
        client: EmbeddingClient,
        config: RetrieverConfig | None = None,
    ) -> None:
        self._repo = repo
        self._client = client
        self._config = config or RetrieverConfig()

    def search(
        self,
        query: str,
        scope: str | None = None,
        k: int | None = None,
        kind: str | None = None,
    ) -> list[SearchResult]:
        """Return up to *k* (record, distance) pairs, closest first.

        Args:
            query: Free-text query; embedded as a single-element batch.
            scope: Only consider records with this scope tag (e.g. a jurisdiction).
            k: Maximum results (defaults to config.top_k).
            kind: Only consider records of this kind (defaults to config.kind).

        Raises:
            ValueError: If *query* is blank or *k* < 1.
            RuntimeError: If the model has no vec table yet.
            VecTableMismatch: If the table belongs to another model or has
                other dimensions.
        """
        if not query.strip():
            raise ValueError("query must be a non-empty string")
        vectors = self._client.embed_texts([query])
        return self._search_vector(query, vectors.get(query), scope, k, kind)

    def search_many(
        self,
        descriptors: Sequence[str],
        scope: str | None = None,
        k: int | None = None,
        kind: str | None = None,
    ) -> dict[str, list[SearchResult]]:
        """Run one independent search per descriptor.

        All descriptors are embedded in one client call. Results are not
        deduplicated across descriptors.
        """
        if any(not d.strip() for d in descriptors):
            raise ValueError("descriptors must be non-empty strings")
        vectors = self._client.embed_texts(list(descriptors))
        return {
            d: self._search_vector(d, vectors.get(d), scope, k, kind) for d in descriptors
        }

    def _search_vector(
        self,
        query: str,
        vector: list[float] | None,
        scope: str | None,
        k: int | None,
        kind: str | None,
    ) -> list[SearchResult]:
        limit = k if k is not None else self._config.top_k
        if limit < 1:
            raise ValueError(f"k must be >= 1, got {limit}")
        if vector is None:
            logger.warning("No embedding returned for query %r; no results", query[:80])
            return []

        table = self._client.vec_table
        if not vec_table_exists(self._repo.conn, table):
            raise RuntimeError(
                f"No embeddings found for model '{self._client.model}'. "
                "Run 'docket embed' first to populate the vector index."
            )
        check_vec_table(self._repo.conn, table, self._client.model, self._client.dimensions)

        return self._repo.search_vec(
            table,
            vector,
            limit=limit,
            kind=kind if kind is not None else self._config.kind,
            scope=scope,
        )
