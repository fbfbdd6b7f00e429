"""Embedding client: dedupe, truncate, memoize, and batch texts for the provider.

embed_texts() is the only way the rest of docket turns text into vectors.
It returns a mapping keyed by the caller's original strings, so duplicates
and the backfill job's per-record lookup both resolve through one dict.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from docket.db.repository import Repository
from docket.db.vectors import model_to_slug, vec_table_name
from docket.rag.llm_client import embed_batch

logger = logging.getLogger(__name__)

# (model, texts) -> one vector or None per text, aligned with the input
EmbedFn = Callable[[str, list[str]], list["list[float] | None"]]


@dataclass
class EmbeddingClientConfig:
    """Configuration for the embedding client.

    Attributes:
        model: LiteLLM embedding model string (provider/model format).
        dimensions: Vector length produced by *model*.
        max_batch_size: Maximum inputs per provider call.
        max_batch_chars: Character budget per provider call; a single text
            over the budget is still sent, alone.
        max_input_chars: Provider input limit; longer texts are truncated.
    """

    model: str = "openai/text-embedding-3-small"
    dimensions: int = 1536
    max_batch_size: int = 2048
    max_batch_chars: int = 20_000
    max_input_chars: int = 20_000


def truncate_text(text: str, max_chars: int) -> str:
    """Cut *text* to at most *max_chars* characters. Same input, same output."""
    return text[:max_chars]


def text_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class EmbeddingClient:
    """Turn strings into vectors with the fewest provider calls possible.

    Args:
        cache: Repository used as the memoization layer, or None to always
            call the provider.
        config: Model and batching limits.
        embed_fn: Provider call; defaults to the LiteLLM wrapper.
    """

    def __init__(
        self,
        cache: Repository | None,
        config: EmbeddingClientConfig | None = None,
        embed_fn: EmbedFn | None = None,
    ) -> None:
        self._cache = cache
        self._config = config or EmbeddingClientConfig()
        self._embed_fn = embed_fn or embed_batch

    @property
    def model(self) -> str:
        return self._config.model

    @property
    def dimensions(self) -> int:
        return self._config.dimensions

    @property
    def vec_table(self) -> str:
        """Name of the vec table holding this client's model vectors."""
        return vec_table_name(model_to_slug(self._config.model))

    def embed_texts(
        self, texts: Sequence[str], force_refresh: bool = False
    ) -> dict[str, list[float]]:
        """Return {text: vector} for every text the provider embedded.

        Duplicates are sent once. Texts are truncated to ``max_input_chars``
        before hashing and before the call. A provider failure raises and
        nothing from that call is cached; texts the provider silently left
        out are logged and missing from the result.

        Args:
            texts: Strings to embed, duplicates allowed.
            force_refresh: Skip the cache lookup and always call the provider.
        """
        truncated_by_text = {
            t: truncate_text(t, self._config.max_input_chars) for t in dict.fromkeys(texts)
        }
        # Distinct provider inputs in first-seen order.
        unique_inputs = list(dict.fromkeys(truncated_by_text.values()))
        logger.info("Embedding %d texts (%d unique)", len(texts), len(unique_inputs))

        vector_by_input: dict[str, list[float]] = {}
        if self._cache is not None and not force_refresh:
            hashes = {text_hash(i): i for i in unique_inputs}
            cached = self._cache.get_cached_embeddings(self._config.model, list(hashes))
            vector_by_input = {hashes[h]: v for h, v in cached.items()}
            logger.info("Found %d cached embeddings", len(vector_by_input))

        missing = [i for i in unique_inputs if i not in vector_by_input]
        for batch in self._batches(missing):
            fresh = self._call_provider(batch)
            if self._cache is not None and fresh:
                self._cache.put_cached_embeddings(
                    self._config.model, {text_hash(i): v for i, v in fresh.items()}
                )
            vector_by_input.update(fresh)

        return {
            text: vector_by_input[inp]
            for text, inp in truncated_by_text.items()
            if inp in vector_by_input
        }

    # ------------------------------------------------------------------
    # Provider calls
    # ------------------------------------------------------------------

    def _batches(self, inputs: list[str]) -> list[list[str]]:
        """Split *inputs* into batches within the size and character limits."""
        batches: list[list[str]] = []
        current: list[str] = []
        chars = 0
        for text in inputs:
            over_size = len(current) >= self._config.max_batch_size
            over_chars = current and chars + len(text) > self._config.max_batch_chars
            if over_size or over_chars:
                batches.append(current)
                current, chars = [], 0
            current.append(text)
            chars += len(text)
        if current:
            batches.append(current)
        return batches

    def _call_provider(self, batch: list[str]) -> dict[str, list[float]]:
        logger.info(
            "Submitting batch of %d texts (%d chars) to %s",
            len(batch),
            sum(len(t) for t in batch),
            self._config.model,
        )
        vectors = self._embed_fn(self._config.model, batch)
        result: dict[str, list[float]] = {}
        for text, vector in zip(batch, vectors):
            if vector is not None:
                result[text] = vector
        if len(result) < len(batch):
            logger.warning(
                "Provider returned %d of %d embeddings; the rest are skipped",
                len(result),
                len(batch),
            )
        return result
