"""Tests for the embedding and source-URL backfill jobs."""

from __future__ import annotations

import json
import logging

import pytest

from docket.db.models import RawRecord, TextRecord
from docket.db.repository import Repository
from docket.db.vectors import VecTableMismatch, ensure_vec_table, vec_table_exists, vec_table_model
from docket.ingest.backfill import BackfillConfig, EmbeddingBackfill, backfill_source_urls
from docket.rag.embedding_client import EmbeddingClient, EmbeddingClientConfig

_MODEL = "test/model"
_TABLE = "vec_text_test_model"


class FakeProvider:
    """3-dim vectors; texts in *drop* are silently omitted by the provider."""

    def __init__(self, drop: set[str] | None = None, fail_on_call: int | None = None) -> None:
        self.calls: list[list[str]] = []
        self._drop = drop or set()
        self._fail_on_call = fail_on_call

    def __call__(self, model: str, texts: list[str]) -> list[list[float] | None]:
        self.calls.append(list(texts))
        if self._fail_on_call is not None and len(self.calls) == self._fail_on_call:
            raise RuntimeError("provider unavailable")
        return [None if t in self._drop else [1.0, float(len(t)), 0.0] for t in texts]


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


def _job(repo, provider, **cfg) -> EmbeddingBackfill:
    client = EmbeddingClient(repo, EmbeddingClientConfig(model=_MODEL, dimensions=3), provider)
    return EmbeddingBackfill(repo, client, BackfillConfig(**cfg))


def _add(repo, *texts: str, kind: str = "agenda") -> list[int]:
    return [repo.add_text_record(TextRecord(kind=kind, text=t)) for t in texts]


# ------------------------------------------------------------------
# EmbeddingBackfill
# ------------------------------------------------------------------


def test_backfill_embeds_everything(repo):
    _add(repo, *(f"text {i}" for i in range(7)))
    provider = FakeProvider()

    assert _job(repo, provider, batch_size=3).backfill() == 7
    assert repo.count_unembedded(_TABLE) == 0


def test_backfill_one_provider_call_per_batch(repo):
    _add(repo, *(f"text {i}" for i in range(7)))
    provider = FakeProvider()
    _job(repo, provider, batch_size=3).backfill()
    assert [len(c) for c in provider.calls] == [3, 3, 1]


def test_backfill_creates_vec_table(repo, tmp_db):
    _job(repo, FakeProvider()).backfill()
    assert vec_table_exists(tmp_db, _TABLE)


def test_backfill_claims_vec_table_for_its_model(repo, tmp_db):
    _job(repo, FakeProvider()).backfill()
    assert vec_table_model(tmp_db, _TABLE) == _MODEL


def test_backfill_refuses_table_of_colliding_model(repo, tmp_db):
    # "test_model" and "test/model" share one slug.
    ensure_vec_table(tmp_db, "test_model", 3, model="test_model")
    _add(repo, "text")
    provider = FakeProvider()
    with pytest.raises(VecTableMismatch, match="same table name"):
        _job(repo, provider).backfill()
    assert provider.calls == []


def test_backfill_ignores_blank_text(repo):
    _add(repo, "real", "   ", "")
    assert _job(repo, FakeProvider()).backfill() == 1


def test_backfill_truncates_texts(repo):
    _add(repo, "abcdefghij")
    provider = FakeProvider()
    _job(repo, provider, max_chars=4).backfill()
    assert provider.calls == [["abcd"]]


def test_backfill_skips_omitted_and_terminates(repo, caplog):
    skipped, kept = _add(repo, "dropped", "kept")
    provider = FakeProvider(drop={"dropped"})

    with caplog.at_level(logging.WARNING):
        assert _job(repo, provider, batch_size=1).backfill() == 1

    assert not repo.has_embedding(_TABLE, skipped)
    assert repo.has_embedding(_TABLE, kept)
    assert f"text record {skipped}" in caplog.text
    # Left for the next run
    assert [r.id for r in repo.list_unembedded(_TABLE, limit=10)] == [skipped]


def test_backfill_second_run_picks_up_skipped(repo):
    _add(repo, "flaky", "fine")
    _job(repo, FakeProvider(drop={"flaky"})).backfill()
    assert _job(repo, FakeProvider()).backfill() == 1
    assert repo.count_unembedded(_TABLE) == 0


def test_backfill_does_not_reembed(repo):
    _add(repo, "a", "b")
    _job(repo, FakeProvider()).backfill()
    provider = FakeProvider()
    assert _job(repo, provider).backfill() == 0
    assert provider.calls == []


def test_backfill_provider_failure_keeps_earlier_batches(repo):
    _add(repo, "one", "two", "three")
    with pytest.raises(RuntimeError):
        _job(repo, FakeProvider(fail_on_call=2), batch_size=1).backfill()
    assert repo.count_unembedded(_TABLE) == 2


def test_backfill_duplicate_texts_share_one_input(repo):
    _add(repo, "same", "same", "other")
    provider = FakeProvider()
    assert _job(repo, provider).backfill() == 3
    assert sorted(provider.calls[0]) == ["other", "same"]


def test_backfill_kind_filter(repo):
    _add(repo, "agenda text", kind="agenda")
    _add(repo, "a comment", kind="comment")
    assert _job(repo, FakeProvider(), kind="comment").backfill() == 1
    assert repo.count_unembedded(_TABLE, kind="agenda") == 1


def test_backfill_batch_size_validated(repo):
    with pytest.raises(ValueError, match="batch_size"):
        _job(repo, FakeProvider(), batch_size=0)


# ------------------------------------------------------------------
# backfill_source_urls
# ------------------------------------------------------------------


def _raw(repo, record_id: str, payload: dict) -> int:
    repo.upsert_raw_records(
        [RawRecord(client_id="nyc", source_record_id=record_id, payload=json.dumps(payload))]
    )
    return repo.get_raw_record("nyc", record_id).id


def test_backfill_source_urls_fills_from_raw(repo):
    raw_id = _raw(repo, "1", {"EventId": 1, "EventAgendaFile": "https://x/1.pdf"})
    text_id = repo.add_text_record(TextRecord(kind="agenda", text="t", raw_record_id=raw_id))

    assert backfill_source_urls(repo) == 1
    assert repo.get_text_record(text_id).source_url == "https://x/1.pdf"


def test_backfill_source_urls_uses_minutes_field(repo):
    raw_id = _raw(repo, "1", {"EventAgendaFile": "https://x/a.pdf", "EventMinutesFile": "https://x/m.pdf"})
    text_id = repo.add_text_record(TextRecord(kind="minutes", text="t", raw_record_id=raw_id))
    backfill_source_urls(repo)
    assert repo.get_text_record(text_id).source_url == "https://x/m.pdf"


def test_backfill_source_urls_leaves_missing_alone_and_terminates(repo):
    raw_id = _raw(repo, "1", {"EventId": 1})
    text_id = repo.add_text_record(TextRecord(kind="agenda", text="t", raw_record_id=raw_id))
    assert backfill_source_urls(repo, batch_size=1) == 0
    assert repo.get_text_record(text_id).source_url is None
