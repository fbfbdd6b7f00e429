"""Tests for docket search CLI command."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
import yaml
from typer.testing import CliRunner

from docket.cli.main import app
from docket.db.connection import Database
from docket.db.models import TextRecord
from docket.db.repository import Repository
from docket.db.vectors import ensure_vec_table

runner = CliRunner()

_LOCAL_MODEL = "ollama/nomic-embed-text"


def _fake_embed(model, texts, num_retries=0):
    return [[1.0, 0.0, 0.0] for _ in texts]


@pytest.fixture
def local_model(tmp_path):
    (tmp_path / "docket.yaml").write_text(
        yaml.dump({
            "embedding": {"model": _LOCAL_MODEL, "dimensions": 3},
            "grader": {"model": "ollama/llama3"},
        }),
        encoding="utf-8",
    )


@pytest.fixture
def populated_db(tmp_path) -> Path:
    db_path = tmp_path / "x.db"
    with Database(db_path) as conn:
        repo = Repository(conn)
        table = ensure_vec_table(conn, "ollama_nomic_embed_text", 3)
        rows = [
            ("Zoning variance for 12 Main St", "nyc", [0.9, 0.43589, 0.0]),
            ("Parks budget hearing", "nyc", [0.1, 0.99499, 0.0]),
            ("Chicago zoning appeal", "chicago", [0.95, 0.31225, 0.0]),
        ]
        for text, scope, vector in rows:
            record_id = repo.add_text_record(TextRecord(kind="agenda", text=text, scope=scope))
            repo.set_embedding(table, record_id, vector)
    return db_path


def test_search_prints_ranked_results(local_model, populated_db):
    with patch("docket.rag.embedding_client.embed_batch", side_effect=_fake_embed):
        result = runner.invoke(app, ["search", "zoning", "--db", str(populated_db)])

    assert result.exit_code == 0, result.output
    assert result.output.index("Chicago zoning") < result.output.index("Zoning variance")
    assert result.output.index("Zoning variance") < result.output.index("Parks budget")


def test_search_scope_and_k(local_model, populated_db):
    with patch("docket.rag.embedding_client.embed_batch", side_effect=_fake_embed):
        result = runner.invoke(
            app, ["search", "zoning", "--scope", "nyc", "-k", "1", "--db", str(populated_db)]
        )

    assert result.exit_code == 0, result.output
    assert "Zoning variance" in result.output
    assert "Chicago" not in result.output
    assert "Parks" not in result.output


def test_search_with_grade_filters(local_model, populated_db):
    def fake_complete(model, messages, **kwargs):
        return "irrelevant" if "Parks" in messages[1]["content"] else "relevant"

    with (
        patch("docket.rag.embedding_client.embed_batch", side_effect=_fake_embed),
        patch("docket.rag.grader.complete", side_effect=fake_complete) as mock_complete,
    ):
        result = runner.invoke(app, ["search", "zoning", "--grade", "--db", str(populated_db)])

    assert result.exit_code == 0, result.output
    assert mock_complete.call_count == 3
    assert "Parks" not in result.output
    assert "Zoning variance" in result.output


def test_search_without_embeddings(tmp_path, local_model):
    db_path = tmp_path / "x.db"
    with patch("docket.rag.embedding_client.embed_batch") as mock:
        result = runner.invoke(app, ["search", "zoning", "--db", str(db_path)])
    assert result.exit_code == 1
    assert "docket embed" in result.output
    mock.assert_not_called()


def test_search_blank_query(tmp_path, local_model):
    result = runner.invoke(app, ["search", "  ", "--db", str(tmp_path / "x.db")])
    assert result.exit_code == 1


def test_search_invalid_k(tmp_path, local_model):
    result = runner.invoke(app, ["search", "zoning", "-k", "0", "--db", str(tmp_path / "x.db")])
    assert result.exit_code == 1


def test_search_no_results(tmp_path, local_model):
    db_path = tmp_path / "x.db"
    with Database(db_path) as conn:
        ensure_vec_table(conn, "ollama_nomic_embed_text", 3)
    with patch("docket.rag.embedding_client.embed_batch", side_effect=_fake_embed):
        result = runner.invoke(app, ["search", "zoning", "--db", str(db_path)])
    assert result.exit_code == 0, result.output
    assert "No matching records" in result.output


def test_search_provider_error_exits_1(local_model, populated_db):
    with patch(
        "docket.rag.embedding_client.embed_batch",
        side_effect=RuntimeError("provider unavailable"),
    ):
        result = runner.invoke(app, ["search", "zoning", "--db", str(populated_db)])

    assert result.exit_code == 1
    assert isinstance(result.exception, SystemExit)
    assert "Error:" in result.output
    assert "provider unavailable" in result.output


def test_search_grader_error_exits_1(local_model, populated_db):
    with (
        patch("docket.rag.embedding_client.embed_batch", side_effect=_fake_embed),
        patch("docket.rag.grader.complete", side_effect=RuntimeError("grader down")),
    ):
        result = runner.invoke(app, ["search", "zoning", "--grade", "--db", str(populated_db)])

    assert result.exit_code == 1
    assert isinstance(result.exception, SystemExit)
    assert "ollama/llama3" in result.output
    assert "grader down" in result.output


def test_search_dimension_mismatch_exits_1(tmp_path, local_model):
    db_path = tmp_path / "x.db"
    with Database(db_path) as conn:
        ensure_vec_table(conn, "ollama_nomic_embed_text", 4)

    with patch("docket.rag.embedding_client.embed_batch", side_effect=_fake_embed):
        result = runner.invoke(app, ["search", "zoning", "--db", str(db_path)])

    assert result.exit_code == 1
    assert isinstance(result.exception, SystemExit)
    assert "Stored vectors do not fit" in result.output
