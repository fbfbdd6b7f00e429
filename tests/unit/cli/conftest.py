"""CLI fixtures: run every command inside tmp_path with no user config."""

from __future__ import annotations

import pytest


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("docket.config._GLOBAL_CONFIG_PATH", tmp_path / "no-global.yaml")
    for var in (
        "DOCKET_EMBEDDING_MODEL",
        "DOCKET_GRADER_MODEL",
        "DOCKET_COMMENTS_MODEL",
        "DOCKET_SOURCE_BASE_URL",
        "DOCKET_DB",
    ):
        monkeypatch.delenv(var, raising=False)
    return tmp_path
