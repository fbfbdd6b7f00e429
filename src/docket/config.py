"""Docket configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site, not in this module)
  2. Environment variables  (DOCKET_EMBEDDING_MODEL, DOCKET_GRADER_MODEL,
                             DOCKET_COMMENTS_MODEL, DOCKET_SOURCE_BASE_URL, DOCKET_DB)
  3. Per-project docket.yaml
  4. Global ~/.docket/config.yaml  (defaults only, no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load(), never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".docket"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "docket.yaml"

# Key names that look like credentials: forbidden in global config.
# Does NOT match legitimate keys like max_tokens or page_size.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"
    r"|_token$"
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["database", "source", "embedding", "backfill", "retrieval", "grader", "comments"]
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class DatabaseCfg:
    """Database location (docket.yaml: database:)."""

    path: str = ".docket.db"


@dataclass
class SourceCfg:
    """External records API (docket.yaml: source:).

    Attributes:
        base_url: API root; requests go to ``{base_url}/{client}/{resource}``.
        resource: Collection to page through.
        page_size: Records requested per page (``$top``).
        id_field: Payload field holding the source-system record id.
        timeout: Per-request timeout in seconds.
        clients: Client ids ingested by ``docket ingest --all``.
    """

    base_url: str = "https://webapi.legistar.com/v1"
    resource: str = "events"
    page_size: int = 200
    id_field: str = "EventId"
    timeout: int = 60
    clients: list[str] = field(default_factory=list)


@dataclass
class EmbeddingCfg:
    """Embedding provider configuration (docket.yaml: embedding:)."""

    model: str = "openai/text-embedding-3-small"
    dimensions: int = 1536
    max_batch_size: int = 2048
    # Conservative: ~5 000 tokens at 4 chars/token, well under the 8 192 limit.
    max_batch_chars: int = 20_000
    max_input_chars: int = 20_000


@dataclass
class BackfillCfg:
    """Embedding backfill job configuration (docket.yaml: backfill:)."""

    batch_size: int = 50
    max_chars: int = 2_000
    chunk_size: int = 800
    chunk_overlap: int = 200


@dataclass
class RetrievalCfg:
    """Vector retrieval configuration (docket.yaml: retrieval:)."""

    top_k: int = 10
    kind: str | None = None


@dataclass
class GraderCfg:
    """Relevance grader configuration (docket.yaml: grader:)."""

    model: str = "openai/gpt-4o-mini"
    max_document_chars: int = 8_000


@dataclass
class CommentsCfg:
    """Review comment extraction (docket.yaml: comments:)."""

    model: str = "openai/gpt-4o-mini"
    max_document_chars: int = 50_000


@dataclass
class DocketConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    database: DatabaseCfg = field(default_factory=DatabaseCfg)
    source: SourceCfg = field(default_factory=SourceCfg)
    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    backfill: BackfillCfg = field(default_factory=BackfillCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    grader: GraderCfg = field(default_factory=GraderCfg)
    comments: CommentsCfg = field(default_factory=CommentsCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}'; ignored.",
                UserWarning,
                stacklevel=4,
            )


def _validate(cfg: DocketConfig) -> None:
    if cfg.source.page_size < 1:
        raise ConfigError(f"source.page_size must be >= 1, got {cfg.source.page_size}")
    if cfg.embedding.max_batch_size < 1:
        raise ConfigError(
            f"embedding.max_batch_size must be >= 1, got {cfg.embedding.max_batch_size}"
        )
    if cfg.backfill.batch_size < 1:
        raise ConfigError(f"backfill.batch_size must be >= 1, got {cfg.backfill.batch_size}")
    if not 0 <= cfg.backfill.chunk_overlap < cfg.backfill.chunk_size:
        raise ConfigError("backfill.chunk_overlap must be in [0, chunk_size)")


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _cfg_from_dict(data: dict[str, Any]) -> DocketConfig:
    """Build a *DocketConfig* from a merged raw YAML dict."""
    cfg = DocketConfig()

    if "database" in data:
        d = data["database"]
        cfg.database = DatabaseCfg(path=str(d.get("path", cfg.database.path)))

    if "source" in data:
        s = data["source"]
        cfg.source = SourceCfg(
            base_url=str(s.get("base_url", cfg.source.base_url)).rstrip("/"),
            resource=str(s.get("resource", cfg.source.resource)),
            page_size=int(s.get("page_size", cfg.source.page_size)),
            id_field=str(s.get("id_field", cfg.source.id_field)),
            timeout=int(s.get("timeout", cfg.source.timeout)),
            clients=[str(c) for c in s.get("clients", cfg.source.clients)],
        )

    if "embedding" in data:
        e = data["embedding"]
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", cfg.embedding.model)),
            dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
            max_batch_size=int(e.get("max_batch_size", cfg.embedding.max_batch_size)),
            max_batch_chars=int(e.get("max_batch_chars", cfg.embedding.max_batch_chars)),
            max_input_chars=int(e.get("max_input_chars", cfg.embedding.max_input_chars)),
        )

    if "backfill" in data:
        b = data["backfill"]
        cfg.backfill = BackfillCfg(
            batch_size=int(b.get("batch_size", cfg.backfill.batch_size)),
            max_chars=int(b.get("max_chars", cfg.backfill.max_chars)),
            chunk_size=int(b.get("chunk_size", cfg.backfill.chunk_size)),
            chunk_overlap=int(b.get("chunk_overlap", cfg.backfill.chunk_overlap)),
        )

    if "retrieval" in data:
        r = data["retrieval"]
        cfg.retrieval = RetrievalCfg(
            top_k=int(r.get("top_k", cfg.retrieval.top_k)),
            kind=r.get("kind") or cfg.retrieval.kind,
        )

    if "grader" in data:
        g = data["grader"]
        cfg.grader = GraderCfg(
            model=str(g.get("model", cfg.grader.model)),
            max_document_chars=int(
                g.get("max_document_chars", cfg.grader.max_document_chars)
            ),
        )

    if "comments" in data:
        c = data["comments"]
        cfg.comments = CommentsCfg(
            model=str(c.get("model", cfg.comments.model)),
            max_document_chars=int(
                c.get("max_document_chars", cfg.comments.max_document_chars)
            ),
        )

    return cfg


def _apply_env_overrides(cfg: DocketConfig) -> DocketConfig:
    """Apply DOCKET_* environment variable overrides (layer 2)."""
    if model := os.environ.get("DOCKET_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if model := os.environ.get("DOCKET_GRADER_MODEL"):
        cfg.grader.model = model
    if model := os.environ.get("DOCKET_COMMENTS_MODEL"):
        cfg.comments.model = model
    if url := os.environ.get("DOCKET_SOURCE_BASE_URL"):
        cfg.source.base_url = url.rstrip("/")
    if db_path := os.environ.get("DOCKET_DB"):
        cfg.database.path = db_path
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> DocketConfig:
    """Load and return a merged *DocketConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *docket.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If global config contains API-key-like fields, or a
            numeric setting is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _apply_env_overrides(_cfg_from_dict(merged))
    _validate(cfg)
    return cfg
