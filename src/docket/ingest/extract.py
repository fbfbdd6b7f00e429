"""Text extraction: download source documents and turn them into text records.

The extractor is a collaborator behind a small protocol so the job can be
driven with any backend; PdfTextExtractor is the pypdf one.

Download requirements:
- Allowed URL schemes: https:// and http:// only.
- Max response body: 10 MB.
- Timeout: 30 seconds (connect + read).
"""

from __future__ import annotations

import http.client
import io
import logging
import urllib.error
import urllib.parse
import urllib.request
from collections.abc import Callable
from typing import Protocol

import pypdf
from pypdf.errors import PyPdfError

from docket.db.models import DOCUMENT_SOURCES, TextRecord
from docket.db.repository import Repository

logger = logging.getLogger(__name__)

_USER_AGENT = "docket/0.1"
_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
_TIMEOUT = 30  # seconds
_ALLOWED_SCHEMES = {"https", "http"}


class ExtractionError(RuntimeError):
    """A document could not be downloaded or turned into text."""


class TextExtractor(Protocol):
    def extract(self, data: bytes) -> str:
        ...


class PdfTextExtractor:
    """Extract text from PDF bytes with pypdf.

    Pages that yield no text (scanned images, etc.) are skipped; page texts
    are joined with blank lines.
    """

    def extract(self, data: bytes) -> str:
        try:
            reader = pypdf.PdfReader(io.BytesIO(data))
            parts: list[str] = []
            for page in reader.pages:
                stripped = (page.extract_text() or "").strip()
                if stripped:
                    parts.append(stripped)
        except (PyPdfError, ValueError, OSError) as exc:
            raise ExtractionError(f"Could not parse PDF: {exc}") from exc
        return "\n\n".join(parts)


def fetch_document(
    url: str,
    max_bytes: int = _MAX_BYTES,
    timeout: int = _TIMEOUT,
    expected_content_type: str | None = "application/pdf",
) -> bytes:
    """Download *url* with scheme check, timeout, size cap and Content-Type check.

    Raises:
        ExtractionError: On any failure; the message names the URL.
    """
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        raise ExtractionError(
            f"Unsupported URL scheme '{parsed.scheme}'. Only https:// and http:// are allowed."
        )

    request = urllib.request.Request(url, headers={"User-Agent": _USER_AGENT})
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            if expected_content_type is not None:
                raw_ct = response.headers.get("Content-Type", "")
                ct = raw_ct.split(";")[0].strip().lower()
                # Some servers omit the header or send a generic one.
                if ct and ct not in (expected_content_type, "application/octet-stream"):
                    raise ExtractionError(
                        f"Unsupported Content-Type '{ct}' for URL '{url}'. "
                        f"Expected {expected_content_type}."
                    )
            body = response.read(max_bytes + 1)
    except urllib.error.URLError as exc:
        raise ExtractionError(f"Failed to fetch URL '{url}': {exc}") from exc
    except TimeoutError as exc:
        raise ExtractionError(f"Timed out fetching URL '{url}'") from exc
    except (OSError, http.client.HTTPException) as exc:
        # Connection dropped while the body was being read.
        raise ExtractionError(f"Failed to read URL '{url}': {exc!r}") from exc

    if len(body) > max_bytes:
        raise ExtractionError(
            f"Response body exceeds {max_bytes // (1024 * 1024)} MB limit for URL '{url}'."
        )
    return body


def extract_pending(
    repo: Repository,
    extractor: TextExtractor,
    fetch: Callable[[str], bytes] = fetch_document,
    client_id: str | None = None,
    kind: str = "agenda",
) -> int:
    """Create *kind* text records for raw records that have a document URL and no text yet.

    agenda and minutes come from event records, attachment from matter
    attachment records. The new record's scope is the raw record's client
    id and its ``source_url`` is the document URL. Download and parse
    failures are logged and skipped; the raw record stays pending for the
    next run.

    Returns:
        Number of text records created.
    """
    source = DOCUMENT_SOURCES.get(kind)
    if source is None:
        raise ValueError(
            f"Unknown document kind '{kind}'. Known: {', '.join(sorted(DOCUMENT_SOURCES))}"
        )

    created = 0
    skipped = 0
    pending = repo.list_raw_records_without_text(kind, client_id=client_id, resource=source[0])
    for raw in pending:
        url = raw.document_url(kind)
        if not url:
            continue
        try:
            text = extractor.extract(fetch(url))
        except (ExtractionError, OSError, http.client.HTTPException) as exc:
            logger.warning("Skipping %s %s: %s", raw.client_id, raw.source_record_id, exc)
            skipped += 1
            continue
        if not text.strip():
            logger.warning(
                "No text extracted for %s %s from %s", raw.client_id, raw.source_record_id, url
            )
            skipped += 1
            continue

        repo.add_text_record(
            TextRecord(
                kind=kind,
                text=text,
                raw_record_id=raw.id,
                document_ref=url,
                scope=raw.client_id,
                source_url=url,
            )
        )
        created += 1

    logger.info("Extracted %d %s documents (%d skipped)", created, kind, skipped)
    return created
