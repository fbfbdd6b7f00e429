"""Source ingestor: page an external records API into raw_records.

Pagination uses ``$top`` / ``$skip`` query parameters and a fixed page
size, starting at offset 0. An empty page is the only end-of-data signal.
Each page is upserted by (client_id, resource, source_record_id) before the
next page is requested, so a run that dies part-way keeps every page it
finished and can simply be started again from offset 0.

Matter attachments are not paged: each matter's attachment list is one
request, stored as ``attachments`` raw records pointing at the matter.
"""

from __future__ import annotations

import json
import logging
import re
import urllib.error
import urllib.parse
import urllib.request
from collections.abc import Iterable
from typing import Any, Protocol

from docket.db.models import ATTACHMENTS, EVENTS, MATTERS, RawRecord
from docket.db.repository import Repository

logger = logging.getLogger(__name__)

_USER_AGENT = "docket/0.1"
_DEFAULT_PAGE_SIZE = 200
_JSON_WS = re.compile(r"[ \t\n\r]*")

# Record id field of each known collection.
DEFAULT_ID_FIELDS = {
    EVENTS: "EventId",
    MATTERS: "MatterId",
    ATTACHMENTS: "MatterAttachmentId",
}


class SourceApiError(RuntimeError):
    """The source API could not be reached or returned something other than a record page."""


class SourceItem(dict):
    """A decoded record that remembers its exact JSON text from the response."""

    def __init__(self, value: dict[str, Any], source_text: str) -> None:
        super().__init__(value)
        self.source_text = source_text


class PageSource(Protocol):
    """Anything that can return one page of raw source records."""

    def fetch_page(self, client_id: str, skip: int, top: int) -> list[Any]:
        ...


class AttachmentSource(Protocol):
    """Anything that can list the attachments of one matter."""

    def fetch_attachments(self, client_id: str, matter_id: str) -> list[Any]:
        ...


def split_json_array(text: str) -> list[Any]:
    """Split *text*, a valid JSON array, keeping each object's exact source text.

    Objects come back as SourceItem; other values are returned decoded.
    """
    decoder = json.JSONDecoder()
    pos = _JSON_WS.match(text, 0).end() + 1  # past "["
    pos = _JSON_WS.match(text, pos).end()
    items: list[Any] = []
    while text[pos] != "]":
        value, end = decoder.raw_decode(text, pos)
        items.append(SourceItem(value, text[pos:end]) if isinstance(value, dict) else value)
        pos = _JSON_WS.match(text, end).end()
        if text[pos] == ",":
            pos = _JSON_WS.match(text, pos + 1).end()
    return items


def raw_record_from_item(
    client_id: str,
    item: Any,
    id_field: str,
    resource: str = EVENTS,
    parent_id: int | None = None,
) -> RawRecord:
    """Build the raw record for one source item.

    The payload is the item's JSON exactly as the API sent it when known.

    Raises:
        SourceApiError: If *item* is not an object or lacks *id_field*.
    """
    if not isinstance(item, dict):
        raise SourceApiError(f"Expected a JSON object per record, got {type(item).__name__}")
    record_id = item.get(id_field)
    if record_id is None or str(record_id) == "":
        raise SourceApiError(f"Record is missing its '{id_field}' field")
    if isinstance(item, SourceItem):
        payload = item.source_text
    else:
        payload = json.dumps(item, ensure_ascii=False)
    return RawRecord(
        client_id=client_id,
        source_record_id=str(record_id),
        payload=payload,
        resource=resource,
        parent_id=parent_id,
    )


class SourceApi:
    """HTTP client for a ``GET {base_url}/{client}/{resource}?$top=&$skip=`` API.

    Args:
        base_url: API root, e.g. ``https://webapi.legistar.com/v1``.
        resource: Collection name appended after the client id.
        timeout: Per-request timeout in seconds.

    Raises:
        ValueError: If *base_url* is not http(s).
    """

    def __init__(self, base_url: str, resource: str = EVENTS, timeout: int = 60) -> None:
        parsed = urllib.parse.urlparse(base_url)
        if parsed.scheme not in ("https", "http"):
            raise ValueError(
                f"Unsupported URL scheme '{parsed.scheme}' in source base_url '{base_url}'. "
                "Only https:// and http:// are allowed."
            )
        self._base_url = base_url.rstrip("/")
        self._resource = resource
        self._timeout = timeout

    def page_url(self, client_id: str, skip: int, top: int) -> str:
        query = urllib.parse.urlencode({"$top": top, "$skip": skip})
        client = urllib.parse.quote(client_id, safe="")
        return f"{self._base_url}/{client}/{self._resource}?{query}"

    def attachments_url(self, client_id: str, matter_id: str) -> str:
        client = urllib.parse.quote(client_id, safe="")
        matter = urllib.parse.quote(str(matter_id), safe="")
        return f"{self._base_url}/{client}/Matters/{matter}/Attachments"

    def fetch_page(self, client_id: str, skip: int, top: int) -> list[Any]:
        """Fetch one page and return its records.

        Raises:
            SourceApiError: On HTTP/network failure or a body that is not a JSON array.
        """
        return self._get_items(self.page_url(client_id, skip, top))

    def fetch_attachments(self, client_id: str, matter_id: str) -> list[Any]:
        """Fetch the attachment list of one matter.

        Raises:
            SourceApiError: As for fetch_page().
        """
        return self._get_items(self.attachments_url(client_id, matter_id))

    def _get_items(self, url: str) -> list[Any]:
        request = urllib.request.Request(
            url, headers={"User-Agent": _USER_AGENT, "Accept": "application/json"}
        )
        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                body = response.read()
        except urllib.error.HTTPError as exc:
            raise SourceApiError(f"Source API returned HTTP {exc.code} for '{url}'") from exc
        except (urllib.error.URLError, TimeoutError) as exc:
            raise SourceApiError(f"Failed to fetch '{url}': {exc}") from exc

        try:
            text = body.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise SourceApiError(f"Source API returned non-UTF-8 data for '{url}'") from exc
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise SourceApiError(f"Source API returned invalid JSON for '{url}'") from exc
        if not isinstance(data, list):
            raise SourceApiError(
                f"Source API returned {type(data).__name__}, expected a JSON array, for '{url}'"
            )
        return split_json_array(text)


class SourceIngestor:
    """Copy every record of a client from a PageSource into the raw store.

    Args:
        repo: Open Repository.
        source: Page provider (SourceApi in production).
        page_size: Records per page.
        id_field: Payload field holding the source-system record id.
        resource: Collection name the records are stored under (lowercased).
    """

    def __init__(
        self,
        repo: Repository,
        source: PageSource,
        page_size: int = _DEFAULT_PAGE_SIZE,
        id_field: str = "EventId",
        resource: str = EVENTS,
    ) -> None:
        if page_size < 1:
            raise ValueError(f"page_size must be >= 1, got {page_size}")
        self._repo = repo
        self._source = source
        self._page_size = page_size
        self._id_field = id_field
        self._resource = resource.lower()

    def ingest(self, client_id: str) -> int:
        """Page through *client_id*'s records until an empty page; return records upserted.

        Raises:
            ValueError: If *client_id* is blank.
            SourceApiError: If a page cannot be fetched or holds a malformed
                record. Pages already upserted stay committed.
        """
        if not client_id.strip():
            raise ValueError("client_id must be a non-empty string")

        offset = 0
        total = 0
        while True:
            logger.info(
                "Fetching %s %s for %s at offset %d",
                self._page_size,
                self._resource,
                client_id,
                offset,
            )
            page = self._source.fetch_page(client_id, skip=offset, top=self._page_size)
            if not page:
                # A transient empty page upstream is indistinguishable from the end.
                logger.info("No more %s for %s (%d upserted)", self._resource, client_id, total)
                return total

            records = [
                raw_record_from_item(client_id, item, self._id_field, self._resource)
                for item in page
            ]
            total += self._repo.upsert_raw_records(records)
            logger.info("Upserted %d %s for %s", len(records), self._resource, client_id)
            offset += self._page_size

    def ingest_all(self, client_ids: Iterable[str]) -> dict[str, int]:
        """Ingest each client in order; return {client_id: records upserted}."""
        return {client_id: self.ingest(client_id) for client_id in client_ids}


class AttachmentIngestor:
    """Fetch the attachment list of every matter that has no attachments stored yet.

    A matter whose list cannot be fetched, or comes back malformed, is
    logged and skipped. A matter with no attachments stays pending and is
    asked again next run.

    Args:
        repo: Open Repository.
        source: Attachment provider (SourceApi in production).
        id_field: Payload field holding the attachment id.
    """

    def __init__(
        self,
        repo: Repository,
        source: AttachmentSource,
        id_field: str = DEFAULT_ID_FIELDS[ATTACHMENTS],
    ) -> None:
        self._repo = repo
        self._source = source
        self._id_field = id_field

    def ingest(self, client_id: str) -> int:
        """Fetch attachments for *client_id*'s pending matters; return records upserted."""
        if not client_id.strip():
            raise ValueError("client_id must be a non-empty string")

        matters = self._repo.list_raw_records_without_children(
            MATTERS, ATTACHMENTS, client_id=client_id
        )
        logger.info("Fetching attachments for %d matters of %s", len(matters), client_id)
        total = 0
        failed = 0
        for matter in matters:
            try:
                items = self._source.fetch_attachments(client_id, matter.source_record_id)
                records = [
                    raw_record_from_item(
                        client_id, item, self._id_field, ATTACHMENTS, parent_id=matter.id
                    )
                    for item in items
                ]
            except SourceApiError as exc:
                logger.warning(
                    "Skipping attachments of matter %s %s: %s",
                    client_id,
                    matter.source_record_id,
                    exc,
                )
                failed += 1
                continue
            total += self._repo.upsert_raw_records(records)

        logger.info(
            "Upserted %d attachments for %s (%d matters failed)", total, client_id, failed
        )
        return total
