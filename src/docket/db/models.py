"""Domain models for the docket database layer."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

# Source collections kept in raw_records.
EVENTS = "events"
MATTERS = "matters"
ATTACHMENTS = "attachments"

# Text record kind -> (collection, payload field holding the document URL).
DOCUMENT_SOURCES: dict[str, tuple[str, str]] = {
    "agenda": (EVENTS, "EventAgendaFile"),
    "minutes": (EVENTS, "EventMinutesFile"),
    "attachment": (ATTACHMENTS, "MatterAttachmentHyperlink"),
}

_ATTACHMENT_NAME_FIELD = "MatterAttachmentFileName"


@dataclass
class RawRecord:
    """A record as fetched from the source API.

    Keyed by (client_id, resource, source_record_id). ``payload`` is the
    record's JSON text, opaque apart from document_url(). ``parent_id``
    links a matter attachment to the matter it was listed under.
    """

    client_id: str
    source_record_id: str
    payload: str
    resource: str = EVENTS
    parent_id: int | None = None
    id: int | None = None

    @property
    def payload_dict(self) -> dict[str, Any]:
        return json.loads(self.payload)

    def document_url(self, kind: str) -> str | None:
        """URL of this record's *kind* document, or None if it has none.

        Attachments only count when the file is a PDF.
        """
        source = DOCUMENT_SOURCES.get(kind)
        if source is None or source[0] != self.resource:
            return None
        payload = self.payload_dict
        if kind == "attachment":
            name = payload.get(_ATTACHMENT_NAME_FIELD) or ""
            if not name.lower().endswith(".pdf"):
                return None
        return payload.get(source[1]) or None


@dataclass
class TextRecord:
    """Plain text derived from a raw record, an uploaded document, or a free-text item.

    Covers extracted documents, document chunks (``parent_id`` + ``chunk_index``,
    with ``scope`` as the jurisdiction/tenant tag and a heading/body split) and
    knowledge items such as review comments. Vectors live per model in a vec
    table keyed by ``id``, never on this row.
    """

    kind: str
    text: str
    raw_record_id: int | None = None
    document_ref: str | None = None
    scope: str | None = None
    heading: str = ""
    body: str = ""
    source_url: str | None = None
    parent_id: int | None = None
    chunk_index: int | None = None
    created_at: str | None = None
    id: int | None = None  # set after insert
