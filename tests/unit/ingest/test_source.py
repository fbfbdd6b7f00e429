"""Tests for the source ingestor and the HTTP page source."""

from __future__ import annotations

import io
import json
import urllib.error
from unittest.mock import MagicMock, patch

import pytest

from docket.db.models import RawRecord
from docket.db.repository import Repository
from docket.ingest.source import (
    AttachmentIngestor,
    SourceApi,
    SourceApiError,
    SourceIngestor,
    split_json_array,
)


class FakeSource:
    """Serves pages of the given sizes in order, recording each request."""

    def __init__(self, page_sizes: list[int], start_id: int = 1) -> None:
        self.requests: list[tuple[str, int, int]] = []
        self._pages = []
        next_id = start_id
        for size in page_sizes:
            self._pages.append(
                [{"EventId": next_id + i, "EventBodyName": "Council"} for i in range(size)]
            )
            next_id += size

    def fetch_page(self, client_id: str, skip: int, top: int) -> list[dict]:
        self.requests.append((client_id, skip, top))
        index = len(self.requests) - 1
        return self._pages[index] if index < len(self._pages) else []


class FailingSource(FakeSource):
    def __init__(self, page_sizes: list[int], fail_at: int) -> None:
        super().__init__(page_sizes)
        self._fail_at = fail_at

    def fetch_page(self, client_id: str, skip: int, top: int) -> list[dict]:
        if len(self.requests) == self._fail_at:
            self.requests.append((client_id, skip, top))
            raise SourceApiError("connection reset")
        return super().fetch_page(client_id, skip, top)


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


# ------------------------------------------------------------------
# Pagination
# ------------------------------------------------------------------


def test_pages_until_empty_page(repo):
    source = FakeSource([200, 200, 73, 0])
    total = SourceIngestor(repo, source, page_size=200).ingest("nyc")

    assert len(source.requests) == 4
    assert total == 473
    assert repo.count_raw_records("nyc") == 473


def test_offsets_start_at_zero_and_step_by_page_size(repo):
    source = FakeSource([200, 200, 73, 0])
    SourceIngestor(repo, source, page_size=200).ingest("nyc")
    assert [skip for _, skip, _ in source.requests] == [0, 200, 400, 600]
    assert {top for _, _, top in source.requests} == {200}


def test_empty_source_single_fetch(repo):
    source = FakeSource([])
    assert SourceIngestor(repo, source).ingest("nyc") == 0
    assert len(source.requests) == 1


def test_short_page_does_not_end_ingest(repo):
    source = FakeSource([5, 5, 0])
    assert SourceIngestor(repo, source, page_size=10).ingest("nyc") == 10
    assert len(source.requests) == 3


# ------------------------------------------------------------------
# Idempotence + upsert
# ------------------------------------------------------------------


def test_ingest_twice_same_store_state(repo, tmp_db):
    SourceIngestor(repo, FakeSource([3, 0]), page_size=3).ingest("nyc")
    before = [tuple(r) for r in tmp_db.execute("SELECT * FROM raw_records ORDER BY id")]

    SourceIngestor(repo, FakeSource([3, 0]), page_size=3).ingest("nyc")
    after = [tuple(r) for r in tmp_db.execute("SELECT * FROM raw_records ORDER BY id")]

    assert before == after


def test_payload_stored_as_json_with_string_key(repo):
    SourceIngestor(repo, FakeSource([1, 0]), page_size=1).ingest("nyc")
    record = repo.get_raw_record("nyc", "1")
    assert record is not None
    assert record.payload_dict == {"EventId": 1, "EventBodyName": "Council"}


def test_changed_payload_overwrites(repo):
    class Changing(FakeSource):
        def __init__(self, name):
            super().__init__([1, 0])
            self._pages[0][0]["EventBodyName"] = name

    SourceIngestor(repo, Changing("Council"), page_size=1).ingest("nyc")
    SourceIngestor(repo, Changing("Zoning Committee"), page_size=1).ingest("nyc")

    assert repo.count_raw_records() == 1
    assert repo.get_raw_record("nyc", "1").payload_dict["EventBodyName"] == "Zoning Committee"


# ------------------------------------------------------------------
# Failures
# ------------------------------------------------------------------


def test_transport_failure_keeps_committed_pages(repo):
    source = FailingSource([2, 2, 2, 0], fail_at=2)
    with pytest.raises(SourceApiError):
        SourceIngestor(repo, source, page_size=2).ingest("nyc")
    assert repo.count_raw_records() == 4


def test_record_missing_id_rejects_page(repo):
    class BadSource:
        def fetch_page(self, client_id, skip, top):
            return [{"EventId": 1}, {"EventBodyName": "no id"}]

    with pytest.raises(SourceApiError, match="EventId"):
        SourceIngestor(repo, BadSource(), page_size=2).ingest("nyc")
    assert repo.count_raw_records() == 0


def test_non_object_record_rejected(repo):
    class BadSource:
        def fetch_page(self, client_id, skip, top):
            return ["not a record"]

    with pytest.raises(SourceApiError, match="JSON object"):
        SourceIngestor(repo, BadSource()).ingest("nyc")


def test_blank_client_rejected(repo):
    source = FakeSource([1])
    with pytest.raises(ValueError):
        SourceIngestor(repo, source).ingest("  ")
    assert source.requests == []


def test_page_size_must_be_positive(repo):
    with pytest.raises(ValueError, match="page_size"):
        SourceIngestor(repo, FakeSource([]), page_size=0)


def test_custom_id_field(repo):
    class MatterSource:
        def __init__(self):
            self.calls = 0

        def fetch_page(self, client_id, skip, top):
            self.calls += 1
            return [{"MatterId": 9}] if self.calls == 1 else []

    SourceIngestor(repo, MatterSource(), id_field="MatterId").ingest("nyc")
    assert repo.get_raw_record("nyc", "9") is not None


def test_ingest_all_per_client_totals(repo):
    source = FakeSource([2, 0, 3, 0])
    totals = SourceIngestor(repo, source, page_size=5).ingest_all(["nyc", "chicago"])
    assert totals == {"nyc": 2, "chicago": 3}
    assert [c for c, _, _ in source.requests] == ["nyc", "nyc", "chicago", "chicago"]


# ------------------------------------------------------------------
# SourceApi (HTTP)
# ------------------------------------------------------------------


def _response(body: bytes) -> MagicMock:
    response = MagicMock()
    response.read.return_value = body
    response.__enter__.return_value = response
    return response


def test_page_url_uses_top_and_skip():
    api = SourceApi("https://webapi.example.test/v1/", "events")
    url = api.page_url("nyc", skip=400, top=200)
    assert url == "https://webapi.example.test/v1/nyc/events?%24top=200&%24skip=400"


def test_fetch_page_returns_records():
    body = json.dumps([{"EventId": 1}]).encode()
    with patch("docket.ingest.source.urllib.request.urlopen", return_value=_response(body)):
        records = SourceApi("https://api.test/v1").fetch_page("nyc", 0, 200)
    assert records == [{"EventId": 1}]


def test_fetch_page_non_list_body():
    body = json.dumps({"error": "nope"}).encode()
    with patch("docket.ingest.source.urllib.request.urlopen", return_value=_response(body)):
        with pytest.raises(SourceApiError, match="JSON array"):
            SourceApi("https://api.test/v1").fetch_page("nyc", 0, 200)


def test_fetch_page_invalid_json():
    with patch("docket.ingest.source.urllib.request.urlopen", return_value=_response(b"<html>")):
        with pytest.raises(SourceApiError, match="invalid JSON"):
            SourceApi("https://api.test/v1").fetch_page("nyc", 0, 200)


def test_fetch_page_http_error():
    error = urllib.error.HTTPError("https://api.test", 503, "Unavailable", {}, io.BytesIO(b""))
    with patch("docket.ingest.source.urllib.request.urlopen", side_effect=error):
        with pytest.raises(SourceApiError, match="503"):
            SourceApi("https://api.test/v1").fetch_page("nyc", 0, 200)


def test_fetch_page_network_error():
    error = urllib.error.URLError("no route to host")
    with patch("docket.ingest.source.urllib.request.urlopen", side_effect=error):
        with pytest.raises(SourceApiError, match="no route"):
            SourceApi("https://api.test/v1").fetch_page("nyc", 0, 200)


def test_source_api_rejects_non_http_scheme():
    with pytest.raises(ValueError, match="scheme"):
        SourceApi("ftp://api.test/v1")


def test_attachments_url():
    api = SourceApi("https://webapi.example.test/v1")
    assert api.attachments_url("nyc", "42") == (
        "https://webapi.example.test/v1/nyc/Matters/42/Attachments"
    )


# ------------------------------------------------------------------
# Payloads kept exactly as sent
# ------------------------------------------------------------------


def test_split_json_array_keeps_item_text():
    text = '[ {"EventId": 1,  "Cost": 1.50},\n{"EventId":2,"EventId":3} , 7 ]'
    items = split_json_array(text)
    assert [i.source_text for i in items[:2]] == [
        '{"EventId": 1,  "Cost": 1.50}',
        '{"EventId":2,"EventId":3}',
    ]
    assert items[0] == {"EventId": 1, "Cost": 1.5}
    assert items[2] == 7


def test_split_json_array_empty():
    assert split_json_array(" [\n] ") == []


def test_ingested_payload_is_byte_for_byte(repo):
    body = '[{"EventId": 1, "EventBodyName": "Caf\\u00e9",  "Cost": 1.50}]'.encode()
    empty = b"[]"
    responses = [_response(body), _response(empty)]
    with patch("docket.ingest.source.urllib.request.urlopen", side_effect=responses):
        SourceIngestor(repo, SourceApi("https://api.test/v1"), page_size=1).ingest("nyc")

    stored = repo.get_raw_record("nyc", "1").payload
    assert stored == '{"EventId": 1, "EventBodyName": "Caf\\u00e9",  "Cost": 1.50}'


def test_fetch_page_utf8_bom_accepted():
    body = "\ufeff[{\"EventId\": 1}]".encode("utf-8")
    with patch("docket.ingest.source.urllib.request.urlopen", return_value=_response(body)):
        records = SourceApi("https://api.test/v1").fetch_page("nyc", 0, 200)
    assert records == [{"EventId": 1}]


# ------------------------------------------------------------------
# Matter attachments
# ------------------------------------------------------------------


class FakeAttachments:
    """Attachment lists per matter id; ids listed in *broken* fail."""

    def __init__(self, lists: dict[str, list], broken: tuple[str, ...] = ()) -> None:
        self.lists = lists
        self.broken = broken
        self.calls: list[tuple[str, str]] = []

    def fetch_attachments(self, client_id, matter_id):
        self.calls.append((client_id, matter_id))
        if matter_id in self.broken:
            raise SourceApiError("HTTP 500")
        return self.lists.get(matter_id, [])


def _matters(repo, *ids: int, client="nyc") -> None:
    repo.upsert_raw_records([
        RawRecord(
            client_id=client,
            source_record_id=str(i),
            payload=json.dumps({"MatterId": i}),
            resource="matters",
        )
        for i in ids
    ])


def _attachment(attachment_id: int, name: str = "staff-report.pdf") -> dict:
    return {
        "MatterAttachmentId": attachment_id,
        "MatterAttachmentFileName": name,
        "MatterAttachmentHyperlink": f"https://x/att/{attachment_id}",
    }


def test_attachments_stored_under_their_matter(repo):
    _matters(repo, 10, 11)
    source = FakeAttachments({"10": [_attachment(100), _attachment(101)], "11": [_attachment(110)]})

    assert AttachmentIngestor(repo, source).ingest("nyc") == 3

    matter = repo.get_raw_record("nyc", "10", resource="matters")
    attachment = repo.get_raw_record("nyc", "100", resource="attachments")
    assert attachment.parent_id == matter.id
    assert repo.count_raw_records(resource="attachments") == 3


def test_attachment_ids_do_not_collide_with_events(repo):
    SourceIngestor(repo, FakeSource([1, 0]), page_size=1).ingest("nyc")
    _matters(repo, 10)
    AttachmentIngestor(repo, FakeAttachments({"10": [_attachment(1)]})).ingest("nyc")

    assert repo.get_raw_record("nyc", "1").payload_dict["EventBodyName"] == "Council"
    assert repo.get_raw_record("nyc", "1", resource="attachments") is not None


def test_matters_with_attachments_not_fetched_again(repo):
    _matters(repo, 10, 11)
    first = FakeAttachments({"10": [_attachment(100)]})
    AttachmentIngestor(repo, first).ingest("nyc")

    second = FakeAttachments({})
    AttachmentIngestor(repo, second).ingest("nyc")
    # 11 had no attachments, so it is asked again
    assert second.calls == [("nyc", "11")]


def test_attachment_failure_skips_matter_and_continues(repo, caplog):
    _matters(repo, 10, 11)
    source = FakeAttachments({"11": [_attachment(110)]}, broken=("10",))

    assert AttachmentIngestor(repo, source).ingest("nyc") == 1
    assert "Skipping attachments of matter nyc 10" in caplog.text
    pending = repo.list_raw_records_without_children("matters", "attachments")
    assert [m.source_record_id for m in pending] == ["10"]


def test_malformed_attachment_skips_matter(repo):
    _matters(repo, 10)
    source = FakeAttachments({"10": [_attachment(100), {"MatterAttachmentFileName": "x.pdf"}]})
    assert AttachmentIngestor(repo, source).ingest("nyc") == 0
    assert repo.count_raw_records(resource="attachments") == 0


def test_attachments_only_for_requested_client(repo):
    _matters(repo, 10, client="nyc")
    _matters(repo, 20, client="chicago")
    source = FakeAttachments({})
    AttachmentIngestor(repo, source).ingest("chicago")
    assert source.calls == [("chicago", "20")]
