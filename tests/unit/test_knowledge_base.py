"""Unit tests for counsel.services.knowledge_base."""

import asyncio
import json

import httpx
import pytest

from counsel.core.errors import (
    ErrorCode,
    InvalidRequestError,
    NotFoundError,
    PayloadTooLargeError,
    UnsupportedMediaTypeError,
    UpstreamError,
)
from counsel.services.knowledge_base import (
    KnowledgeBase,
    chunk_words,
    detect_kind,
    extract_text,
    resolve_host,
    tokenize,
)


def run(coro):
    return asyncio.run(coro)


def make_pdf(text: str) -> bytes:
    """Build a one-page PDF showing ``text`` in Helvetica."""
    stream = f"BT /F1 12 Tf 72 720 Td ({text}) Tj ET".encode("latin-1")
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        b"<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
        b"/Contents 4 0 R /Resources << /Font << /F1 5 0 R >> >> >>",
        b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream",
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    pdf = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(pdf))
        pdf += b"%d 0 obj\n" % number + body + b"\nendobj\n"
    xref_offset = len(pdf)
    pdf += b"xref\n0 %d\n0000000000 65535 f \n" % (len(objects) + 1)
    for offset in offsets:
        pdf += b"%010d 00000 n \n" % offset
    pdf += b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%%%EOF\n" % (len(objects) + 1, xref_offset)
    return bytes(pdf)



class TestHelpers:
    """Tokenizing, chunking and type detection."""

    def test_tokenize_drops_stop_words_and_case(self):
        assert tokenize("The Landlord IS responsible for the heater") == ["landlord", "responsible", "heater"]

    def test_chunk_words_overlap(self):
        text = " ".join(str(i) for i in range(10))
        chunks = chunk_words(text, chunk_size=4, overlap=1)
        assert chunks == ["0 1 2 3", "3 4 5 6", "6 7 8 9"]

    def test_chunk_words_short_text(self):
        assert chunk_words("one two", chunk_size=4, overlap=1) == ["one two"]
        assert chunk_words("   ", chunk_size=4, overlap=1) == []

    def test_chunk_words_overlap_not_larger_than_chunk(self):
        chunks = chunk_words("a b c d e", chunk_size=2, overlap=5)
        assert chunks == ["a b", "b c", "c d", "d e"]

    @pytest.mark.parametrize(
        "filename,content_type,expected",
        [
            ("notes.MD", None, "text"),
            ("ruling.htm", None, "html"),
            ("brief.pdf", "application/octet-stream", "pdf"),
            (None, "text/html; charset=utf-8", "html"),
            (None, "text/x-log", "text"),
            ("image.png", "image/png", None),
        ],
    )
    def test_detect_kind(self, filename, content_type, expected):
        assert detect_kind(filename, content_type) == expected

    def test_extract_html_skips_scripts(self):
        html = b"<html><script>var x = 1;</script><body><p>Visible text</p></body></html>"
        text = extract_text(html, "html")
        assert "Visible text" in text
        assert "var x" not in text

    def test_extract_invalid_pdf(self):
        with pytest.raises(InvalidRequestError):
            extract_text(b"not a pdf", "pdf")

    def test_extract_pdf_text(self):
        text = extract_text(make_pdf("Rent is due monthly"), "pdf")
        assert "Rent is due monthly" in text


class TestIngestion:
    """add_file / add_url behaviour."""

    def test_add_file_stores_document(self, knowledge_base):
        document, created = run(knowledge_base.add_file("lease.txt", b"Rent is due on the first.", tags=["Lease", "lease"]))
        assert created is True
        assert document.filename == "lease.txt"
        assert document.tags == ["lease"]
        assert document.content_type == "text/plain"
        assert document.chunk_count == 1
        assert len(knowledge_base) == 1

    def test_add_pdf_is_chunked_and_searchable(self, knowledge_base):
        pdf = make_pdf("The security deposit must be returned within 21 days")
        document, created = run(knowledge_base.add_file("lease.pdf", pdf, tags=["lease"]))
        assert created is True
        assert document.content_type == "application/pdf"
        assert document.chunk_count >= 1
        results = knowledge_base.search("security deposit")
        assert results
        assert results[0].source == "lease.pdf"
        assert "deposit" in results[0].excerpt

    def test_add_file_strips_directories(self, knowledge_base):
        document, _ = run(knowledge_base.add_file("../../etc/notes.txt", b"Some notes."))
        assert document.filename == "notes.txt"

    def test_duplicate_merges_tags(self, knowledge_base):
        first, _ = run(knowledge_base.add_file("a.txt", b"Same words here.", tags=["one"]))
        second, created = run(knowledge_base.add_file("b.txt", b"Same   words here.\n", tags=["two"]))
        assert created is False
        assert second.id == first.id
        assert second.tags == ["one", "two"]
        assert len(knowledge_base) == 1

    def test_too_large(self, knowledge_base):
        with pytest.raises(PayloadTooLargeError):
            run(knowledge_base.add_file("big.txt", b"x" * (knowledge_base.max_bytes + 1)))

    def test_unsupported(self, knowledge_base):
        with pytest.raises(UnsupportedMediaTypeError):
            run(knowledge_base.add_file("archive.zip", b"PK", content_type="application/zip"))

    def test_add_url(self, url_knowledge_base):
        kb = url_knowledge_base(
            lambda request: httpx.Response(200, headers={"Content-Type": "text/plain"}, content=b"Notice must be in writing.")
        )
        document, created = run(kb.add_url("https://example.com/notice", tags=["notice"]))
        assert created is True
        assert document.url == "https://example.com/notice"
        assert document.source == "https://example.com/notice"

    def test_add_url_size_cap(self, url_knowledge_base, test_settings):
        kb = url_knowledge_base(
            lambda request: httpx.Response(
                200, headers={"Content-Type": "text/plain"}, content=b"x" * (test_settings.max_upload_bytes + 10)
            )
        )
        with pytest.raises(PayloadTooLargeError):
            run(kb.add_url("https://example.com/huge"))

    def test_add_url_connection_error(self, url_knowledge_base):
        def handler(request):
            raise httpx.ConnectError("boom", request=request)

        kb = url_knowledge_base(handler)
        with pytest.raises(UpstreamError):
            run(kb.add_url("https://example.com/down"))

    def test_add_url_rejects_relative(self, knowledge_base):
        with pytest.raises(InvalidRequestError):
            run(knowledge_base.add_url("/local/path"))


class TestFetchDestinations:
    """URL ingestion only reaches public addresses."""

    @staticmethod
    def resolver_for(table):
        async def resolver(host):
            return table.get(host, [host])
        return resolver

    def test_metadata_address_is_refused(self, url_knowledge_base):
        calls = []
        kb = url_knowledge_base(lambda request: calls.append(request) or httpx.Response(200, content=b"secret"))
        with pytest.raises(InvalidRequestError) as exc_info:
            run(kb.add_url("http://169.254.169.254/latest/meta-data"))
        assert exc_info.value.code == ErrorCode.INVALID_REQUEST
        assert calls == []
        assert len(kb) == 0

    def test_host_resolving_to_private_network_is_refused(self, url_knowledge_base):
        calls = []
        kb = url_knowledge_base(
            lambda request: calls.append(request) or httpx.Response(200, content=b"internal"),
            resolver=self.resolver_for({"intranet.example.com": ["10.0.0.5"]}),
        )
        with pytest.raises(InvalidRequestError):
            run(kb.add_url("https://intranet.example.com/wiki"))
        assert calls == []

    def test_host_with_any_private_address_is_refused(self, url_knowledge_base):
        kb = url_knowledge_base(
            lambda request: httpx.Response(200, content=b"mixed"),
            resolver=self.resolver_for({"mixed.example.com": ["93.184.216.34", "192.168.1.20"]}),
        )
        with pytest.raises(InvalidRequestError):
            run(kb.add_url("https://mixed.example.com/"))

    def test_redirect_to_loopback_is_refused(self, url_knowledge_base):
        def handler(request):
            if request.url.host == "example.com":
                return httpx.Response(302, headers={"Location": "http://127.0.0.1:8080/admin"})
            return httpx.Response(200, headers={"Content-Type": "text/plain"}, content=b"admin panel")

        kb = url_knowledge_base(handler, resolver=self.resolver_for({"example.com": ["93.184.216.34"]}))
        with pytest.raises(InvalidRequestError):
            run(kb.add_url("https://example.com/moved"))
        assert len(kb) == 0

    def test_unresolvable_host_is_upstream_error(self, url_knowledge_base):
        async def resolver(host):
            raise OSError("Name or service not known")

        kb = url_knowledge_base(lambda request: httpx.Response(200, content=b"never"), resolver=resolver)
        with pytest.raises(UpstreamError):
            run(kb.add_url("https://nowhere.invalid/"))

    def test_resolve_host_returns_ip_literals_unchanged(self):
        assert run(resolve_host("169.254.169.254")) == ["169.254.169.254"]
        assert run(resolve_host("::1")) == ["::1"]


class TestStore:
    """Extraction and storage as separate steps."""

    def test_extract_does_not_store(self, knowledge_base):
        extracted = knowledge_base.extract_file("notice.txt", b"Notice was sent on March 3.")
        assert extracted.filename == "notice.txt"
        assert extracted.text == "Notice was sent on March 3."
        assert len(knowledge_base) == 0

    def test_store_many_in_order(self, knowledge_base):
        existing, _ = run(knowledge_base.add_file("old.txt", b"Already known text."))
        extracted = [
            knowledge_base.extract_file("new.txt", b"Fresh text about repairs."),
            knowledge_base.extract_file("copy.txt", b"Already known text."),
        ]
        results = run(knowledge_base.store(extracted, tags=["Batch"]))
        assert [created for _, created in results] == [True, False]
        assert results[0][0].filename == "new.txt"
        assert results[1][0].id == existing.id
        assert results[1][0].tags == ["batch"]
        assert len(knowledge_base) == 2

    def test_store_nothing(self, knowledge_base):
        assert run(knowledge_base.store([])) == []
        assert len(knowledge_base) == 0


class TestQueries:
    """search, list_documents and delete."""

    @pytest.fixture
    def populated(self, knowledge_base):
        run(knowledge_base.add_file("lease.txt", b"The landlord must repair the heater after written notice.", tags=["lease"]))
        run(knowledge_base.add_file("deposit.txt", b"The deposit is returned within 21 days of move out.", tags=["deposit"]))
        run(knowledge_base.add_file("misc.txt", b"Parking rules for the building garage.", tags=["lease"]))
        return knowledge_base

    def test_search_ranks_by_overlap(self, populated):
        results = populated.search("landlord refused to repair the heater")
        assert results[0].source == "lease.txt"
        assert results[0].score == pytest.approx(0.75)
        assert all(r.source != "misc.txt" for r in results)

    def test_search_filters_by_tag(self, populated):
        results = populated.search("deposit returned", tags=["lease"])
        assert results == []

    def test_search_empty_query(self, populated):
        assert populated.search("the and of") == []

    def test_search_limit(self, populated):
        assert len(populated.search("landlord deposit", limit=1)) == 1

    def test_list_documents_pages(self, populated):
        page, total = populated.list_documents(offset=2, limit=5)
        assert total == 3
        assert [d.filename for d in page] == ["deposit.txt", "misc.txt"]

    def test_list_documents_tag(self, populated):
        page, total = populated.list_documents(tag="LEASE")
        assert total == 2
        assert [d.filename for d in page] == ["lease.txt", "misc.txt"]

    def test_list_documents_offset_past_end(self, populated):
        with pytest.raises(InvalidRequestError) as exc_info:
            populated.list_documents(offset=4)
        assert exc_info.value.message == "offset exceeds document count"

    def test_list_documents_empty_store(self, knowledge_base):
        assert knowledge_base.list_documents(offset=5) == ([], 0)

    def test_delete(self, populated):
        document = populated.list_documents()[0][0]
        run(populated.delete(document.id))
        assert len(populated) == 2
        assert not (populated.docs_dir / f"{document.id}.txt").exists()
        with pytest.raises(NotFoundError):
            run(populated.delete(document.id))

    def test_reload_from_disk(self, populated, test_settings):
        reloaded = KnowledgeBase.from_settings(test_settings)
        assert len(reloaded) == 3
        assert reloaded.search("heater")[0].source == "lease.txt"

        index = json.loads(reloaded.index_path.read_text())
        assert index["version"] == 1
        assert len(index["documents"]) == 3

    def test_stats(self, populated):
        assert populated.stats() == {"documents": 3, "chunks": 3}
