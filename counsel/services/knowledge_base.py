"""
Knowledge-base store for documents the assistant can quote.

Uploaded files and fetched URLs are reduced to plain text, split into
overlapping word chunks and kept on disk:

    <root>/index.json        document metadata, in creation order
    <root>/docs/<id>.txt     extracted text, one file per document

Documents are de-duplicated by the SHA-256 of their extracted text.
Retrieval is plain term overlap between the query and each chunk.
"""

import asyncio
import hashlib
import io
import ipaddress
import json
import os
import re
import socket
import tempfile
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlparse

import httpx
import structlog
from bs4 import BeautifulSoup
from PyPDF2 import PdfReader
from PyPDF2.errors import PdfReadError

from ..core.config import Settings
from ..core.errors import (
    ErrorCode,
    InvalidRequestError,
    NotFoundError,
    PayloadTooLargeError,
    UnsupportedMediaTypeError,
    UpstreamError,
)
from ..core.security import is_public_address
from ..models.schemas import KnowledgeDocument, KnowledgeReference

logger = structlog.get_logger()

TEXT_EXTENSIONS = {".txt", ".md", ".markdown", ".csv", ".json"}
HTML_EXTENSIONS = {".html", ".htm"}
PDF_EXTENSIONS = {".pdf"}
SUPPORTED_EXTENSIONS = TEXT_EXTENSIONS | HTML_EXTENSIONS | PDF_EXTENSIONS

CONTENT_TYPE_KINDS = {
    "text/plain": "text",
    "text/markdown": "text",
    "text/csv": "text",
    "application/json": "text",
    "text/html": "html",
    "application/xhtml+xml": "html",
    "application/pdf": "pdf",
}

EXCERPT_CHARS = 400

STOP_WORDS = frozenset(
    """
    a an and are as at be but by for from has have he her his i if in into is it
    its me my no not of on or our she so than that the their them then there these
    they this to was we were what when which who will with you your
    """.split()
)

_TOKEN_RE = re.compile(r"[a-z0-9]+")
_WHITESPACE_RE = re.compile(r"[ \t\f\v]+")


def tokenize(text: str) -> List[str]:
    """Lower-cased word tokens without stop words."""
    return [t for t in _TOKEN_RE.findall(text.lower()) if t not in STOP_WORDS and len(t) > 1]


def chunk_words(text: str, chunk_size: int, overlap: int) -> List[str]:
    """Split text into chunks of ``chunk_size`` words sharing ``overlap`` words."""
    words = text.split()
    if not words:
        return []
    step = max(1, chunk_size - min(overlap, chunk_size - 1))
    chunks = []
    for start in range(0, len(words), step):
        chunks.append(" ".join(words[start:start + chunk_size]))
        if start + chunk_size >= len(words):
            break
    return chunks


def normalize_text(text: str) -> str:
    lines = (_WHITESPACE_RE.sub(" ", line).strip() for line in text.splitlines())
    return "\n".join(line for line in lines if line)


def detect_kind(filename: Optional[str], content_type: Optional[str]) -> Optional[str]:
    """Map a filename or MIME type to an extractor kind (text, html, pdf)."""
    if filename:
        suffix = PurePosixPath(filename).suffix.lower()
        if suffix in TEXT_EXTENSIONS:
            return "text"
        if suffix in HTML_EXTENSIONS:
            return "html"
        if suffix in PDF_EXTENSIONS:
            return "pdf"
    if content_type:
        mime = content_type.split(";", 1)[0].strip().lower()
        if mime in CONTENT_TYPE_KINDS:
            return CONTENT_TYPE_KINDS[mime]
        if mime.startswith("text/"):
            return "text"
    return None


def extract_text(data: bytes, kind: str) -> str:
    """Extract plain text from raw bytes of the given kind."""
    if kind == "text":
        return data.decode("utf-8", errors="replace")
    if kind == "html":
        soup = BeautifulSoup(data, "html.parser")
        for tag in soup(["script", "style", "noscript"]):
            tag.decompose()
        return soup.get_text("\n")
    if kind == "pdf":
        try:
            reader = PdfReader(io.BytesIO(data))
            return "\n".join(page.extract_text() or "" for page in reader.pages)
        except (PdfReadError, ValueError) as e:
            raise InvalidRequestError(f"Could not read PDF: {e}") from e
    raise UnsupportedMediaTypeError(f"Unsupported document kind: {kind}")


Resolver = Callable[[str], Awaitable[List[str]]]


async def resolve_host(host: str) -> List[str]:
    """Resolve a host name to the IP addresses it points at."""
    try:
        ipaddress.ip_address(host.split("%", 1)[0])
        return [host]
    except ValueError:
        pass
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    return sorted({info[4][0] for info in infos})


@dataclass
class ExtractedDocument:
    """Text pulled out of one source, ready to be stored."""
    text: str
    content_type: str
    size_bytes: int
    filename: Optional[str] = None
    url: Optional[str] = None


@dataclass
class _Chunk:
    document_id: str
    index: int
    text: str
    terms: frozenset


class KnowledgeBase:
    """File-backed document store with term-overlap retrieval."""

    def __init__(
        self,
        root_dir: Path,
        chunk_size: int = 180,
        chunk_overlap: int = 30,
        max_bytes: int = 10 * 1024 * 1024,
        fetch_timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        resolver: Resolver = resolve_host,
    ):
        """Initialize the store and load any existing index.

        Args:
            root_dir: Directory holding the index and extracted texts
            chunk_size: Words per chunk
            chunk_overlap: Words shared by consecutive chunks
            max_bytes: Maximum accepted size of a file or fetched URL
            fetch_timeout: Timeout for URL ingestion in seconds
            transport: Optional httpx transport, used to fake URL fetches
            resolver: Async host name resolver used to vet fetch destinations
        """
        self.root_dir = Path(root_dir)
        self.docs_dir = self.root_dir / "docs"
        self.index_path = self.root_dir / "index.json"
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.max_bytes = max_bytes
        self.fetch_timeout = fetch_timeout
        self._transport = transport
        self._resolver = resolver
        self._lock = asyncio.Lock()
        self._documents: Dict[str, KnowledgeDocument] = {}
        self._chunks: Dict[str, List[_Chunk]] = {}

        self.docs_dir.mkdir(parents=True, exist_ok=True)
        self._load()

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "KnowledgeBase":
        return cls(
            root_dir=settings.knowledge_dir,
            chunk_size=settings.knowledge_chunk_size,
            chunk_overlap=settings.knowledge_chunk_overlap,
            max_bytes=settings.max_upload_bytes,
            fetch_timeout=settings.url_fetch_timeout,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def extract_file(
        self,
        filename: str,
        data: bytes,
        content_type: Optional[str] = None,
    ) -> ExtractedDocument:
        """Validate an uploaded file and extract its text without storing it."""
        if len(data) > self.max_bytes:
            raise PayloadTooLargeError(f"File exceeds maximum size of {self.max_bytes} bytes")

        kind = detect_kind(filename, content_type)
        if kind is None:
            raise UnsupportedMediaTypeError(
                f"Unsupported file type for {filename!r}; supported: "
                + ", ".join(sorted(SUPPORTED_EXTENSIONS))
            )

        return ExtractedDocument(
            text=_require_text(extract_text(data, kind)),
            content_type=content_type or _default_content_type(kind),
            size_bytes=len(data),
            filename=PurePosixPath(filename).name,
        )

    async def extract_url(self, url: str) -> ExtractedDocument:
        """Fetch a public http(s) URL and extract its text without storing it."""
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise InvalidRequestError(f"URL must be absolute http(s): {url}")

        data, content_type = await self._fetch(url)
        kind = detect_kind(parsed.path if PurePosixPath(parsed.path).suffix else None, content_type)
        if kind is None:
            raise UnsupportedMediaTypeError(f"Unsupported content type at {url}: {content_type or 'unknown'}")

        return ExtractedDocument(
            text=_require_text(extract_text(data, kind)),
            content_type=content_type or _default_content_type(kind),
            size_bytes=len(data),
            url=url,
        )

    async def add_file(
        self,
        filename: str,
        data: bytes,
        tags: Iterable[str] = (),
        content_type: Optional[str] = None,
    ) -> Tuple[KnowledgeDocument, bool]:
        """Ingest an uploaded file.

        Returns:
            The stored document and whether it was newly created
        """
        extracted = self.extract_file(filename, data, content_type)
        return (await self.store([extracted], tags))[0]

    async def add_url(self, url: str, tags: Iterable[str] = ()) -> Tuple[KnowledgeDocument, bool]:
        """Fetch a URL and ingest its content."""
        extracted = await self.extract_url(url)
        return (await self.store([extracted], tags))[0]

    async def _fetch(self, url: str) -> Tuple[bytes, Optional[str]]:
        try:
            async with httpx.AsyncClient(
                timeout=self.fetch_timeout,
                follow_redirects=True,
                transport=self._transport,
                event_hooks={"request": [self._check_destination]},
            ) as client:
                async with client.stream("GET", url) as response:
                    if response.status_code >= 400:
                        raise UpstreamError(f"Fetching {url} failed with status {response.status_code}")
                    declared = response.headers.get("Content-Length")
                    if declared and declared.isdigit() and int(declared) > self.max_bytes:
                        raise PayloadTooLargeError(f"Remote document exceeds maximum size of {self.max_bytes} bytes")
                    buffer = bytearray()
                    async for block in response.aiter_bytes():
                        buffer.extend(block)
                        if len(buffer) > self.max_bytes:
                            raise PayloadTooLargeError(
                                f"Remote document exceeds maximum size of {self.max_bytes} bytes"
                            )
                    return bytes(buffer), response.headers.get("Content-Type")
        except httpx.HTTPError as e:
            logger.warning("URL fetch failed", url=url, error=str(e))
            raise UpstreamError(f"Could not fetch {url}: {e}") from e

    async def _check_destination(self, request: httpx.Request) -> None:
        """Refuse requests, including redirects, aimed at non-public addresses."""
        host = request.url.host
        try:
            addresses = await self._resolver(host)
        except OSError as e:
            raise UpstreamError(f"Could not resolve {host}: {e}") from e

        if not addresses or not all(is_public_address(address) for address in addresses):
            logger.warning("Blocked fetch of non-public address", host=host, addresses=addresses)
            raise InvalidRequestError(f"URL host {host} does not resolve to a public address")

    async def store(
        self,
        extracted: List[ExtractedDocument],
        tags: Iterable[str] = (),
    ) -> List[Tuple[KnowledgeDocument, bool]]:
        """Store already extracted documents under one lock and one index write.

        Returns:
            ``(document, created)`` per input, in order; ``created`` is False
            for text that was already stored
        """
        tags = _normalize_tags(tags)
        results = []
        async with self._lock:
            for item in extracted:
                results.append(self._store_locked(item, tags))
            self._save_index()

        for document, created in results:
            if created:
                logger.info(
                    "Knowledge document stored",
                    document_id=document.id,
                    source=document.source,
                    chunks=document.chunk_count,
                    tags=tags,
                )
            else:
                logger.info("Duplicate knowledge document", document_id=document.id)
        return results

    def _store_locked(self, item: ExtractedDocument, tags: List[str]) -> Tuple[KnowledgeDocument, bool]:
        digest = hashlib.sha256(item.text.encode("utf-8")).hexdigest()
        existing = next((d for d in self._documents.values() if d.sha256 == digest), None)
        if existing is not None:
            merged = existing.tags + [t for t in tags if t not in existing.tags]
            if merged != existing.tags:
                existing = existing.model_copy(update={"tags": merged})
                self._documents[existing.id] = existing
            return existing, False

        chunks = chunk_words(item.text, self.chunk_size, self.chunk_overlap)
        document = KnowledgeDocument(
            id=f"doc_{uuid.uuid4().hex[:12]}",
            filename=item.filename,
            url=item.url,
            tags=tags,
            content_type=item.content_type,
            size_bytes=item.size_bytes,
            chunk_count=len(chunks),
            sha256=digest,
            created_at=datetime.now(timezone.utc),
        )
        _atomic_write(self.docs_dir / f"{document.id}.txt", item.text)
        self._documents[document.id] = document
        self._chunks[document.id] = self._build_chunks(document.id, chunks)
        return document, True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def search(
        self,
        query: str,
        tags: Optional[Iterable[str]] = None,
        limit: int = 5,
    ) -> List[KnowledgeReference]:
        """Return the best chunk of each matching document, highest score first.

        Score is the fraction of distinct query terms found in the chunk.
        Ties keep document creation order.
        """
        query_terms = set(tokenize(query))
        if not query_terms or limit <= 0:
            return []
        wanted_tags = set(_normalize_tags(tags or []))

        results = []
        for order, document in enumerate(self._documents.values()):
            if wanted_tags and not wanted_tags.intersection(document.tags):
                continue
            best = None
            for chunk in self._chunks.get(document.id, []):
                overlap = len(query_terms & chunk.terms)
                if overlap and (best is None or overlap > best[0]):
                    best = (overlap, chunk)
            if best is not None:
                score = round(best[0] / len(query_terms), 4)
                results.append((score, order, document, best[1]))

        results.sort(key=lambda item: (-item[0], item[1]))
        return [
            KnowledgeReference(
                document_id=document.id,
                source=document.source,
                excerpt=_excerpt(chunk.text),
                score=score,
            )
            for score, _, document, chunk in results[:limit]
        ]

    def list_documents(
        self,
        offset: int = 1,
        limit: int = 50,
        tag: Optional[str] = None,
    ) -> Tuple[List[KnowledgeDocument], int]:
        """Page through documents in creation order.

        Args:
            offset: 1-indexed position of the first document to return
            limit: Maximum number of documents
            tag: Only documents carrying this tag

        Returns:
            The page and the total number of matching documents
        """
        if offset < 1:
            raise InvalidRequestError("offset must be a 1-indexed entry number", code=ErrorCode.INVALID_OFFSET)
        if limit < 1:
            raise InvalidRequestError("limit must be greater than zero", code=ErrorCode.INVALID_LIMIT)

        documents = list(self._documents.values())
        if tag:
            tag = tag.strip().lower()
            documents = [d for d in documents if tag in d.tags]

        total = len(documents)
        if total == 0:
            return [], 0
        if offset > total:
            raise InvalidRequestError("offset exceeds document count", code=ErrorCode.INVALID_OFFSET)

        start = offset - 1
        return documents[start:start + limit], total

    def get(self, document_id: str) -> KnowledgeDocument:
        try:
            return self._documents[document_id]
        except KeyError:
            raise NotFoundError(f"Document {document_id} not found") from None

    async def delete(self, document_id: str) -> None:
        async with self._lock:
            if document_id not in self._documents:
                raise NotFoundError(f"Document {document_id} not found")
            del self._documents[document_id]
            self._chunks.pop(document_id, None)
            self._save_index()
            text_path = self.docs_dir / f"{document_id}.txt"
            if text_path.exists():
                text_path.unlink()
        logger.info("Knowledge document deleted", document_id=document_id)

    def stats(self) -> Dict[str, int]:
        return {
            "documents": len(self._documents),
            "chunks": sum(len(chunks) for chunks in self._chunks.values()),
        }

    def __len__(self) -> int:
        return len(self._documents)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _build_chunks(self, document_id: str, chunks: List[str]) -> List[_Chunk]:
        return [
            _Chunk(document_id=document_id, index=i, text=text, terms=frozenset(tokenize(text)))
            for i, text in enumerate(chunks)
        ]

    def _load(self) -> None:
        if not self.index_path.exists():
            return
        try:
            raw = json.loads(self.index_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise RuntimeError(f"Knowledge index at {self.index_path} is unreadable: {e}") from e

        for entry in raw.get("documents", []):
            document = KnowledgeDocument.model_validate(entry)
            text_path = self.docs_dir / f"{document.id}.txt"
            if not text_path.exists():
                logger.warning("Missing text for indexed document", document_id=document.id)
                continue
            text = text_path.read_text(encoding="utf-8")
            self._documents[document.id] = document
            self._chunks[document.id] = self._build_chunks(
                document.id, chunk_words(text, self.chunk_size, self.chunk_overlap)
            )
        logger.info("Knowledge base loaded", path=str(self.root_dir), documents=len(self._documents))

    def _save_index(self) -> None:
        payload = {
            "version": 1,
            "documents": [d.model_dump(mode="json") for d in self._documents.values()],
        }
        _atomic_write(self.index_path, json.dumps(payload, indent=2))


def _require_text(raw: str) -> str:
    text = normalize_text(raw)
    if not text:
        raise InvalidRequestError(
            "No text could be extracted from the document",
            code=ErrorCode.EMPTY_DOCUMENT,
        )
    return text


def _normalize_tags(tags: Iterable[str]) -> List[str]:
    normalized = []
    for tag in tags:
        tag = str(tag).strip().lower()
        if tag and tag not in normalized:
            normalized.append(tag)
    return normalized


def _excerpt(text: str) -> str:
    if len(text) <= EXCERPT_CHARS:
        return text
    cut = text[:EXCERPT_CHARS].rsplit(" ", 1)[0]
    return f"{cut}..."


def _default_content_type(kind: str) -> str:
    return {"text": "text/plain", "html": "text/html", "pdf": "application/pdf"}[kind]


def _atomic_write(path: Path, content: str) -> None:
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise
