"""
loader.py: file and URL boundary for timesheet-doctor

Public API:
    text = read_local_file("exports/march.csv")
    text = fetch_published_sheet("https://docs.google.com/spreadsheets/d/e/.../pub?output=csv")
    text = load_source(path_or_url)

Everything returned is decoded text ready for the ingestion pipeline.
Transport problems (missing file, HTTP errors, HTML login pages, oversized
bodies) raise ``SourceError`` with a message fit to show a user.
"""

from __future__ import annotations

import itertools
import logging
import re
import threading
from pathlib import Path
from typing import Optional
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

import chardet
import requests

logger = logging.getLogger(__name__)

TEXT_FORMATS = {".csv", ".txt"}
MAX_REMOTE_FILE_MB = 100
MAX_REMOTE_FILE_BYTES = MAX_REMOTE_FILE_MB * 1024 * 1024
DEFAULT_TIMEOUT = 60
BOM = "\ufeff"

SHEET_EDIT_RE = re.compile(r"/spreadsheets/d/(?!e/)([^/]+)")
SHEET_PUBLISHED_RE = re.compile(r"/spreadsheets/d/e/([^/]+)")
GID_FRAGMENT_RE = re.compile(r"gid=(\d+)")


class SourceError(ValueError):
    """Raised when input text cannot be obtained from a file or URL."""


# ══════════════════════════════════════════════════════════════════════════════
# DECODING
# ══════════════════════════════════════════════════════════════════════════════

def _detect_encoding_info(raw: bytes) -> dict:
    """
    Detect encoding from raw bytes.

    Returns dict with: detected, confidence, is_utf8.
    """
    result = chardet.detect(raw)
    detected = result.get("encoding") or "unknown"
    confidence = round(result.get("confidence") or 0.0, 2)
    is_utf8 = detected.upper().replace("-", "") in ("UTF8", "UTF8SIG", "ASCII")
    return {
        "detected": detected,
        "confidence": confidence,
        "is_utf8": is_utf8,
    }


def _read_text_safely(raw: bytes, preferred_encoding: str) -> str:
    """
    Decode raw bytes line-by-line.

    Strategy per line:
      1. Try UTF-8
      2. Try preferred_encoding (chardet result)
      3. Try latin-1
      4. CP1252 with replace (never crashes)

    Also strips embedded null bytes.
    """
    decoded_lines: list[str] = []
    for raw_line in raw.split(b"\n"):
        decoded: str | None = None
        for enc in ("utf-8", preferred_encoding, "latin-1"):
            if not enc or enc == "unknown":
                continue
            try:
                decoded = raw_line.decode(enc)
                break
            except (LookupError, UnicodeDecodeError):
                continue
        if decoded is None:
            decoded = raw_line.decode("cp1252", errors="replace")
        decoded_lines.append(decoded.replace("\x00", ""))
    return "\n".join(decoded_lines)


def decode_bytes(raw: bytes) -> str:
    """Decode a CSV body, dropping a leading byte order mark."""
    if not raw:
        return ""
    info = _detect_encoding_info(raw[:200_000])
    if not info["is_utf8"]:
        logger.info("Decoding input as %s (confidence %.2f)", info["detected"], info["confidence"])
    text = _read_text_safely(raw, info["detected"])
    return text[1:] if text.startswith(BOM) else text


def looks_like_html(text: str) -> bool:
    head = text.lstrip()[:512].lower()
    return head.startswith("<!doctype html") or "<html" in text.lower()


# ══════════════════════════════════════════════════════════════════════════════
# LOCAL FILES
# ══════════════════════════════════════════════════════════════════════════════

def read_local_file(path: str | Path) -> str:
    path = Path(path)
    if not path.exists():
        raise SourceError(f"File not found: {path}")
    if path.is_dir():
        raise SourceError(f"Expected a file, got a directory: {path}")
    if path.suffix.lower() not in TEXT_FORMATS:
        raise SourceError(
            f"Unsupported file type '{path.suffix or '[none]'}'. Upload a .csv or .txt export."
        )
    try:
        raw = path.read_bytes()
    except OSError as exc:
        raise SourceError(f"Could not read {path}: {exc}") from exc
    text = decode_bytes(raw)
    logger.info("Read %d bytes from %s", len(raw), path)
    return text


# ══════════════════════════════════════════════════════════════════════════════
# PUBLISHED SHEETS
# ══════════════════════════════════════════════════════════════════════════════

def is_url(value: str) -> bool:
    return urlparse(value.strip()).scheme in {"http", "https"}


def normalize_sheet_url(raw_url: str) -> str:
    """Turn a Google Sheets link into its CSV download form.

    ``/edit`` links become ``/export?format=csv`` (keeping the tab ``gid``);
    ``/pubhtml`` and ``/pub`` links get ``output=csv``. Other URLs are only
    trimmed.
    """
    parsed = urlparse(raw_url.strip())
    if not parsed.scheme:
        raise SourceError("URL must start with http:// or https://")

    host = parsed.netloc.lower()
    path = parsed.path
    query = parse_qs(parsed.query, keep_blank_values=True)

    if host == "docs.google.com":
        published = SHEET_PUBLISHED_RE.search(path)
        if published and (path.endswith("/pub") or path.endswith("/pubhtml")):
            query["output"] = ["csv"]
            new_path = re.sub(r"/pubhtml$", "/pub", path)
            return urlunparse(parsed._replace(path=new_path, query=urlencode(query, doseq=True), fragment=""))

        sheet_match = SHEET_EDIT_RE.search(path)
        if sheet_match and not path.endswith("/export"):
            gid = query.get("gid", [None])[0]
            if gid is None:
                fragment_gid = GID_FRAGMENT_RE.search(parsed.fragment)
                gid = fragment_gid.group(1) if fragment_gid else "0"
            return (
                f"https://docs.google.com/spreadsheets/d/{sheet_match.group(1)}/export"
                f"?format=csv&gid={gid}"
            )

    return raw_url.strip()


def _download(url: str, session, timeout: float) -> bytes:
    try:
        response = session.get(url, timeout=timeout, allow_redirects=True, stream=True)
    except requests.RequestException as exc:
        raise SourceError(f"Could not reach {url}: {exc}") from exc

    try:
        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            raise SourceError(f"HTTP error {response.status_code} while fetching {url}") from exc

        content_length = response.headers.get("Content-Length")
        if content_length:
            try:
                declared_size = int(content_length)
            except ValueError:
                declared_size = None
            if declared_size and declared_size > MAX_REMOTE_FILE_BYTES:
                raise SourceError(f"Remote file is larger than {MAX_REMOTE_FILE_MB} MB.")

        chunks: list[bytes] = []
        downloaded = 0
        try:
            for chunk in response.iter_content(chunk_size=1024 * 1024):
                if not chunk:
                    continue
                downloaded += len(chunk)
                if downloaded > MAX_REMOTE_FILE_BYTES:
                    raise SourceError(f"Remote file is larger than {MAX_REMOTE_FILE_MB} MB.")
                chunks.append(chunk)
        except requests.RequestException as exc:
            raise SourceError(f"Download from {url} was interrupted: {exc}") from exc
    finally:
        response.close()
    return b"".join(chunks)


def fetch_published_sheet(
    raw_url: str,
    session: Optional[requests.Session] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> str:
    """Download a published sheet and return its decoded CSV text."""
    url = normalize_sheet_url(raw_url)
    if "output=csv" not in url and "format=csv" not in url:
        logger.warning("URL does not look like a CSV export (missing output=csv): %s", url)

    raw = _download(url, session or requests, timeout)
    text = decode_bytes(raw)
    if looks_like_html(text):
        raise SourceError(
            "The link returned a web page instead of CSV. Publish the sheet to the web "
            "as CSV (File > Share > Publish to web) and use that link."
        )
    logger.info("Fetched %d bytes from %s", len(raw), url)
    return text


def load_source(
    source: str | Path,
    session: Optional[requests.Session] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> str:
    if isinstance(source, str) and is_url(source):
        return fetch_published_sheet(source, session=session, timeout=timeout)
    return read_local_file(source)


# ══════════════════════════════════════════════════════════════════════════════
# STALE-RESPONSE GUARD
# ══════════════════════════════════════════════════════════════════════════════

class LatestRequestGuard:
    """Hands out increasing request tokens and accepts only the newest result.

    Typical use::

        token = guard.begin()
        text = fetch_published_sheet(url)
        if guard.is_current(token):
            show(text)
    """

    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self._latest = 0
        self._lock = threading.Lock()

    @property
    def latest(self) -> int:
        with self._lock:
            return self._latest

    def begin(self) -> int:
        with self._lock:
            self._latest = next(self._counter)
            return self._latest

    def is_current(self, token: int) -> bool:
        with self._lock:
            return token == self._latest

    def accept(self, token: int, result):
        """Return ``result`` when ``token`` is the latest, otherwise ``None``."""
        if self.is_current(token):
            return result
        logger.warning("Discarding stale response for request %d (latest is %d)", token, self.latest)
        return None
