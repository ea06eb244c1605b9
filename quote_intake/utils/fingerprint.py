"""
Content fingerprinting for deduplication.

A fingerprint is the protocol Message-ID (when the input is an email that
carries one) plus a SHA-256 over the canonicalized plain body and subject.
Byte-identical input always yields an identical fingerprint; so does input
that differs only in line endings, trailing blanks or transport headers.
Inputs without a text body (images, PDFs) are hashed over their raw bytes.
"""
from __future__ import annotations

import hashlib
import re
import unicodedata
from typing import Dict, Mapping, Optional, Union

from ..models import Fingerprint
from .email_utils import (
    decode_header_value,
    extract_bodies,
    get_effective_message,
    html_to_text,
    looks_like_email,
    parse_email,
)

Raw = Union[bytes, str]

MESSAGE_MIME = "message/rfc822"
HEADER_KEYS = ("from", "to", "subject", "date", "message-id")

_HTML_HINT_RE = re.compile(r"<\s*(?:html|body|div|p|br|table)\b", re.IGNORECASE)
_MULTI_BLANK_RE = re.compile(r"\n{3,}")
_WS_RE = re.compile(r"\s+")


def _as_bytes(raw: Raw) -> bytes:
    return raw.encode("utf-8") if isinstance(raw, str) else bytes(raw)


def _as_text(raw: Raw) -> str:
    return raw if isinstance(raw, str) else bytes(raw).decode("utf-8", errors="replace")


def normalize_line_endings(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def _base_mime(mime_type: Optional[str]) -> str:
    return (mime_type or "").split(";")[0].strip().lower()


def is_message(raw: Raw, mime_type: Optional[str] = None) -> bool:
    """Declared message/rfc822, or sniffed as one when no MIME type is known."""
    if mime_type:
        return _base_mime(mime_type) == MESSAGE_MIME
    return looks_like_email(_as_text(raw))


def parse_headers(raw: Raw, mime_type: Optional[str] = None) -> Dict[str, str]:
    """from/to/subject/date/message-id of an RFC 822 message, else {}."""
    if not is_message(raw, mime_type):
        return {}
    msg = parse_email(_as_bytes(raw))
    effective, original_from = get_effective_message(msg)

    headers: Dict[str, str] = {}
    for key in HEADER_KEYS:
        # the outer message owns the protocol id; the rest come from the original
        source = msg if key == "message-id" else effective
        value = decode_header_value(source.get(key))
        if value:
            headers[key] = value
    if original_from:
        if headers.get("from"):
            headers["forwarded-by"] = headers["from"]
        headers["from"] = original_from
    return headers


def extract_plain_body(raw: Raw, mime_type: Optional[str] = None) -> str:
    """Plain text body with normalized line endings; markup is stripped."""
    text = _as_text(raw)
    mime = _base_mime(mime_type)
    if is_message(raw, mime_type):
        effective, _ = get_effective_message(parse_email(_as_bytes(raw)))
        plain, html = extract_bodies(effective)
        body = plain if plain and plain.strip() else html_to_text(html)
    elif mime == "text/html" or (not mime and _HTML_HINT_RE.search(text)):
        body = html_to_text(text)
    else:
        body = text
    return normalize_line_endings(body or "")


def canonicalize_body(body: str) -> str:
    text = unicodedata.normalize("NFC", normalize_line_endings(body or ""))
    lines = [ln.rstrip() for ln in text.split("\n")]
    text = _MULTI_BLANK_RE.sub("\n\n", "\n".join(lines))
    return text.strip()


def canonicalize_subject(subject: str | None) -> str:
    return _WS_RE.sub(" ", unicodedata.normalize("NFC", subject or "")).strip()


def from_raw(raw: Raw, headers: Mapping[str, str], body: str) -> Fingerprint:
    message_id = (headers.get("message-id") or "").strip() or None
    canonical_body = canonicalize_body(body)
    if canonical_body:
        canonical = "subject:" + canonicalize_subject(headers.get("subject")) + "\n\n" + canonical_body
        digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    else:
        digest = hashlib.sha256(_as_bytes(raw)).hexdigest()
    return Fingerprint(content_sha256=digest, message_id=message_id)
