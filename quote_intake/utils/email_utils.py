from email import message_from_bytes
from email.header import decode_header, make_header
from email.message import Message
from email.utils import parseaddr
from typing import Optional, Tuple
import logging
import re

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

# Header names that mark the start of an RFC 822 message.
KNOWN_HEADERS = ("from", "to", "cc", "subject", "date", "message-id", "reply-to",
                 "mime-version", "received", "return-path", "content-type")

_HEADER_LINE_RE = re.compile(r"^([A-Za-z][A-Za-z0-9\-]*):[ \t]*(.*)$")


def parse_email(raw_bytes: bytes) -> Message:
    return message_from_bytes(raw_bytes)


def looks_like_email(text: str) -> bool:
    """True when the text opens with an RFC 822 header block naming known headers.

    The block must be closed by a blank line; "Key: value" lines running to
    the end of the text are a form, not a message.
    """
    lines = text.lstrip("\r\n").splitlines()
    seen = set()
    closed = False
    for line in lines:
        if not line.strip():
            closed = True
            break
        if line[:1] in (" ", "\t"):
            continue  # folded continuation
        m = _HEADER_LINE_RE.match(line)
        if not m:
            return False
        seen.add(m.group(1).lower())
    return closed and bool(seen & {"from", "subject", "message-id", "date", "to"})


def decode_header_value(value) -> str:
    if value is None:
        return ""
    try:
        return str(make_header(decode_header(str(value)))).strip()
    except Exception:
        return str(value).strip()


def html_to_text(html: Optional[str]) -> str:
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    for br in soup.find_all("br"):
        br.replace_with("\n")
    return soup.get_text(separator="\n")


def _decode_part(part: Message) -> str:
    payload = part.get_payload(decode=True) or b""
    charset = part.get_content_charset() or "utf-8"
    try:
        return payload.decode(charset, errors="replace")
    except LookupError:
        return payload.decode("utf-8", errors="replace")


def extract_bodies(msg: Message) -> Tuple[Optional[str], Optional[str]]:
    """Return (plain_text, html) of the message, skipping attachments."""
    if msg.is_multipart():
        plain, html = None, None
        for part in msg.walk():
            if part.get_content_type() == "message/rfc822":
                break  # stop at an embedded original, it is handled separately
            disp = str(part.get("Content-Disposition") or "").lower()
            if "attachment" in disp:
                continue
            ctype = part.get_content_type()
            if ctype == "text/plain" and plain is None:
                plain = _decode_part(part)
            elif ctype == "text/html" and html is None:
                html = _decode_part(part)
        return plain, html

    ctype = msg.get_content_type()
    if ctype == "text/html":
        return None, _decode_part(msg)
    if ctype == "text/plain":
        return _decode_part(msg), None
    payload = msg.get_payload(decode=True)
    if isinstance(payload, (bytes, bytearray)):
        return payload.decode("utf-8", errors="replace"), None
    return None, None


def extract_embedded_rfc822(msg: Message) -> Optional[Message]:
    """Return the first embedded original message (message/rfc822), if any."""
    for part in msg.walk():
        if part.get_content_type() != "message/rfc822":
            continue
        payload = part.get_payload()
        # some clients give a list, others the message itself
        if isinstance(payload, list) and payload and isinstance(payload[0], Message):
            return payload[0]
        if isinstance(payload, Message):
            return payload
        raw = part.get_payload(decode=True)
        if raw:
            return message_from_bytes(raw)
    return None


def extract_original_from_header(msg: Message) -> Optional[str]:
    """Original sender from forwarding/redirect headers (Gmail, Apple Mail, Resent-*)."""
    for name in ("X-Google-Original-From", "X-Original-From", "Original-From", "Resent-From"):
        val = msg.get(name)
        if val and parseaddr(str(val))[1]:
            return decode_header_value(val)
    return None


_QUOTED_FROM_PATTERNS = [
    re.compile(r"^(?:From|Von|De|Van)\s*:\s*(.*?)\s*<([^>]+@[^>]+)>", re.IGNORECASE),
    re.compile(r"^(?:From|Von|De|Van)\s*:\s*<?([^\s<>@]+@[^\s<>]+)>?", re.IGNORECASE),
]


def extract_original_from_body(text: str) -> Optional[str]:
    """Recover the sender of an inline-forwarded message from its quoted header block.

    The last block wins: in cascaded forwards it is the deepest original.
    """
    last = None
    for line in (ln.strip() for ln in text.splitlines()):
        if not line:
            continue
        for pat in _QUOTED_FROM_PATTERNS:
            m = pat.search(line)
            if not m:
                continue
            if len(m.groups()) == 2:
                name, addr = m.group(1).strip(' "\''), m.group(2).strip()
                last = f"{name} <{addr}>" if name else addr
            else:
                last = m.group(1).strip()
            break
    return last


def get_effective_message(msg: Message) -> Tuple[Message, Optional[str]]:
    """Prefer an embedded original message; otherwise detect the original sender.

    Returns (message, original_from). ``original_from`` is None when the
    message does not look forwarded.
    """
    inner = extract_embedded_rfc822(msg)
    if inner is not None:
        logger.debug("using embedded message/rfc822 part")
        return inner, None

    original_from = extract_original_from_header(msg)
    if not original_from:
        subject = decode_header_value(msg.get("Subject")).lower()
        if subject.startswith(("fw:", "fwd:", "wg:", "tr:")):
            plain, html = extract_bodies(msg)
            original_from = extract_original_from_body(plain or html_to_text(html))
    return msg, original_from
