"""
Decode Gmail API message payloads into plain text.

A payload is the ``payload`` object of a ``users.messages.get(format="full")``
response: a MIME part with ``mimeType``, ``headers``, ``body.data``
(base64url) and optionally nested ``parts``. All text/plain parts are
concatenated and returned; HTML is only used when no plain text exists.
"""

import base64
import binascii
import logging
import re

from bs4 import BeautifulSoup

from expense_sync.models import RawMessage

logger = logging.getLogger(__name__)

_PLAIN = "text/plain"
_HTML = "text/html"

# Named entities resolved by the stripper. Anything else stays literal.
_KNOWN_ENTITIES = {"nbsp", "amp", "lt", "gt", "quot", "apos"}
# Also catches hex references and legacy entities without a semicolon,
# which the parser would otherwise resolve.
_ENTITY_PATTERN = re.compile(r"&(#[xX][0-9A-Fa-f]+|#\d+|[A-Za-z][A-Za-z0-9]*)(;?)")


def decode_message(message: dict) -> RawMessage:
    """Build a RawMessage (subject, body, headers) from a fetched message."""
    payload = message.get("payload") or {}
    headers = [
        (h.get("name", ""), h.get("value", ""))
        for h in payload.get("headers") or []
    ]
    raw = RawMessage(subject="", body=decode_body(payload), headers=headers)
    raw.subject = raw.header("Subject") or ""
    return raw


def decode_body(payload: dict) -> str:
    """Return the message body, preferring text/plain over stripped HTML."""
    plain_parts: list[str] = []
    html_parts: list[str] = []

    # Depth-first, document order: children are pushed in reverse
    stack = [(payload, True)]
    while stack:
        part, is_root = stack.pop()
        data = (part.get("body") or {}).get("data")
        if data:
            text = _decode_base64url(data)
            if text:
                mime_type = (part.get("mimeType") or "").lower()
                if mime_type == _PLAIN:
                    plain_parts.append(text)
                elif mime_type == _HTML:
                    html_parts.append(text)
                elif is_root and not mime_type.startswith("multipart/"):
                    # Single-part message without a usable type; sniff it
                    if text.lstrip().startswith("<"):
                        html_parts.append(text)
                    else:
                        plain_parts.append(text)

        children = part.get("parts") or []
        for child in reversed(children):
            stack.append((child, False))

    plain = "".join(plain_parts)
    if plain:
        return plain
    html = "".join(html_parts)
    if html:
        return html_to_text(html)
    return ""


def _decode_base64url(data: str) -> str:
    """Decode a base64url string; padding may be missing."""
    try:
        raw = base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))
    except (binascii.Error, ValueError) as e:
        logger.debug("Skipping part with malformed base64 body: %s", e)
        return ""
    return raw.decode("utf-8", errors="replace")


def html_to_text(html: str) -> str:
    """Convert HTML to a single line of plain text.

    script/style blocks are dropped, tags become spaces, and only the six
    common named entities plus printable-ASCII numeric entities are
    resolved; other entities are left as written.
    """
    soup = BeautifulSoup(_protect_entities(html), "html.parser")

    for tag in soup(["script", "style"]):
        tag.decompose()

    text = soup.get_text(separator=" ")
    text = re.sub(r"\s+", " ", text)
    return text.strip()


def _protect_entities(html: str) -> str:
    """Escape entities the parser must not resolve so they survive as text."""

    def _keep_or_escape(match: re.Match) -> str:
        name, terminated = match.group(1), match.group(2)
        if terminated:
            if name.startswith("#") and name[1:].isdigit():
                if 32 <= int(name[1:]) <= 126:
                    return match.group(0)
            elif name in _KNOWN_ENTITIES:
                return match.group(0)
        return "&amp;" + match.group(0)[1:]

    return _ENTITY_PATTERN.sub(_keep_or_escape, html)
