"""Plain-text body extraction from Gmail message resources."""

from __future__ import annotations

import base64
import binascii
import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHARS = 1200

_STYLE_RE = re.compile(r"<style[^>]*>.*?</style>", re.IGNORECASE | re.DOTALL)
_SCRIPT_RE = re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]*>")
_WHITESPACE_RE = re.compile(r"\s+")
_BLANK_LINES_RE = re.compile(r"\n{3,}")

# Decoded in this order, so "&amp;lt;" ends up as "<".
HTML_ENTITIES: tuple[tuple[str, str], ...] = (
    ("&nbsp;", " "),
    ("&amp;", "&"),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
)


@dataclass(frozen=True)
class LeafPart:
    """A MIME part carrying a (base64url-encoded) body."""

    mime_type: str
    data: str | None


@dataclass(frozen=True)
class CompositePart:
    """A MIME part containing nested parts."""

    mime_type: str
    children: tuple[LeafPart | CompositePart, ...]


MessagePart = LeafPart | CompositePart


def build_part_tree(part: dict[str, Any]) -> MessagePart:
    """Convert a Gmail payload dict into a LeafPart/CompositePart tree.

    Attachment parts (those carrying a filename) are left out of the tree.
    """
    mime_type = part.get("mimeType", "")
    sub_parts = part.get("parts")
    if sub_parts:
        children = tuple(
            build_part_tree(sub_part) for sub_part in sub_parts if not sub_part.get("filename")
        )
        return CompositePart(mime_type=mime_type, children=children)
    return LeafPart(mime_type=mime_type, data=(part.get("body") or {}).get("data"))


def iter_leaves(node: MessagePart) -> Iterator[LeafPart]:
    """Yield leaf parts depth-first, in document order."""
    stack: list[MessagePart] = [node]
    while stack:
        current = stack.pop()
        if isinstance(current, LeafPart):
            yield current
        else:
            stack.extend(reversed(current.children))


def decode_body(data: str) -> str:
    """Decode base64url-encoded body data."""
    # Gmail uses base64url encoding (RFC 4648 §5)
    padded = data + "=" * (4 - len(data) % 4) if len(data) % 4 else data
    return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")


def html_to_text(html: str) -> str:
    """Strip markup from an HTML body, leaving whitespace-collapsed text."""
    text = _STYLE_RE.sub("", html)
    text = _SCRIPT_RE.sub("", text)
    text = _TAG_RE.sub(" ", text)
    for entity, replacement in HTML_ENTITIES:
        text = text.replace(entity, replacement)
    return _WHITESPACE_RE.sub(" ", text).strip()


def normalize_text(text: str, max_chars: int) -> str:
    """Normalize line endings and blank lines, then cap the length."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _BLANK_LINES_RE.sub("\n\n", text).strip()
    return text[:max_chars]


class ContentExtractor:
    """Recovers the best available plain-text body of a Gmail message."""

    def __init__(self, max_chars: int = DEFAULT_MAX_CHARS) -> None:
        self._max_chars = max_chars

    def extract(self, raw_message: dict[str, Any], max_chars: int | None = None) -> str:
        """Extract plain text from a message resource (format=full).

        Strategy:
        1. The longest non-empty text/plain part anywhere in the tree.
        2. Otherwise the first text/html part that yields text, stripped of markup.
        3. A payload without parts is decoded directly.

        Never raises. Returns "" when nothing usable was found; callers fall back
        to the snippet.
        """
        limit = self._max_chars if max_chars is None else max_chars
        try:
            payload = raw_message.get("payload") or {}
            text = self._best_text(build_part_tree(payload))
        except Exception as e:
            logger.warning(
                "Content extraction failed for message %s: %s", raw_message.get("id", "?"), e
            )
            return ""
        return normalize_text(text, limit) if text else ""

    def _best_text(self, tree: MessagePart) -> str:
        best_plain = ""
        first_html = ""

        for leaf in iter_leaves(tree):
            if not leaf.data:
                continue
            if leaf.mime_type == "text/plain":
                decoded = self._decode_leaf(leaf)
                if decoded is not None:
                    decoded = decoded.strip()
                    if len(decoded) > len(best_plain):
                        best_plain = decoded
            elif leaf.mime_type == "text/html" and not first_html:
                decoded = self._decode_leaf(leaf)
                if decoded is not None:
                    first_html = html_to_text(decoded)
            elif isinstance(tree, LeafPart):
                # Single-part message of some other text type
                decoded = self._decode_leaf(leaf)
                if decoded is not None:
                    best_plain = decoded.strip()

        return best_plain or first_html

    @staticmethod
    def _decode_leaf(leaf: LeafPart) -> str | None:
        try:
            return decode_body(leaf.data or "")
        except (binascii.Error, ValueError) as e:
            logger.debug("Skipping undecodable %s part: %s", leaf.mime_type, e)
            return None
