"""RSS feed parsing and episode metadata extraction.

The feed is read as a stream of XML events. Every ``<item>`` is cut out of the
stream as its own fragment and parsed independently, so one broken item is
logged and dropped while the rest of the feed still parses.
"""

from __future__ import annotations

import codecs
import io
import logging
import re
import xml.etree.ElementTree as ET  # nosec B405 - parsing handled via defusedxml safe APIs
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import List, Optional, Tuple, Union

from defusedxml import DefusedXmlException
from defusedxml.ElementTree import iterparse as safe_iterparse, ParseError

from . import models
from .exceptions import FeedDocumentError

logger = logging.getLogger(__name__)

ITEM_TAG = "item"
TITLE_TAG = "title"
PUB_DATE_TAG = "pubDate"
ENCLOSURE_TAG = "enclosure"
ENCLOSURE_URL_ATTR = "url"

# parse_item accepts either a whole <item> or just its children, so the
# fragment is always parsed inside a synthetic root element.
_FRAGMENT_OPEN = "<fragment>"
_FRAGMENT_CLOSE = "</fragment>"

DEFAULT_DOCUMENT_ENCODING = "utf-8"

# encoding="..." pseudo-attribute of a leading XML declaration
_TEXT_DECLARED_ENCODING = re.compile(
    r"""\A\ufeff?<\?xml\b[^>]*?(\s+encoding\s*=\s*(["'])[^"']*\2)"""
)
_BYTES_DECLARED_ENCODING = re.compile(
    rb"""\A(?:\xef\xbb\xbf)?<\?xml\b[^>]*?\sencoding\s*=\s*["']([A-Za-z0-9._-]+)["']"""
)


def parse_pub_date(value: str) -> datetime:
    """Parse an RFC 2822 date into a naive datetime.

    The offset is dropped and the wall-clock time is kept as written in the
    feed, e.g. ``Mon, 01 Jan 2024 10:00:00 -0500`` becomes ``2024-01-01 10:00``.

    Raises:
        ValueError: If the value is not a valid RFC 2822 date
    """
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, IndexError) as exc:
        raise ValueError(f"not an RFC 2822 date: {value!r}") from exc
    if parsed is None:
        raise ValueError(f"not an RFC 2822 date: {value!r}")
    return parsed.replace(tzinfo=None)


def _element_text(elem: ET.Element) -> str:
    return "".join(elem.itertext()).strip()


def _document_encoding(data: bytes) -> str:
    match = _BYTES_DECLARED_ENCODING.match(data)
    if match is None:
        return DEFAULT_DOCUMENT_ENCODING
    name = match.group(1).decode("ascii")
    try:
        codecs.lookup(name)
    except LookupError:
        return DEFAULT_DOCUMENT_ENCODING
    return name


def _document_bytes(xml_text: Union[str, bytes]) -> Tuple[bytes, int, int]:
    """Return the bytes handed to expat, plus where and how much was cut from them.

    Text is already decoded, so it is encoded as UTF-8 and any ``encoding=``
    in its XML declaration is removed; otherwise expat would decode it again
    with the declared charset. The cut position and length (in bytes) let
    error offsets be reported against the UTF-8 form of the text as given.
    """
    if not isinstance(xml_text, str):
        return xml_text, 0, 0
    match = _TEXT_DECLARED_ENCODING.match(xml_text)
    if match is None:
        return xml_text.encode("utf-8"), 0, 0
    head = xml_text[: match.start(1)]
    data = (head + xml_text[match.end(1) :]).encode("utf-8")
    # the pseudo-attribute is pure ASCII, so characters and bytes agree
    return data, len(head.encode("utf-8")), len(match.group(1))


def _error_offset(
    data: bytes, exc: ParseError, encoding: str = DEFAULT_DOCUMENT_ENCODING
) -> Optional[int]:
    """Convert an expat (line, column) position into a byte offset.

    Expat counts the column in characters, so the failing line is decoded to
    find how many bytes those characters occupy.
    """
    position = getattr(exc, "position", None)
    if not position:
        return None
    line, column = position
    lines = data.split(b"\n")
    line_start = sum(len(chunk) + 1 for chunk in lines[: line - 1])
    if line > len(lines):
        return line_start + column
    text = lines[line - 1].decode(encoding, "surrogateescape")
    return line_start + len(text[:column].encode(encoding, "surrogateescape"))


def parse_item(xml_fragment: str) -> models.ItemParseResult:
    """Parse one RSS item into an Episode.

    Only ``title``, ``pubDate`` and ``enclosure`` (its ``url`` attribute) are
    read; every other element is ignored. A later occurrence of a recognized
    element overwrites an earlier one.

    Args:
        xml_fragment: Markup of a single ``<item>`` or of its children

    Returns:
        An Episode, or an ItemFailure describing why none could be built.
        This function never raises for malformed input.
    """
    builder = models.EpisodeBuilder(raw_xml=xml_fragment)
    wrapped = f"{_FRAGMENT_OPEN}{xml_fragment}{_FRAGMENT_CLOSE}".encode("utf-8")

    try:
        for _, elem in safe_iterparse(io.BytesIO(wrapped), events=("end",)):
            if elem.tag == TITLE_TAG:
                builder.title = _element_text(elem)
            elif elem.tag == PUB_DATE_TAG:
                text = _element_text(elem)
                try:
                    builder.published_at = parse_pub_date(text)
                except ValueError as exc:
                    return models.ItemFailure(
                        kind="invalid_date",
                        message=f"Could not parse pubDate {text!r}: {exc}",
                        fragment=xml_fragment,
                        title=builder.title,
                    )
            elif elem.tag == ENCLOSURE_TAG:
                url = elem.get(ENCLOSURE_URL_ATTR)
                if url is not None:
                    builder.url = url.strip()
    except ParseError as exc:
        offset = _error_offset(wrapped, exc)
        if offset is not None:
            offset = max(0, offset - len(_FRAGMENT_OPEN))
        return models.ItemFailure(
            kind="malformed_xml",
            message=f"Malformed item XML: {exc}",
            fragment=xml_fragment,
            title=builder.title,
            offset=offset,
        )
    except DefusedXmlException as exc:
        return models.ItemFailure(
            kind="malformed_xml",
            message=f"Refusing to parse item XML: {exc}",
            fragment=xml_fragment,
            title=builder.title,
        )

    return builder.build()


def _log_item_failure(failure: models.ItemFailure) -> None:
    label = failure.title or "<untitled>"
    if failure.kind == "missing_fields":
        logger.error(
            "Could not parse episode %s: missing %s", label, ", ".join(failure.missing)
        )
    elif failure.kind == "invalid_date":
        logger.error("Could not parse episode %s: %s", label, failure.message)
    else:
        logger.error(
            "Could not parse episode %s: %s (byte offset %s)",
            label,
            failure.message,
            failure.offset,
        )
    logger.debug("Rejected item XML: %s", failure.fragment)


def parse_feed(xml_text: Union[str, bytes]) -> List[models.Episode]:
    """Parse an RSS document into episodes, in document order.

    Items that fail to parse are logged and skipped. Bytes are decoded using
    the document's own encoding declaration; text is taken as already
    decoded, whatever its declaration says.

    Each Episode's ``raw_xml`` is the item re-serialized from the parsed tree,
    not a byte-for-byte slice of the feed: namespace prefixes come back as
    ``ns0``-style names with their own declarations, and whitespace inside
    tags may be normalized.

    Args:
        xml_text: The full feed document

    Returns:
        Episodes for every item that parsed, possibly empty

    Raises:
        FeedDocumentError: If the document itself is not well-formed XML
    """
    episodes, _ = parse_feed_results(xml_text)
    return episodes


def parse_feed_results(
    xml_text: Union[str, bytes],
) -> Tuple[List[models.Episode], List[models.ItemFailure]]:
    """Like ``parse_feed`` but also return the rejected items."""
    data, cut_at, cut_length = _document_bytes(xml_text)
    episodes: List[models.Episode] = []
    failures: List[models.ItemFailure] = []
    item_depth = 0

    try:
        for event, elem in safe_iterparse(io.BytesIO(data), events=("start", "end")):
            if elem.tag != ITEM_TAG:
                continue
            if event == "start":
                item_depth += 1
                continue
            item_depth -= 1
            if item_depth:
                # nested <item> belongs to the enclosing fragment
                continue

            elem.tail = None
            fragment = ET.tostring(elem, encoding="unicode").strip()
            elem.clear()

            result = parse_item(fragment)
            if isinstance(result, models.ItemFailure):
                failures.append(result)
                _log_item_failure(result)
                continue
            episodes.append(result)
    except ParseError as exc:
        offset = _error_offset(data, exc, _document_encoding(data))
        if offset is not None and cut_length and offset >= cut_at:
            offset += cut_length
        logger.error("Error at position %s: %s", offset, exc)
        raise FeedDocumentError(f"Failed to parse RSS XML: {exc}", offset=offset) from exc
    except DefusedXmlException as exc:
        logger.error("Refusing to parse RSS XML: %s", exc)
        raise FeedDocumentError(f"Refusing to parse RSS XML: {exc}") from exc

    logger.debug("Parsed %s episodes (%s items rejected)", len(episodes), len(failures))
    return episodes, failures
