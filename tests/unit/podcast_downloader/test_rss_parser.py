#!/usr/bin/env python3
"""Tests for RSS parsing functionality."""

import importlib.util
import sys
import unittest
from datetime import datetime
from pathlib import Path

import pytest

from podcast_downloader import models, rss_parser
from podcast_downloader.exceptions import FeedDocumentError

parent_tests_dir = Path(__file__).parent.parent.parent
if str(parent_tests_dir) not in sys.path:
    sys.path.insert(0, str(parent_tests_dir))

parent_conftest_path = parent_tests_dir / "conftest.py"
spec = importlib.util.spec_from_file_location("parent_conftest", parent_conftest_path)
if spec is None or spec.loader is None:
    raise ImportError(f"Could not load conftest from {parent_conftest_path}")
parent_conftest = importlib.util.module_from_spec(spec)
spec.loader.exec_module(parent_conftest)

build_item_xml = parent_conftest.build_item_xml
build_rss_xml = parent_conftest.build_rss_xml
TEST_EPISODE_TITLE = parent_conftest.TEST_EPISODE_TITLE
TEST_MEDIA_URL = parent_conftest.TEST_MEDIA_URL
TEST_PUB_DATE = parent_conftest.TEST_PUB_DATE
TEST_PUB_DATETIME = parent_conftest.TEST_PUB_DATETIME

pytestmark = pytest.mark.unit

ITUNES_NS = "http://www.itunes.com/dtds/podcast-1.0.dtd"


class TestParsePubDate(unittest.TestCase):
    """Tests for parse_pub_date."""

    def test_utc_date(self):
        self.assertEqual(rss_parser.parse_pub_date(TEST_PUB_DATE), TEST_PUB_DATETIME)

    def test_offset_is_dropped_keeping_wall_clock(self):
        """The feed's local wall-clock time is kept, not converted to UTC."""
        result = rss_parser.parse_pub_date("Mon, 01 Jan 2024 10:00:00 -0500")
        self.assertEqual(result, datetime(2024, 1, 1, 10, 0, 0))
        self.assertIsNone(result.tzinfo)

    def test_invalid_date_raises(self):
        with self.assertRaises(ValueError):
            rss_parser.parse_pub_date("yesterday at noon")

    def test_empty_date_raises(self):
        with self.assertRaises(ValueError):
            rss_parser.parse_pub_date("")


class TestParseItem(unittest.TestCase):
    """Tests for parse_item."""

    def test_complete_item(self):
        fragment = build_item_xml(TEST_EPISODE_TITLE, TEST_PUB_DATE, TEST_MEDIA_URL)
        result = rss_parser.parse_item(fragment)
        self.assertIsInstance(result, models.Episode)
        self.assertEqual(result.title, TEST_EPISODE_TITLE)
        self.assertEqual(result.url, TEST_MEDIA_URL)
        self.assertEqual(result.published_at, TEST_PUB_DATETIME)
        self.assertEqual(result.raw_xml, fragment)

    def test_children_without_item_wrapper(self):
        fragment = (
            f"<title>{TEST_EPISODE_TITLE}</title>"
            f"<pubDate>{TEST_PUB_DATE}</pubDate>"
            f'<enclosure url="{TEST_MEDIA_URL}"/>'
        )
        result = rss_parser.parse_item(fragment)
        self.assertIsInstance(result, models.Episode)
        self.assertEqual(result.title, TEST_EPISODE_TITLE)

    def test_missing_enclosure(self):
        fragment = build_item_xml(TEST_EPISODE_TITLE, TEST_PUB_DATE, None)
        result = rss_parser.parse_item(fragment)
        self.assertIsInstance(result, models.ItemFailure)
        self.assertEqual(result.kind, "missing_fields")
        self.assertEqual(result.missing, ("url",))
        self.assertEqual(result.title, TEST_EPISODE_TITLE)
        self.assertEqual(result.fragment, fragment)

    def test_enclosure_without_url_attribute(self):
        fragment = (
            f"<item><title>{TEST_EPISODE_TITLE}</title><pubDate>{TEST_PUB_DATE}</pubDate>"
            '<enclosure type="audio/mpeg"/></item>'
        )
        result = rss_parser.parse_item(fragment)
        self.assertIsInstance(result, models.ItemFailure)
        self.assertEqual(result.missing, ("url",))

    def test_all_fields_missing(self):
        result = rss_parser.parse_item("<item><description>nothing</description></item>")
        self.assertIsInstance(result, models.ItemFailure)
        self.assertEqual(result.missing, ("title", "published_at", "url"))
        self.assertIn("title", result.message)

    def test_empty_title_counts_as_missing(self):
        fragment = build_item_xml("", TEST_PUB_DATE, TEST_MEDIA_URL)
        result = rss_parser.parse_item(fragment)
        self.assertIsInstance(result, models.ItemFailure)
        self.assertEqual(result.missing, ("title",))

    def test_invalid_date(self):
        fragment = build_item_xml(TEST_EPISODE_TITLE, "not a date", TEST_MEDIA_URL)
        result = rss_parser.parse_item(fragment)
        self.assertIsInstance(result, models.ItemFailure)
        self.assertEqual(result.kind, "invalid_date")
        self.assertIn("not a date", result.message)

    def test_malformed_fragment(self):
        fragment = f"<item><title>{TEST_EPISODE_TITLE}</title><pubDate></item>"
        result = rss_parser.parse_item(fragment)
        self.assertIsInstance(result, models.ItemFailure)
        self.assertEqual(result.kind, "malformed_xml")
        self.assertIsNotNone(result.offset)
        self.assertGreaterEqual(result.offset, 0)

    def test_later_occurrence_overwrites_earlier(self):
        fragment = (
            "<item><title>First</title><title>Second</title>"
            f"<pubDate>{TEST_PUB_DATE}</pubDate>"
            '<enclosure url="https://example.com/a.mp3"/>'
            '<enclosure url="https://example.com/b.mp3"/></item>'
        )
        result = rss_parser.parse_item(fragment)
        self.assertIsInstance(result, models.Episode)
        self.assertEqual(result.title, "Second")
        self.assertEqual(result.url, "https://example.com/b.mp3")

    def test_namespaced_title_is_ignored(self):
        fragment = (
            f'<item xmlns:itunes="{ITUNES_NS}">'
            "<itunes:title>Namespaced</itunes:title>"
            f"<pubDate>{TEST_PUB_DATE}</pubDate>"
            f'<enclosure url="{TEST_MEDIA_URL}"/></item>'
        )
        result = rss_parser.parse_item(fragment)
        self.assertIsInstance(result, models.ItemFailure)
        self.assertEqual(result.missing, ("title",))

    def test_cdata_and_whitespace_in_title(self):
        fragment = build_item_xml(
            "  <![CDATA[Rock & Roll]]>  ", TEST_PUB_DATE, TEST_MEDIA_URL
        )
        result = rss_parser.parse_item(fragment)
        self.assertIsInstance(result, models.Episode)
        self.assertEqual(result.title, "Rock & Roll")


class TestParseFeed(unittest.TestCase):
    """Tests for parse_feed and parse_feed_results."""

    def test_episodes_in_document_order(self):
        xml = build_rss_xml(
            [
                build_item_xml("One", TEST_PUB_DATE, "https://example.com/1.mp3"),
                build_item_xml("Two", TEST_PUB_DATE, "https://example.com/2.mp3"),
                build_item_xml("Three", TEST_PUB_DATE, "https://example.com/3.mp3"),
            ]
        )
        episodes = rss_parser.parse_feed(xml)
        self.assertEqual([e.title for e in episodes], ["One", "Two", "Three"])

    def test_bad_item_is_logged_and_skipped(self):
        xml = build_rss_xml(
            [
                build_item_xml(TEST_EPISODE_TITLE, TEST_PUB_DATE, TEST_MEDIA_URL),
                build_item_xml("Broken", TEST_PUB_DATE, None),
            ]
        )
        with self.assertLogs("podcast_downloader.rss_parser", level="ERROR") as captured:
            episodes, failures = rss_parser.parse_feed_results(xml)

        self.assertEqual([e.title for e in episodes], [TEST_EPISODE_TITLE])
        self.assertEqual(len(failures), 1)
        self.assertEqual(failures[0].title, "Broken")
        self.assertEqual(len(captured.records), 1)
        self.assertIn("Broken", captured.output[0])

    def test_empty_channel(self):
        self.assertEqual(rss_parser.parse_feed(build_rss_xml([])), [])

    def test_item_fragment_is_kept_on_episode(self):
        xml = build_rss_xml([build_item_xml(TEST_EPISODE_TITLE, TEST_PUB_DATE, TEST_MEDIA_URL)])
        (episode,) = rss_parser.parse_feed(xml)
        self.assertTrue(episode.raw_xml.startswith("<item>"))
        self.assertIn(TEST_MEDIA_URL, episode.raw_xml)

    def test_bytes_with_declared_encoding(self):
        xml = (
            b'<?xml version="1.0" encoding="ISO-8859-1"?>'
            b"<rss><channel><item><title>Caf\xe9</title>"
            + f"<pubDate>{TEST_PUB_DATE}</pubDate>".encode("ascii")
            + f'<enclosure url="{TEST_MEDIA_URL}"/>'.encode("ascii")
            + b"</item></channel></rss>"
        )
        (episode,) = rss_parser.parse_feed(xml)
        self.assertEqual(episode.title, "Café")

    def test_text_with_declared_encoding(self):
        xml = (
            '<?xml version="1.0" encoding="ISO-8859-1"?>'
            "<rss><channel><item><title>Café</title>"
            f"<pubDate>{TEST_PUB_DATE}</pubDate>"
            f'<enclosure url="{TEST_MEDIA_URL}"/>'
            "</item></channel></rss>"
        )
        (episode,) = rss_parser.parse_feed(xml)
        self.assertEqual(episode.title, "Café")

    def test_raw_xml_parses_back_to_the_same_episode(self):
        xml = (
            f'<rss version="2.0" xmlns:itunes="{ITUNES_NS}"><channel>'
            f"<item><title>{TEST_EPISODE_TITLE}</title>"
            "<itunes:duration>12:34</itunes:duration>"
            f"<pubDate>{TEST_PUB_DATE}</pubDate>"
            f'<enclosure url="{TEST_MEDIA_URL}"/></item>'
            "</channel></rss>"
        )
        (episode,) = rss_parser.parse_feed(xml)
        self.assertEqual(rss_parser.parse_item(episode.raw_xml), episode)

    def test_namespaced_extensions_do_not_break_items(self):
        xml = (
            f'<rss version="2.0" xmlns:itunes="{ITUNES_NS}"><channel>'
            f"<item><title>{TEST_EPISODE_TITLE}</title>"
            "<itunes:duration>12:34</itunes:duration>"
            f"<pubDate>{TEST_PUB_DATE}</pubDate>"
            f'<enclosure url="{TEST_MEDIA_URL}"/></item>'
            "</channel></rss>"
        )
        (episode,) = rss_parser.parse_feed(xml)
        self.assertEqual(episode.title, TEST_EPISODE_TITLE)

    def test_malformed_document_raises_with_offset(self):
        xml = "<rss><channel><item><title>Hello</title></channel></rss>"
        with self.assertLogs("podcast_downloader.rss_parser", level="ERROR"):
            with self.assertRaises(FeedDocumentError) as ctx:
                rss_parser.parse_feed(xml)
        self.assertIsNotNone(ctx.exception.offset)
        self.assertIn("byte offset", str(ctx.exception))

    def _document_error_offset(self, xml):
        with self.assertLogs("podcast_downloader.rss_parser", level="ERROR"):
            with self.assertRaises(FeedDocumentError) as ctx:
                rss_parser.parse_feed(xml)
        return ctx.exception.offset

    def test_offset_counts_bytes_of_multibyte_characters(self):
        template = "<rss><channel><title>{}</title><item></chan></rss>"
        ascii_offset = self._document_error_offset(template.format("eeeee").encode("utf-8"))
        data = template.format("ééééé").encode("utf-8")

        offset = self._document_error_offset(data)

        self.assertEqual(offset, ascii_offset + 5)
        self.assertGreater(offset, data.index(b"<item>"))

    def test_offset_for_text_matches_offset_for_bytes(self):
        xml = '<?xml version="1.0" encoding="ISO-8859-1"?><rss><channel><item></chan></rss>'
        self.assertEqual(
            self._document_error_offset(xml),
            self._document_error_offset(xml.encode("ascii")),
        )

    def test_entity_declarations_are_refused(self):
        xml = (
            '<?xml version="1.0"?><!DOCTYPE rss [<!ENTITY boom "boom">]>'
            "<rss><channel><title>&boom;</title></channel></rss>"
        )
        with self.assertLogs("podcast_downloader.rss_parser", level="ERROR"):
            with self.assertRaises(FeedDocumentError):
                rss_parser.parse_feed(xml)


if __name__ == "__main__":
    unittest.main()
