# tests/unit/cache/test_unit_locator.py — v1
"""Tests for cache/locator.py — fallback matching of download URLs."""

from __future__ import annotations

from gradecache.cache.locator import extract_file_id, locators_match, normalize_locator


class TestNormalize:
    def test_strips_query_fragment_and_slash(self):
        assert (
            normalize_locator("https://lms.test/files/9/download/?verifier=a#page=2")
            == "https://lms.test/files/9/download"
        )

    def test_percent_decoding(self):
        assert normalize_locator("https://x/essay%20one.pdf") == "https://x/essay one.pdf"


class TestExtractFileId:
    def test_found(self):
        assert extract_file_id("https://lms.test/courses/1/files/4242/download") == "4242"

    def test_absent(self):
        assert extract_file_id("https://cdn.test/blob/abc") is None


class TestLocatorsMatch:
    def test_same_after_normalization(self):
        assert locators_match(
            "https://lms.test/files/9/download?verifier=a",
            "https://lms.test/files/9/download?verifier=b",
        )

    def test_same_file_id_on_different_hosts(self):
        assert locators_match(
            "https://lms.test/files/9/download",
            "https://cdn.lms.test/courses/3/files/9/preview",
        )

    def test_different_file_ids(self):
        assert not locators_match(
            "https://lms.test/files/1/download", "https://lms.test/files/12/download"
        )

    def test_containment(self):
        assert locators_match("https://cdn.test/blob/abc", "https://cdn.test/blob/abc/v2")

    def test_empty_never_matches(self):
        assert not locators_match("", "https://lms.test/files/1")
        assert not locators_match("https://lms.test/files/1", "")
