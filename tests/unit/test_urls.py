"""Tests for URL normalization."""

import pytest

from site_probe.urls import (
    canonicalize_url,
    origin,
    page_key,
    resolve_link,
    same_origin,
)


class TestCanonicalizeUrl:
    """Tests for canonicalize_url."""

    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("HTTPS://App.Test", "https://app.test/"),
            ("https://app.test:443/a", "https://app.test/a"),
            ("http://app.test:8080/a", "http://app.test:8080/a"),
            ("https://app.test/a#section", "https://app.test/a"),
            ("https://app.test/search?b=2&a=1", "https://app.test/search?a=1&b=2"),
        ],
    )
    def test_normalizes(self, url: str, expected: str) -> None:
        """Equivalent spellings map to the same canonical URL."""
        assert canonicalize_url(url) == expected

    def test_is_idempotent(self) -> None:
        """Canonicalizing twice changes nothing."""
        once = canonicalize_url("https://App.test:443/x?b=1&a=2#frag")

        assert canonicalize_url(once) == once


class TestResolveLink:
    """Tests for resolve_link."""

    def test_resolves_relative_links(self) -> None:
        """Relative links are resolved against the page URL."""
        assert (
            resolve_link("https://app.test/docs/", "intro")
            == "https://app.test/docs/intro"
        )

    @pytest.mark.parametrize(
        "href",
        ["", "#top", "mailto:team@app.test", "javascript:void(0)", "tel:123"],
    )
    def test_ignores_non_navigable_links(self, href: str) -> None:
        """Fragments and non-http schemes cannot be crawled."""
        assert resolve_link("https://app.test/", href) is None


def test_page_key_drops_host() -> None:
    """Page keys keep only the path and query."""
    assert page_key("https://staging.app.test/a?z=1&b=2") == "/a?b=2&z=1"
    assert page_key("http://localhost:5173") == "/"


def test_same_origin_compares_scheme_host_and_port() -> None:
    """Origins differ on scheme, host or port."""
    assert origin("https://app.test/a/b") == "https://app.test"
    assert same_origin("https://app.test/a", "https://app.test:443/b")
    assert not same_origin("https://app.test/", "http://app.test/")
    assert not same_origin("https://app.test/", "https://cdn.app.test/")
