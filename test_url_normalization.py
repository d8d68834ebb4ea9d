#!/usr/bin/env python3
"""
Tests for URL normalization, target validation and URL filters.
"""

import sys
from pathlib import Path

# Add the src directory to the path
src_path = Path(__file__).parent / "src"
sys.path.insert(0, str(src_path))

from waymirror.core.cdx_client import Snapshot
from waymirror.core.curator import SnapshotCurator, decode_identifier
from waymirror.utils.filters import compile_filter, to_regex
from waymirror.utils.validators import backup_name, index_query_url, normalize_url, validate_url


def test_normalize_without_params():
    assert normalize_url("page.html?param=value") == "page.html?param=value"
    assert normalize_url("page.html?a=1&b=2") == "page.html?a=1&b=2"
    assert normalize_url("page.html") == "page.html"
    assert normalize_url("folder/page.html") == "folder/page.html"


def test_normalize_ignore_params():
    assert normalize_url("page.html?param=value", ignore_params=True) == "page.html"
    assert normalize_url("page.html?a=1&b=2&c=3", ignore_params=True) == "page.html"
    assert normalize_url("subscribe/new?utm_source=newsletter&utm_medium=email",
                         ignore_params=True) == "subscribe/new"
    assert normalize_url("subscribe/new?utm_campaign=Merch%20EOY%20Sale%20%232%2011.19.2019",
                         ignore_params=True) == "subscribe/new"
    assert normalize_url("page.html?title=Hello%20World&content=Test%20%26%20More&tag=%23hashtag",
                         ignore_params=True) == "page.html"


def test_trailing_question_mark_always_removed():
    assert normalize_url("article/why-are-we-still-failing-women-chefs?",
                         ignore_params=True) == "article/why-are-we-still-failing-women-chefs"
    assert normalize_url("article/test?") == "article/test"


def test_empty_params():
    assert normalize_url("page.html?", ignore_params=True) == "page.html"
    assert normalize_url("page.html?=", ignore_params=True) == "page.html"
    assert normalize_url("page.html?&&", ignore_params=True) == "page.html"


def test_keep_params():
    keep = ["id", "page"]
    assert normalize_url("article.html?id=123&utm_source=email&tracking=abc", keep_params=keep) == "article.html?id=123"
    assert normalize_url("list.html?page=2&sort=date&filter=recent", keep_params=keep) == "list.html?page=2"
    assert normalize_url("view.html?id=456&page=3&other=value", keep_params=keep) == "view.html?id=456&page=3"
    assert normalize_url("page.html?utm_source=fb&tracking=123", keep_params=keep) == "page.html"


def test_keep_params_sorted_order():
    keep = ["b", "a", "c"]
    for url in ["page.html?c=3&a=1&b=2", "page.html?b=2&c=3&a=1", "page.html?a=1&b=2&c=3"]:
        assert normalize_url(url, keep_params=keep) == "page.html?a=1&b=2&c=3"


def test_keep_params_preserves_single_byte_encodings():
    # Latin-1 bytes must survive until byte repair
    assert normalize_url("s.html?q=caf%E9&x=1", keep_params=["q"]) == "s.html?q=caf%E9"
    assert normalize_url("s.html?%E9=1&x=2", keep_params=["é"]) == "s.html?%E9=1"
    assert normalize_url("s.html?caf%C3%A9=1", keep_params=["café"]) == "s.html?caf%C3%A9=1"

    curator = SnapshotCurator(keep_params=("q",))
    assert curator.resource_id("http://x.com/s.html?q=caf%E9") == "s.html?q=café"
    assert curator.resource_id("http://x.com/s.html?q=caf%E8") == "s.html?q=cafè"
    plan = curator.curate([
        Snapshot("20200101000000", "http://x.com/s.html?q=caf%E9"),
        Snapshot("20200101000000", "http://x.com/s.html?q=caf%E8"),
    ])
    assert sorted(entry.resource_id for entry in plan) == ["s.html?q=cafè", "s.html?q=café"]

    assert SnapshotCurator(keep_params=("é",)).resource_id("http://x.com/s.html?%E9=1") == "s.html?é=1"


def test_special_characters_in_path():
    assert normalize_url("article/on-our-radar—feminist-news-roundup/test?param=1",
                         ignore_params=True) == "article/on-our-radar—feminist-news-roundup/test"
    assert normalize_url("article/title-with-%3F-mark?param=value",
                         ignore_params=True) == "article/title-with-%3F-mark"


def test_resource_id_normalizes_before_decoding():
    curator = SnapshotCurator(ignore_params=True)
    assert curator.resource_id("http://example.com/article/title-with-%3F-mark?param=value") == \
        "article/title-with-?-mark"
    assert curator.resource_id("http://example.com/subscribe/new?utm_campaign=Sale%20%232") == "subscribe/new"

    curator = SnapshotCurator()
    assert curator.resource_id("http://example.com/") == ""
    assert curator.resource_id("http://example.com/a%20b+c.html") == "a b c.html"
    assert curator.resource_id("http://example.com/caf%E9.html") == "café.html"
    assert curator.resource_id("http://example.com") is None


def test_decode_identifier():
    assert decode_identifier("subscribe/new") == "subscribe/new"
    assert decode_identifier("") == ""
    assert decode_identifier("%E2%80%9Cq%E2%80%9D") == "“q”"


def test_index_query_url():
    assert index_query_url("example.com") == "example.com/*"
    assert index_query_url("http://example.com") == "http://example.com/*"
    assert index_query_url("http://example.com/blog/") == "http://example.com/blog/"
    assert index_query_url("http://example.com", exact_url=True) == "http://example.com"


def test_backup_name():
    assert backup_name("http://example.com/blog/") == "example.com"
    assert backup_name("example.com/blog") == "example.com"


def test_validate_url():
    cases = [
        ("example.com", True),
        ("https://example.com", True),
        ("http://example.com/path", True),
        ("", False),
        ("ftp://example.com", False),
    ]
    for url, expected in cases:
        is_valid, _, error = validate_url(url)
        assert is_valid == expected, f"{url}: {error}"


def test_literal_filter_is_case_insensitive_substring():
    match = compile_filter("Blog")
    assert match("http://example.com/blog/post.html")
    assert not match("http://example.com/about.html")
    assert compile_filter("") is None
    assert compile_filter(None) is None


def test_regex_filters():
    assert to_regex("plain") is None

    match = compile_filter(r"/\.(gif|jpe?g)$/i")
    assert match("http://example.com/IMG/photo.JPG")
    assert not match("http://example.com/photo.png")

    case_sensitive = compile_filter(r"/\.PDF$/")
    assert not case_sensitive("http://example.com/doc.pdf")

    percent = compile_filter(r"%r{/images/}")
    assert percent("http://example.com/images/a.png")
    assert not percent("http://example.com/img/a.png")


if __name__ == "__main__":
    test_normalize_without_params()
    test_normalize_ignore_params()
    test_trailing_question_mark_always_removed()
    test_empty_params()
    test_keep_params()
    test_keep_params_sorted_order()
    test_keep_params_preserves_single_byte_encodings()
    test_special_characters_in_path()
    test_resource_id_normalizes_before_decoding()
    test_decode_identifier()
    test_index_query_url()
    test_backup_name()
    test_validate_url()
    test_literal_filter_is_case_insensitive_substring()
    test_regex_filters()
    print("✓ URL normalization tests passed")
