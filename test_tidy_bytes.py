#!/usr/bin/env python3
"""
Tests for byte repair of archived URLs.
"""

import sys
from pathlib import Path

# Add the src directory to the path
src_path = Path(__file__).parent / "src"
sys.path.insert(0, str(src_path))

from waymirror.utils.tidy_bytes import TIDY_TABLE, tidy_bytes, tidy_text


SAMPLES = [
    b"plain/ascii.html",
    "naïve/日本語/🙂".encode("utf-8"),
    b"caf\xe9",
    b"\x93quoted\x94",
    b"\x80\x81\x8d\x9f\xa0\xff",
    b"\xe2\x82",
    b"\xc3",
    "café".encode("utf-8") + b"\xe9",
    bytes(range(256)),
]


def test_valid_utf8_passes_through():
    for text in ["index.html", "naïve", "日本語/ページ", "emoji 🙂"]:
        data = text.encode("utf-8")
        assert tidy_bytes(data) == data


def test_latin1_bytes_are_expanded():
    assert tidy_text(b"caf\xe9") == "café"
    assert tidy_text(b"\xa0") == "\u00a0"
    assert tidy_text(b"\xff") == "ÿ"


def test_cp1252_punctuation():
    assert tidy_text(b"\x93quoted\x94") == "“quoted”"
    assert tidy_text(b"a\x96b") == "a–b"
    assert tidy_text(b"a\x97b") == "a—b"
    assert tidy_text(b"wait\x85") == "wait…"
    assert tidy_text(b"\x80") == "€"


def test_undefined_cp1252_slots_use_latin1():
    assert tidy_text(b"\x81") == "\u0081"
    assert tidy_text(b"\x9d") == "\u009d"


def test_mixed_valid_and_invalid():
    data = "café".encode("utf-8") + b"\xe9"
    assert tidy_text(data) == "caféé"


def test_truncated_sequence():
    # lead byte of a 3-byte sequence followed by only one continuation byte
    assert tidy_text(b"\xe2\x82") == "â‚"


def test_force_reinterprets_every_byte():
    assert tidy_text("é".encode("utf-8"), force=True) == "Ã©"
    assert tidy_bytes(b"abc", force=True) == b"abc"


def test_empty_input():
    assert tidy_bytes(b"") == b""
    assert tidy_bytes(b"", force=True) == b""


def test_output_is_valid_and_idempotent():
    for sample in SAMPLES:
        once = tidy_bytes(sample)
        once.decode("utf-8")
        assert tidy_bytes(once) == once


def test_table_covers_every_byte():
    assert len(TIDY_TABLE) == 256
    for byte, rendered in enumerate(TIDY_TABLE):
        rendered.decode("utf-8")
        if byte < 0x80:
            assert rendered == bytes([byte])


if __name__ == "__main__":
    test_valid_utf8_passes_through()
    test_latin1_bytes_are_expanded()
    test_cp1252_punctuation()
    test_undefined_cp1252_slots_use_latin1()
    test_mixed_valid_and_invalid()
    test_truncated_sequence()
    test_force_reinterprets_every_byte()
    test_empty_input()
    test_output_is_valid_and_idempotent()
    test_table_covers_every_byte()
    print("✓ byte repair tests passed")
