"""
Byte Normalization Utilities

Archived URLs frequently carry bytes from a single-byte encoding (Windows
CP-1252 or ISO-8859-1) mixed into otherwise valid UTF-8. This module repairs
such input into valid UTF-8 so that file identifiers derived from it are
stable and can always be written to disk.
"""

from typing import List


# CP-1252 glyphs living in 0x80-0x9F, as UTF-8 byte sequences
CP1252_MAP = {
    0x80: b"\xe2\x82\xac",  # euro sign
    0x82: b"\xe2\x80\x9a",
    0x83: b"\xc6\x92",
    0x84: b"\xe2\x80\x9e",
    0x85: b"\xe2\x80\xa6",  # ellipsis
    0x86: b"\xe2\x80\xa0",
    0x87: b"\xe2\x80\xa1",
    0x88: b"\xcb\x86",
    0x89: b"\xe2\x80\xb0",
    0x8A: b"\xc5\xa0",
    0x8B: b"\xe2\x80\xb9",
    0x8C: b"\xc5\x92",
    0x8E: b"\xc5\xbd",
    0x91: b"\xe2\x80\x98",  # smart quotes
    0x92: b"\xe2\x80\x99",
    0x93: b"\xe2\x80\x9c",
    0x94: b"\xe2\x80\x9d",
    0x95: b"\xe2\x80\xa2",
    0x96: b"\xe2\x80\x93",  # en dash
    0x97: b"\xe2\x80\x94",  # em dash
    0x98: b"\xcb\x9c",
    0x99: b"\xe2\x84\xa2",
    0x9A: b"\xc5\xa1",
    0x9B: b"\xe2\x80\xba",
    0x9C: b"\xc5\x93",
    0x9E: b"\xc5\xbe",
    0x9F: b"\xc5\xb8",
}


def _build_table() -> List[bytes]:
    table = []
    for byte in range(256):
        if byte < 0x80:
            table.append(bytes([byte]))
        elif byte in CP1252_MAP:
            table.append(CP1252_MAP[byte])
        elif byte < 0xC0:
            table.append(bytes([0xC2, byte]))
        else:
            table.append(bytes([0xC3, byte - 64]))
    return table


TIDY_TABLE = _build_table()


def _sequence_length(lead: int) -> int:
    if 0xC2 <= lead <= 0xDF:
        return 2
    if 0xE0 <= lead <= 0xEF:
        return 3
    if 0xF0 <= lead <= 0xF4:
        return 4
    return 0


def tidy_bytes(data: bytes, force: bool = False) -> bytes:
    """
    Replace invalid UTF-8 bytes with their CP-1252/Latin-1 interpretation.

    This naively assumes that invalid bytes are either Windows CP-1252 or
    ISO-8859-1. In practice that is not a bad assumption for archived URLs,
    but it will not always be right.

    Args:
        data: Raw bytes to repair
        force: Reinterpret every byte through the table, for input known
            to be single-byte encoded

    Returns:
        Valid UTF-8 bytes. Empty input yields b"".
    """
    if not data:
        return b""

    if force:
        return b"".join(TIDY_TABLE[b] for b in data)

    try:
        data.decode("utf-8")
        return bytes(data)
    except UnicodeDecodeError:
        pass

    out = bytearray()
    i = 0
    size = len(data)
    while i < size:
        byte = data[i]
        if byte < 0x80:
            out.append(byte)
            i += 1
            continue

        length = _sequence_length(byte)
        if length and i + length <= size:
            chunk = data[i:i + length]
            try:
                chunk.decode("utf-8")
            except UnicodeDecodeError:
                pass
            else:
                out += chunk
                i += length
                continue

        # Stray continuation byte, truncated sequence or invalid lead
        out += TIDY_TABLE[byte]
        i += 1

    return bytes(out)


def tidy_text(data: bytes, force: bool = False) -> str:
    """Repair bytes and decode them as UTF-8."""
    return tidy_bytes(data, force).decode("utf-8")
