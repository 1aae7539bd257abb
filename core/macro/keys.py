"""
Key token table: named control tokens <-> raw byte sequences sent to the terminal.

The table is part of the stored macro format; names and bytes must not change.
"""

from __future__ import annotations
from typing import Dict, List, Optional, Tuple
from types import MappingProxyType


_KEY_TOKENS: Tuple[Tuple[str, bytes], ...] = (
    ("ENTER", b"\r"),
    ("TAB", b"\t"),
    ("BACKSPACE", b"\x7f"),
    ("DELETE", b"\x1b[3~"),
    ("END", b"\x1b[F"),
    ("PF1", b"\x1bOP"),
    ("PF2", b"\x1bOQ"),
    ("PF3", b"\x1bOR"),
    ("PF4", b"\x1bOS"),
    ("PF5", b"\x1b[15~"),
    ("PF6", b"\x1b[17~"),
    ("PF7", b"\x1b[18~"),
    ("PF8", b"\x1b[19~"),
    ("PF9", b"\x1b[20~"),
    ("PF10", b"\x1b[21~"),
    ("PF11", b"\x1b[23~"),
    ("PF12", b"\x1b[24~"),
)


def _build_tables():
    by_name: Dict[str, bytes] = {}
    by_bytes: Dict[bytes, str] = {}
    for name, seq in _KEY_TOKENS:
        if not seq:
            raise ValueError(f"Key token {name} maps to empty bytes")
        if name in by_name:
            raise ValueError(f"Duplicate key token name: {name}")
        if seq in by_bytes:
            raise ValueError(f"Key tokens {by_bytes[seq]} and {name} share {seq!r}")
        by_name[name] = seq
        by_bytes[seq] = name
    return MappingProxyType(by_name), MappingProxyType(by_bytes)


KEY_TOKENS, _NAMES_BY_BYTES = _build_tables()
TOKEN_NAMES = tuple(name for name, _ in _KEY_TOKENS)
_SEQUENCES_LONGEST_FIRST = tuple(sorted(_NAMES_BY_BYTES, key=len, reverse=True))


def bytes_for(name: str) -> Optional[bytes]:
    """Raw bytes for a token name (case-insensitive), None if unknown"""
    return KEY_TOKENS.get(name.upper())


def name_for_bytes(data: bytes) -> Optional[str]:
    """Token name for an exact byte sequence, None if it is not a token"""
    return _NAMES_BY_BYTES.get(data)


def is_token(name: str) -> bool:
    return name.upper() in KEY_TOKENS


def split_tokens(data: bytes) -> List[Tuple[Optional[str], bytes]]:
    """
    Split raw input into (token name, bytes) parts.

    Token sequences are matched longest first at every position; the bytes
    between matches come back as (None, chunk).
    """
    parts: List[Tuple[Optional[str], bytes]] = []
    text_start = 0
    pos = 0
    while pos < len(data):
        for seq in _SEQUENCES_LONGEST_FIRST:
            if data.startswith(seq, pos):
                if text_start < pos:
                    parts.append((None, data[text_start:pos]))
                parts.append((_NAMES_BY_BYTES[seq], seq))
                pos += len(seq)
                text_start = pos
                break
        else:
            pos += 1
    if text_start < len(data):
        parts.append((None, data[text_start:]))
    return parts
