"""Utility helpers for normalising wallet and contract addresses."""

from __future__ import annotations

import re
from typing import Iterable, List, Tuple

from .errors import InvalidAddress

_ADDRESS_RE = re.compile(r"^0x[0-9a-f]{40}$")
_ZERO_WIDTH_CHARS = {
    "\u200b",  # zero-width space
    "\u200c",  # zero-width non-joiner
    "\u200d",  # zero-width joiner
    "\u200e",  # left-to-right mark
    "\u200f",  # right-to-left mark
    "\u2060",  # word joiner
    "\ufeff",  # byte order mark
}
_ZERO_WIDTH_TRANSLATION = str.maketrans({ord(ch): None for ch in _ZERO_WIDTH_CHARS})

NATIVE_PLACEHOLDER = "0xeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeee"


def _normalize_text(value: object | None) -> str:
    """Return ``value`` stripped of whitespace and zero-width characters."""

    if value is None:
        return ""
    if not isinstance(value, str):
        value = str(value)
    return value.translate(_ZERO_WIDTH_TRANSLATION).strip()


def canonical_address(value: object | None) -> str | None:
    """Return the lower-cased form of ``value`` or ``None`` when it is not an address."""

    text = _normalize_text(value).lower()
    if not text:
        return None
    if not text.startswith("0x"):
        text = "0x" + text
    if not _ADDRESS_RE.match(text):
        return None
    return text


def normalize_wallet(value: object | None) -> str:
    """Validate a wallet address and return its canonical form.

    Raises :class:`InvalidAddress` when ``value`` is not a 20-byte hex address.
    """

    canonical = canonical_address(value)
    if canonical is None:
        raise InvalidAddress(f"malformed wallet address: {_normalize_text(value)!r}")
    return canonical


def clean_candidate_addresses(values: Iterable[object]) -> Tuple[List[str], List[object]]:
    """Split candidates into ``(valid, dropped)`` preserving first-seen order."""

    valid: List[str] = []
    dropped: List[object] = []
    seen: set[str] = set()
    for value in values:
        canonical = canonical_address(value)
        if canonical is None:
            dropped.append(value)
            continue
        if canonical in seen:
            continue
        seen.add(canonical)
        valid.append(canonical)
    return valid, dropped


__all__ = [
    "NATIVE_PLACEHOLDER",
    "canonical_address",
    "normalize_wallet",
    "clean_candidate_addresses",
]
