"""Dash grouping for txref strings. Purely cosmetic and lossless."""

from __future__ import annotations

from txref import TXREF_DASH, TXREF_GROUP_SIZE, TXREF_SEPARATOR


def group(raw: str, prefix_length: int) -> str:
    """Insert a dash after ``prefix + "1"`` and then after every 4 characters.

    >>> group("tx1rk63uvxf9pqcsy", 2)
    'tx1-rk63-uvxf-9pqc-sy'
    """
    head_length = prefix_length + len(TXREF_SEPARATOR)
    head, data = raw[:head_length], raw[head_length:]
    chunks = [data[i:i + TXREF_GROUP_SIZE] for i in range(0, len(data), TXREF_GROUP_SIZE)]
    return TXREF_DASH.join([head, *chunks])


def ungroup(dashed: str) -> str:
    """Remove every dash, keeping all other characters in order."""
    return "".join(c for c in dashed if c != TXREF_DASH)
