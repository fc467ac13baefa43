"""
txref codec — pack a block position into a ShortId and bech32 text, and back.

ShortId layout (one 5-bit word per row, bits counted from the LSB):

    standard (mainnet, 8 words)          extended (testnet, 10 words)
    0  magic                             0  magic
    1  b0 = version (0), b1-4 = h[0:4]   1  b0 = version (0), b1-4 = h[0:4]
    2  h[4:9]                            2  h[4:9]
    3  h[9:14]                           3  h[9:14]
    4  h[14:19]                          4  h[14:19]
    5  b0-1 = h[19:21], b2-4 = i[0:3]    5  h[19:24]
    6  i[3:8]                            6  b0-1 = h[24:26], b2-4 = i[0:3]
    7  i[8:13]                           7  i[3:8]
                                         8  i[8:13]
                                         9  i[13:18]

Read as one little-endian bit string after the magic, both layouts are the
version bit, then the height, then the index. ``pack`` and ``unpack`` build
and split that bit string directly.

Nothing here does I/O or logs. Bad input comes back as ``Err``.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import bech32

from txref.chain import WORD_BITS, WORD_MASK, VERSION_BITS, Chain, Layout
from txref.formatter import group, ungroup
from txref.result import Err, ErrorKind, Ok, Result


@dataclass(frozen=True)
class BlockLocation:
    """Decoded position of a transaction: chain, block height, index in block."""

    chain: Chain
    block_height: int
    block_index: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "chain": self.chain.label,
            "block_height": self.block_height,
            "block_index": self.block_index,
        }


def _check_field(name: str, value: Any, maximum: int) -> Err | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return Err(ErrorKind.RANGE, f"{name} must be an integer, got {value!r}")
    if value < 0 or value > maximum:
        return Err(
            ErrorKind.RANGE,
            f"{name} {value} out of range (0..{maximum:#x})",
        )
    return None


def pack(chain: Chain | str, block_height: int, block_index: int) -> Result[bytes]:
    """Pack a block position into a ShortId (8 or 10 five-bit words).

    The layout is chosen by chain: mainnet is standard, anything else is
    extended. Values beyond the chosen layout's capacity are rejected.
    """
    resolved = Chain.from_name(chain)
    if resolved is None:
        return Err(ErrorKind.UNSUPPORTED_CHAIN, f"Unsupported chain: {chain!r}")
    layout = resolved.layout

    for name, value, maximum in (
        ("block height", block_height, layout.max_height),
        ("block index", block_index, layout.max_index),
    ):
        err = _check_field(name, value, maximum)
        if err is not None:
            return err

    # Version bit stays zero
    payload = (block_height << VERSION_BITS) | (
        block_index << (VERSION_BITS + layout.height_bits)
    )
    words = [resolved.magic]
    words.extend(
        (payload >> (WORD_BITS * i)) & WORD_MASK for i in range(layout.length - 1)
    )
    return Ok(bytes(words))


def _split_payload(layout: Layout, words: Sequence[int]) -> tuple[int, int, int]:
    """Return (version, height, index) from the words after the magic."""
    payload = 0
    for i, word in enumerate(words):
        payload |= word << (WORD_BITS * i)
    version = payload & ((1 << VERSION_BITS) - 1)
    height = (payload >> VERSION_BITS) & layout.max_height
    index = (payload >> (VERSION_BITS + layout.height_bits)) & layout.max_index
    return version, height, index


def unpack(short_id: bytes | Sequence[int]) -> Result[BlockLocation]:
    """Unpack a ShortId. The magic word alone selects chain and layout."""
    words = list(short_id)
    if not words:
        return Err(ErrorKind.FORMAT, "Empty txref payload")
    if any(not 0 <= w <= WORD_MASK for w in words):
        return Err(ErrorKind.FORMAT, "txref payload words must be 5-bit values")

    chain = Chain.from_magic(words[0])
    if chain is None:
        return Err(ErrorKind.UNSUPPORTED_CHAIN, f"Unknown txref magic: {words[0]:#04x}")

    layout = chain.layout
    if len(words) != layout.length:
        return Err(
            ErrorKind.FORMAT,
            f"{chain.label} txref must have {layout.length} data words, got {len(words)}",
        )

    version, height, index = _split_payload(layout, words[1:])
    if version != 0:
        return Err(ErrorKind.FORMAT, f"Unsupported txref version bit: {version}")

    return Ok(BlockLocation(chain=chain, block_height=height, block_index=index))


def encode(chain: Chain | str, block_height: int, block_index: int) -> Result[str]:
    """Encode a block position as a dashed txref, e.g. ``tx1-rk63-uvxf-9pqc-sy``."""
    resolved = Chain.from_name(chain)
    if resolved is None:
        return Err(ErrorKind.UNSUPPORTED_CHAIN, f"Unsupported chain: {chain!r}")

    packed = pack(resolved, block_height, block_index)
    if not packed.ok:
        return packed

    raw = bech32.bech32_encode(resolved.prefix, list(packed.value))
    if not raw:
        return Err(ErrorKind.FORMAT, "bech32 encoding rejected the txref payload")
    return Ok(group(raw, len(resolved.prefix)))


def decode(txref: str) -> Result[BlockLocation]:
    """Decode a txref (dashes optional) to its BlockLocation."""
    if not isinstance(txref, str):
        return Err(ErrorKind.FORMAT, f"txref must be a string, got {type(txref).__name__}")

    raw = ungroup(txref.strip())
    prefix, words = bech32.bech32_decode(raw)
    if prefix is None or words is None:
        return Err(ErrorKind.FORMAT, f"Invalid txref checksum or characters: {txref!r}")

    result = unpack(words)
    if not result.ok:
        return result

    location = result.value
    if location.chain.prefix != prefix:
        return Err(
            ErrorKind.FORMAT,
            f"txref prefix {prefix!r} does not match {location.chain.label} "
            f"(expected {location.chain.prefix!r})",
        )
    return result
