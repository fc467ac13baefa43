"""
Supported chains and the two ShortId layouts.

Each chain carries its magic word (first word of every ShortId), its bech32
prefix, and the layout it packs with:

    Chain     magic  prefix    layout    words  height bits  index bits
    mainnet   0x03   tx        standard  8      21           13
    testnet   0x06   txtest    extended  10     26           18

Word 1 bit 0 is the version bit and is always zero.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

# Bits per bech32 word
WORD_BITS = 5
WORD_MASK = (1 << WORD_BITS) - 1

# Version bit occupies the lowest bit of word 1
VERSION_BITS = 1


@dataclass(frozen=True)
class Layout:
    """Bit allocation for one ShortId layout."""

    name: str
    length: int  # total words including the magic
    height_bits: int
    index_bits: int

    @property
    def max_height(self) -> int:
        return (1 << self.height_bits) - 1

    @property
    def max_index(self) -> int:
        return (1 << self.index_bits) - 1

    @property
    def payload_bits(self) -> int:
        """Bits available after the magic word."""
        return (self.length - 1) * WORD_BITS


STANDARD = Layout("standard", length=8, height_bits=21, index_bits=13)
EXTENDED = Layout("extended", length=10, height_bits=26, index_bits=18)


class Chain(Enum):
    """Bitcoin networks a txref can point into."""

    MAINNET = ("mainnet", 0x03, "tx")
    TESTNET = ("testnet", 0x06, "txtest")

    def __init__(self, label: str, magic: int, prefix: str) -> None:
        self.label = label
        self.magic = magic
        self.prefix = prefix

    @property
    def layout(self) -> Layout:
        # Only mainnet fits the compact layout; everything else is extended
        return STANDARD if self is Chain.MAINNET else EXTENDED

    @classmethod
    def from_name(cls, name: Chain | str) -> Chain | None:
        """Resolve a chain name (or alias) to a Chain. Returns None if unknown."""
        if isinstance(name, Chain):
            return name
        if not isinstance(name, str):
            return None
        return _ALIASES.get(name.strip().lower())

    @classmethod
    def from_magic(cls, magic: int) -> Chain | None:
        """Resolve a magic word to a Chain. Returns None if unknown."""
        for chain in cls:
            if chain.magic == magic:
                return chain
        return None

    def __str__(self) -> str:
        return self.label


# Names providers and nodes use for the same networks
_ALIASES = {
    "mainnet": Chain.MAINNET,
    "main": Chain.MAINNET,
    "testnet": Chain.TESTNET,
    "test": Chain.TESTNET,
    "test3": Chain.TESTNET,
}
