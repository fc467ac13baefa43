"""
txref — short, typeable, checksum-protected references to Bitcoin transactions.

Architecture:
    Position:  (chain, block height, index of the tx within the block)
    ShortId:   magic word + bit-packed height/index, 8 or 10 five-bit words
    Text:      bech32(prefix, ShortId), dash-grouped -> "tx1-rk63-uvxf-9pqc-sy"
    Glue:      txid <-> txref via BlockCypher or a Bitcoin Core node
"""

__version__ = "0.1.0"

# bech32 separator between prefix and data
TXREF_SEPARATOR = "1"

# Cosmetic grouping of the data part
TXREF_GROUP_SIZE = 4
TXREF_DASH = "-"

# Provider defaults
PROVIDER_DEFAULT = "blockcypher"
PROVIDER_TIMEOUT_SECS = 30
BLOCKCYPHER_API_ROOT = "https://api.blockcypher.com/v1/btc"
BLOCKCYPHER_TX_LIMIT = 500  # max inputs/outputs returned per tx lookup

CONFIG_DIR = ".txref"  # under the user's home directory
CONFIG_FILE = "config.toml"

from txref.chain import Chain, Layout, STANDARD, EXTENDED  # noqa: E402
from txref.result import Ok, Err, ErrorKind, Result, TxrefError  # noqa: E402
from txref.codec import BlockLocation, encode, decode, pack, unpack  # noqa: E402
