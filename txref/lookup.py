"""
txid <-> txref resolution on top of the codec and a data provider.

    txid_to_txref          provider lookup, then encode
    txref_to_txid          decode, then provider lookup
    tx_details_from_txid   provider details + txref
    tx_details_from_txref  decode, resolve txid, provider details + txref

Each call is a single independent lookup. Provider failures propagate as
ProviderError; txrefs that do not decode raise TxrefError.
"""

from __future__ import annotations

import logging
from typing import Any

from txref.chain import Chain
from txref.codec import decode, encode
from txref.provider import ProviderError, TxDetails
from txref.result import ErrorKind, TxrefError

log = logging.getLogger(__name__)


def _resolve_chain(chain: Chain | str) -> Chain:
    resolved = Chain.from_name(chain)
    if resolved is None:
        raise TxrefError(ErrorKind.UNSUPPORTED_CHAIN, f"Unsupported chain: {chain!r}")
    return resolved


def _txref_for(details: TxDetails) -> str:
    if not details.is_confirmed:
        raise ProviderError(
            f"Transaction {details.txid} is unconfirmed and has no block position yet"
        )
    return encode(details.chain, details.block_height, details.block_index).unwrap()


def txid_to_txref(txid: str, chain: Chain | str, provider: Any) -> str:
    """Look up a transaction's block position and encode it as a txref."""
    details = provider.get_tx_details(txid, _resolve_chain(chain))
    txref = _txref_for(details)
    log.debug("txid %s -> %s", details.txid[:16], txref)
    return txref


def txref_to_txid(txref: str, provider: Any) -> tuple[str, Chain]:
    """Decode a txref and ask the provider which txid sits at that position."""
    location = decode(txref).unwrap()
    txid = provider.get_txid_at(
        location.chain, location.block_height, location.block_index
    )
    log.debug(
        "%s -> block %d index %d -> txid %s",
        txref, location.block_height, location.block_index, txid[:16],
    )
    return txid, location.chain


def tx_details_from_txid(txid: str, chain: Chain | str, provider: Any) -> TxDetails:
    """Fetch transaction details and attach the matching txref."""
    details = provider.get_tx_details(txid, _resolve_chain(chain))
    details.txref = _txref_for(details)
    return details


def tx_details_from_txref(txref: str, provider: Any) -> TxDetails:
    """Resolve a txref to its transaction and fetch the details.

    The returned ``txref`` is the canonical dashed form, whatever dash layout
    or case the caller used.
    """
    txid, chain = txref_to_txid(txref, provider)
    details = provider.get_tx_details(txid, chain)
    details.txref = _txref_for(details)
    return details
