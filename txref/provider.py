"""
Blockchain data providers — resolve txids to block positions and back.

Both clients answer the same two questions:

    get_tx_details(txid, chain)                     -> TxDetails
    get_txid_at(chain, block_height, block_index)   -> txid

BlockCypher:  public REST API (https://api.blockcypher.com), optional token.
BitcoinRPC:   a local Bitcoin Core node over JSON-RPC (needs -txindex for
              transactions outside the node's wallet).

Zero external dependencies — uses stdlib urllib.request for HTTP.
Transport and payload failures raise ProviderError. Nothing is retried.
"""

from __future__ import annotations

import json
import logging
import os
import re
import urllib.error
import urllib.parse
import urllib.request
from base64 import b64encode
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from txref import (
    BLOCKCYPHER_API_ROOT,
    BLOCKCYPHER_TX_LIMIT,
    PROVIDER_DEFAULT,
    PROVIDER_TIMEOUT_SECS,
)
from txref.chain import Chain

log = logging.getLogger(__name__)

# Strict hex pattern for txids (exactly 64 hex chars)
_TXID_RE = re.compile(r"^[0-9a-f]{64}$")

# BlockCypher network path segment per chain
_BLOCKCYPHER_NETWORKS = {
    Chain.MAINNET: "main",
    Chain.TESTNET: "test3",
}

_SATS_PER_BTC = 100_000_000


class ProviderError(Exception):
    """Error talking to, or returned by, a blockchain data provider."""


def validate_txid(txid: str) -> str:
    """Normalise and validate a txid. Raises ValueError if invalid."""
    if isinstance(txid, str):
        txid = txid.strip().lower()
    if not isinstance(txid, str) or not _TXID_RE.match(txid):
        raise ValueError(f"Invalid txid: must be 64 hex chars, got {txid!r}")
    return txid


def _require_chain(chain: Chain | str) -> Chain:
    resolved = Chain.from_name(chain)
    if resolved is None:
        raise ValueError(f"Unsupported chain: {chain!r}")
    return resolved


@dataclass
class TxDetails:
    """Transaction summary as reported by a provider.

    block_height and block_index are None while the transaction is unconfirmed.
    txref is filled in by the lookup layer.
    """

    txid: str
    chain: Chain
    block_hash: str | None = None
    block_height: int | None = None
    block_index: int | None = None
    fees: int | None = None
    received: str | None = None
    confirmed: str | None = None
    confirmations: int = 0
    inputs: list[dict[str, Any]] = field(default_factory=list)
    outputs: list[dict[str, Any]] = field(default_factory=list)
    txref: str | None = None

    @property
    def is_confirmed(self) -> bool:
        return self.block_height is not None and self.block_index is not None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["chain"] = self.chain.label
        return data


# ---------------------------------------------------------------------------
# BlockCypher
# ---------------------------------------------------------------------------

def _parse_blockcypher_output(out: dict[str, Any]) -> dict[str, Any]:
    # Zero-value outputs are data carriers (OP_RETURN)
    if out.get("value") == 0:
        return {
            "script": out.get("script", ""),
            "data_hex": out.get("data_hex"),
            "data_string": out.get("data_string"),
            "output_value": 0,
            "script_type": out.get("script_type", ""),
        }
    return {
        "script": out.get("script", ""),
        "addresses": out.get("addresses") or [],
        "output_value": out.get("value"),
        "script_type": out.get("script_type", ""),
    }


def parse_blockcypher_tx(data: dict[str, Any], chain: Chain, txid: str) -> TxDetails:
    """Build TxDetails from a BlockCypher ``/txs/<txid>`` response."""
    try:
        height = data.get("block_height")
        index = data.get("block_index")
        # BlockCypher reports -1 for unconfirmed transactions
        if height is None or height < 0:
            height, index = None, None
        inputs = [
            {
                "script": inp.get("script", ""),
                "addresses": inp.get("addresses") or [],
                "output_value": inp.get("output_value"),
                "previous_hash": inp.get("prev_hash"),
            }
            for inp in data.get("inputs", [])
        ]
        outputs = [_parse_blockcypher_output(out) for out in data.get("outputs", [])]
        return TxDetails(
            txid=txid,
            chain=chain,
            block_hash=data.get("block_hash"),
            block_height=height,
            block_index=index,
            fees=data.get("fees"),
            received=data.get("received"),
            confirmed=data.get("confirmed"),
            confirmations=int(data.get("confirmations", 0)),
            inputs=inputs,
            outputs=outputs,
        )
    except (AttributeError, TypeError, ValueError) as e:
        raise ProviderError(f"Malformed transaction payload for {txid}: {e}") from e


class BlockCypher:
    """BlockCypher REST client using stdlib urllib.

    Usage:
        provider = BlockCypher(token=os.environ.get("BLOCKCYPHER_TOKEN", ""))
        details = provider.get_tx_details(txid, Chain.MAINNET)
    """

    name = "blockcypher"

    def __init__(
        self,
        token: str = "",
        timeout: float = PROVIDER_TIMEOUT_SECS,
        api_root: str = BLOCKCYPHER_API_ROOT,
    ) -> None:
        self._token = token
        self.timeout = timeout
        self.api_root = api_root.rstrip("/")

    def _url(self, chain: Chain, path: str, **params: Any) -> str:
        if self._token:
            params["token"] = self._token
        url = f"{self.api_root}/{_BLOCKCYPHER_NETWORKS[chain]}/{path}"
        if params:
            url += "?" + urllib.parse.urlencode(params)
        return url

    def _get(self, url: str) -> Any:
        log.debug("GET %s", url.split("?")[0])
        req = urllib.request.Request(url, headers={"Accept": "application/json"})
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                body = resp.read().decode()
        except urllib.error.HTTPError as e:
            log.warning("BlockCypher returned HTTP %s for %s", e.code, url.split("?")[0])
            raise ProviderError(f"HTTP {e.code}: {e.reason}") from e
        except urllib.error.URLError as e:
            raise ProviderError(f"Connection failed: {e.reason}") from e
        except OSError as e:
            raise ProviderError(f"Request failed: {e}") from e

        try:
            return json.loads(body)
        except ValueError as e:
            raise ProviderError(f"Invalid JSON from BlockCypher: {e}") from e

    def get_tx_details(self, txid: str, chain: Chain | str) -> TxDetails:
        txid = validate_txid(txid)
        chain = _require_chain(chain)
        data = self._get(self._url(chain, f"txs/{txid}", limit=BLOCKCYPHER_TX_LIMIT))
        if not isinstance(data, dict):
            raise ProviderError(f"Unexpected BlockCypher response for {txid}")
        if data.get("error"):
            raise ProviderError(f"BlockCypher error: {data['error']}")
        return parse_blockcypher_tx(data, chain, txid)

    def get_txid_at(self, chain: Chain | str, block_height: int, block_index: int) -> str:
        chain = _require_chain(chain)
        data = self._get(
            self._url(chain, f"blocks/{block_height}", txstart=block_index, limit=1)
        )
        try:
            return data["txids"][0]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError(
                f"No transaction at block {block_height} index {block_index}"
            ) from e


# ---------------------------------------------------------------------------
# Bitcoin Core JSON-RPC
# ---------------------------------------------------------------------------

def _iso_from_unix(ts: Any) -> str | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(int(ts), tz=timezone.utc).isoformat()


def _parse_rpc_output(vout: dict[str, Any]) -> dict[str, Any]:
    spk = vout.get("scriptPubKey", {})
    value = int(round(float(vout.get("value", 0)) * _SATS_PER_BTC))
    script_type = spk.get("type", "")
    if script_type == "nulldata":
        asm = spk.get("asm", "").split()
        return {
            "script": spk.get("hex", ""),
            "data_hex": asm[1] if len(asm) > 1 else None,
            "data_string": None,
            "output_value": value,
            "script_type": script_type,
        }
    # Bitcoin Core >= 22 reports "address", older releases "addresses"
    addresses = spk.get("addresses") or ([spk["address"]] if "address" in spk else [])
    return {
        "script": spk.get("hex", ""),
        "addresses": addresses,
        "output_value": value,
        "script_type": script_type,
    }


class BitcoinRPC:
    """Minimal Bitcoin JSON-RPC client using stdlib urllib.

    Usage:
        rpc = BitcoinRPC.from_env()
        info = rpc.call("getblockchaininfo")
    """

    name = "rpc"

    def __init__(
        self,
        url: str,
        user: str = "",
        password: str = "",
        timeout: float = PROVIDER_TIMEOUT_SECS,
    ) -> None:
        if not url:
            raise ValueError("Bitcoin RPC URL cannot be empty")
        self.url = url
        self._user = user
        self._password = password
        self.timeout = timeout
        self._id_counter = 0

    @classmethod
    def from_env(cls) -> BitcoinRPC:
        """Create RPC client from environment variables.

        Reads:
            BITCOIN_RPC_URL  — e.g. http://127.0.0.1:8332
            BITCOIN_RPC_USER — RPC username
            BITCOIN_RPC_PASS — RPC password
        """
        url = os.environ.get("BITCOIN_RPC_URL", "")
        user = os.environ.get("BITCOIN_RPC_USER", "")
        password = os.environ.get("BITCOIN_RPC_PASS", "")
        if not url:
            raise ProviderError(
                "BITCOIN_RPC_URL not set. "
                "Set it to your Bitcoin node's RPC endpoint "
                "(e.g. http://127.0.0.1:8332 for mainnet)."
            )
        return cls(url, user, password)

    def call(self, method: str, *params: Any) -> Any:
        """Execute a JSON-RPC call. Returns the 'result' field.

        Raises ProviderError on transport or RPC-level errors.
        """
        self._id_counter += 1
        payload = json.dumps({
            "jsonrpc": "1.0",
            "id": self._id_counter,
            "method": method,
            "params": list(params),
        }).encode()

        req = urllib.request.Request(
            self.url,
            data=payload,
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        if self._user or self._password:
            creds = b64encode(f"{self._user}:{self._password}".encode()).decode()
            req.add_header("Authorization", f"Basic {creds}")

        log.debug("RPC %s", method)
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                body = json.loads(resp.read().decode())
        except urllib.error.HTTPError as e:
            # Bitcoin Core returns errors as HTTP 500 with JSON body
            try:
                body = json.loads(e.read().decode())
            except ValueError:
                raise ProviderError(f"HTTP {e.code}: {e.reason}") from e
        except urllib.error.URLError as e:
            raise ProviderError(f"Connection failed: {e.reason}") from e
        except (OSError, ValueError) as e:
            raise ProviderError(f"RPC call failed: {e}") from e

        if not isinstance(body, dict):
            raise ProviderError(f"Unexpected RPC response to {method}")
        if body.get("error"):
            err = body["error"]
            msg = err.get("message", str(err)) if isinstance(err, dict) else str(err)
            log.warning("RPC %s failed: %s", method, msg)
            raise ProviderError(f"RPC error: {msg}")

        return body.get("result")

    def get_network(self) -> Chain | None:
        """Detect which chain the node is running on. None if not supported."""
        info = self.call("getblockchaininfo")
        return Chain.from_name(info.get("chain", ""))

    def _check_network(self, chain: Chain) -> None:
        network = self.get_network()
        if network is not chain:
            raise ProviderError(
                f"Node at {self.url} is not on {chain.label} "
                f"(reports {network.label if network else 'an unsupported chain'})"
            )

    def get_tx_details(self, txid: str, chain: Chain | str) -> TxDetails:
        txid = validate_txid(txid)
        chain = _require_chain(chain)
        self._check_network(chain)

        tx = self.call("getrawtransaction", txid, True)
        try:
            block_hash = tx.get("blockhash")
            height = index = None
            if block_hash:
                block = self.call("getblock", block_hash, 1)
                height = block["height"]
                index = block["tx"].index(txid)
            inputs = [
                {
                    "script": vin.get("scriptSig", {}).get("hex", vin.get("coinbase", "")),
                    "addresses": [],
                    "output_value": None,
                    "previous_hash": vin.get("txid"),
                }
                for vin in tx.get("vin", [])
            ]
            outputs = [_parse_rpc_output(vout) for vout in tx.get("vout", [])]
            return TxDetails(
                txid=txid,
                chain=chain,
                block_hash=block_hash,
                block_height=height,
                block_index=index,
                confirmed=_iso_from_unix(tx.get("blocktime")),
                confirmations=int(tx.get("confirmations", 0)),
                inputs=inputs,
                outputs=outputs,
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ProviderError(f"Malformed transaction payload for {txid}: {e}") from e

    def get_txid_at(self, chain: Chain | str, block_height: int, block_index: int) -> str:
        chain = _require_chain(chain)
        self._check_network(chain)

        block_hash = self.call("getblockhash", block_height)
        block = self.call("getblock", block_hash, 1)
        try:
            return block["tx"][block_index]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError(
                f"No transaction at block {block_height} index {block_index}"
            ) from e


def provider_from_config(config: dict[str, Any]) -> BlockCypher | BitcoinRPC:
    """Build the provider named by ``config["provider"]``."""
    kind = config.get("provider", PROVIDER_DEFAULT)
    timeout = config.get("timeout", PROVIDER_TIMEOUT_SECS)
    if kind == BlockCypher.name:
        return BlockCypher(token=config.get("blockcypher_token", ""), timeout=timeout)
    if kind == BitcoinRPC.name:
        url = config.get("rpc_url", "")
        if not url:
            raise ProviderError(
                "No Bitcoin RPC URL. Use --rpc-url or set BITCOIN_RPC_URL."
            )
        return BitcoinRPC(
            url,
            config.get("rpc_user", ""),
            config.get("rpc_password", ""),
            timeout=timeout,
        )
    raise ProviderError(f"Unknown provider: {kind!r}")
