"""
Tests for data providers (BlockCypher, Bitcoin Core RPC) and txid <-> txref lookups.

All tests use mocked HTTP / mock providers — no network or Bitcoin node required.
"""

from __future__ import annotations

import io
import json
import urllib.error
from unittest.mock import MagicMock, patch

import pytest

from txref.chain import Chain
from txref.lookup import (
    tx_details_from_txid,
    tx_details_from_txref,
    txid_to_txref,
    txref_to_txid,
)
from txref.provider import (
    BitcoinRPC,
    BlockCypher,
    ProviderError,
    TxDetails,
    parse_blockcypher_tx,
    provider_from_config,
    validate_txid,
)
from txref.result import ErrorKind, TxrefError


TXID = "ab" * 32
OTHER_TXID = "cd" * 32
VECTOR_TXREF = "tx1-rk63-uvxf-9pqc-sy"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def blockcypher_tx():
    """A BlockCypher /txs/<txid> payload for a confirmed transaction."""
    return {
        "block_hash": "00" * 32,
        "block_height": 467883,
        "block_index": 2355,
        "hash": TXID,
        "fees": 1200,
        "received": "2017-05-25T10:00:00Z",
        "confirmed": "2017-05-25T10:05:00Z",
        "confirmations": 250000,
        "inputs": [
            {
                "prev_hash": OTHER_TXID,
                "output_value": 51200,
                "script": "4830450221",
                "addresses": ["1BoatSLRHtKNngkdXEeobR76b53LETtpyT"],
            }
        ],
        "outputs": [
            {
                "value": 50000,
                "script": "76a914aabb88ac",
                "addresses": ["1BoatSLRHtKNngkdXEeobR76b53LETtpyT"],
                "script_type": "pay-to-pubkey-hash",
            },
            {
                "value": 0,
                "script": "6a0568656c6c6f",
                "data_hex": "68656c6c6f",
                "data_string": "hello",
                "script_type": "null-data",
            },
        ],
    }


@pytest.fixture
def confirmed_details():
    return TxDetails(
        txid=TXID,
        chain=Chain.MAINNET,
        block_hash="00" * 32,
        block_height=467883,
        block_index=2355,
        confirmations=10,
    )


@pytest.fixture
def mock_provider(confirmed_details):
    """A mock provider that knows one mainnet transaction."""
    provider = MagicMock(spec=BlockCypher)
    provider.get_tx_details.return_value = confirmed_details
    provider.get_txid_at.return_value = TXID
    return provider


def _http_response(payload) -> MagicMock:
    """A urlopen() context manager returning ``payload`` as the body."""
    body = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
    resp = MagicMock()
    resp.__enter__.return_value.read.return_value = body
    return resp


# ---------------------------------------------------------------------------
# TestValidateTxid
# ---------------------------------------------------------------------------

class TestValidateTxid:
    """Tests for validate_txid."""

    def test_valid(self):
        assert validate_txid(TXID) == TXID

    def test_normalises_case_and_whitespace(self):
        assert validate_txid(" " + TXID.upper() + "\n") == TXID

    @pytest.mark.parametrize("txid", ["", "abcd", "g" * 64, "a" * 65, None, 42])
    def test_invalid(self, txid):
        with pytest.raises(ValueError, match="Invalid txid"):
            validate_txid(txid)


# ---------------------------------------------------------------------------
# TestBlockCypher
# ---------------------------------------------------------------------------

class TestBlockCypher:
    """Tests for the BlockCypher client with mocked urlopen."""

    def test_parse_tx(self, blockcypher_tx):
        details = parse_blockcypher_tx(blockcypher_tx, Chain.MAINNET, TXID)
        assert details.block_height == 467883
        assert details.block_index == 2355
        assert details.fees == 1200
        assert details.confirmations == 250000
        assert details.is_confirmed
        assert details.inputs == [{
            "script": "4830450221",
            "addresses": ["1BoatSLRHtKNngkdXEeobR76b53LETtpyT"],
            "output_value": 51200,
            "previous_hash": OTHER_TXID,
        }]

    def test_parse_data_output(self, blockcypher_tx):
        details = parse_blockcypher_tx(blockcypher_tx, Chain.MAINNET, TXID)
        data_out = details.outputs[1]
        assert data_out["data_hex"] == "68656c6c6f"
        assert data_out["data_string"] == "hello"
        assert data_out["output_value"] == 0
        assert "addresses" not in data_out
        assert details.outputs[0]["addresses"] == ["1BoatSLRHtKNngkdXEeobR76b53LETtpyT"]

    def test_parse_unconfirmed(self, blockcypher_tx):
        blockcypher_tx["block_height"] = -1
        blockcypher_tx["block_index"] = 0
        details = parse_blockcypher_tx(blockcypher_tx, Chain.MAINNET, TXID)
        assert details.block_height is None
        assert details.block_index is None
        assert not details.is_confirmed

    def test_parse_malformed(self):
        with pytest.raises(ProviderError, match="Malformed"):
            parse_blockcypher_tx({"inputs": "nope"}, Chain.MAINNET, TXID)

    def test_get_tx_details(self, blockcypher_tx):
        provider = BlockCypher()
        with patch("urllib.request.urlopen", return_value=_http_response(blockcypher_tx)) as m:
            details = provider.get_tx_details(TXID, Chain.MAINNET)

        assert details.txid == TXID
        assert details.chain is Chain.MAINNET
        url = m.call_args[0][0].full_url
        assert url.startswith(f"https://api.blockcypher.com/v1/btc/main/txs/{TXID}?")
        assert "limit=500" in url
        assert "token" not in url

    def test_testnet_path_and_token(self, blockcypher_tx):
        provider = BlockCypher(token="s3cret")
        with patch("urllib.request.urlopen", return_value=_http_response(blockcypher_tx)) as m:
            provider.get_tx_details(TXID, "testnet")

        url = m.call_args[0][0].full_url
        assert "/btc/test3/txs/" in url
        assert "token=s3cret" in url

    def test_get_txid_at(self):
        provider = BlockCypher()
        with patch("urllib.request.urlopen", return_value=_http_response({"txids": [TXID]})) as m:
            txid = provider.get_txid_at(Chain.MAINNET, 467883, 2355)

        assert txid == TXID
        url = m.call_args[0][0].full_url
        assert "/btc/main/blocks/467883?" in url
        assert "txstart=2355" in url
        assert "limit=1" in url

    def test_get_txid_at_past_end_of_block(self):
        provider = BlockCypher()
        with patch("urllib.request.urlopen", return_value=_http_response({"txids": []})):
            with pytest.raises(ProviderError, match="No transaction"):
                provider.get_txid_at(Chain.MAINNET, 467883, 99999)

    def test_http_error(self):
        provider = BlockCypher()
        err = urllib.error.HTTPError(
            "https://api.blockcypher.com", 404, "Not Found", None, io.BytesIO(b"")
        )
        with patch("urllib.request.urlopen", side_effect=err):
            with pytest.raises(ProviderError, match="HTTP 404"):
                provider.get_tx_details(TXID, Chain.MAINNET)

    def test_connection_error(self):
        provider = BlockCypher()
        with patch("urllib.request.urlopen", side_effect=urllib.error.URLError("refused")):
            with pytest.raises(ProviderError, match="Connection failed"):
                provider.get_tx_details(TXID, Chain.MAINNET)

    def test_invalid_json(self):
        provider = BlockCypher()
        with patch("urllib.request.urlopen", return_value=_http_response(b"<html>")):
            with pytest.raises(ProviderError, match="Invalid JSON"):
                provider.get_tx_details(TXID, Chain.MAINNET)

    def test_api_error_body(self):
        provider = BlockCypher()
        body = {"error": "Transaction not found."}
        with patch("urllib.request.urlopen", return_value=_http_response(body)):
            with pytest.raises(ProviderError, match="not found"):
                provider.get_tx_details(TXID, Chain.MAINNET)

    def test_invalid_txid_never_hits_network(self):
        provider = BlockCypher()
        with patch("urllib.request.urlopen") as m:
            with pytest.raises(ValueError):
                provider.get_tx_details("../../etc", Chain.MAINNET)
        m.assert_not_called()


# ---------------------------------------------------------------------------
# TestBitcoinRPC
# ---------------------------------------------------------------------------

class TestBitcoinRPC:
    """Tests for BitcoinRPC configuration and lookups."""

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("BITCOIN_RPC_URL", "http://localhost:8332")
        monkeypatch.setenv("BITCOIN_RPC_USER", "testuser")
        monkeypatch.setenv("BITCOIN_RPC_PASS", "testpass")
        rpc = BitcoinRPC.from_env()
        assert rpc.url == "http://localhost:8332"

    def test_from_env_missing_url(self, monkeypatch):
        monkeypatch.delenv("BITCOIN_RPC_URL", raising=False)
        with pytest.raises(ProviderError, match="BITCOIN_RPC_URL not set"):
            BitcoinRPC.from_env()

    def test_empty_url_raises(self):
        with pytest.raises(ValueError, match="cannot be empty"):
            BitcoinRPC("", "user", "pass")

    def test_call_sends_basic_auth(self):
        rpc = BitcoinRPC("http://localhost:8332", "user", "pass")
        resp = _http_response({"result": {"chain": "main"}, "error": None})
        with patch("urllib.request.urlopen", return_value=resp) as m:
            assert rpc.call("getblockchaininfo") == {"chain": "main"}

        req = m.call_args[0][0]
        assert req.get_header("Authorization").startswith("Basic ")
        assert json.loads(req.data)["method"] == "getblockchaininfo"

    def test_call_rpc_error(self):
        rpc = BitcoinRPC("http://localhost:8332")
        resp = _http_response({"result": None, "error": {"code": -5, "message": "No such tx"}})
        with patch("urllib.request.urlopen", return_value=resp):
            with pytest.raises(ProviderError, match="No such tx"):
                rpc.call("getrawtransaction", TXID, True)

    def test_call_http_500_with_json_body(self):
        rpc = BitcoinRPC("http://localhost:8332")
        body = json.dumps({"result": None, "error": {"code": -8, "message": "Block height out of range"}})
        err = urllib.error.HTTPError(
            "http://localhost:8332", 500, "Internal Server Error", None,
            io.BytesIO(body.encode()),
        )
        with patch("urllib.request.urlopen", side_effect=err):
            with pytest.raises(ProviderError, match="out of range"):
                rpc.call("getblockhash", 99999999)

    def test_get_network(self):
        rpc = BitcoinRPC("http://localhost:8332")
        with patch.object(rpc, "call", return_value={"chain": "test"}):
            assert rpc.get_network() is Chain.TESTNET
        with patch.object(rpc, "call", return_value={"chain": "regtest"}):
            assert rpc.get_network() is None

    def test_get_tx_details(self):
        rpc = BitcoinRPC("http://localhost:8332")
        tx = {
            "txid": TXID,
            "blockhash": "00" * 32,
            "blocktime": 1495706700,
            "confirmations": 42,
            "vin": [{"txid": OTHER_TXID, "vout": 0, "scriptSig": {"hex": "4830"}}],
            "vout": [
                {
                    "value": 0.0005,
                    "scriptPubKey": {
                        "hex": "0014aabb",
                        "type": "witness_v0_keyhash",
                        "address": "bc1qexample",
                    },
                },
                {
                    "value": 0.0,
                    "scriptPubKey": {
                        "hex": "6a0568656c6c6f",
                        "type": "nulldata",
                        "asm": "OP_RETURN 68656c6c6f",
                    },
                },
            ],
        }
        block = {"height": 467883, "tx": [OTHER_TXID, TXID]}
        with patch.object(rpc, "call", side_effect=[{"chain": "main"}, tx, block]) as m:
            details = rpc.get_tx_details(TXID, Chain.MAINNET)

        assert [c[0][0] for c in m.call_args_list] == [
            "getblockchaininfo", "getrawtransaction", "getblock",
        ]
        assert details.block_height == 467883
        assert details.block_index == 1
        assert details.confirmations == 42
        assert details.confirmed.startswith("2017-05-25")
        assert details.inputs[0]["previous_hash"] == OTHER_TXID
        assert details.outputs[0]["output_value"] == 50000
        assert details.outputs[0]["addresses"] == ["bc1qexample"]
        assert details.outputs[1]["data_hex"] == "68656c6c6f"

    def test_get_tx_details_unconfirmed(self):
        rpc = BitcoinRPC("http://localhost:8332")
        tx = {"txid": TXID, "vin": [], "vout": []}
        with patch.object(rpc, "call", side_effect=[{"chain": "main"}, tx]):
            details = rpc.get_tx_details(TXID, Chain.MAINNET)
        assert not details.is_confirmed

    def test_wrong_network(self):
        rpc = BitcoinRPC("http://localhost:18332")
        with patch.object(rpc, "call", return_value={"chain": "test"}):
            with pytest.raises(ProviderError, match="not on mainnet"):
                rpc.get_tx_details(TXID, Chain.MAINNET)

    def test_get_txid_at(self):
        rpc = BitcoinRPC("http://localhost:8332")
        block = {"height": 467883, "tx": [OTHER_TXID, TXID]}
        with patch.object(
            rpc, "call", side_effect=[{"chain": "main"}, "00" * 32, block]
        ) as m:
            assert rpc.get_txid_at(Chain.MAINNET, 467883, 1) == TXID
        assert m.call_args_list[1][0] == ("getblockhash", 467883)

    def test_get_txid_at_index_out_of_block(self):
        rpc = BitcoinRPC("http://localhost:8332")
        block = {"height": 467883, "tx": [TXID]}
        with patch.object(rpc, "call", side_effect=[{"chain": "main"}, "00" * 32, block]):
            with pytest.raises(ProviderError, match="No transaction"):
                rpc.get_txid_at(Chain.MAINNET, 467883, 5)


# ---------------------------------------------------------------------------
# TestProviderFromConfig
# ---------------------------------------------------------------------------

class TestProviderFromConfig:
    """Tests for provider_from_config."""

    def test_blockcypher(self):
        provider = provider_from_config({"provider": "blockcypher", "timeout": 5})
        assert isinstance(provider, BlockCypher)
        assert provider.timeout == 5

    def test_rpc(self):
        provider = provider_from_config({
            "provider": "rpc",
            "rpc_url": "http://127.0.0.1:8332",
            "rpc_user": "u",
            "rpc_password": "p",
        })
        assert isinstance(provider, BitcoinRPC)
        assert provider.url == "http://127.0.0.1:8332"

    def test_rpc_without_url(self):
        with pytest.raises(ProviderError, match="No Bitcoin RPC URL"):
            provider_from_config({"provider": "rpc"})

    def test_unknown(self):
        with pytest.raises(ProviderError, match="Unknown provider"):
            provider_from_config({"provider": "electrum"})


# ---------------------------------------------------------------------------
# TestLookup
# ---------------------------------------------------------------------------

class TestLookup:
    """Tests for the txid <-> txref glue with a mock provider."""

    def test_txid_to_txref(self, mock_provider):
        assert txid_to_txref(TXID, "mainnet", mock_provider) == VECTOR_TXREF
        mock_provider.get_tx_details.assert_called_once_with(TXID, Chain.MAINNET)

    def test_txid_to_txref_unsupported_chain(self, mock_provider):
        with pytest.raises(TxrefError) as exc_info:
            txid_to_txref(TXID, "regtest", mock_provider)
        assert exc_info.value.kind is ErrorKind.UNSUPPORTED_CHAIN
        mock_provider.get_tx_details.assert_not_called()

    def test_txid_to_txref_unconfirmed(self, mock_provider, confirmed_details):
        confirmed_details.block_height = None
        confirmed_details.block_index = None
        with pytest.raises(ProviderError, match="unconfirmed"):
            txid_to_txref(TXID, "mainnet", mock_provider)

    def test_txid_to_txref_out_of_range(self, mock_provider, confirmed_details):
        confirmed_details.block_height = 0x200000
        with pytest.raises(TxrefError) as exc_info:
            txid_to_txref(TXID, "mainnet", mock_provider)
        assert exc_info.value.kind is ErrorKind.RANGE

    def test_txref_to_txid(self, mock_provider):
        txid, chain = txref_to_txid(VECTOR_TXREF, mock_provider)
        assert txid == TXID
        assert chain is Chain.MAINNET
        mock_provider.get_txid_at.assert_called_once_with(Chain.MAINNET, 467883, 2355)

    def test_txref_to_txid_bad_checksum(self, mock_provider):
        with pytest.raises(TxrefError) as exc_info:
            txref_to_txid("tx1-rk63-uvxf-9pqc-sq", mock_provider)
        assert exc_info.value.kind is ErrorKind.FORMAT
        mock_provider.get_txid_at.assert_not_called()

    def test_txref_to_txid_provider_failure(self, mock_provider):
        mock_provider.get_txid_at.side_effect = ProviderError("Connection failed")
        with pytest.raises(ProviderError, match="Connection failed"):
            txref_to_txid(VECTOR_TXREF, mock_provider)

    def test_details_from_txid(self, mock_provider):
        details = tx_details_from_txid(TXID, Chain.MAINNET, mock_provider)
        assert details.txref == VECTOR_TXREF
        assert details.to_dict()["chain"] == "mainnet"

    def test_details_from_txref(self, mock_provider):
        details = tx_details_from_txref("TX1RK63UVXF9PQCSY", mock_provider)
        assert details.txid == TXID
        # Canonical dashed form regardless of input layout
        assert details.txref == VECTOR_TXREF
        mock_provider.get_tx_details.assert_called_once_with(TXID, Chain.MAINNET)
