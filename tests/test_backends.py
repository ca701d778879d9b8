"""
Unit tests for the Bitcoin Core node client (RPC mocked).
"""

from decimal import Decimal
from unittest.mock import AsyncMock

import httpx
import pytest

from tests.test_transaction import BIP143_UNSIGNED
from walletcore.backends import BitcoinCoreClient
from walletcore.errors import BroadcastRejected, NodeError
from walletcore.models import ScriptType


def _client_with(handler) -> BitcoinCoreClient:
    client = BitcoinCoreClient(rpc_url="http://localhost:18443", rpc_user="u", rpc_password="p")
    client.client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return client


def _rpc_error(code: int, message: str):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            500, json={"result": None, "error": {"code": code, "message": message}, "id": 1}
        )

    return handler


class TestRpcTransport:
    @pytest.mark.asyncio
    async def test_result_floats_are_decimal(self):
        def handler(request):
            return httpx.Response(
                200, content=b'{"result": {"feerate": 0.00012, "blocks": 2}, "error": null}'
            )

        client = _client_with(handler)
        try:
            assert await client.estimate_smart_fee(2) == Decimal("12")
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_rpc_error_carries_code(self):
        client = _client_with(_rpc_error(-8, "Invalid parameter"))
        try:
            with pytest.raises(NodeError) as exc_info:
                await client._rpc_call("getblockhash", [-1])
            assert exc_info.value.code == -8
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        client = _client_with(handler)
        try:
            with pytest.raises(NodeError):
                await client._rpc_call("getblockcount")
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        client = _client_with(lambda request: httpx.Response(200, content=b"not json"))
        try:
            with pytest.raises(NodeError, match="invalid JSON"):
                await client._rpc_call("getblockcount")
        finally:
            await client.close()


class TestNodeOperations:
    @pytest.mark.asyncio
    async def test_list_unspent(self):
        client = BitcoinCoreClient()
        client._rpc_call = AsyncMock(
            return_value=[
                {
                    "txid": "ab" * 32,
                    "vout": 1,
                    "amount": Decimal("0.00100000"),
                    "scriptPubKey": "0014" + "cd" * 20,
                    "address": "bc1qexample",
                    "confirmations": 6,
                }
            ]
        )
        try:
            utxos = await client.list_unspent(["bc1qexample"])
        finally:
            await client.close()

        client._rpc_call.assert_awaited_once_with("listunspent", [1, 9999999, ["bc1qexample"]])
        assert len(utxos) == 1
        assert utxos[0].value == 100_000
        assert utxos[0].confirmations == 6
        assert utxos[0].script_pubkey == bytes.fromhex("0014" + "cd" * 20)

    @pytest.mark.asyncio
    async def test_list_unspent_flags_nested_segwit(self):
        client = BitcoinCoreClient()
        client._rpc_call = AsyncMock(
            return_value=[
                {
                    "txid": "ab" * 32,
                    "vout": 0,
                    "amount": Decimal("0.001"),
                    "scriptPubKey": "a914" + "11" * 20 + "87",
                    "redeemScript": "0014" + "22" * 20,
                },
                {
                    "txid": "ac" * 32,
                    "vout": 0,
                    "amount": Decimal("0.001"),
                    "scriptPubKey": "a914" + "33" * 20 + "87",
                },
            ]
        )
        try:
            nested, bare = await client.list_unspent(["3example"])
        finally:
            await client.close()
        assert nested.resolved_script_type == ScriptType.P2SH_P2WPKH
        assert bare.resolved_script_type == ScriptType.P2SH

    @pytest.mark.asyncio
    async def test_list_unspent_no_addresses(self):
        client = BitcoinCoreClient()
        client._rpc_call = AsyncMock()
        try:
            assert await client.list_unspent([]) == []
        finally:
            await client.close()
        client._rpc_call.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fee_estimate_unavailable(self):
        client = BitcoinCoreClient()
        client._rpc_call = AsyncMock(return_value={"errors": ["Insufficient data"], "blocks": 0})
        try:
            assert await client.estimate_smart_fee(6) is None
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_broadcast(self):
        client = BitcoinCoreClient()
        client._rpc_call = AsyncMock(return_value="ff" * 32)
        try:
            assert await client.send_raw_transaction(b"\x01\x02") == "ff" * 32
        finally:
            await client.close()
        client._rpc_call.assert_awaited_once_with("sendrawtransaction", ["0102"])

    @pytest.mark.asyncio
    async def test_broadcast_rejected(self):
        client = _client_with(_rpc_error(-26, "min relay fee not met"))
        try:
            with pytest.raises(BroadcastRejected) as exc_info:
                await client.send_raw_transaction("00")
            assert exc_info.value.reason == "min relay fee not met"
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_broadcast_other_error_is_node_error(self):
        client = _client_with(_rpc_error(-28, "Loading block index"))
        try:
            with pytest.raises(NodeError) as exc_info:
                await client.send_raw_transaction("00")
            assert not isinstance(exc_info.value, BroadcastRejected)
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_get_raw_transaction(self):
        client = BitcoinCoreClient()
        client._rpc_call = AsyncMock(
            return_value={
                "txid": "aa" * 32,
                "hex": BIP143_UNSIGNED,
                "confirmations": 3,
                "blockhash": "00" * 32,
                "blocktime": 1_700_000_000,
            }
        )
        try:
            info = await client.get_raw_transaction("aa" * 32)
        finally:
            await client.close()
        client._rpc_call.assert_awaited_once_with("getrawtransaction", ["aa" * 32, True])
        assert info is not None
        assert info.confirmations == 3
        assert info.block_time == 1_700_000_000
        assert info.tx.locktime == 17

    @pytest.mark.asyncio
    async def test_get_raw_transaction_unconfirmed(self):
        client = BitcoinCoreClient()
        client._rpc_call = AsyncMock(return_value={"txid": "aa" * 32, "hex": BIP143_UNSIGNED})
        try:
            info = await client.get_raw_transaction("aa" * 32)
        finally:
            await client.close()
        assert info.confirmations == 0
        assert info.block_hash is None

    @pytest.mark.asyncio
    async def test_get_raw_transaction_missing(self):
        client = _client_with(_rpc_error(-5, "No such mempool or blockchain transaction"))
        try:
            assert await client.get_raw_transaction("aa" * 32) is None
        finally:
            await client.close()
