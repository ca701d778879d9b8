"""
Bitcoin Core JSON-RPC node client.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

import httpx
from loguru import logger

from walletcore.backends.base import NodeClient, TransactionInfo
from walletcore.errors import BroadcastRejected, EncodingError, NodeError
from walletcore.models import ScriptType, Utxo, btc_to_sats
from walletcore.script import classify_script
from walletcore.transaction import Transaction

# Timeout for regular RPC calls (seconds)
DEFAULT_RPC_TIMEOUT = 30.0

# sendrawtransaction error codes meaning "the node refused this transaction"
RPC_VERIFY_ERROR = -25
RPC_VERIFY_REJECTED = -26
RPC_VERIFY_ALREADY_IN_CHAIN = -27
REJECTION_CODES = (RPC_VERIFY_ERROR, RPC_VERIFY_REJECTED, RPC_VERIFY_ALREADY_IN_CHAIN)

RPC_INVALID_ADDRESS_OR_KEY = -5


def _script_type_hint(entry: dict) -> ScriptType | None:
    """Nested segwit is only visible through the redeemScript listunspent returns."""
    redeem_script = entry.get("redeemScript")
    if redeem_script and classify_script(bytes.fromhex(redeem_script)) == ScriptType.P2WPKH:
        return ScriptType.P2SH_P2WPKH
    return None


class BitcoinCoreClient(NodeClient):
    """
    Node client over Bitcoin Core's JSON-RPC interface.
    Amounts arrive as BTC decimals and are converted to satoshis here.
    """

    def __init__(
        self,
        rpc_url: str = "http://127.0.0.1:8332",
        rpc_user: str = "rpcuser",
        rpc_password: str = "rpcpassword",
        timeout: float = DEFAULT_RPC_TIMEOUT,
    ):
        self.rpc_url = rpc_url.rstrip("/")
        self.rpc_user = rpc_user
        self.rpc_password = rpc_password
        self.client = httpx.AsyncClient(timeout=timeout, auth=(rpc_user, rpc_password))
        self._request_id = 0

    async def _rpc_call(self, method: str, params: list | None = None) -> Any:
        """
        Make an RPC call to Bitcoin Core.

        Args:
            method: RPC method name
            params: Method parameters

        Returns:
            RPC result, with JSON floats parsed as Decimal

        Raises:
            NodeError: On RPC errors and connection/timeout errors
        """
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }

        try:
            response = await self.client.post(self.rpc_url, json=payload)
            # Bitcoin Core answers RPC errors with HTTP 500 and a JSON error body
            if response.status_code != 500:
                response.raise_for_status()
            data = response.json(parse_float=Decimal)
        except httpx.TimeoutException as e:
            logger.error(f"RPC call timed out: {method} - {e}")
            raise NodeError(f"RPC call {method} timed out") from e
        except httpx.HTTPError as e:
            logger.error(f"RPC call failed: {method} - {e}")
            raise NodeError(f"RPC call {method} failed: {e}") from e
        except ValueError as e:
            logger.error(f"RPC call returned invalid JSON: {method} - {e}")
            raise NodeError(f"RPC call {method} returned invalid JSON") from e

        if data.get("error"):
            error_info = data["error"]
            error_code = error_info.get("code")
            error_msg = error_info.get("message", str(error_info))
            raise NodeError(f"RPC error {error_code}: {error_msg}", code=error_code)

        return data.get("result")

    async def list_unspent(self, addresses: list[str], min_conf: int = 1) -> list[Utxo]:
        if not addresses:
            return []

        result = await self._rpc_call("listunspent", [min_conf, 9999999, addresses])
        utxos = []
        for entry in result or []:
            utxos.append(
                Utxo(
                    txid=entry["txid"],
                    vout=entry["vout"],
                    value=btc_to_sats(entry["amount"]),
                    script_pubkey=bytes.fromhex(entry.get("scriptPubKey", "")),
                    script_type=_script_type_hint(entry),
                    address=entry.get("address"),
                    confirmations=entry.get("confirmations", 0),
                )
            )

        logger.debug(f"Found {len(utxos)} UTXOs for {len(addresses)} addresses")
        return utxos

    async def estimate_smart_fee(self, target_blocks: int) -> Decimal | None:
        result = await self._rpc_call("estimatesmartfee", [target_blocks])

        if result and "feerate" in result:
            btc_per_kvb = Decimal(result["feerate"])
            sat_per_vbyte = btc_per_kvb * 100_000_000 / 1000
            logger.debug(f"Estimated fee for {target_blocks} blocks: {sat_per_vbyte} sat/vB")
            return sat_per_vbyte

        errors = (result or {}).get("errors", [])
        logger.warning(f"Fee estimation unavailable: {errors}")
        return None

    async def send_raw_transaction(self, raw_tx: bytes | str) -> str:
        tx_hex = raw_tx.hex() if isinstance(raw_tx, bytes) else raw_tx
        try:
            txid = await self._rpc_call("sendrawtransaction", [tx_hex])
        except NodeError as e:
            if e.code in REJECTION_CODES:
                reason = str(e).split(": ", 1)[-1]
                logger.error(f"Transaction rejected by node: {reason}")
                raise BroadcastRejected(reason) from e
            raise

        logger.info(f"Broadcast transaction: {txid}")
        return txid

    async def get_raw_transaction(self, txid: str) -> TransactionInfo | None:
        try:
            tx_data = await self._rpc_call("getrawtransaction", [txid, True])
        except NodeError as e:
            if e.code == RPC_INVALID_ADDRESS_OR_KEY:
                logger.debug(f"Transaction {txid} not found")
                return None
            raise

        if not tx_data:
            return None

        try:
            tx = Transaction.from_hex(tx_data.get("hex", ""))
        except EncodingError as e:
            raise NodeError(f"Node returned an undecodable transaction for {txid}") from e

        return TransactionInfo(
            txid=txid,
            tx=tx,
            confirmations=tx_data.get("confirmations", 0),
            block_hash=tx_data.get("blockhash"),
            block_time=tx_data.get("blocktime"),
        )

    async def close(self) -> None:
        await self.client.aclose()
