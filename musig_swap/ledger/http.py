"""JSON-RPC ledger client."""

from typing import Any

import httpx
import structlog
from cachetools import TTLCache

from ..config import config
from ..errors import LedgerError, TransactionRejectedError
from ..models import AccountState, ChangePubKey, Receipt
from .base import LedgerClient

logger = structlog.get_logger()

EMPTY_PUBKEY_HASH = "sync:" + "00" * 20

SUBMIT_METHODS = {"tx_submit", "submit_txs_batch"}


def _signature_payload(tx) -> dict[str, str] | None:
    if tx.signature is None:
        return None
    return {
        "pubKey": tx.signature.pub_key.hex(),
        "signature": tx.signature.signature.hex(),
    }


def tx_payload(tx) -> dict[str, Any]:
    """Wire form of a signed transaction."""
    payload: dict[str, Any] = {
        "type": tx.type,
        "accountId": tx.account_id,
        "fee": str(tx.fee),
        "nonce": tx.nonce,
        "validFrom": tx.valid_from,
        "validUntil": tx.valid_until,
        "signature": _signature_payload(tx),
    }
    if isinstance(tx, ChangePubKey):
        payload.update(
            {
                "account": tx.account,
                "newPkHash": tx.new_pk_hash,
                "feeToken": tx.fee_token,
                "ethAuthData": {
                    "type": "CREATE2",
                    "creatorAddress": tx.auth.creator_address,
                    "saltArg": "0x" + tx.auth.salt.hex(),
                    "codeHash": "0x" + tx.auth.code_hash.hex(),
                },
            }
        )
    else:
        payload.update(
            {
                "from": tx.from_address,
                "to": tx.to_address,
                "token": tx.token,
                "amount": str(tx.amount),
            }
        )
    return payload


def _fee_type(op_type: str) -> str | dict[str, str]:
    if op_type == "ChangePubKey":
        return {"ChangePubKey": "CREATE2"}
    return op_type


class HttpLedgerClient(LedgerClient):
    """
    Talks to a ledger node over JSON-RPC 2.0.

    L1 deposits are not supported: they go through the bridge contract on
    Ethereum, which the node does not expose, so deposit_from_l1 raises
    LedgerError. Fund the escrow with an L2 transfer instead.
    """

    def __init__(self, url: str | None = None, timeout: float | None = None):
        """Initialize the ledger client."""
        self.url = url or config.ledger_url
        self.client = httpx.AsyncClient(
            timeout=timeout or config.request_timeout,
            headers={"Accept": "application/json"},
        )
        # Fee quotes move slowly; the token table practically never does
        self._fee_cache: TTLCache = TTLCache(maxsize=256, ttl=config.fee_cache_ttl)
        self._tokens: dict[str, dict[str, Any]] | None = None
        self._request_id = 0

    async def _call(self, method: str, params: list) -> Any:
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }
        try:
            response = await self.client.post(self.url, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            logger.error("Ledger request failed", method=method, error=str(e))
            raise LedgerError(f"{method} failed: {e}") from e

        error = data.get("error")
        if error:
            message = error.get("message", "unknown error")
            logger.warning("Ledger returned an error", method=method, error=message)
            if method in SUBMIT_METHODS:
                raise TransactionRejectedError(message)
            raise LedgerError(f"{method}: {message}")
        return data.get("result")

    async def _token_table(self) -> dict[str, dict[str, Any]]:
        if self._tokens is None:
            self._tokens = await self._call("tokens", [])
        return self._tokens

    async def get_account_state(self, address: str) -> AccountState:
        result = await self._call("account_info", [address])
        committed = result.get("committed") or {}
        key_hash = committed.get("pubKeyHash")
        return AccountState(
            address=result.get("address", address),
            id=result.get("id"),
            nonce=committed.get("nonce", 0),
            balances={
                symbol: int(amount)
                for symbol, amount in (committed.get("balances") or {}).items()
            },
            pubkey_hash=None if key_hash in (None, EMPTY_PUBKEY_HASH) else key_hash,
        )

    async def resolve_token_id(self, token: str | int) -> int:
        if isinstance(token, int):
            return token
        tokens = await self._token_table()
        if token in tokens:
            return tokens[token]["id"]
        for info in tokens.values():
            if info.get("address", "").lower() == token.lower():
                return info["id"]
        raise LedgerError(f"unknown token: {token}")

    async def token_symbol(self, token_id: int) -> str:
        tokens = await self._token_table()
        for symbol, info in tokens.items():
            if info["id"] == token_id:
                return symbol
        raise LedgerError(f"unknown token id: {token_id}")

    async def get_transaction_fee(self, op_type: str, address: str, token: str | int) -> int:
        cache_key = (op_type, address.lower(), token)
        if cache_key in self._fee_cache:
            return self._fee_cache[cache_key]

        result = await self._call("get_tx_fee", [_fee_type(op_type), address, token])
        fee = int(result["totalFee"])
        self._fee_cache[cache_key] = fee
        logger.debug("Fetched fee quote", op_type=op_type, token=token, fee=fee)
        return fee

    async def get_batch_fee(
        self, op_types: list[str], addresses: list[str], token: str | int
    ) -> int:
        result = await self._call(
            "get_txs_batch_fee_in_wei",
            [[_fee_type(op) for op in op_types], addresses, token],
        )
        return int(result["totalFee"])

    async def submit(self, tx) -> str:
        return await self._call("tx_submit", [tx_payload(tx), None, False])

    async def submit_batch(self, txs: list) -> list[str]:
        signed = [{"tx": tx_payload(tx), "signature": None} for tx in txs]
        return await self._call("submit_txs_batch", [signed, []])

    async def deposit_from_l1(
        self, sender: str, to: str, token: str | int, amount: int, approve: bool = True
    ) -> str:
        logger.error("L1 deposit requested from JSON-RPC client", to=to, token=token)
        raise LedgerError("L1 deposits are not supported by the JSON-RPC client; deposit on L2")

    async def get_receipt(self, tx_hash: str) -> Receipt | None:
        result = await self._call("tx_info", [tx_hash])
        if not result:
            return None
        block = result.get("block") or {}
        return Receipt(
            tx_hash=tx_hash,
            executed=bool(result.get("executed")),
            success=result.get("success"),
            fail_reason=result.get("failReason"),
            committed=bool(block.get("committed")),
            verified=bool(block.get("verified")),
        )

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()
