"""
Simulated ledger with the semantics the swap relies on.

Each account nonce executes exactly once, transactions only execute inside
their validity window, and batches apply all together or not at all. That
is enough to run both swap paths end to end without a real network.
"""

import copy
import hashlib
import time
from dataclasses import dataclass, field
from typing import Callable

import structlog

from ..encoding import serialize_tx, tx_hash
from ..errors import LedgerError, TransactionRejectedError
from ..escrow import derive_escrow, same_address, to_checksum_address
from ..models import AccountState, ChangePubKey, Layer, Receipt, Transfer, Withdraw
from ..signer import pubkey_hash, verify_signature
from .base import LedgerClient

logger = structlog.get_logger()

DEFAULT_TOKENS = {"ETH": 0, "DAI": 1}

# Flat fee per operation type, in the smallest unit of whatever token pays it
DEFAULT_FEES = {
    "Transfer": 10_000,
    "Withdraw": 20_000,
    "ChangePubKey": 30_000,
}


@dataclass
class _Account:
    id: int
    address: str
    nonce: int = 0
    balances: dict[int, int] = field(default_factory=dict)
    pubkey_hash: str | None = None


class InMemoryLedger(LedgerClient):
    """Single-process ledger for tests, demos and local integration."""

    def __init__(
        self,
        tokens: dict[str, int] | None = None,
        fees: dict[str, int] | None = None,
        clock: Callable[[], int] | None = None,
    ):
        self.tokens = dict(tokens or DEFAULT_TOKENS)
        self.fees = dict(fees or DEFAULT_FEES)
        self.clock = clock or (lambda: int(time.time()))
        self.block_number = 0
        self._accounts: dict[str, _Account] = {}
        self._l1_balances: dict[str, dict[int, int]] = {}
        self._receipts: dict[str, Receipt] = {}
        self._next_id = 1
        self._l1_counter = 0

    # Funding and inspection helpers

    def register_key(self, address: str, key_hash: str):
        """Bind a signing key to an ordinary account, creating it if needed."""
        self._account(address, create=True).pubkey_hash = key_hash

    def mint(self, address: str, token: str | int, amount: int, layer: Layer = Layer.L2):
        token_id = self._token_id(token)
        if layer == Layer.L1:
            balances = self._l1_balances.setdefault(address.lower(), {})
        else:
            balances = self._account(address, create=True).balances
        balances[token_id] = balances.get(token_id, 0) + amount

    def balance(self, address: str, token: str | int) -> int:
        account = self._accounts.get(address.lower())
        if account is None:
            return 0
        return account.balances.get(self._token_id(token), 0)

    def l1_balance(self, address: str, token: str | int) -> int:
        return self._l1_balances.get(address.lower(), {}).get(self._token_id(token), 0)

    # LedgerClient

    async def get_account_state(self, address: str) -> AccountState:
        account = self._accounts.get(address.lower())
        if account is None:
            return AccountState(address=to_checksum_address(address))
        symbols = {token_id: symbol for symbol, token_id in self.tokens.items()}
        return AccountState(
            address=account.address,
            id=account.id,
            nonce=account.nonce,
            balances={symbols[t]: amount for t, amount in account.balances.items()},
            pubkey_hash=account.pubkey_hash,
        )

    async def resolve_token_id(self, token: str | int) -> int:
        return self._token_id(token)

    async def token_symbol(self, token_id: int) -> str:
        for symbol, known_id in self.tokens.items():
            if known_id == token_id:
                return symbol
        raise LedgerError(f"unknown token id: {token_id}")

    async def get_transaction_fee(self, op_type: str, address: str, token: str | int) -> int:
        self._token_id(token)
        return self._quote(op_type)

    async def get_batch_fee(
        self, op_types: list[str], addresses: list[str], token: str | int
    ) -> int:
        self._token_id(token)
        return sum(self._quote(op_type) for op_type in op_types)

    async def submit(self, tx) -> str:
        hashes = await self.submit_batch([tx])
        return hashes[0]

    async def submit_batch(self, txs: list) -> list[str]:
        if not txs:
            raise ValueError("empty batch")
        hashes = [tx_hash(tx) for tx in txs]
        now = self.clock()

        declared = sum(tx.fee for tx in txs)
        required = sum(self._quote(tx.type) for tx in txs)
        if declared < required:
            self._reject(hashes[0], f"insufficient fee: {declared} < {required}")

        backup = copy.deepcopy((self._accounts, self._l1_balances, self._next_id))
        try:
            for tx, h in zip(txs, hashes):
                self._apply(tx, h, now)
        except TransactionRejectedError:
            self._accounts, self._l1_balances, self._next_id = backup
            raise

        self.block_number += 1
        for h in hashes:
            self._receipts[h] = Receipt(
                tx_hash=h, executed=True, success=True, committed=True, verified=True
            )
        logger.info("Executed batch", block=self.block_number, tx_count=len(txs))
        return hashes

    async def deposit_from_l1(
        self, sender: str, to: str, token: str | int, amount: int, approve: bool = True
    ) -> str:
        token_id = self._token_id(token)
        balances = self._l1_balances.setdefault(sender.lower(), {})
        if balances.get(token_id, 0) < amount:
            raise TransactionRejectedError("insufficient L1 balance for deposit")
        balances[token_id] -= amount
        recipient = self._account(to, create=True)
        recipient.balances[token_id] = recipient.balances.get(token_id, 0) + amount

        self._l1_counter += 1
        digest = hashlib.sha256(
            f"{sender}:{to}:{token_id}:{amount}:{self._l1_counter}".encode()
        ).hexdigest()
        l1_hash = "0x" + digest
        self._receipts[l1_hash] = Receipt(
            tx_hash=l1_hash, executed=True, success=True, committed=True, verified=True
        )
        logger.info("Deposited from L1", to=to, token=token_id, amount=amount)
        return l1_hash

    async def get_receipt(self, tx_hash: str) -> Receipt | None:
        return self._receipts.get(tx_hash)

    # Internals

    def _token_id(self, token: str | int) -> int:
        if isinstance(token, int):
            if token not in self.tokens.values():
                raise LedgerError(f"unknown token id: {token}")
            return token
        try:
            return self.tokens[token]
        except KeyError:
            raise LedgerError(f"unknown token: {token}") from None

    def _quote(self, op_type: str) -> int:
        try:
            return self.fees[op_type]
        except KeyError:
            raise LedgerError(f"unsupported operation: {op_type}") from None

    def _account(self, address: str, create: bool = False) -> _Account | None:
        key = address.lower()
        account = self._accounts.get(key)
        if account is None and create:
            account = _Account(id=self._next_id, address=to_checksum_address(address))
            self._accounts[key] = account
            self._next_id += 1
        return account

    def _reject(self, h: str, reason: str):
        logger.warning("Rejected transaction", tx_hash=h, reason=reason)
        raise TransactionRejectedError(reason, tx_hash=h)

    def _debit(self, account: _Account, token: int, amount: int, h: str):
        available = account.balances.get(token, 0)
        if available < amount:
            self._reject(h, f"insufficient balance: {available} < {amount}")
        account.balances[token] = available - amount

    def _apply(self, tx, h: str, now: int):
        if tx.signature is None:
            self._reject(h, "missing signature")
        if not tx.valid_from <= now <= tx.valid_until:
            self._reject(h, "outside validity window")

        account = self._account(tx.sender)
        if account is None or account.id != tx.account_id:
            self._reject(h, "unknown account")
        if tx.nonce != account.nonce:
            self._reject(h, f"nonce mismatch: expected {account.nonce}, got {tx.nonce}")
        if not verify_signature(tx.signature.pub_key, serialize_tx(tx), tx.signature.signature):
            self._reject(h, "invalid signature")
        signer_hash = pubkey_hash(tx.signature.pub_key)

        if isinstance(tx, ChangePubKey):
            if signer_hash != tx.new_pk_hash:
                self._reject(h, "not signed by the new key")
            derived = derive_escrow(tx.new_pk_hash, tx.auth)
            if not same_address(derived.address, account.address):
                self._reject(h, "CREATE2 authorization does not match the account")
            self._debit(account, tx.fee_token, tx.fee, h)
            account.pubkey_hash = tx.new_pk_hash
        elif isinstance(tx, (Transfer, Withdraw)):
            if account.pubkey_hash is None:
                self._reject(h, "signing key not set")
            if signer_hash != account.pubkey_hash:
                self._reject(h, "not signed by the account key")
            self._debit(account, tx.token, tx.amount + tx.fee, h)
            if isinstance(tx, Transfer):
                recipient = self._account(tx.to_address, create=True)
                recipient.balances[tx.token] = recipient.balances.get(tx.token, 0) + tx.amount
            else:
                balances = self._l1_balances.setdefault(tx.to_address.lower(), {})
                balances[tx.token] = balances.get(tx.token, 0) + tx.amount
        else:
            self._reject(h, f"unsupported transaction: {type(tx).__name__}")

        account.nonce += 1
