"""
Byte layout of signed transactions.

Both parties sign exactly these bytes, so any field that differs between
their batches yields a different message and a failed verification.

    Transfer / Withdraw:
        type(1) account_id(4) from(20) to(20) token(4) amount(16)
        fee(16) nonce(4) valid_from(8) valid_until(8)
    ChangePubKey:
        type(1) account_id(4) account(20) new_pk_hash(20) fee_token(4)
        fee(16) nonce(4) valid_from(8) valid_until(8)

Integers are big-endian and unsigned.
"""

import hashlib

from .models import ChangePubKey, Transfer, Withdraw
from .signer import PUBKEY_HASH_PREFIX

SYNC_TX_PREFIX = "sync-tx:"

TX_TYPE_IDS = {
    "Withdraw": 3,
    "Transfer": 5,
    "ChangePubKey": 7,
}


def _uint(value: int, size: int) -> bytes:
    return value.to_bytes(size, "big")


def _address(address: str) -> bytes:
    raw = bytes.fromhex(address.removeprefix("0x"))
    if len(raw) != 20:
        raise ValueError(f"invalid address: {address}")
    return raw


def _pk_hash(pk_hash: str) -> bytes:
    raw = bytes.fromhex(pk_hash.removeprefix(PUBKEY_HASH_PREFIX))
    if len(raw) != 20:
        raise ValueError(f"invalid pubkey hash: {pk_hash}")
    return raw


def _window(tx) -> bytes:
    return _uint(tx.nonce, 4) + _uint(tx.valid_from, 8) + _uint(tx.valid_until, 8)


def serialize_tx(tx: ChangePubKey | Transfer | Withdraw) -> bytes:
    """Bytes covered by the transaction signature (signature excluded)."""
    if isinstance(tx, ChangePubKey):
        return b"".join(
            [
                _uint(TX_TYPE_IDS[tx.type], 1),
                _uint(tx.account_id, 4),
                _address(tx.account),
                _pk_hash(tx.new_pk_hash),
                _uint(tx.fee_token, 4),
                _uint(tx.fee, 16),
                _window(tx),
            ]
        )
    if isinstance(tx, (Transfer, Withdraw)):
        return b"".join(
            [
                _uint(TX_TYPE_IDS[tx.type], 1),
                _uint(tx.account_id, 4),
                _address(tx.from_address),
                _address(tx.to_address),
                _uint(tx.token, 4),
                _uint(tx.amount, 16),
                _uint(tx.fee, 16),
                _window(tx),
            ]
        )
    raise TypeError(f"unsupported transaction type: {type(tx).__name__}")


def tx_hash(tx) -> str:
    """Ledger hash of a transaction, used to look up its receipt."""
    return SYNC_TX_PREFIX + hashlib.sha256(serialize_tx(tx)).hexdigest()
