"""
The five-transaction swap batch.

    slot  transaction                         nonce  valid
    0     ChangePubKey to the aggregate key   n      [0, MAX]
    1     buy token   escrow -> client        n+1    [0, T]
    2     sell token  escrow -> provider      n+2    [0, MAX]
    3     sell token  escrow -> client        n+1    [T+1, MAX]
    4     buy token   escrow -> provider      n+2    [T+1, MAX]

Slots 1/3 and 2/4 share a nonce and have windows that meet at the timeout
T, so the ledger can execute at most one of each pair: either the happy
path (0, 1, 2) or the refund path (0, 3, 4).
"""

import asyncio
import hashlib

import structlog

from .encoding import serialize_tx
from .errors import ProtocolSequenceError
from .ledger import LedgerClient
from .models import (
    MAX_TIMESTAMP,
    ChangePubKey,
    DepositSide,
    FeePolicy,
    Layer,
    LedgerSnapshot,
    SwapTerms,
    Transfer,
    Withdraw,
)

logger = structlog.get_logger()

TOTAL_TRANSACTIONS = 5

CHANGE_PUBKEY_SLOT = 0
CLIENT_FINAL_SLOT = 1
PROVIDER_FINAL_SLOT = 2
CLIENT_REFUND_SLOT = 3
PROVIDER_REFUND_SLOT = 4

FINAL_SLOTS = (CHANGE_PUBKEY_SLOT, CLIENT_FINAL_SLOT, PROVIDER_FINAL_SLOT)
REFUND_SLOTS = (CHANGE_PUBKEY_SLOT, CLIENT_REFUND_SLOT, PROVIDER_REFUND_SLOT)


def path_to(slots: tuple, slot: int) -> tuple:
    """Slots of a path up to and including `slot`, in nonce order."""
    return slots[: slots.index(slot) + 1]


async def fetch_snapshot(
    ledger: LedgerClient,
    terms: SwapTerms,
    escrow_address: str,
    client_address: str,
    provider_address: str,
) -> LedgerSnapshot:
    """Read everything the batch depends on from the ledger."""
    escrow = await ledger.get_account_state(escrow_address)
    if escrow.id is None:
        raise ProtocolSequenceError("escrow account id not set")

    sell_token_id = await ledger.resolve_token_id(terms.sell.token)
    buy_token_id = await ledger.resolve_token_id(terms.buy.token)

    fees = (0, 0, 0, 0, 0)
    if terms.fee_policy == FeePolicy.ESCROW:
        provider_op = "Withdraw" if terms.withdraw_type == Layer.L1 else "Transfer"
        fees = tuple(
            await asyncio.gather(
                ledger.get_transaction_fee("ChangePubKey", escrow_address, terms.sell.token),
                ledger.get_transaction_fee("Transfer", client_address, terms.buy.token),
                ledger.get_transaction_fee(provider_op, provider_address, terms.sell.token),
                ledger.get_transaction_fee("Transfer", client_address, terms.sell.token),
                ledger.get_transaction_fee("Transfer", provider_address, terms.buy.token),
            )
        )

    logger.debug("Fetched escrow snapshot", escrow=escrow_address, nonce=escrow.nonce)
    return LedgerSnapshot(
        account_id=escrow.id,
        address=escrow.address,
        nonce=escrow.nonce,
        sell_token_id=sell_token_id,
        buy_token_id=buy_token_id,
        fees=fees,
    )


def build_transactions(
    terms: SwapTerms,
    client_address: str,
    provider_address: str,
    snapshot: LedgerSnapshot,
    pubkey_hash: str,
) -> tuple:
    """Unsigned swap batch; the same inputs always give the same batch."""
    n = snapshot.nonce
    escrow = snapshot.address
    fees = snapshot.fees
    provider_tx = Withdraw if terms.withdraw_type == Layer.L1 else Transfer

    common = {"account_id": snapshot.account_id, "from_address": escrow}
    return (
        ChangePubKey(
            account_id=snapshot.account_id,
            account=escrow,
            new_pk_hash=pubkey_hash,
            fee_token=snapshot.sell_token_id,
            fee=fees[0],
            nonce=n,
            auth=terms.create2,
        ),
        Transfer(
            **common,
            to_address=client_address,
            token=snapshot.buy_token_id,
            amount=terms.buy.amount,
            fee=fees[1],
            nonce=n + 1,
            valid_until=terms.timeout,
        ),
        provider_tx(
            **common,
            to_address=provider_address,
            token=snapshot.sell_token_id,
            amount=terms.sell.amount,
            fee=fees[2],
            nonce=n + 2,
        ),
        Transfer(
            **common,
            to_address=client_address,
            token=snapshot.sell_token_id,
            amount=terms.sell.amount,
            fee=fees[3],
            nonce=n + 1,
            valid_from=terms.timeout + 1,
            valid_until=MAX_TIMESTAMP,
        ),
        Transfer(
            **common,
            to_address=provider_address,
            token=snapshot.buy_token_id,
            amount=terms.buy.amount,
            fee=fees[4],
            nonce=n + 2,
            valid_from=terms.timeout + 1,
            valid_until=MAX_TIMESTAMP,
        ),
    )


def required_deposit(terms: SwapTerms, transactions, side: DepositSide) -> int:
    """
    What one side has to put into the escrow account.

    The client funds the sold amount, the key change and whichever of its
    two sell-token legs costs more; the provider funds the bought amount
    plus the dearer of its two buy-token legs.
    """
    fees = [tx.fee for tx in transactions]
    if side == DepositSide.SELL:
        return terms.sell.amount + fees[CHANGE_PUBKEY_SLOT] + max(
            fees[PROVIDER_FINAL_SLOT], fees[CLIENT_REFUND_SLOT]
        )
    if side == DepositSide.BUY:
        return terms.buy.amount + max(fees[CLIENT_FINAL_SLOT], fees[PROVIDER_REFUND_SLOT])
    raise ValueError(f"unknown deposit side: {side}")


def batch_digest(transactions) -> str:
    """Short fingerprint of a batch, for comparing what both sides built."""
    h = hashlib.sha256()
    for tx in transactions:
        h.update(serialize_tx(tx))
    return h.hexdigest()[:16]
