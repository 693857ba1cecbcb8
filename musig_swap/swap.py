"""Submitting pre-signed swap transactions."""

import structlog

from .encoding import tx_hash
from .errors import InsufficientDepositError
from .ledger import LedgerClient
from .models import ChangePubKey, ConfirmationLevel, FeePolicy, Receipt
from .plan import FINAL_SLOTS, REFUND_SLOTS, path_to
from .wallet import Wallet

logger = structlog.get_logger()


async def submit_transactions(
    ledger: LedgerClient,
    transactions,
    fee_policy: FeePolicy = FeePolicy.ESCROW,
    wallet: Wallet | None = None,
    fee_token: str | int | None = None,
) -> list[str]:
    """
    Submit transactions as one atomic batch and wait for all of them.

    Transactions the ledger already executed are left out. Under the
    submitter fee policy a zero-amount transfer from the wallet pays for
    the whole batch; it goes right after a key change so the escrow key
    is bound before anything else touches the account.
    """
    pending = []
    for tx in transactions:
        if await ledger.is_executed(tx_hash(tx)):
            logger.debug("Skipping executed transaction", tx_hash=tx_hash(tx))
            continue
        pending.append(tx)
    if not pending:
        return []

    batch = list(pending)
    if fee_policy == FeePolicy.SUBMITTER:
        if wallet is None or fee_token is None:
            raise ValueError("submitter fee policy needs a wallet and a fee token")
        fee = await ledger.get_batch_fee(
            [tx.type for tx in pending] + ["Transfer"],
            [tx.target for tx in pending] + [wallet.address],
            fee_token,
        )
        fee_tx = await wallet.sign_transfer(wallet.address, fee_token, 0, fee=fee)
        position = 1 if isinstance(batch[0], ChangePubKey) else 0
        batch.insert(position, fee_tx)

    hashes = await ledger.submit_batch(batch)
    for h in hashes:
        await ledger.await_confirmation(h)
    logger.info("Batch committed", tx_count=len(batch))
    return hashes


class Swap:
    """
    A party's pre-signed way out of the escrow.

    Holds the party's happy path and refund path as fully signed
    transactions in nonce order, starting with the key change and ending
    with the party's own leg. The counterparty's earlier legs go along
    because the ledger runs each nonce in order, so either party can take
    its path alone.
    Nothing is signed here; every method only forwards transactions to
    the ledger.
    """

    def __init__(
        self,
        final_path,
        cancel_path,
        ledger: LedgerClient,
        fee_policy: FeePolicy = FeePolicy.ESCROW,
        wallet: Wallet | None = None,
        fee_token: str | int | None = None,
    ):
        if not final_path or not cancel_path or final_path[0] != cancel_path[0]:
            raise ValueError("both paths must start with the same key change")
        self.final_path = tuple(final_path)
        self.cancel_path = tuple(cancel_path)
        self.final_hash = tx_hash(self.final_tx)
        self.cancel_hash = tx_hash(self.cancel_tx)
        self.ledger = ledger
        self.fee_policy = fee_policy
        self.wallet = wallet
        self.fee_token = fee_token

    @classmethod
    def from_batch(
        cls,
        signed,
        final_slot: int,
        cancel_slot: int,
        ledger: LedgerClient,
        fee_policy: FeePolicy = FeePolicy.ESCROW,
        wallet: Wallet | None = None,
        fee_token: str | int | None = None,
    ) -> "Swap":
        """Handle over one party's legs of a signed five-transaction batch."""
        return cls(
            final_path=[signed[slot] for slot in path_to(FINAL_SLOTS, final_slot)],
            cancel_path=[signed[slot] for slot in path_to(REFUND_SLOTS, cancel_slot)],
            ledger=ledger,
            fee_policy=fee_policy,
            wallet=wallet,
            fee_token=fee_token,
        )

    @property
    def change_pubkey_tx(self) -> ChangePubKey:
        return self.final_path[0]

    @property
    def final_tx(self):
        return self.final_path[-1]

    @property
    def cancel_tx(self):
        return self.cancel_path[-1]

    @property
    def escrow_address(self) -> str:
        return self.change_pubkey_tx.account

    async def _required_balances(self, transactions) -> dict[int, int]:
        """Per token id, what the escrow must hold for the pending transactions."""
        required: dict[int, int] = {}
        for tx in transactions:
            if await self.ledger.is_executed(tx_hash(tx)):
                continue
            if isinstance(tx, ChangePubKey):
                required[tx.fee_token] = required.get(tx.fee_token, 0) + tx.fee
            else:
                required[tx.token] = required.get(tx.token, 0) + tx.amount + tx.fee
        return required

    async def finalize(self) -> str:
        """Submit whatever is pending of the happy path up to this party's leg."""
        if await self.ledger.is_executed(self.final_hash):
            logger.info("Swap already finalized", escrow=self.escrow_address)
            return self.final_hash

        state = await self.ledger.get_account_state(self.escrow_address)
        for token, required in (await self._required_balances(self.final_path)).items():
            available = state.balance(await self.ledger.token_symbol(token))
            if available < required:
                raise InsufficientDepositError(
                    "escrow does not hold the funds to finalize",
                    required=required,
                    available=available,
                )

        await self._submit(self.final_path)
        logger.info("Swap finalized", escrow=self.escrow_address, tx_hash=self.final_hash)
        return self.final_hash

    async def cancel(self) -> str:
        """Submit whatever is pending of the refund path; only valid after the timeout."""
        await self._submit(self.cancel_path)
        logger.info("Swap cancelled", escrow=self.escrow_address, tx_hash=self.cancel_hash)
        return self.cancel_hash

    async def wait(
        self,
        level: ConfirmationLevel = ConfirmationLevel.COMMIT,
        timeout: float | None = None,
    ) -> Receipt:
        """Block until the happy-path leg reaches `level`."""
        return await self.ledger.await_confirmation(self.final_hash, level, timeout)

    async def _submit(self, transactions) -> list[str]:
        return await submit_transactions(
            self.ledger, transactions, self.fee_policy, self.wallet, self.fee_token
        )
