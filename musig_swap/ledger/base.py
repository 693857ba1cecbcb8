"""Interface to the ledger the swap runs on."""

import asyncio
from abc import ABC, abstractmethod

import structlog

from ..config import config
from ..errors import ConfirmationTimeoutError, TransactionRejectedError
from ..models import AccountState, ConfirmationLevel, Receipt

logger = structlog.get_logger()


class LedgerClient(ABC):
    """
    Everything the swap protocol needs from the ledger.

    Every call may fail with a LedgerError. Callers surface those errors
    instead of retrying: resubmitting a deposit is not safe in general.
    """

    @abstractmethod
    async def get_account_state(self, address: str) -> AccountState:
        """Committed state of an account; id is None if it does not exist."""

    @abstractmethod
    async def resolve_token_id(self, token: str | int) -> int:
        """Ledger token id for a symbol (ids pass through)."""

    @abstractmethod
    async def token_symbol(self, token_id: int) -> str:
        """Symbol for a ledger token id."""

    @abstractmethod
    async def get_transaction_fee(self, op_type: str, address: str, token: str | int) -> int:
        """Fee quote for one operation sent to `address`, paid in `token`."""

    @abstractmethod
    async def get_batch_fee(
        self, op_types: list[str], addresses: list[str], token: str | int
    ) -> int:
        """Fee quote for a whole batch, paid in a single token."""

    @abstractmethod
    async def submit(self, tx) -> str:
        """Submit one signed transaction and return its hash."""

    @abstractmethod
    async def submit_batch(self, txs: list) -> list[str]:
        """Submit signed transactions that execute all together or not at all."""

    @abstractmethod
    async def deposit_from_l1(
        self, sender: str, to: str, token: str | int, amount: int, approve: bool = True
    ) -> str:
        """Move funds from L1 into an L2 account and return the L1 hash."""

    @abstractmethod
    async def get_receipt(self, tx_hash: str) -> Receipt | None:
        """Receipt of a transaction, or None if the ledger has not seen it."""

    async def is_executed(self, tx_hash: str) -> bool:
        receipt = await self.get_receipt(tx_hash)
        return bool(receipt and receipt.executed and receipt.success)

    async def await_confirmation(
        self,
        tx_hash: str,
        level: ConfirmationLevel = ConfirmationLevel.COMMIT,
        timeout: float | None = None,
    ) -> Receipt:
        """Poll until the transaction reaches `level` or the timeout expires."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + (timeout or config.confirmation_timeout)

        while True:
            receipt = await self.get_receipt(tx_hash)
            if receipt and receipt.executed:
                if not receipt.success:
                    raise TransactionRejectedError(
                        receipt.fail_reason or "transaction failed", tx_hash=tx_hash
                    )
                confirmed = (
                    receipt.verified
                    if level == ConfirmationLevel.VERIFY
                    else receipt.committed
                )
                if confirmed:
                    return receipt

            if loop.time() >= deadline:
                logger.warning("Confirmation timed out", tx_hash=tx_hash, level=level.value)
                raise ConfirmationTimeoutError(f"{tx_hash} not confirmed in time")
            await asyncio.sleep(config.poll_interval)

    async def close(self):
        """Release any connections held by the client."""
