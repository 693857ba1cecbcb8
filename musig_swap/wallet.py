"""A party's own ledger account: single-key transfers and deposits."""

import structlog
from nacl.signing import SigningKey

from .encoding import serialize_tx
from .errors import LedgerError
from .escrow import address_from_pubkey
from .ledger import LedgerClient
from .models import Layer, Transfer
from .signer import pubkey_hash, public_key, sign_single

logger = structlog.get_logger()


class Wallet:
    """Signs and submits transactions from one ordinary account."""

    def __init__(self, signing_key: SigningKey, ledger: LedgerClient, address: str | None = None):
        self.signing_key = signing_key
        self.ledger = ledger
        self.pubkey = public_key(signing_key)
        self.address = address or address_from_pubkey(self.pubkey)

    @property
    def pubkey_hash(self) -> str:
        return pubkey_hash(self.pubkey)

    async def account_id(self) -> int | None:
        state = await self.ledger.get_account_state(self.address)
        return state.id

    async def sign_transfer(
        self,
        to: str,
        token: str | int,
        amount: int,
        fee: int | None = None,
        nonce: int | None = None,
    ) -> Transfer:
        """Build and sign a transfer; fee and nonce come from the ledger unless given."""
        state = await self.ledger.get_account_state(self.address)
        if state.id is None:
            raise LedgerError(f"account {self.address} does not exist on the ledger")

        token_id = await self.ledger.resolve_token_id(token)
        if fee is None:
            fee = await self.ledger.get_transaction_fee("Transfer", to, token)

        tx = Transfer(
            account_id=state.id,
            nonce=state.nonce if nonce is None else nonce,
            from_address=self.address,
            to_address=to,
            token=token_id,
            amount=amount,
            fee=fee,
        )
        return tx.with_signature(self.pubkey, sign_single(self.signing_key, serialize_tx(tx)))

    async def transfer(self, to: str, token: str | int, amount: int) -> str:
        """Send a transfer and wait until it is committed."""
        tx = await self.sign_transfer(to, token, amount)
        tx_hash = await self.ledger.submit(tx)
        await self.ledger.await_confirmation(tx_hash)
        logger.info("Transfer committed", to=to, token=token, amount=amount, tx_hash=tx_hash)
        return tx_hash

    async def deposit(
        self,
        to: str,
        token: str | int,
        amount: int,
        layer: Layer = Layer.L2,
        approve: bool = True,
    ) -> str:
        """Fund `to`, either by an L2 transfer or by a deposit from L1."""
        if layer == Layer.L2:
            return await self.transfer(to, token, amount)

        tx_hash = await self.ledger.deposit_from_l1(self.address, to, token, amount, approve)
        await self.ledger.await_confirmation(tx_hash)
        logger.info("L1 deposit committed", to=to, token=token, amount=amount, tx_hash=tx_hash)
        return tx_hash
