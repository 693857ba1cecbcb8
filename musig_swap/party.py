"""
Shared swap state machine.

A SwapParty is a long-lived identity: a signing key, its own ledger
account and an optional journal. Each prepare_swap opens a new
SwapAttempt that owns the signer session, the escrow account and the
batch for exactly one swap; reset() throws the attempt away. The Role
says which MuSig position, deposit and transactions belong to a party.
"""

from dataclasses import dataclass
from datetime import datetime, timezone

import structlog
from nacl.signing import SigningKey

from .database import SwapJournal
from .encoding import serialize_tx
from .errors import InsufficientDepositError, ProtocolSequenceError, VerificationError
from .escrow import derive_escrow
from .ledger import LedgerClient
from .models import (
    DepositSide,
    EscrowDescriptor,
    JournalEntry,
    Layer,
    SwapState,
    SwapTerms,
)
from .plan import (
    CLIENT_FINAL_SLOT,
    CLIENT_REFUND_SLOT,
    PROVIDER_FINAL_SLOT,
    PROVIDER_REFUND_SLOT,
    TOTAL_TRANSACTIONS,
    batch_digest,
    build_transactions,
    fetch_snapshot,
    required_deposit,
)
from .signer import ThresholdSigner, pubkey_hash, secret_scalar
from .swap import Swap
from .wallet import Wallet

logger = structlog.get_logger()


@dataclass(frozen=True)
class Role:
    name: str
    musig_position: int
    deposit_side: DepositSide
    final_slot: int
    cancel_slot: int
    deposit_after: SwapState  # State a party must reach before depositing

    @property
    def counterparty_side(self) -> DepositSide:
        return self.deposit_side.opposite


PROVIDER = Role(
    name="provider",
    musig_position=0,
    deposit_side=DepositSide.BUY,
    final_slot=PROVIDER_FINAL_SLOT,
    cancel_slot=PROVIDER_REFUND_SLOT,
    deposit_after=SwapState.CHECKED,
)
CLIENT = Role(
    name="client",
    musig_position=1,
    deposit_side=DepositSide.SELL,
    final_slot=CLIENT_FINAL_SLOT,
    cancel_slot=CLIENT_REFUND_SLOT,
    deposit_after=SwapState.SIGNED,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SwapAttempt:
    """Everything that belongs to one swap attempt and nothing else."""

    def __init__(
        self,
        role: Role,
        terms: SwapTerms,
        signer: ThresholdSigner,
        escrow: EscrowDescriptor,
        client_address: str,
        provider_address: str,
    ):
        self.role = role
        self.terms = terms
        self.signer = signer
        self.escrow = escrow
        self.client_address = client_address
        self.provider_address = provider_address
        self.state = SwapState.PREPARED
        self.aborted = False
        self.created_at = _utcnow()

        self.precommitments: list[bytes] = []
        self.commitments: list[bytes] = []
        self.transactions: tuple = ()
        self.shares: list[bytes] = []
        self.signed: tuple = ()

    @classmethod
    def open(
        cls,
        role: Role,
        terms: SwapTerms,
        own_pubkey: bytes,
        peer_pubkey: bytes,
        client_address: str,
        provider_address: str,
    ) -> "SwapAttempt":
        """Start a signer session and derive the escrow account for it."""
        pubkeys = [own_pubkey, peer_pubkey]
        if role.musig_position == 1:
            pubkeys.reverse()
        signer = ThresholdSigner(pubkeys, role.musig_position, TOTAL_TRANSACTIONS)
        escrow = derive_escrow(pubkey_hash(signer.aggregate_pubkey()), terms.create2)
        attempt = cls(role, terms, signer, escrow, client_address, provider_address)
        attempt.precommitments = signer.compute_precommitments()
        return attempt

    @property
    def swap_address(self) -> str:
        return self.escrow.address

    @property
    def pubkey_hash(self) -> str:
        return pubkey_hash(self.signer.aggregate_pubkey())

    def require(self, *states: SwapState):
        if self.aborted:
            raise ProtocolSequenceError("attempt was aborted, reset before retrying")
        if self.state not in states:
            expected = ", ".join(s.value for s in states)
            raise ProtocolSequenceError(
                f"{self.role.name} is {self.state.value}, expected {expected}"
            )

    def abort(self, message: str):
        """Mark the attempt unusable and raise a VerificationError."""
        self.aborted = True
        logger.error("Swap attempt aborted", escrow=self.swap_address, reason=message)
        raise VerificationError(message)

    def check_lengths(self, **lists: list):
        """Reject a message with the wrong number of entries before any round is consumed."""
        for name, values in lists.items():
            if len(values) != TOTAL_TRANSACTIONS:
                raise ProtocolSequenceError(
                    f"expected {TOTAL_TRANSACTIONS} {name}, got {len(values)}"
                )

    def exchange_precommitments(self, theirs: list[bytes]) -> list[bytes]:
        self.commitments = self.signer.receive_precommitments(self.precommitments, theirs)
        return self.commitments

    def receive_commitments(self, theirs: list[bytes]):
        try:
            self.signer.receive_commitments(self.commitments, theirs)
        except VerificationError as e:
            self.abort(str(e))

    async def build_batch(self, ledger: LedgerClient) -> tuple:
        snapshot = await fetch_snapshot(
            ledger,
            self.terms,
            self.swap_address,
            self.client_address,
            self.provider_address,
        )
        transactions = build_transactions(
            self.terms,
            self.client_address,
            self.provider_address,
            snapshot,
            self.pubkey_hash,
        )
        logger.info(
            "Built swap batch",
            escrow=self.swap_address,
            nonce=snapshot.nonce,
            digest=batch_digest(transactions),
        )
        return transactions

    def sign_batch(self, private_key: bytes, transactions: tuple) -> list[bytes]:
        """Own signature share for every slot of the batch."""
        shares = [
            self.signer.sign(private_key, serialize_tx(tx), slot)
            for slot, tx in enumerate(transactions)
        ]
        self.transactions = transactions
        self.shares = shares
        return shares

    def combine_batch(self, peer_shares: list[bytes]) -> tuple:
        """Fully signed batch from both parties' shares; aborts if any signature fails."""
        if len(peer_shares) != TOTAL_TRANSACTIONS:
            self.abort("invalid signature shares")

        aggregate = self.signer.aggregate_pubkey()
        signed = []
        for slot, (tx, own, peer) in enumerate(zip(self.transactions, self.shares, peer_shares)):
            ordered = [own, peer]
            if self.role.musig_position == 1:
                ordered.reverse()
            try:
                signature = self.signer.combine(ordered, slot)
            except VerificationError:
                self.abort("invalid signature shares")
            if not self.signer.verify(serialize_tx(tx), signature):
                self.abort("invalid signature shares")
            signed.append(tx.with_signature(aggregate, signature))
        return tuple(signed)

    def required_deposit(self, side: DepositSide) -> int:
        return required_deposit(self.terms, self.transactions, side)

    def deposit_token(self, side: DepositSide) -> str | int:
        return self.terms.sell.token if side == DepositSide.SELL else self.terms.buy.token

    async def escrow_balance(self, ledger: LedgerClient, side: DepositSide) -> int:
        token = self.deposit_token(side)
        symbol = token if isinstance(token, str) else await ledger.token_symbol(token)
        state = await ledger.get_account_state(self.swap_address)
        return state.balance(symbol)

    def handle(self, ledger: LedgerClient, wallet: Wallet) -> Swap:
        """Swap handle over this party's legs of the signed batch."""
        return Swap.from_batch(
            self.signed,
            self.role.final_slot,
            self.role.cancel_slot,
            ledger=ledger,
            fee_policy=self.terms.fee_policy,
            wallet=wallet,
            fee_token=self.deposit_token(self.role.deposit_side),
        )

    def entry(self, state: SwapState, signed: tuple | None = None) -> JournalEntry:
        return JournalEntry(
            swap_address=self.swap_address,
            role=self.role.name,
            state=state,
            salt=self.escrow.salt,
            timeout=self.terms.timeout,
            terms=self.terms,
            transactions=list(self.signed if signed is None else signed),
            created_at=self.created_at,
            updated_at=_utcnow(),
        )


class SwapParty:
    """Identity shared by the provider and the client."""

    role: Role

    def __init__(
        self,
        signing_key: SigningKey,
        ledger: LedgerClient,
        journal: SwapJournal | None = None,
    ):
        self.signing_key = signing_key
        self.ledger = ledger
        self.journal = journal
        self.wallet = Wallet(signing_key, ledger)
        self._private_key = secret_scalar(signing_key)
        self._attempt: SwapAttempt | None = None

    @classmethod
    def from_seed(cls, seed: bytes, ledger: LedgerClient, journal: SwapJournal | None = None):
        return cls(SigningKey(seed), ledger, journal)

    @classmethod
    def generate(cls, ledger: LedgerClient, journal: SwapJournal | None = None):
        return cls(SigningKey.generate(), ledger, journal)

    @property
    def address(self) -> str:
        return self.wallet.address

    @property
    def pubkey(self) -> bytes:
        return self.wallet.pubkey

    async def account_id(self) -> int | None:
        return await self.wallet.account_id()

    @property
    def state(self) -> SwapState:
        if self._attempt is None:
            return SwapState.EMPTY
        return self._attempt.state

    @property
    def swap_address(self) -> str:
        return self._current().swap_address

    @property
    def swap_salt(self) -> str:
        return self._current().escrow.salt

    def reset(self):
        """Drop the current attempt, whatever state it is in."""
        if self._attempt is not None:
            logger.info(
                "Swap attempt reset",
                role=self.role.name,
                escrow=self._attempt.swap_address,
                state=self._attempt.state.value,
            )
        self._attempt = None

    async def deposit_funds(self, layer: Layer = Layer.L2, approve: bool = True) -> str:
        """Send this party's side of the trade to the escrow account."""
        attempt = self._current()
        attempt.require(self.role.deposit_after)

        side = self.role.deposit_side
        amount = attempt.required_deposit(side)
        tx_hash = await self.wallet.deposit(
            attempt.swap_address, attempt.deposit_token(side), amount, layer, approve
        )
        await self._advance(attempt, SwapState.DEPOSITED)
        return tx_hash

    def swap(self) -> Swap:
        """Handle over this party's signed legs."""
        attempt = self._current()
        if attempt.aborted or not attempt.signed:
            raise ProtocolSequenceError("batch is not signed by both parties yet")
        return attempt.handle(self.ledger, self.wallet)

    async def cancel_swap(self) -> str:
        """Take the refund path; the ledger only accepts it after the timeout."""
        return await self.swap().cancel()

    def _current(self) -> SwapAttempt:
        if self._attempt is None:
            raise ProtocolSequenceError("no swap in progress")
        return self._attempt

    def _require_empty(self):
        if self._attempt is not None:
            raise ProtocolSequenceError(
                f"a swap is already in progress ({self._attempt.state.value})"
            )

    async def _check_counterparty_deposit(self, attempt: SwapAttempt):
        side = self.role.counterparty_side
        required = attempt.required_deposit(side)
        available = await attempt.escrow_balance(self.ledger, side)
        if available < required:
            logger.info(
                "Waiting for counterparty deposit",
                escrow=attempt.swap_address,
                required=required,
                available=available,
            )
            raise InsufficientDepositError(
                "counterparty has not deposited", required=required, available=available
            )

    async def _advance(self, attempt: SwapAttempt, state: SwapState, signed: tuple | None = None):
        if self.journal is not None:
            await self.journal.save_entry(attempt.entry(state, signed))
        if signed is not None:
            attempt.signed = signed
        attempt.state = state
        logger.info(
            "Swap state advanced",
            role=self.role.name,
            escrow=attempt.swap_address,
            state=state.value,
        )
