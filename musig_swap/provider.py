"""Provider side of the swap: fixes the terms and submits the happy path."""

import structlog

from .models import (
    ClientCommitments,
    ClientShares,
    ProviderOffer,
    ProviderShares,
    SwapState,
    SwapTerms,
)
from .party import PROVIDER, SwapAttempt, SwapParty
from .plan import FINAL_SLOTS
from .swap import submit_transactions

logger = structlog.get_logger()


class SwapProvider(SwapParty):
    """
    Offers swaps to clients.

    Message order: prepare_swap -> (client prepares) -> sign_swap ->
    (client signs and deposits) -> check_swap -> deposit_funds ->
    finalize_swap.
    """

    role = PROVIDER

    async def prepare_swap(
        self, terms: SwapTerms, client_pubkey: bytes, client_address: str
    ) -> ProviderOffer:
        """Open a new attempt for these terms and send round-1 precommitments."""
        self._require_empty()
        attempt = SwapAttempt.open(
            self.role,
            terms,
            own_pubkey=self.pubkey,
            peer_pubkey=client_pubkey,
            client_address=client_address,
            provider_address=self.address,
        )
        if self.journal is not None:
            await self.journal.save_entry(attempt.entry(SwapState.PREPARED))
        self._attempt = attempt
        logger.info("Swap prepared", role=self.role.name, escrow=attempt.swap_address)

        return ProviderOffer(
            public_key=self.pubkey,
            address=self.address,
            precommitments=attempt.precommitments,
        )

    async def sign_swap(self, message: ClientCommitments) -> ProviderShares:
        """Finish the nonce rounds, build the batch and sign it."""
        attempt = self._current()
        attempt.require(SwapState.PREPARED)

        attempt.check_lengths(
            precommitments=message.precommitments, commitments=message.commitments
        )
        transactions = await attempt.build_batch(self.ledger)
        commitments = attempt.exchange_precommitments(message.precommitments)
        attempt.receive_commitments(message.commitments)
        shares = attempt.sign_batch(self._private_key, transactions)

        await self._advance(attempt, SwapState.SIGNED)
        return ProviderShares(commitments=commitments, shares=shares)

    async def check_swap(self, message: ClientShares):
        """
        Verify the client's shares and its deposit.

        A bad share aborts the attempt. A missing deposit raises
        InsufficientDepositError and leaves the state alone, so the check
        can simply be repeated later.
        """
        attempt = self._current()
        attempt.require(SwapState.SIGNED)

        signed = attempt.combine_batch(message.shares)
        await self._check_counterparty_deposit(attempt)
        await self._advance(attempt, SwapState.CHECKED, signed)

    async def finalize_swap(self) -> list[str]:
        """Submit the key change and both happy-path legs."""
        attempt = self._current()
        attempt.require(SwapState.DEPOSITED)

        hashes = await submit_transactions(
            self.ledger,
            [attempt.signed[slot] for slot in FINAL_SLOTS],
            attempt.terms.fee_policy,
            self.wallet,
            attempt.deposit_token(self.role.deposit_side),
        )
        await self._advance(attempt, SwapState.FINALIZED)
        return hashes
