"""Client side of the swap: accepts the provider's terms and deposits first."""

import structlog

from .models import (
    ClientCommitments,
    ClientShares,
    ProviderOffer,
    ProviderShares,
    SwapState,
    SwapTerms,
)
from .party import CLIENT, SwapAttempt, SwapParty
from .swap import Swap

logger = structlog.get_logger()


class SwapClient(SwapParty):
    """Takes swaps offered by a provider."""

    role = CLIENT

    async def prepare_swap(self, terms: SwapTerms, offer: ProviderOffer) -> ClientCommitments:
        """
        Join the provider's attempt.

        Creates the escrow account with a zero transfer if the ledger has
        never seen it, builds the batch, then reveals this side's nonce
        commitments.
        """
        self._require_empty()
        attempt = SwapAttempt.open(
            self.role,
            terms,
            own_pubkey=self.pubkey,
            peer_pubkey=offer.public_key,
            client_address=self.address,
            provider_address=offer.address,
        )

        escrow = await self.ledger.get_account_state(attempt.swap_address)
        if escrow.id is None:
            logger.info("Creating escrow account", escrow=attempt.swap_address)
            await self.wallet.transfer(attempt.swap_address, terms.sell.token, 0)
        attempt.transactions = await attempt.build_batch(self.ledger)

        commitments = attempt.exchange_precommitments(offer.precommitments)
        if self.journal is not None:
            await self.journal.save_entry(attempt.entry(SwapState.PREPARED))
        self._attempt = attempt
        logger.info("Swap prepared", role=self.role.name, escrow=attempt.swap_address)

        return ClientCommitments(
            precommitments=attempt.precommitments, commitments=commitments
        )

    async def sign_swap(self, message: ProviderShares) -> tuple[Swap, ClientShares]:
        """Sign the batch, combine with the provider's shares and verify every signature."""
        attempt = self._current()
        attempt.require(SwapState.PREPARED)

        attempt.check_lengths(commitments=message.commitments, shares=message.shares)
        attempt.receive_commitments(message.commitments)
        shares = attempt.sign_batch(self._private_key, attempt.transactions)
        signed = attempt.combine_batch(message.shares)

        await self._advance(attempt, SwapState.SIGNED, signed)
        return attempt.handle(self.ledger, self.wallet), ClientShares(shares=shares)
