"""Shared fixtures: a simulated ledger with a controllable clock and two funded parties."""

import pytest

from musig_swap.client import SwapClient
from musig_swap.config import config
from musig_swap.ledger import InMemoryLedger
from musig_swap.models import Create2Data, Deal, FeePolicy, SwapTerms
from musig_swap.provider import SwapProvider
from musig_swap.signer import pubkey_hash

ETH = 10**18

START_TIME = 1_700_000_000


class FakeClock:
    """Ledger clock that only moves when told to."""

    def __init__(self, now: int = START_TIME):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ledger(clock):
    return InMemoryLedger(clock=clock)


@pytest.fixture
def provider(ledger):
    """Provider holding 2000 DAI."""
    party = SwapProvider.from_seed(b"\x01" * 32, ledger)
    ledger.register_key(party.address, pubkey_hash(party.pubkey))
    ledger.mint(party.address, "DAI", 2000 * ETH)
    return party


@pytest.fixture
def client(ledger):
    """Client holding 2 ETH."""
    party = SwapClient.from_seed(b"\x02" * 32, ledger)
    ledger.register_key(party.address, pubkey_hash(party.pubkey))
    ledger.mint(party.address, "ETH", 2 * ETH)
    return party


@pytest.fixture
def make_terms(clock):
    """Terms for selling 1 ETH for 1000 DAI."""

    def make(timeout: int | None = None, fee_policy: FeePolicy = FeePolicy.ESCROW, **kwargs):
        return SwapTerms(
            sell=Deal(token="ETH", amount=ETH),
            buy=Deal(token="DAI", amount=1000 * ETH),
            timeout=clock.now + 600 if timeout is None else timeout,
            create2=Create2Data.random(
                config.create2_creator_address, config.create2_code_hash
            ),
            fee_policy=fee_policy,
            **kwargs,
        )

    return make


@pytest.fixture
def terms(make_terms):
    return make_terms()


@pytest.fixture
def run_to_deposited(provider, client):
    """Drive both parties until both deposits sit in the escrow account."""

    async def run(terms: SwapTerms):
        offer = await provider.prepare_swap(terms, client.pubkey, client.address)
        commitments = await client.prepare_swap(terms, offer)
        provider_shares = await provider.sign_swap(commitments)
        swap, client_shares = await client.sign_swap(provider_shares)
        await client.deposit_funds()
        await provider.check_swap(client_shares)
        await provider.deposit_funds()
        return swap

    return run
