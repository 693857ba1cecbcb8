"""Tests for the swap journal."""

from datetime import datetime, timezone

import pytest
import pytest_asyncio

from musig_swap.client import SwapClient
from musig_swap.database import SwapJournal
from musig_swap.models import JournalEntry, SwapState, Transfer
from musig_swap.party import PROVIDER
from musig_swap.provider import SwapProvider
from musig_swap.signer import pubkey_hash
from musig_swap.swap import Swap

ESCROW = "0x" + "33" * 20


@pytest_asyncio.fixture
async def journal(tmp_path):
    """Create test journal."""
    journal = SwapJournal(f"sqlite+aiosqlite:///{tmp_path / 'swaps.db'}")
    await journal.init()
    yield journal
    await journal.close()


def make_entry(terms, swap_address=ESCROW, role="provider", state=SwapState.PREPARED, **kwargs):
    now = datetime.now(timezone.utc)
    return JournalEntry(
        swap_address=swap_address,
        role=role,
        state=state,
        salt="0x" + "aa" * 32,
        timeout=terms.timeout,
        terms=terms,
        created_at=now,
        updated_at=now,
        **kwargs,
    )


class TestSwapJournal:
    """Test journal persistence."""

    @pytest.mark.asyncio
    async def test_save_and_get(self, journal, terms):
        await journal.save_entry(make_entry(terms))

        entry = await journal.get_entry(ESCROW, "provider")

        assert entry is not None
        assert entry.terms == terms
        assert entry.state == SwapState.PREPARED
        assert await journal.get_entry(ESCROW, "client") is None

    @pytest.mark.asyncio
    async def test_signed_batch_survives(self, journal, terms):
        tx = Transfer(
            account_id=1,
            nonce=2,
            from_address=ESCROW,
            to_address="0x" + "44" * 20,
            token=0,
            amount=5,
            valid_from=terms.timeout + 1,
        ).with_signature(b"\x01" * 32, b"\x02" * 64)
        await journal.save_entry(make_entry(terms, transactions=[tx]))

        loaded = await journal.load_transactions(ESCROW, "provider")

        assert loaded == [tx]

    @pytest.mark.asyncio
    async def test_update_state(self, journal, terms):
        await journal.save_entry(make_entry(terms))

        updated = await journal.update_state(ESCROW, "provider", SwapState.SIGNED)

        assert updated.state == SwapState.SIGNED
        entry = await journal.get_entry(ESCROW, "provider")
        assert entry.state == SwapState.SIGNED

    @pytest.mark.asyncio
    async def test_update_unknown_attempt(self, journal):
        with pytest.raises(KeyError):
            await journal.update_state(ESCROW, "client", SwapState.SIGNED)

    @pytest.mark.asyncio
    async def test_recent_entries(self, journal, terms):
        for i in range(3):
            await journal.save_entry(make_entry(terms, swap_address="0x" + f"{i:02x}" * 20))

        entries = await journal.get_recent_entries(limit=2)

        assert len(entries) == 2
        assert entries[0].swap_address == "0x" + "02" * 20

    @pytest.mark.asyncio
    async def test_missing_transactions(self, journal):
        assert await journal.load_transactions(ESCROW, "provider") == []


class TestJournaledParties:
    """Parties write every completed step."""

    @pytest.mark.asyncio
    async def test_parties_journal_their_steps(self, journal, ledger, terms):
        provider = SwapProvider.from_seed(b"\x01" * 32, ledger, journal)
        client = SwapClient.from_seed(b"\x02" * 32, ledger, journal)
        for party in (provider, client):
            ledger.register_key(party.address, pubkey_hash(party.pubkey))
        ledger.mint(client.address, "ETH", 2 * 10**18)
        ledger.mint(provider.address, "DAI", 2000 * 10**18)

        offer = await provider.prepare_swap(terms, client.pubkey, client.address)
        commitments = await client.prepare_swap(terms, offer)
        provider_shares = await provider.sign_swap(commitments)
        _, client_shares = await client.sign_swap(provider_shares)
        await client.deposit_funds()
        await provider.check_swap(client_shares)

        provider_entry = await journal.get_entry(provider.swap_address, "provider")
        client_entry = await journal.get_entry(client.swap_address, "client")

        assert provider_entry.state == SwapState.CHECKED
        assert client_entry.state == SwapState.DEPOSITED
        assert len(provider_entry.transactions) == 5
        assert provider_entry.transactions == client_entry.transactions
        assert all(tx.signature is not None for tx in provider_entry.transactions)
        assert provider_entry.salt == provider.swap_salt

    @pytest.mark.asyncio
    async def test_provider_refunds_from_journal(self, journal, ledger, clock, terms):
        provider = SwapProvider.from_seed(b"\x01" * 32, ledger, journal)
        client = SwapClient.from_seed(b"\x02" * 32, ledger)
        for party in (provider, client):
            ledger.register_key(party.address, pubkey_hash(party.pubkey))
        ledger.mint(client.address, "ETH", 2 * 10**18)
        ledger.mint(provider.address, "DAI", 2000 * 10**18)

        offer = await provider.prepare_swap(terms, client.pubkey, client.address)
        commitments = await client.prepare_swap(terms, offer)
        _, client_shares = await client.sign_swap(await provider.sign_swap(commitments))
        await client.deposit_funds()
        await provider.check_swap(client_shares)
        await provider.deposit_funds()
        clock.now = terms.timeout + 1

        entry = await journal.get_entry(provider.swap_address, "provider")
        swap = Swap.from_batch(
            entry.transactions,
            PROVIDER.final_slot,
            PROVIDER.cancel_slot,
            ledger=ledger,
            fee_policy=entry.terms.fee_policy,
        )
        await swap.cancel()

        assert ledger.balance(provider.address, "DAI") == 2000 * 10**18 - 20_000
        assert ledger.balance(client.address, "ETH") == 2 * 10**18 - 60_000
