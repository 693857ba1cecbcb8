"""Tests for the simulated ledger and the exclusivity of the two swap paths."""

import pytest
from nacl.signing import SigningKey

from musig_swap.encoding import tx_hash
from musig_swap.errors import LedgerError, TransactionRejectedError
from musig_swap.models import ConfirmationLevel, Layer
from musig_swap.signer import pubkey_hash
from musig_swap.wallet import Wallet

ETH = 10**18


@pytest.fixture
def alice(ledger):
    wallet = Wallet(SigningKey(b"\x0a" * 32), ledger)
    ledger.register_key(wallet.address, wallet.pubkey_hash)
    ledger.mint(wallet.address, "ETH", ETH)
    return wallet


@pytest.fixture
def bob(ledger):
    wallet = Wallet(SigningKey(b"\x0b" * 32), ledger)
    ledger.register_key(wallet.address, wallet.pubkey_hash)
    return wallet


class TestInMemoryLedger:
    """Test transaction validation."""

    @pytest.mark.asyncio
    async def test_transfer(self, ledger, alice, bob):
        tx_hash_ = await alice.transfer(bob.address, "ETH", 1000)

        assert ledger.balance(bob.address, "ETH") == 1000
        assert ledger.balance(alice.address, "ETH") == ETH - 1000 - 10_000
        assert await ledger.is_executed(tx_hash_)
        state = await ledger.get_account_state(alice.address)
        assert state.nonce == 1

    @pytest.mark.asyncio
    async def test_transfer_creates_recipient(self, ledger, alice):
        recipient = "0x" + "55" * 20
        assert (await ledger.get_account_state(recipient)).id is None

        await alice.transfer(recipient, "ETH", 0)

        assert (await ledger.get_account_state(recipient)).id is not None

    @pytest.mark.asyncio
    async def test_nonce_executes_once(self, ledger, alice, bob):
        tx = await alice.sign_transfer(bob.address, "ETH", 1)
        await ledger.submit(tx)

        with pytest.raises(TransactionRejectedError, match="nonce"):
            await ledger.submit(tx)

    @pytest.mark.asyncio
    async def test_validity_window(self, ledger, clock, alice, bob):
        tx = await alice.sign_transfer(bob.address, "ETH", 1)
        late = tx.model_copy(update={"valid_until": clock.now - 1, "signature": None})

        with pytest.raises(TransactionRejectedError, match="validity window"):
            await ledger.submit(late.with_signature(alice.pubkey, tx.signature.signature))

    @pytest.mark.asyncio
    async def test_invalid_signature(self, ledger, alice, bob):
        tx = await alice.sign_transfer(bob.address, "ETH", 1)
        forged = tx.model_copy(update={"amount": 2})

        with pytest.raises(TransactionRejectedError, match="invalid signature"):
            await ledger.submit(forged)

    @pytest.mark.asyncio
    async def test_wrong_key(self, ledger, alice, bob):
        mallory = Wallet(SigningKey.generate(), ledger, address=alice.address)
        tx = await mallory.sign_transfer(bob.address, "ETH", 1)

        with pytest.raises(TransactionRejectedError, match="account key"):
            await ledger.submit(tx)

    @pytest.mark.asyncio
    async def test_insufficient_fee(self, ledger, alice, bob):
        tx = await alice.sign_transfer(bob.address, "ETH", 1, fee=1)

        with pytest.raises(TransactionRejectedError, match="insufficient fee"):
            await ledger.submit(tx)

    @pytest.mark.asyncio
    async def test_insufficient_balance(self, ledger, alice, bob):
        tx = await alice.sign_transfer(bob.address, "ETH", 2 * ETH)

        with pytest.raises(TransactionRejectedError, match="insufficient balance"):
            await ledger.submit(tx)

    @pytest.mark.asyncio
    async def test_batch_is_atomic(self, ledger, alice, bob):
        first = await alice.sign_transfer(bob.address, "ETH", 1)
        second = await alice.sign_transfer(bob.address, "ETH", 2 * ETH, nonce=first.nonce + 1)

        with pytest.raises(TransactionRejectedError):
            await ledger.submit_batch([first, second])

        assert ledger.balance(bob.address, "ETH") == 0
        assert not await ledger.is_executed(tx_hash(first))
        assert (await ledger.get_account_state(alice.address)).nonce == 0

    @pytest.mark.asyncio
    async def test_batch_fee_can_be_paid_by_one(self, ledger, alice, bob):
        first = await alice.sign_transfer(bob.address, "ETH", 1, fee=20_000)
        second = await alice.sign_transfer(bob.address, "ETH", 1, fee=0, nonce=first.nonce + 1)

        await ledger.submit_batch([first, second])

        assert ledger.balance(bob.address, "ETH") == 2

    @pytest.mark.asyncio
    async def test_unknown_token(self, ledger):
        with pytest.raises(LedgerError):
            await ledger.resolve_token_id("BTC")
        with pytest.raises(LedgerError):
            await ledger.token_symbol(42)

    @pytest.mark.asyncio
    async def test_l1_deposit(self, ledger, bob):
        ledger.mint(bob.address, "DAI", 500, layer=Layer.L1)

        l1_hash = await bob.deposit(bob.address, "DAI", 300, layer=Layer.L1)

        assert ledger.l1_balance(bob.address, "DAI") == 200
        assert ledger.balance(bob.address, "DAI") == 300
        receipt = await ledger.await_confirmation(l1_hash, ConfirmationLevel.VERIFY)
        assert receipt.verified

    @pytest.mark.asyncio
    async def test_pubkey_hash_registered(self, ledger, alice):
        state = await ledger.get_account_state(alice.address)
        assert state.pubkey_hash == pubkey_hash(alice.pubkey)


class TestExclusivity:
    """At most one of each pair of swap legs can ever execute."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("offset", [-600, -1, 0])
    async def test_happy_path_up_to_timeout(
        self, ledger, clock, terms, provider, run_to_deposited, offset
    ):
        client_swap = await run_to_deposited(terms)

        clock.now = terms.timeout + offset
        await ledger.submit_batch([client_swap.change_pubkey_tx, client_swap.final_tx])

        clock.now = terms.timeout + 1
        with pytest.raises(TransactionRejectedError, match="nonce"):
            await ledger.submit(client_swap.cancel_tx)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("offset", [1, 2, 3600])
    async def test_refund_path_after_timeout(
        self, ledger, clock, terms, provider, run_to_deposited, offset
    ):
        client_swap = await run_to_deposited(terms)
        provider_swap = provider.swap()

        clock.now = terms.timeout + offset
        with pytest.raises(TransactionRejectedError, match="validity window"):
            await ledger.submit_batch([client_swap.change_pubkey_tx, client_swap.final_tx])

        await ledger.submit_batch([client_swap.change_pubkey_tx, client_swap.cancel_tx])
        await ledger.submit(provider_swap.cancel_tx)

        with pytest.raises(TransactionRejectedError, match="nonce"):
            await ledger.submit(provider_swap.final_tx)

    @pytest.mark.asyncio
    async def test_refund_not_before_timeout(self, ledger, clock, terms, run_to_deposited):
        client_swap = await run_to_deposited(terms)

        clock.now = terms.timeout
        with pytest.raises(TransactionRejectedError, match="validity window"):
            await ledger.submit_batch([client_swap.change_pubkey_tx, client_swap.cancel_tx])
