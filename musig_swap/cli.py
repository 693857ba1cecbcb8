"""Command-line interface for musig swaps."""

import asyncio
import logging
import secrets
import sys
import time

import click
import structlog
from nacl.signing import SigningKey
from structlog.stdlib import LoggerFactory

from . import __version__
from .client import SwapClient
from .config import config
from .database import SwapJournal
from .errors import SwapError
from .escrow import derive_escrow
from .ledger import HttpLedgerClient, InMemoryLedger
from .models import Create2Data, Deal, DepositSide, FeePolicy, SwapTerms
from .party import CLIENT, PROVIDER
from .provider import SwapProvider
from .signer import aggregate_pubkey, pubkey_hash
from .swap import Swap
from .wallet import Wallet

logging.basicConfig(format="%(message)s", stream=sys.stdout, level=config.log_level)

structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.dev.ConsoleRenderer(),
    ],
    context_class=dict,
    logger_factory=LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

ROLES = {"provider": PROVIDER, "client": CLIENT}

ETH = 10**18


def _hex(value: str) -> bytes:
    return bytes.fromhex(value.removeprefix("0x"))


@click.group()
@click.version_option(version=__version__)
def cli():
    """musig-swap - two-party escrow swaps on a single ledger."""
    pass


@cli.command()
@click.option("--provider-pubkey", required=True, help="Provider public key (hex)")
@click.option("--client-pubkey", required=True, help="Client public key (hex)")
@click.option("--salt", default=None, help="CREATE2 salt argument (hex, random if omitted)")
@click.option("--creator", default=config.create2_creator_address, help="Factory address")
@click.option("--code-hash", default=config.create2_code_hash, help="Contract code hash")
def escrow_address(provider_pubkey: str, client_pubkey: str, salt: str, creator: str, code_hash: str):
    """Derive the escrow account of a provider/client key pair."""
    key_hash = pubkey_hash(aggregate_pubkey([_hex(provider_pubkey), _hex(client_pubkey)]))
    create2 = Create2Data(
        creator_address=creator,
        salt=_hex(salt) if salt else secrets.token_bytes(32),
        code_hash=code_hash,
    )
    escrow = derive_escrow(key_hash, create2)

    click.echo(f"Pubkey hash: {key_hash}")
    click.echo(f"Salt arg:    0x{create2.salt.hex()}")
    click.echo(f"Salt:        {escrow.salt}")
    click.echo(f"Address:     {escrow.address}")


@cli.command()
@click.option("--cancel", is_flag=True, help="Let the timeout pass and take the refund path")
@click.option(
    "--fee-policy",
    type=click.Choice([p.value for p in FeePolicy]),
    default=FeePolicy.ESCROW.value,
    help="Who pays the swap transaction fees",
)
def demo(cancel: bool, fee_policy: str):
    """Run a 1 ETH for 1000 DAI swap on a simulated ledger."""
    now = [int(time.time())]
    ledger = InMemoryLedger(clock=lambda: now[0])

    provider = SwapProvider.generate(ledger)
    client = SwapClient.generate(ledger)
    for party in (provider, client):
        ledger.register_key(party.address, pubkey_hash(party.pubkey))
    ledger.mint(client.address, "ETH", 2 * ETH)
    ledger.mint(provider.address, "DAI", 2000 * ETH)

    terms = SwapTerms(
        sell=Deal(token="ETH", amount=ETH),
        buy=Deal(token="DAI", amount=1000 * ETH),
        timeout=now[0] + config.default_swap_timeout,
        create2=Create2Data.random(config.create2_creator_address, config.create2_code_hash),
        fee_policy=FeePolicy(fee_policy),
    )

    async def run():
        offer = await provider.prepare_swap(terms, client.pubkey, client.address)
        commitments = await client.prepare_swap(terms, offer)
        provider_shares = await provider.sign_swap(commitments)
        swap, client_shares = await client.sign_swap(provider_shares)
        click.echo(f"Escrow: {client.swap_address}")

        await client.deposit_funds()
        await provider.check_swap(client_shares)
        await provider.deposit_funds()

        if cancel:
            now[0] = terms.timeout + 1
            await swap.cancel()
            await provider.cancel_swap()
        else:
            await provider.finalize_swap()
            await swap.wait()

        for name, party in (("Provider", provider), ("Client", client)):
            eth = ledger.balance(party.address, "ETH") / ETH
            dai = ledger.balance(party.address, "DAI") / ETH
            click.echo(f"{name}: {eth:.6f} ETH, {dai:.6f} DAI")

    try:
        asyncio.run(run())
    except SwapError as e:
        logger.error("Demo swap failed", error=str(e))
        sys.exit(1)


@cli.command()
@click.option("--limit", default=10, help="Number of swaps to show")
def list_swaps(limit: int):
    """List recently journaled swap attempts."""

    async def run():
        journal = SwapJournal()
        await journal.init()

        entries = await journal.get_recent_entries(limit)

        if not entries:
            click.echo("No swaps found")
            await journal.close()
            return

        click.echo(f"Recent {len(entries)} swaps:\n")

        for entry in entries:
            click.echo(f"Escrow: {entry.swap_address}")
            click.echo(f"  Role: {entry.role}")
            click.echo(f"  State: {entry.state.value}")
            click.echo(f"  Sell: {entry.terms.sell.amount} {entry.terms.sell.token}")
            click.echo(f"  Buy: {entry.terms.buy.amount} {entry.terms.buy.token}")
            click.echo(f"  Timeout: {entry.timeout}")
            click.echo(f"  Updated: {entry.updated_at}")
            click.echo()

        await journal.close()

    asyncio.run(run())


@cli.command()
@click.option("--swap-address", required=True, help="Escrow account address")
@click.option("--role", type=click.Choice(sorted(ROLES)), required=True, help="Our role in the swap")
@click.option("--seed", envvar="MUSIG_SWAP_SEED", required=True, help="Our 32-byte key seed (hex)")
def refund(swap_address: str, role: str, seed: str):
    """Submit the journaled refund path of a swap after its timeout."""

    async def run():
        journal = SwapJournal()
        await journal.init()
        ledger = HttpLedgerClient()

        try:
            entry = await journal.get_entry(swap_address, role)
            if entry is None or not entry.transactions:
                click.echo(f"No signed {role} batch journaled for {swap_address}")
                sys.exit(1)

            party_role = ROLES[role]
            wallet = Wallet(SigningKey(_hex(seed)), ledger)
            side = (
                entry.terms.sell
                if party_role.deposit_side == DepositSide.SELL
                else entry.terms.buy
            )
            swap = Swap.from_batch(
                entry.transactions,
                party_role.final_slot,
                party_role.cancel_slot,
                ledger=ledger,
                fee_policy=entry.terms.fee_policy,
                wallet=wallet,
                fee_token=side.token,
            )
            tx_hash = await swap.cancel()
            click.echo(f"Refund submitted: {tx_hash}")
        except SwapError as e:
            logger.error("Refund failed", swap_address=swap_address, error=str(e))
            sys.exit(1)
        finally:
            await ledger.close()
            await journal.close()

    asyncio.run(run())


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
