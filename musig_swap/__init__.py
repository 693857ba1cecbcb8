"""musig-swap - two-party MuSig escrow swaps on a single ledger."""

__version__ = "0.1.0"

from .client import SwapClient
from .escrow import derive_escrow
from .ledger import HttpLedgerClient, InMemoryLedger, LedgerClient
from .provider import SwapProvider
from .signer import ThresholdSigner
from .swap import Swap

__all__ = [
    "SwapClient",
    "SwapProvider",
    "Swap",
    "ThresholdSigner",
    "derive_escrow",
    "LedgerClient",
    "HttpLedgerClient",
    "InMemoryLedger",
]
