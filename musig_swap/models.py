"""
Data structures shared by both swap parties.

Everything that crosses the party boundary or gets signed is frozen. A
signed transaction is a new record built from the unsigned one, so the
bytes a signature covers can never drift from the record carrying it.
"""

import secrets
from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    PlainSerializer,
    TypeAdapter,
)

# Open end of a validity window
MAX_TIMESTAMP = 4294967295


def _parse_hex(value):
    if isinstance(value, str):
        return bytes.fromhex(value.removeprefix("0x"))
    return value


HexBytes = Annotated[
    bytes,
    BeforeValidator(_parse_hex),
    PlainSerializer(lambda b: "0x" + b.hex(), return_type=str, when_used="json"),
]
Bytes32 = Annotated[HexBytes, Field(min_length=32, max_length=32)]


class SwapState(str, Enum):
    """Lifecycle of one swap attempt, as seen by one party."""

    EMPTY = "empty"  # No attempt in progress
    PREPARED = "prepared"  # Session created, precommitments exchanged
    SIGNED = "signed"  # Batch built and own shares computed
    CHECKED = "checked"  # Peer shares verified, peer deposit seen
    DEPOSITED = "deposited"  # Own side of the trade sent to escrow
    FINALIZED = "finalized"  # Happy path submitted


class Layer(str, Enum):
    """Where funds enter or leave the ledger."""

    L1 = "L1"
    L2 = "L2"


class FeePolicy(str, Enum):
    """Who pays for the five swap transactions."""

    ESCROW = "escrow"  # Fees folded into each transaction, funded by deposits
    SUBMITTER = "submitter"  # Zero-fee transactions, submitter adds a fee payer


class DepositSide(str, Enum):
    """Which leg of the terms a party puts into the escrow."""

    SELL = "sell"  # Client side
    BUY = "buy"  # Provider side

    @property
    def opposite(self) -> "DepositSide":
        return DepositSide.BUY if self is DepositSide.SELL else DepositSide.SELL


class ConfirmationLevel(str, Enum):
    """How final a transaction has to be before a wait returns."""

    COMMIT = "COMMIT"
    VERIFY = "VERIFY"


class Deal(BaseModel):
    """One side of the trade."""

    model_config = ConfigDict(frozen=True)

    token: str | int = Field(description="Token symbol or ledger token id")
    amount: int = Field(ge=0, description="Amount in the token's smallest unit")


class Create2Data(BaseModel):
    """Inputs of the CREATE2-style escrow address derivation."""

    model_config = ConfigDict(frozen=True)

    creator_address: str = Field(description="Deploying factory address")
    salt: Bytes32 = Field(description="Per-attempt salt argument")
    code_hash: Bytes32 = Field(description="Hash of the recovery contract code")

    @classmethod
    def random(cls, creator_address: str, code_hash: bytes | str) -> "Create2Data":
        """Fresh salt for a new attempt."""
        return cls(
            creator_address=creator_address,
            salt=secrets.token_bytes(32),
            code_hash=code_hash,
        )


class SwapTerms(BaseModel):
    """
    Everything both parties must agree on before signing.

    The provider fixes the terms and the client receives them unchanged;
    the fee policy is part of the terms so both sides build the same batch.
    """

    model_config = ConfigDict(frozen=True)

    sell: Deal = Field(description="What the client sells")
    buy: Deal = Field(description="What the client buys")
    timeout: int = Field(ge=0, description="Unix time after which refunds open")
    withdraw_type: Layer = Field(
        default=Layer.L2, description="Where the provider receives the sold token"
    )
    create2: Create2Data
    fee_policy: FeePolicy = FeePolicy.ESCROW


class EscrowDescriptor(BaseModel):
    """Salt and address of the escrow account for one attempt."""

    model_config = ConfigDict(frozen=True)

    salt: str
    address: str


class TxSignature(BaseModel):
    model_config = ConfigDict(frozen=True)

    pub_key: Bytes32
    signature: Annotated[HexBytes, Field(min_length=64, max_length=64)]


class _BaseTx(BaseModel):
    model_config = ConfigDict(frozen=True)

    account_id: int = Field(ge=0)
    nonce: int = Field(ge=0)
    fee: int = Field(default=0, ge=0)
    valid_from: int = Field(default=0, ge=0)
    valid_until: int = Field(default=MAX_TIMESTAMP, ge=0)
    signature: TxSignature | None = None

    def with_signature(self, pub_key: bytes, signature: bytes):
        """Return a signed copy of this transaction."""
        return self.model_copy(
            update={"signature": TxSignature(pub_key=pub_key, signature=signature)}
        )


class _TokenMovement(_BaseTx):
    from_address: str
    to_address: str
    token: int = Field(ge=0, description="Ledger token id")
    amount: int = Field(ge=0)

    @property
    def sender(self) -> str:
        return self.from_address

    @property
    def target(self) -> str:
        return self.to_address

    @property
    def fee_token(self) -> int:
        return self.token


class Transfer(_TokenMovement):
    """Move tokens between two ledger accounts."""

    type: Literal["Transfer"] = "Transfer"


class Withdraw(_TokenMovement):
    """Move tokens out of the ledger to an L1 address."""

    type: Literal["Withdraw"] = "Withdraw"


class ChangePubKey(_BaseTx):
    """Bind an account's signing key, authorized by CREATE2 derivation."""

    type: Literal["ChangePubKey"] = "ChangePubKey"
    account: str
    new_pk_hash: str
    fee_token: int = Field(ge=0)
    auth: Create2Data

    @property
    def sender(self) -> str:
        return self.account

    @property
    def target(self) -> str:
        return self.account


Transaction = Annotated[
    Union[ChangePubKey, Transfer, Withdraw], Field(discriminator="type")
]
TransactionList = TypeAdapter(list[Transaction])


class AccountState(BaseModel):
    """Committed state of one ledger account."""

    address: str
    id: int | None = Field(None, description="Assigned once the account is created")
    nonce: int = 0
    balances: dict[str, int] = Field(default_factory=dict)
    pubkey_hash: str | None = Field(None, description="Current signing key hash")

    def balance(self, symbol: str) -> int:
        return self.balances.get(symbol, 0)


class Receipt(BaseModel):
    """Execution status of a submitted transaction."""

    tx_hash: str
    executed: bool = False
    success: bool | None = None
    fail_reason: str | None = None
    committed: bool = False
    verified: bool = False


class LedgerSnapshot(BaseModel):
    """Ledger state the batch is built from; both parties must see the same one."""

    model_config = ConfigDict(frozen=True)

    account_id: int
    address: str
    nonce: int
    sell_token_id: int
    buy_token_id: int
    fees: tuple[int, int, int, int, int] = (0, 0, 0, 0, 0)


class ProviderOffer(BaseModel):
    """First message: provider identity and round-1 precommitments."""

    model_config = ConfigDict(frozen=True)

    public_key: Bytes32
    address: str
    precommitments: list[HexBytes]


class ClientCommitments(BaseModel):
    """Client's precommitments and round-2 commitments."""

    model_config = ConfigDict(frozen=True)

    precommitments: list[HexBytes]
    commitments: list[HexBytes]


class ProviderShares(BaseModel):
    """Provider's round-2 commitments and signature shares."""

    model_config = ConfigDict(frozen=True)

    commitments: list[HexBytes]
    shares: list[HexBytes]


class ClientShares(BaseModel):
    """Client's signature shares."""

    model_config = ConfigDict(frozen=True)

    shares: list[HexBytes]


class JournalEntry(BaseModel):
    """
    Persisted record of one swap attempt.

    Keeps the signed batch so a party can still run the refund path after
    a restart.
    """

    swap_address: str = Field(description="Escrow account address")
    role: str = Field(description="provider or client")
    state: SwapState
    salt: str = Field(description="CREATE2 salt of the escrow account")
    timeout: int
    terms: SwapTerms
    transactions: list[Transaction] = Field(
        default_factory=list, description="Signed batch, empty until signed"
    )
    created_at: datetime
    updated_at: datetime
